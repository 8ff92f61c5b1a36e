"""
Project document normalization.

A project document is written by the external data manager in the shape::

    {project: {...}, features: [...],
     phases: {<phaseId>: {...}, selectedSuppliers: {...}},
     config: {projectOverrides: {...}}, versions: [...]}

Older documents carry a flat ``config`` (a full copy of suppliers,
internal resources, categories and parameters) or no ``config`` at all.
``normalize_project_document`` returns a deep copy in the current shape so
the rest of the pipeline can rely on it; the input is never mutated.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from estimate_config.loader import project_overrides_to_record
from estimate_config.resolver import ConfigResolver
from estimate_kernel.domain.clone import structural_clone
from estimate_kernel.domain.values import ConfigCollection
from estimate_kernel.logging_config import get_logger

logger = get_logger("config.migration")

# Keys of a legacy flat config that are folded into projectOverrides.
LEGACY_CONFIG_KEYS = frozenset(
    [c.value for c in ConfigCollection] + ["calculationParams", "calculationParameters"]
)

_SECTION_SHAPES: dict[str, type] = {
    "project": dict,
    "features": list,
    "phases": dict,
    "versions": list,
}


def is_legacy_config(config: Any) -> bool:
    """True for a flat config that predates ``projectOverrides``."""
    return (
        isinstance(config, Mapping)
        and "projectOverrides" not in config
        and any(key in config for key in LEGACY_CONFIG_KEYS)
    )


def normalize_project_document(document: Any, resolver: ConfigResolver) -> dict[str, Any]:
    """Return a current-shape deep copy of ``document``.

    Missing or wrongly typed sections are replaced by empty ones and the
    replacement is logged; ``config`` always ends up as
    ``{..., "projectOverrides": {...}}``.
    """
    if not isinstance(document, Mapping):
        logger.warning(
            "project_document_replaced",
            extra={"actual": type(document).__name__},
        )
        document = {}
    normalized: dict[str, Any] = structural_clone(dict(document))

    for section, shape in _SECTION_SHAPES.items():
        if not isinstance(normalized.get(section), shape):
            if section in normalized:
                logger.warning(
                    "project_section_replaced",
                    extra={
                        "section": section,
                        "actual": type(normalized[section]).__name__,
                    },
                )
            normalized[section] = shape()

    config = normalized.get("config")
    legacy = is_legacy_config(config)
    overrides = resolver.migrate(config)
    kept = (
        {k: v for k, v in config.items() if k not in LEGACY_CONFIG_KEYS}
        if isinstance(config, Mapping)
        else {}
    )
    normalized["config"] = {**kept, "projectOverrides": project_overrides_to_record(overrides)}

    if legacy:
        logger.info(
            "project_document_migrated",
            extra={"project_id": normalized["project"].get("id")},
        )
    return normalized

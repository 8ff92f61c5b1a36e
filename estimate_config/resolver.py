"""
estimate_config.resolver -- hierarchical configuration resolution.

Responsibility:
    Layer a project's ``ProjectOverrides`` over the global catalog and hand
    out the resulting ``EffectiveConfig``.  Also owns the override mutation
    API (add / delete / update parameters / reset) and the migration of
    legacy flat project configurations into the overrides shape.

Architecture position:
    Configuration -- the only component that receives the catalog's owned
    ``GlobalConfig`` by reference.  Engines and services see resolved copies.

Merge policy (per collection, keyed by ``id``):

    ======================  ===============================================
    override item           effect on the effective view
    ======================  ===============================================
    id matches global item  fields patched on top of the global record,
                            flagged ``isOverridden``
    no match, complete      appended, flagged ``isProjectSpecific``
    no match, incomplete    skipped, ``override_item_skipped`` logged
    status ``inactive``     excluded from the effective view
    ======================  ===============================================

    Calculation parameters are shallow-merged; the override wins per field.

Invariants enforced:
    - ``resolve`` always returns a structure that shares no reference with
      the catalog or with any previously returned structure.
    - Override mutations return a NEW ``ProjectOverrides``; neither the
      input overrides nor the catalog are mutated.
    - ``migrate`` is idempotent.

Failure modes:
    - ``ValidationError`` from ``add_override_item`` and
      ``update_calculation_params``; nothing is partially applied.
    - ``ItemNotFoundError`` from ``delete_override_item`` for an id that is
      neither global nor project-specific.
    - Malformed overrides never raise from ``resolve`` or ``migrate``: the
      offending part is skipped or replaced by an empty structure, and the
      fallback is logged.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from estimate_config.catalog import CatalogStore, validate_item_record
from estimate_config.loader import (
    CALCULATION_PARAM_KEYS,
    calculation_parameters_to_record,
    config_to_record,
    item_to_record,
    new_item_id,
    parse_calculation_parameters,
    parse_item,
    parse_project_overrides,
    strip_flags,
)
from estimate_kernel.domain.clone import structural_clone
from estimate_kernel.domain.models import (
    CalculationParameters,
    Category,
    EffectiveConfig,
    EstimationConfig,
    GlobalConfig,
    ProjectOverrides,
    RateEntity,
    StatusPatch,
)
from estimate_kernel.domain.validation import validate_calculation_params
from estimate_kernel.domain.values import ConfigCollection, Sourcing, to_decimal
from estimate_kernel.exceptions import (
    ItemNotFoundError,
    ShapeMismatchError,
    ValidationError,
)
from estimate_kernel.logging_config import get_logger
from estimate_kernel.utils.hashing import hash_payload

logger = get_logger("config.resolver")

# Keys compared when a legacy flat item is diffed against its global entry.
_IDENTITY_KEYS = ("id", "isGlobal", "isOverridden", "isProjectSpecific")


@dataclass(frozen=True)
class ConfigStats:
    """Item counts per collection, keyed by wire collection name."""

    global_counts: dict[str, int] = field(default_factory=dict)
    override_counts: dict[str, int] = field(default_factory=dict)
    effective_counts: dict[str, int] = field(default_factory=dict)
    overridden_parameters: tuple[str, ...] = ()


class ConfigResolver:
    """
    Produces effective configurations from the catalog and project overrides.

    Contract:
        ``resolve(None)`` is a deep copy of the catalog.  ``resolve(o)``
        applies the merge policy in the module docstring.  Override mutators
        are pure with respect to their input: they return a new structure.
    Non-goals:
        Does not persist overrides; the project document owner does.
    """

    def __init__(self, catalog: CatalogStore):
        self._catalog = catalog

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(
        self, overrides: ProjectOverrides | Mapping[str, Any] | None = None
    ) -> EffectiveConfig:
        """
        The effective configuration of a project.

        ``None`` means the project has no overrides structure at all: the
        catalog is returned verbatim, inactive global entries included.  Any
        overrides structure, even an empty one, goes through the merge and
        inactive entries are left out of the view.
        """
        global_config = self._catalog.owned_config()
        if overrides is None:
            effective = structural_clone(global_config)
            self._trace(effective, overrides=None)
            return effective

        overrides = self._coerce(overrides)
        effective = EstimationConfig(
            calculation_parameters=self._merge_parameters(
                global_config.calculation_parameters, overrides.calculation_params
            )
        )
        for collection in ConfigCollection:
            effective.collection(collection).extend(
                self._merge_collection(
                    collection,
                    global_config.collection(collection),
                    overrides.collection(collection),
                )
            )
        self._trace(effective, overrides=overrides)
        return effective

    def get_global_config(self) -> GlobalConfig:
        return self._catalog.get_global_config()

    def get_project_items(
        self,
        overrides: ProjectOverrides | Mapping[str, Any] | None,
        collection: ConfigCollection | str,
    ) -> list[RateEntity] | list[Category]:
        """Effective items of one collection for a project."""
        return self.resolve(overrides).collection(collection)

    # ------------------------------------------------------------------
    # Override lifecycle
    # ------------------------------------------------------------------

    def initialize_project_overrides(self) -> ProjectOverrides:
        return ProjectOverrides()

    def reset_overrides(self) -> ProjectOverrides:
        """Fresh empty overrides; the catalog is never touched by a reset."""
        logger.info("overrides_reset")
        return ProjectOverrides()

    def migrate(self, old: Any) -> ProjectOverrides:
        """
        Convert any persisted project configuration into ``ProjectOverrides``.

        * ``ProjectOverrides``  -> returned unchanged.
        * ``{"projectOverrides": {...}}``  -> parsed.
        * legacy flat ``{suppliers, internalResources, categories,
          calculationParams}``  -> diffed against the catalog: items equal to
          their global entry are dropped, differing fields become patches,
          unknown ids become project-specific additions.
        * ``None`` or an unusable shape  -> empty overrides.
        """
        if isinstance(old, ProjectOverrides):
            return old
        if old is None:
            logger.info("overrides_initialized", extra={"reason": "missing_config"})
            return self.initialize_project_overrides()
        if not isinstance(old, Mapping):
            return self._shape_fallback(
                ShapeMismatchError("config", "object", type(old).__name__)
            )
        if "projectOverrides" in old:
            try:
                return parse_project_overrides(old["projectOverrides"])
            except ShapeMismatchError as exc:
                return self._shape_fallback(exc)
        return self._migrate_flat(old)

    def add_override_item(
        self,
        overrides: ProjectOverrides,
        collection: ConfigCollection | str,
        item: Mapping[str, Any],
    ) -> ProjectOverrides:
        """
        Validate ``item`` and upsert it into the overrides by id.

        An item without an id is a new project-specific item and receives a
        generated id.  An item whose id matches a global entry is stored as a
        patch of that entry.  The item is validated as it would appear in the
        effective view, against the other effective items of the collection.

        Raises:
            ValidationError: the merged item is invalid.
        """
        collection = ConfigCollection.parse(collection)
        record = strip_flags(item)
        record["id"] = record.get("id") or new_item_id(collection)
        item_id = record["id"]

        global_record = self._global_record(collection, item_id)
        if global_record is None:
            record["isGlobal"] = False
        else:
            record.pop("isGlobal", None)

        updated = structural_clone(overrides)
        patches = updated.collection(collection)
        index = _index_of(patches, item_id)
        existing_patch = patches[index] if index is not None else {}

        merged = {**(global_record or {}), **existing_patch, **record}
        effective_items = self.resolve(overrides).collection(collection)
        result = validate_item_record(collection, merged, effective_items)
        if not result.is_valid:
            logger.warning(
                "override_item_rejected",
                extra={
                    "collection": collection.value,
                    "item_id": item_id,
                    "reasons": result.errors,
                },
            )
            raise ValidationError(result.errors, item_id=item_id)
        try:
            parse_item(collection, merged, collection.value)
        except ShapeMismatchError as exc:
            raise ValidationError([str(exc)], item_id=item_id) from exc

        if index is None:
            patches.append(record)
        else:
            patches[index] = {**existing_patch, **record}
        logger.info(
            "override_item_added" if index is None else "override_item_updated",
            extra={
                "collection": collection.value,
                "item_id": item_id,
                "patches_global": global_record is not None,
            },
        )
        return updated

    def delete_override_item(
        self,
        overrides: ProjectOverrides,
        collection: ConfigCollection | str,
        item_id: str,
    ) -> ProjectOverrides:
        """
        Remove an item from the project's effective view.

        A global item is deactivated for this project with a ``StatusPatch``;
        a project-specific item is dropped from the overrides.

        Raises:
            ItemNotFoundError: the id is neither global nor project-specific.
        """
        collection = ConfigCollection.parse(collection)
        updated = structural_clone(overrides)
        patches = updated.collection(collection)
        index = _index_of(patches, item_id)

        if self._global_record(collection, item_id) is not None:
            status_patch = StatusPatch(item_id).to_record()
            if index is None:
                patches.append(status_patch)
            else:
                patches[index] = {**patches[index], **status_patch}
            action = "deactivated"
        elif index is not None:
            del patches[index]
            action = "removed"
        else:
            raise ItemNotFoundError(collection.value, item_id)

        logger.info(
            "override_item_deleted",
            extra={"collection": collection.value, "item_id": item_id, "action": action},
        )
        return updated

    def update_calculation_params(
        self,
        overrides: ProjectOverrides,
        changes: Mapping[str, Any],
    ) -> ProjectOverrides:
        """Merge parameter overrides for a project (wire keys)."""
        unknown = sorted(k for k in changes if k not in CALCULATION_PARAM_KEYS)
        result = validate_calculation_params(changes)
        for key in unknown:
            result.add_error(f"Unknown calculation parameter: {key}")
        if not result.is_valid:
            raise ValidationError(result.errors)

        updated = structural_clone(overrides)
        updated.calculation_params.update(structural_clone(dict(changes)))
        logger.info("override_parameters_updated", extra={"fields": sorted(changes)})
        return updated

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_rate_entity(
        self,
        entity_id: str,
        overrides: ProjectOverrides | Mapping[str, Any] | None = None,
    ) -> tuple[RateEntity, Sourcing] | None:
        return self.resolve(overrides).find_rate_entity(entity_id)

    def is_known_rate_entity(
        self,
        entity_id: str,
        overrides: ProjectOverrides | Mapping[str, Any] | None = None,
    ) -> bool:
        return self.find_rate_entity(entity_id, overrides) is not None

    def display_name(
        self,
        entity_id: str,
        overrides: ProjectOverrides | Mapping[str, Any] | None = None,
    ) -> str:
        """``"Name (External)"`` / ``"Name (Internal)"``, or a placeholder."""
        found = self.find_rate_entity(entity_id, overrides)
        if found is None:
            return f"Unknown Supplier ({entity_id})"
        entity, sourcing = found
        return f"{entity.name} ({sourcing.value.capitalize()})"

    def config_stats(
        self, overrides: ProjectOverrides | Mapping[str, Any] | None = None
    ) -> ConfigStats:
        global_config = self._catalog.owned_config()
        coerced = self._coerce(overrides) if overrides is not None else ProjectOverrides()
        effective = self.resolve(coerced)
        return ConfigStats(
            global_counts={c.value: len(global_config.collection(c)) for c in ConfigCollection},
            override_counts={c.value: len(coerced.collection(c)) for c in ConfigCollection},
            effective_counts={c.value: len(effective.collection(c)) for c in ConfigCollection},
            overridden_parameters=tuple(sorted(coerced.calculation_params)),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _coerce(self, overrides: ProjectOverrides | Mapping[str, Any]) -> ProjectOverrides:
        if isinstance(overrides, ProjectOverrides):
            return overrides
        try:
            return parse_project_overrides(overrides)
        except ShapeMismatchError as exc:
            return self._shape_fallback(exc)

    def _global_record(
        self, collection: ConfigCollection, item_id: str
    ) -> dict[str, Any] | None:
        for item in self._catalog.owned_config().collection(collection):
            if item.id == item_id:
                return item_to_record(item)
        return None

    def _merge_collection(
        self,
        collection: ConfigCollection,
        global_items: list[RateEntity] | list[Category],
        patches: list[dict[str, Any]],
    ) -> list[RateEntity | Category]:
        records: dict[str, dict[str, Any]] = {
            item.id: item_to_record(item) for item in global_items
        }
        global_ids = set(records)
        for patch in patches:
            item_id = patch.get("id")
            if item_id in global_ids:
                records[item_id] = {
                    **records[item_id],
                    **strip_flags(patch),
                    "id": item_id,
                    "isGlobal": True,
                    "isOverridden": True,
                }
            elif item_id is not None:
                records[item_id] = {
                    "isGlobal": False,
                    **strip_flags(patch),
                    "isProjectSpecific": True,
                }

        merged: list[RateEntity | Category] = []
        for item_id, record in records.items():
            try:
                item = parse_item(collection, record, f"{collection.value}[{item_id}]")
            except ShapeMismatchError as exc:
                logger.warning(
                    "override_item_skipped",
                    extra={
                        "collection": collection.value,
                        "item_id": item_id,
                        "path": exc.path,
                        "expected": exc.expected,
                        "actual": exc.actual,
                    },
                )
                if item_id not in global_ids:
                    continue
                item = next(g for g in global_items if g.id == item_id)
                item = structural_clone(item)
            if item.is_active:
                merged.append(item)
        return merged

    def _merge_parameters(
        self, base: CalculationParameters, changes: Mapping[str, Any]
    ) -> CalculationParameters:
        params = structural_clone(base)
        for key in CALCULATION_PARAM_KEYS:
            if key not in changes:
                continue
            try:
                params = parse_calculation_parameters({key: changes[key]}, base=params)
            except ShapeMismatchError as exc:
                logger.warning(
                    "override_parameter_skipped",
                    extra={"path": exc.path, "expected": exc.expected, "actual": exc.actual},
                )
        return params

    def _migrate_flat(self, old: Mapping[str, Any]) -> ProjectOverrides:
        overrides = ProjectOverrides()
        for collection in ConfigCollection:
            items = old.get(collection.value)
            if not isinstance(items, list):
                continue
            for item in items:
                if not isinstance(item, Mapping) or item.get("id") is None:
                    continue
                global_record = self._global_record(collection, item["id"])
                if global_record is None:
                    overrides.collection(collection).append(
                        {**strip_flags(item), "isGlobal": False}
                    )
                    continue
                patch = {
                    key: value
                    for key, value in item.items()
                    if key not in _IDENTITY_KEYS
                    and not _same_value(value, global_record.get(key))
                }
                if patch:
                    overrides.collection(collection).append({"id": item["id"], **patch})

        params = old.get("calculationParams", old.get("calculationParameters"))
        if isinstance(params, Mapping):
            global_params = calculation_parameters_to_record(
                self._catalog.owned_config().calculation_parameters
            )
            overrides.calculation_params.update(
                {
                    key: value
                    for key, value in params.items()
                    if key in CALCULATION_PARAM_KEYS
                    and not _same_value(value, global_params[key])
                }
            )

        overrides = structural_clone(overrides)
        logger.info(
            "config_migrated",
            extra={
                **{f"{c.attr}_count": len(overrides.collection(c)) for c in ConfigCollection},
                "parameter_count": len(overrides.calculation_params),
            },
        )
        return overrides

    def _shape_fallback(self, exc: ShapeMismatchError) -> ProjectOverrides:
        logger.warning(
            "overrides_shape_fallback",
            extra={"path": exc.path, "expected": exc.expected, "actual": exc.actual},
        )
        return self.initialize_project_overrides()

    def _trace(self, effective: EffectiveConfig, overrides: ProjectOverrides | None) -> None:
        logger.info(
            "ESTIMATE_CONFIG_TRACE",
            extra={
                "trace_type": "ESTIMATE_CONFIG_TRACE",
                "fingerprint": hash_payload(config_to_record(effective, include_flags=True)),
                "has_overrides": overrides is not None and not overrides.is_empty,
                "supplier_count": len(effective.suppliers),
                "internal_resource_count": len(effective.internal_resources),
                "category_count": len(effective.categories),
            },
        )


def _index_of(records: list[dict[str, Any]], item_id: str) -> int | None:
    for index, record in enumerate(records):
        if record.get("id") == item_id:
            return index
    return None


def _same_value(left: Any, right: Any) -> bool:
    """Equality that treats 463 and 463.0 as the same number."""
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        try:
            return to_decimal(left) == to_decimal(right)
        except ValueError:
            return left == right
    return left == right

"""
Record Codec (``estimate_config.loader``).

Responsibility
--------------
Parses wire records (JSON-compatible dicts with camelCase keys, as written by
the persistence collaborator or authored in YAML) into the typed dataclasses
of ``estimate_kernel.domain.models``, and serializes them back.

Architecture position
---------------------
**Config layer** -- codec only.  Consumed by the catalog store, the resolver
and the migration helpers.  No dependency on engines or services.

Invariants enforced
-------------------
* Numbers are converted with ``to_decimal`` (floats via ``str``).
* Serialized records are JSON-compatible: Decimals become int/float, enums
  become their values.
* Parsing never mutates the input record.

Failure modes
-------------
* Missing required key or wrong container type  -> ``ShapeMismatchError``.
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import uuid4

import yaml

from estimate_kernel.domain.models import (
    CalculationParameters,
    Category,
    EstimationConfig,
    Feature,
    ProjectOverrides,
    RateEntity,
)
from estimate_kernel.domain.values import (
    ConfigCollection,
    EntityStatus,
    ZERO,
    json_number,
    to_decimal,
)
from estimate_kernel.exceptions import ShapeMismatchError

# Wire keys of CalculationParameters, in declaration order.
CALCULATION_PARAM_KEYS: dict[str, str] = {
    "workingDaysPerMonth": "working_days_per_month",
    "workingHoursPerDay": "working_hours_per_day",
    "currencySymbol": "currency_symbol",
    "riskMargin": "risk_margin",
    "overheadPercentage": "overhead_percentage",
}

_FLAG_KEYS = ("isOverridden", "isProjectSpecific")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ShapeMismatchError: if the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ShapeMismatchError(str(path), "mapping", type(data).__name__)
    return data


def _type_name(value: Any) -> str:
    return "null" if value is None else type(value).__name__


def require_mapping(value: Any, path: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ShapeMismatchError(path, "object", _type_name(value))
    return value


def require_list(value: Any, path: str) -> list[Any]:
    if not isinstance(value, list):
        raise ShapeMismatchError(path, "array", _type_name(value))
    return value


def _required(record: Mapping[str, Any], key: str, path: str) -> Any:
    if record.get(key) is None:
        raise ShapeMismatchError(f"{path}.{key}", "value", "missing")
    return record[key]


def _decimal(record: Mapping[str, Any], key: str, path: str) -> Decimal:
    try:
        return to_decimal(_required(record, key, path), key)
    except ValueError:
        raise ShapeMismatchError(f"{path}.{key}", "number", _type_name(record[key])) from None


def _status(record: Mapping[str, Any], path: str) -> EntityStatus:
    raw = record.get("status") or EntityStatus.ACTIVE.value
    try:
        return EntityStatus(raw)
    except ValueError:
        raise ShapeMismatchError(f"{path}.status", "active|inactive", repr(raw)) from None


# ---------------------------------------------------------------------------
# Rate entities
# ---------------------------------------------------------------------------


def parse_rate_entity(record: Any, path: str = "rateEntity") -> RateEntity:
    """Parse a supplier / internal resource record."""
    record = require_mapping(record, path)
    return RateEntity(
        id=str(_required(record, "id", path)),
        name=str(_required(record, "name", path)),
        role=str(record.get("role") or ""),
        department=str(record.get("department") or ""),
        real_rate=_decimal(record, "realRate", path),
        official_rate=_decimal(record, "officialRate", path),
        is_global=bool(record.get("isGlobal", False)),
        status=_status(record, path),
        lta=record.get("lta"),
        is_overridden=bool(record.get("isOverridden", False)),
        is_project_specific=bool(record.get("isProjectSpecific", False)),
    )


def rate_entity_to_record(entity: RateEntity, include_flags: bool = False) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": entity.id,
        "name": entity.name,
        "role": entity.role,
        "department": entity.department,
        "realRate": json_number(entity.real_rate),
        "officialRate": json_number(entity.official_rate),
        "isGlobal": entity.is_global,
        "status": entity.status.value,
    }
    if entity.lta is not None:
        record["lta"] = entity.lta
    if include_flags:
        record["isOverridden"] = entity.is_overridden
        record["isProjectSpecific"] = entity.is_project_specific
    return record


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


def parse_category(record: Any, path: str = "category") -> Category:
    record = require_mapping(record, path)
    multiplier = (
        _decimal(record, "multiplier", path)
        if record.get("multiplier") is not None
        else Decimal("1")
    )
    return Category(
        id=str(_required(record, "id", path)),
        name=str(_required(record, "name", path)),
        description=str(record.get("description") or ""),
        multiplier=multiplier,
        is_global=bool(record.get("isGlobal", False)),
        status=_status(record, path),
        is_overridden=bool(record.get("isOverridden", False)),
        is_project_specific=bool(record.get("isProjectSpecific", False)),
    )


def category_to_record(category: Category, include_flags: bool = False) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": category.id,
        "name": category.name,
        "description": category.description,
        "multiplier": json_number(category.multiplier),
        "isGlobal": category.is_global,
        "status": category.status.value,
    }
    if include_flags:
        record["isOverridden"] = category.is_overridden
        record["isProjectSpecific"] = category.is_project_specific
    return record


def parse_item(collection: ConfigCollection, record: Any, path: str) -> RateEntity | Category:
    if collection.is_rate_collection:
        return parse_rate_entity(record, path)
    return parse_category(record, path)


def item_to_record(item: RateEntity | Category, include_flags: bool = False) -> dict[str, Any]:
    if isinstance(item, RateEntity):
        return rate_entity_to_record(item, include_flags)
    return category_to_record(item, include_flags)


def strip_flags(record: Mapping[str, Any]) -> dict[str, Any]:
    """Drop resolver-derived flags; they are never persisted in overrides."""
    return {k: v for k, v in record.items() if k not in _FLAG_KEYS}


# ---------------------------------------------------------------------------
# Calculation parameters
# ---------------------------------------------------------------------------


def _positive_int(value: Any, path: str) -> int:
    try:
        number = to_decimal(value, path)
    except ValueError:
        raise ShapeMismatchError(path, "integer", _type_name(value)) from None
    if number != number.to_integral_value():
        raise ShapeMismatchError(path, "integer", str(value))
    return int(number)


def parse_calculation_parameters(
    record: Any,
    base: CalculationParameters | None = None,
    path: str = "calculationParameters",
) -> CalculationParameters:
    """Parse a (possibly partial) parameters record over ``base``.

    Fields absent from ``record`` keep the value from ``base`` (or the
    dataclass default); a field present in ``record`` wins.
    """
    record = require_mapping(record, path)
    base = base or CalculationParameters()
    return CalculationParameters(
        working_days_per_month=(
            _positive_int(record["workingDaysPerMonth"], f"{path}.workingDaysPerMonth")
            if "workingDaysPerMonth" in record
            else base.working_days_per_month
        ),
        working_hours_per_day=(
            _positive_int(record["workingHoursPerDay"], f"{path}.workingHoursPerDay")
            if "workingHoursPerDay" in record
            else base.working_hours_per_day
        ),
        currency_symbol=str(record.get("currencySymbol", base.currency_symbol)),
        risk_margin=(
            _decimal(record, "riskMargin", path)
            if "riskMargin" in record
            else base.risk_margin
        ),
        overhead_percentage=(
            _decimal(record, "overheadPercentage", path)
            if "overheadPercentage" in record
            else base.overhead_percentage
        ),
    )


def calculation_parameters_to_record(params: CalculationParameters) -> dict[str, Any]:
    return {
        "workingDaysPerMonth": params.working_days_per_month,
        "workingHoursPerDay": params.working_hours_per_day,
        "currencySymbol": params.currency_symbol,
        "riskMargin": json_number(params.risk_margin),
        "overheadPercentage": json_number(params.overhead_percentage),
    }


# ---------------------------------------------------------------------------
# Configuration sets
# ---------------------------------------------------------------------------


def parse_config(record: Any, path: str = "globalConfig") -> EstimationConfig:
    """Parse ``{suppliers, internalResources, categories, calculationParameters}``.

    The legacy key ``calculationParams`` is accepted for the parameters.
    """
    record = require_mapping(record, path)
    params_record = record.get("calculationParameters", record.get("calculationParams", {}))
    config = EstimationConfig(
        calculation_parameters=parse_calculation_parameters(
            params_record or {}, path=f"{path}.calculationParameters"
        )
    )
    for collection in ConfigCollection:
        items = require_list(record.get(collection.value, []), f"{path}.{collection.value}")
        config.collection(collection).extend(
            parse_item(collection, item, f"{path}.{collection.value}[{i}]")
            for i, item in enumerate(items)
        )
    return config


def config_to_record(config: EstimationConfig, include_flags: bool = False) -> dict[str, Any]:
    record: dict[str, Any] = {
        collection.value: [
            item_to_record(item, include_flags) for item in config.collection(collection)
        ]
        for collection in ConfigCollection
    }
    record["calculationParameters"] = calculation_parameters_to_record(
        config.calculation_parameters
    )
    return record


# ---------------------------------------------------------------------------
# Project overrides
# ---------------------------------------------------------------------------


def parse_project_overrides(record: Any, path: str = "projectOverrides") -> ProjectOverrides:
    """Parse the persisted overrides shape.

    Each collection item must be an object with an ``id``; items are kept as
    records (patches) and copied so the caller's document is never aliased.
    """
    record = require_mapping(record, path)
    overrides = ProjectOverrides(
        calculation_params=dict(
            require_mapping(record.get("calculationParams") or {}, f"{path}.calculationParams")
        )
    )
    for collection in ConfigCollection:
        items = require_list(record.get(collection.value) or [], f"{path}.{collection.value}")
        target = overrides.collection(collection)
        for i, item in enumerate(items):
            item_path = f"{path}.{collection.value}[{i}]"
            item = require_mapping(item, item_path)
            _required(item, "id", item_path)
            target.append(strip_flags(item))
    return overrides


def project_overrides_to_record(overrides: ProjectOverrides) -> dict[str, Any]:
    record: dict[str, Any] = {
        collection.value: [dict(item) for item in overrides.collection(collection)]
        for collection in ConfigCollection
    }
    record["calculationParams"] = dict(overrides.calculation_params)
    return record


# ---------------------------------------------------------------------------
# Features
# ---------------------------------------------------------------------------


def parse_feature(record: Any, index: int = 0) -> Feature:
    """Parse a feature record.

    Non-numeric man-days read as zero, matching how the feature table treats
    blank estimates.
    """
    record = require_mapping(record, f"features[{index}]")
    try:
        man_days = to_decimal(record.get("manDays") or 0, "manDays")
    except ValueError:
        man_days = ZERO
    return Feature(
        id=str(record.get("id") or f"feature-{index + 1}"),
        man_days=man_days,
        supplier=record.get("supplier") or None,
        description=str(record.get("description") or ""),
        category=record.get("category") or None,
    )


def feature_to_record(feature: Feature) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": feature.id,
        "description": feature.description,
        "manDays": json_number(feature.man_days),
    }
    if feature.supplier:
        record["supplier"] = feature.supplier
    if feature.category:
        record["category"] = feature.category
    return record


def parse_features(records: Any) -> tuple[Feature, ...]:
    return tuple(
        parse_feature(record, i)
        for i, record in enumerate(require_list(records or [], "features"))
    )


def new_item_id(collection: ConfigCollection) -> str:
    """Fresh id for an item added without one, e.g. ``supplier_3f9c0e1a2b4d``."""
    return f"{collection.id_prefix}_{uuid4().hex[:12]}"

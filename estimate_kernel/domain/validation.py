"""
Domain validation for catalog items, parameters and effort distributions.

Pure checks with no I/O.  Every check returns a ``ValidationResult`` whose
``errors`` are human-readable reasons the UI shows per field; callers that
must reject an item raise ``ValidationError(result.errors)`` so nothing is
ever partially applied.

Rules
-----
* Rate entity: non-empty name; real and official rate strictly positive and
  not above ``MAX_DAILY_RATE``; name unique within its scope.
* Category: non-empty name; positive numeric multiplier; name unique.
* Calculation parameters: positive integer days/hours, non-negative risk
  margin and overhead, non-empty currency symbol.
* Distribution: every role within 0..100, sum 100 within tolerance.
* Highest multiplier: more than one category at the maximum multiplier is a
  WARNING, never an error.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from estimate_kernel.domain.models import Category, RateEntity
from estimate_kernel.domain.values import (
    DISTRIBUTION_TOLERANCE,
    HUNDRED,
    MAX_DAILY_RATE,
    ROLES,
    ZERO,
    RoleValues,
    to_decimal,
)


@dataclass
class ValidationResult:
    """
    Result of a validation pass.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings never block an operation.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def _normalized_name(name: Any) -> str:
    return str(name or "").strip().casefold()


def _check_duplicate_name(
    record: Mapping[str, Any],
    existing: Iterable[RateEntity | Category],
    result: ValidationResult,
) -> None:
    name = _normalized_name(record.get("name"))
    if not name:
        return
    for item in existing:
        if item.id != record.get("id") and _normalized_name(item.name) == name:
            result.add_error(f"Name '{record.get('name')}' is already used by {item.id}")
            return


def _check_rate(record: Mapping[str, Any], key: str, label: str, result: ValidationResult) -> None:
    raw = record.get(key)
    if raw is None:
        result.add_error(f"{label} is required")
        return
    try:
        rate = to_decimal(raw, label)
    except ValueError as exc:
        result.add_error(str(exc))
        return
    if rate <= ZERO:
        result.add_error(f"{label} must be greater than 0")
    elif rate > MAX_DAILY_RATE:
        result.add_error(f"{label} must not exceed {MAX_DAILY_RATE} per day")


def validate_rate_entity(
    record: Mapping[str, Any],
    existing: Iterable[RateEntity] = (),
) -> ValidationResult:
    """Validate a supplier / internal resource record (wire keys)."""
    result = ValidationResult()
    if not str(record.get("name") or "").strip():
        result.add_error("Name is required")
    _check_rate(record, "realRate", "Real rate", result)
    _check_rate(record, "officialRate", "Official rate", result)
    _check_duplicate_name(record, existing, result)
    return result


def validate_category(
    record: Mapping[str, Any],
    existing: Iterable[Category] = (),
) -> ValidationResult:
    """Validate a category record (wire keys)."""
    result = ValidationResult()
    if not str(record.get("name") or "").strip():
        result.add_error("Name is required")
    if "multiplier" in record:
        try:
            multiplier = to_decimal(record["multiplier"], "Multiplier")
        except ValueError as exc:
            result.add_error(str(exc))
        else:
            if multiplier <= ZERO:
                result.add_error("Multiplier must be greater than 0")
    _check_duplicate_name(record, existing, result)
    return result


def validate_calculation_params(params: Mapping[str, Any]) -> ValidationResult:
    """Validate a (possibly partial) calculation parameters record."""
    result = ValidationResult()
    for key, label in (
        ("workingDaysPerMonth", "Working days per month"),
        ("workingHoursPerDay", "Working hours per day"),
    ):
        if key not in params:
            continue
        value = params[key]
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            result.add_error(f"{label} must be a positive integer")
    for key, label in (
        ("riskMargin", "Risk margin"),
        ("overheadPercentage", "Overhead percentage"),
    ):
        if key not in params:
            continue
        try:
            value = to_decimal(params[key], label)
        except ValueError as exc:
            result.add_error(str(exc))
            continue
        if value < ZERO:
            result.add_error(f"{label} must not be negative")
    if "currencySymbol" in params and not str(params["currencySymbol"] or "").strip():
        result.add_error("Currency symbol is required")
    return result


def validate_distribution(
    distribution: RoleValues | Mapping[str, Any],
    label: str = "Distribution",
) -> ValidationResult:
    """Check a role-effort distribution: each role 0..100, sum 100 ± 0.01."""
    result = ValidationResult()
    if not isinstance(distribution, RoleValues):
        try:
            distribution = RoleValues.of(distribution)
        except ValueError as exc:
            result.add_error(f"{label}: {exc}")
            return result
    for role in ROLES:
        value = distribution[role]
        if value < ZERO or value > HUNDRED:
            result.add_error(f"{label}: {role.value} effort must be between 0-100%")
    total = distribution.total
    if abs(total - HUNDRED) > DISTRIBUTION_TOLERANCE:
        result.add_error(f"{label}: effort distribution totals {total}%, expected 100%")
    return result


def check_highest_multiplier(categories: Iterable[Category]) -> ValidationResult:
    """Soft check: the maximum multiplier should be held by one category."""
    result = ValidationResult()
    items = list(categories)
    if not items:
        return result
    highest: Decimal = max(c.multiplier for c in items)
    holders = [c.id for c in items if c.multiplier == highest]
    if len(holders) > 1:
        result.add_warning(
            f"Multiplier {highest} is shared by {len(holders)} categories: "
            + ", ".join(holders)
        )
    return result

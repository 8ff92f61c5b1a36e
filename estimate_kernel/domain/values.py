"""
Value objects shared by every layer of the estimation core.

Roles, statuses, collection names and the ``RoleValues`` quadruple used for
effort distributions, man-days and costs.  All numeric values are
``Decimal``; ``to_decimal`` is the single conversion point for numbers that
arrive from JSON/YAML (floats are converted through ``str`` so 506.3 stays
506.3).
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

from estimate_kernel.exceptions import UnknownCollectionError

HUNDRED = Decimal("100")
ZERO = Decimal("0")
CENT = Decimal("0.01")

# Rates above this daily ceiling are treated as data-entry mistakes.
MAX_DAILY_RATE = Decimal("10000")

# Distribution sums and man-day conservation are checked to this tolerance.
DISTRIBUTION_TOLERANCE = Decimal("0.01")


class Role(str, Enum):
    """The four effort roles used for distribution and pricing."""

    G1 = "G1"
    G2 = "G2"
    TA = "TA"
    PM = "PM"


ROLES: tuple[Role, ...] = (Role.G1, Role.G2, Role.TA, Role.PM)


class EntityStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ConfigCollection(str, Enum):
    """Overridable catalog collections, valued by their wire key."""

    SUPPLIERS = "suppliers"
    INTERNAL_RESOURCES = "internalResources"
    CATEGORIES = "categories"

    @property
    def attr(self) -> str:
        """Python attribute name on configuration dataclasses."""
        return _COLLECTION_ATTRS[self]

    @property
    def is_rate_collection(self) -> bool:
        return self is not ConfigCollection.CATEGORIES

    @property
    def id_prefix(self) -> str:
        return _COLLECTION_ID_PREFIXES[self]

    @classmethod
    def parse(cls, value: ConfigCollection | str) -> ConfigCollection:
        """Accept the enum, the wire key or the snake_case attribute name."""
        if isinstance(value, ConfigCollection):
            return value
        for member in cls:
            if value in (member.value, member.attr):
                return member
        raise UnknownCollectionError(str(value))


_COLLECTION_ATTRS = {
    ConfigCollection.SUPPLIERS: "suppliers",
    ConfigCollection.INTERNAL_RESOURCES: "internal_resources",
    ConfigCollection.CATEGORIES: "categories",
}

_COLLECTION_ID_PREFIXES = {
    ConfigCollection.SUPPLIERS: "supplier",
    ConfigCollection.INTERNAL_RESOURCES: "internal",
    ConfigCollection.CATEGORIES: "category",
}


class KpiCategory(str, Enum):
    """KPI grouping of roles."""

    GTO = "gto"  # Technical roles
    GDS = "gds"  # Management role


class Sourcing(str, Enum):
    """Where a priced rate entity was drawn from."""

    INTERNAL = "internal"  # internalResources
    EXTERNAL = "external"  # suppliers


def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """Convert a JSON/YAML number (or numeric string) to Decimal.

    Raises:
        ValueError: if ``value`` is not numeric, is a bool, or is not finite.
    """
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be a number, got a boolean")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"{field_name} must be a number, got {value!r}") from None
    else:
        raise ValueError(f"{field_name} must be a number, got {type(value).__name__}")
    if not result.is_finite():
        raise ValueError(f"{field_name} must be finite, got {value!r}")
    return result


def json_number(value: Decimal) -> int | float:
    """Decimal to the JSON-compatible number written back to documents."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def quantize_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RoleValues:
    """
    One Decimal per role.

    Contract:
        Frozen quadruple indexed by ``Role``.  Used for effort distributions
        (percentages), man-days and costs.
    Guarantees:
        - Iteration order is always G1, G2, TA, PM.
        - Missing roles read as zero.
    """

    g1: Decimal = ZERO
    g2: Decimal = ZERO
    ta: Decimal = ZERO
    pm: Decimal = ZERO

    @classmethod
    def of(cls, mapping: Mapping[Role | str, Any] | None) -> RoleValues:
        """Build from a ``{G1: .., G2: ..}`` mapping; absent roles are zero."""
        mapping = mapping or {}
        values: dict[str, Decimal] = {}
        for role in ROLES:
            raw = mapping.get(role, mapping.get(role.value, ZERO))
            values[role.value.lower()] = to_decimal(
                ZERO if raw is None else raw, role.value
            )
        return cls(**values)

    @classmethod
    def from_roles(cls, fn: Callable[[Role], Decimal]) -> RoleValues:
        return cls(**{role.value.lower(): fn(role) for role in ROLES})

    def __getitem__(self, role: Role | str) -> Decimal:
        return getattr(self, Role(role).value.lower())

    def items(self) -> Iterator[tuple[Role, Decimal]]:
        for role in ROLES:
            yield role, self[role]

    def __add__(self, other: RoleValues) -> RoleValues:
        return RoleValues.from_roles(lambda role: self[role] + other[role])

    @property
    def total(self) -> Decimal:
        return self.g1 + self.g2 + self.ta + self.pm

    def to_record(self) -> dict[str, int | float]:
        return {role.value: json_number(value) for role, value in self.items()}

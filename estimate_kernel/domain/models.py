"""
Estimation Domain Models (``estimate_kernel.domain.models``).

Responsibility
--------------
Dataclasses representing the nouns of the estimation core: rate entities
(suppliers and internal resources), categories, calculation parameters, the
configuration set they form, project overrides and features.

Architecture position
---------------------
**Kernel layer** -- pure data definitions with ZERO I/O.  Parsed from and
serialized to wire records by ``estimate_config.loader``.

Invariants enforced
-------------------
* All numeric fields are ``Decimal`` -- NEVER ``float``.
* ``GlobalConfig`` and ``EffectiveConfig`` are the same structural type; the
  resolver guarantees an ``EffectiveConfig`` never shares a reference with
  the catalog's ``GlobalConfig``.
* ``ProjectOverrides`` holds wire *records* (patches), not entities: a patch
  may be partial, so it only becomes an entity after it is merged.

Failure modes
-------------
* Construction never validates; ``estimate_kernel.domain.validation`` does.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from estimate_kernel.domain.values import (
    ConfigCollection,
    EntityStatus,
    Sourcing,
    ZERO,
)


@dataclass
class RateEntity:
    """A supplier or internal resource priced by daily rate."""

    id: str
    name: str
    role: str
    department: str
    real_rate: Decimal
    official_rate: Decimal
    is_global: bool = True
    status: EntityStatus = EntityStatus.ACTIVE
    lta: str | None = None  # framework agreement reference
    is_overridden: bool = False
    is_project_specific: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == EntityStatus.ACTIVE


@dataclass
class Category:
    """Feature category; ``multiplier`` scales feature effort."""

    id: str
    name: str
    description: str = ""
    multiplier: Decimal = Decimal("1")
    is_global: bool = True
    status: EntityStatus = EntityStatus.ACTIVE
    is_overridden: bool = False
    is_project_specific: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == EntityStatus.ACTIVE


@dataclass
class CalculationParameters:
    """Singleton per configuration scope."""

    working_days_per_month: int = 22
    working_hours_per_day: int = 8
    currency_symbol: str = "€"
    risk_margin: Decimal = Decimal("0.15")
    overhead_percentage: Decimal = Decimal("0.10")


@dataclass
class EstimationConfig:
    """
    Suppliers, internal resources, categories and calculation parameters.

    Used both for the process-wide catalog (``GlobalConfig``) and for the
    resolved per-project view (``EffectiveConfig``).
    """

    suppliers: list[RateEntity] = field(default_factory=list)
    internal_resources: list[RateEntity] = field(default_factory=list)
    categories: list[Category] = field(default_factory=list)
    calculation_parameters: CalculationParameters = field(
        default_factory=CalculationParameters
    )

    def collection(self, collection: ConfigCollection | str) -> list[Any]:
        return getattr(self, ConfigCollection.parse(collection).attr)

    def rate_entities(self) -> Iterator[tuple[RateEntity, Sourcing]]:
        """Suppliers then internal resources, each tagged with its sourcing."""
        for entity in self.suppliers:
            yield entity, Sourcing.EXTERNAL
        for entity in self.internal_resources:
            yield entity, Sourcing.INTERNAL

    def find_rate_entity(self, entity_id: str) -> tuple[RateEntity, Sourcing] | None:
        """Look up an id across suppliers and internal resources."""
        for entity, sourcing in self.rate_entities():
            if entity.id == entity_id:
                return entity, sourcing
        return None


GlobalConfig = EstimationConfig
EffectiveConfig = EstimationConfig


@dataclass(frozen=True)
class StatusPatch:
    """Deactivates (or reactivates) a global entry for one project only."""

    id: str
    status: EntityStatus = EntityStatus.INACTIVE

    def to_record(self) -> dict[str, str]:
        return {"id": self.id, "status": self.status.value}


@dataclass
class ProjectOverrides:
    """
    Project-scoped patches and additions layered on the catalog.

    Each collection holds wire records keyed by ``id``: a full entity record,
    a ``StatusPatch`` record or a partial field patch.
    """

    suppliers: list[dict[str, Any]] = field(default_factory=list)
    internal_resources: list[dict[str, Any]] = field(default_factory=list)
    categories: list[dict[str, Any]] = field(default_factory=list)
    calculation_params: dict[str, Any] = field(default_factory=dict)

    def collection(self, collection: ConfigCollection | str) -> list[dict[str, Any]]:
        return getattr(self, ConfigCollection.parse(collection).attr)

    @property
    def is_empty(self) -> bool:
        return not (
            self.suppliers
            or self.internal_resources
            or self.categories
            or self.calculation_params
        )


@dataclass(frozen=True)
class Feature:
    """A feature estimate produced upstream by the effort formulas."""

    id: str
    man_days: Decimal = ZERO
    supplier: str | None = None
    description: str = ""
    category: str | None = None

"""
estimate_engines.kpi -- KPI roll-up of phase costs.

Responsibility:
    Fold per-phase cost records into KPI category totals (technical "GTO"
    vs management "GDS"), each split by internal/external sourcing, plus
    project-wide totals and percentages.

Architecture position:
    Engines -- pure fold over ``PhaseCostRecord`` output.  Holds no state;
    safe to call repeatedly.

Invariants enforced:
    - gto.total + gds.total == total_project_cost (exact: both sides sum the
      same cent-quantized cost lines).
    - total_internal_percentage + total_external_percentage == 100, or both
      are 0 when the project costs nothing.
    - Sourcing comes from the collection a priced entity was drawn from
      (internal resources vs suppliers), never from ``isGlobal``.

Failure modes:
    - ``ValueError`` if a role-category map leaves a role unmapped.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from estimate_engines.phase_cost import PhaseCostRecord
from estimate_engines.tracer import traced_engine
from estimate_kernel.domain.values import (
    HUNDRED,
    ROLES,
    ZERO,
    KpiCategory,
    Role,
    Sourcing,
    json_number,
)

DEFAULT_ROLE_CATEGORY_MAP: Mapping[Role, KpiCategory] = {
    Role.G1: KpiCategory.GTO,
    Role.G2: KpiCategory.GTO,
    Role.TA: KpiCategory.GTO,
    Role.PM: KpiCategory.GDS,
}


def _percentage(part: Decimal, whole: Decimal) -> Decimal:
    if whole == ZERO:
        return ZERO
    return part / whole * HUNDRED


@dataclass(frozen=True)
class KpiCategoryTotals:
    """Internal / external cost of one KPI category."""

    internal: Decimal = ZERO
    external: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.internal + self.external

    @property
    def internal_percentage(self) -> Decimal:
        return _percentage(self.internal, self.total)

    @property
    def external_percentage(self) -> Decimal:
        return _percentage(self.external, self.total)

    def to_record(self) -> dict[str, Any]:
        return {
            "internal": json_number(self.internal),
            "external": json_number(self.external),
            "total": json_number(self.total),
            "internalPercentage": json_number(self.internal_percentage),
            "externalPercentage": json_number(self.external_percentage),
        }


@dataclass(frozen=True)
class KpiReport:
    gto: KpiCategoryTotals
    gds: KpiCategoryTotals

    @property
    def total_internal(self) -> Decimal:
        return self.gto.internal + self.gds.internal

    @property
    def total_external(self) -> Decimal:
        return self.gto.external + self.gds.external

    @property
    def total_project_cost(self) -> Decimal:
        return self.total_internal + self.total_external

    @property
    def total_internal_percentage(self) -> Decimal:
        return _percentage(self.total_internal, self.total_project_cost)

    @property
    def total_external_percentage(self) -> Decimal:
        return _percentage(self.total_external, self.total_project_cost)

    def category(self, category: KpiCategory | str) -> KpiCategoryTotals:
        return getattr(self, KpiCategory(category).value)

    def to_record(self) -> dict[str, Any]:
        return {
            "gto": self.gto.to_record(),
            "gds": self.gds.to_record(),
            "totalProjectCost": json_number(self.total_project_cost),
            "totalInternal": json_number(self.total_internal),
            "totalExternal": json_number(self.total_external),
            "totalInternalPercentage": json_number(self.total_internal_percentage),
            "totalExternalPercentage": json_number(self.total_external_percentage),
        }


class KpiAggregator:
    """Pure KPI fold; the role-category map may be replaced per call."""

    def __init__(self, role_category_map: Mapping[Role, KpiCategory] | None = None):
        self.role_category_map = _checked_map(role_category_map or DEFAULT_ROLE_CATEGORY_MAP)

    @traced_engine("kpi", "1.0")
    def aggregate(
        self,
        phase_costs: Iterable[PhaseCostRecord],
        role_category_map: Mapping[Role | str, KpiCategory | str] | None = None,
    ) -> KpiReport:
        mapping = (
            _checked_map(role_category_map)
            if role_category_map is not None
            else self.role_category_map
        )
        sums = {
            (category, sourcing): ZERO for category in KpiCategory for sourcing in Sourcing
        }
        for record in phase_costs:
            for line in record.lines:
                sums[(mapping[line.role], line.sourcing)] += line.cost
        return KpiReport(
            **{
                category.value: KpiCategoryTotals(
                    internal=sums[(category, Sourcing.INTERNAL)],
                    external=sums[(category, Sourcing.EXTERNAL)],
                )
                for category in KpiCategory
            }
        )


def _checked_map(
    mapping: Mapping[Role | str, KpiCategory | str],
) -> dict[Role, KpiCategory]:
    checked = {Role(role): KpiCategory(category) for role, category in mapping.items()}
    missing = [role.value for role in ROLES if role not in checked]
    if missing:
        raise ValueError(f"Role category map does not cover: {', '.join(missing)}")
    return checked

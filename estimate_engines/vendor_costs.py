"""
estimate_engines.vendor_costs -- per-vendor cost summary.

Folds the cost lines of all phases into one line per (rate entity, role),
the table the budget screen and exports show.  ``final_man_days`` is the
real cost expressed in official-rate man-days, rounded to whole days, which
is what a vendor invoices at its official rate.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from estimate_engines.phase_cost import PhaseCostRecord
from estimate_engines.tracer import traced_engine
from estimate_kernel.domain.values import ZERO, Role, Sourcing, json_number


@dataclass(frozen=True)
class VendorCostLine:
    vendor_id: str
    vendor: str
    role: Role
    department: str
    is_internal: bool
    man_days: Decimal
    official_rate: Decimal
    real_rate: Decimal
    cost: Decimal
    real_cost: Decimal

    @property
    def final_man_days(self) -> Decimal:
        if self.official_rate == ZERO:
            return ZERO
        return (self.real_cost / self.official_rate).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "vendorId": self.vendor_id,
            "vendor": self.vendor,
            "role": self.role.value,
            "department": self.department,
            "isInternal": self.is_internal,
            "manDays": json_number(self.man_days),
            "officialRate": json_number(self.official_rate),
            "realRate": json_number(self.real_rate),
            "cost": json_number(self.cost),
            "realCost": json_number(self.real_cost),
            "finalMDs": json_number(self.final_man_days),
        }


@traced_engine("vendor_costs", "1.0")
def summarize_vendor_costs(phase_costs: Iterable[PhaseCostRecord]) -> tuple[VendorCostLine, ...]:
    """One line per (vendor, role), sorted by vendor name then role."""
    folded: dict[tuple[str, Role], VendorCostLine] = {}
    for record in phase_costs:
        for line in record.lines:
            key = (line.entity_id, line.role)
            current = folded.get(key)
            if current is None:
                folded[key] = VendorCostLine(
                    vendor_id=line.entity_id,
                    vendor=line.entity_name,
                    role=line.role,
                    department=line.department,
                    is_internal=line.sourcing == Sourcing.INTERNAL,
                    man_days=line.man_days,
                    official_rate=line.official_rate,
                    real_rate=line.real_rate,
                    cost=line.cost,
                    real_cost=line.real_cost,
                )
            else:
                folded[key] = VendorCostLine(
                    vendor_id=current.vendor_id,
                    vendor=current.vendor,
                    role=current.role,
                    department=current.department,
                    is_internal=current.is_internal,
                    man_days=current.man_days + line.man_days,
                    official_rate=current.official_rate,
                    real_rate=current.real_rate,
                    cost=current.cost + line.cost,
                    real_cost=current.real_cost + line.real_cost,
                )
    return tuple(sorted(folded.values(), key=lambda v: (v.vendor, v.role.value)))

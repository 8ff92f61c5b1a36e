"""
Estimation engines -- pure calculation layer.

Phase table and phase state, phase costing, KPI aggregation and the vendor
cost summary.  Engines never perform I/O; every costing call emits an
``ESTIMATE_ENGINE_TRACE`` record through ``estimate_engines.tracer``.
"""

from estimate_engines.kpi import (
    DEFAULT_ROLE_CATEGORY_MAP,
    KpiAggregator,
    KpiCategoryTotals,
    KpiReport,
)
from estimate_engines.phase_cost import (
    CostLine,
    LookupMiss,
    PhaseCostEngine,
    PhaseCostRecord,
    PhaseValidationResult,
    ResourcePricing,
)
from estimate_engines.phases import (
    DEFAULT_PHASE_TABLE,
    DEVELOPMENT_PHASE_ID,
    PHASE_DEFINITIONS,
    PhaseDefinition,
    PhaseDefinitionTable,
    PhaseState,
    PhaseType,
    ProjectPhases,
    SelectedSuppliers,
)
from estimate_engines.tracer import traced_engine
from estimate_engines.vendor_costs import VendorCostLine, summarize_vendor_costs

__all__ = [
    "CostLine",
    "DEFAULT_PHASE_TABLE",
    "DEFAULT_ROLE_CATEGORY_MAP",
    "DEVELOPMENT_PHASE_ID",
    "KpiAggregator",
    "KpiCategoryTotals",
    "KpiReport",
    "LookupMiss",
    "PHASE_DEFINITIONS",
    "PhaseCostEngine",
    "PhaseCostRecord",
    "PhaseDefinition",
    "PhaseDefinitionTable",
    "PhaseState",
    "PhaseType",
    "PhaseValidationResult",
    "ProjectPhases",
    "ResourcePricing",
    "SelectedSuppliers",
    "VendorCostLine",
    "summarize_vendor_costs",
    "traced_engine",
]

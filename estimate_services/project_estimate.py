"""
estimate_services.project_estimate -- estimation over one project document.

Responsibility:
    Open a persisted project document (normalizing and migrating it first),
    expose the project-level configuration and phase editing operations, and
    produce phase costs, totals, KPI and vendor reports from the current
    state.  ``to_document`` hands the updated document back to the
    persistence collaborator.

Architecture position:
    Services -- orchestration over ``estimate_config`` and
    ``estimate_engines``.  Owns no storage; the caller persists documents.

Invariants enforced:
    - The opened document is deep-copied; the caller's object is never
      mutated, and ``to_document`` returns a fresh copy.
    - The development phase is re-derived from features on open and on every
      feature update; costs are recomputed on every report call.
    - ``project``, ``features`` and ``versions`` are written back exactly as
      they were read (features change only through ``update_features``).

Failure modes:
    - ``ValidationError`` / ``ItemNotFoundError`` from configuration edits.
    - ``UnknownPhaseError`` / ``PhaseNotEditableError`` / ``ValidationError``
      from phase edits.
    - A malformed document never raises on open: broken sections are
      replaced and logged, stale supplier references surface as
      ``diagnostics()``.

Usage:
    service = ProjectEstimateService(catalog)
    estimate = service.open_project(document)
    estimate.set_phase_man_days("sit", 100)
    estimate.select_supplier("G1", "example-g1-it")
    report = estimate.kpi_report()
    store(estimate.to_document())
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from estimate_config.catalog import CatalogStore
from estimate_config.loader import (
    feature_to_record,
    new_item_id,
    parse_feature,
    parse_project_overrides,
    project_overrides_to_record,
)
from estimate_config.migration import normalize_project_document
from estimate_config.resolver import ConfigResolver
from estimate_engines.kpi import KpiAggregator, KpiReport
from estimate_engines.phase_cost import (
    PhaseCostEngine,
    PhaseCostRecord,
    PhaseValidationResult,
)
from estimate_engines.phases import DEFAULT_PHASE_TABLE, PhaseDefinitionTable, ProjectPhases
from estimate_engines.vendor_costs import VendorCostLine, summarize_vendor_costs
from estimate_kernel.domain.clock import Clock, SystemClock
from estimate_kernel.domain.clone import structural_clone
from estimate_kernel.domain.models import (
    CalculationParameters,
    Category,
    EffectiveConfig,
    Feature,
    ProjectOverrides,
    RateEntity,
)
from estimate_kernel.domain.values import ConfigCollection, Role, RoleValues
from estimate_kernel.exceptions import ShapeMismatchError, ValidationError
from estimate_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.project_estimate")


def _parse_features(records: Iterable[Any]) -> tuple[Feature, ...]:
    features = []
    for index, record in enumerate(records):
        if isinstance(record, Feature):
            features.append(record)
            continue
        try:
            features.append(parse_feature(record, index))
        except ShapeMismatchError as exc:
            logger.warning(
                "feature_skipped",
                extra={"index": index, "expected": exc.expected, "actual": exc.actual},
            )
    return tuple(features)


class ProjectEstimate:
    """
    One open project: overrides, phases and features plus the engines.

    Contract:
        Mutators change this object's state only; nothing is persisted until
        the caller stores ``to_document()``.
    Non-goals:
        Version history and export are handled by other collaborators.
    """

    def __init__(
        self,
        document: dict[str, Any],
        overrides: ProjectOverrides,
        phases: ProjectPhases,
        features: tuple[Feature, ...],
        resolver: ConfigResolver,
        engine: PhaseCostEngine,
        kpi: KpiAggregator,
    ):
        self._document = document
        self.overrides = overrides
        self.phases = phases
        self.features = features
        self._resolver = resolver
        self._engine = engine
        self._kpi = kpi
        self._refresh_development_phase()

    @property
    def project_id(self) -> str | None:
        project_id = self._document["project"].get("id")
        return str(project_id) if project_id is not None else None

    @property
    def coverage(self) -> Any:
        return self._document.get("coverage") or 0

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def effective_config(self) -> EffectiveConfig:
        return self._resolver.resolve(self.overrides)

    def get_project_items(
        self, collection: ConfigCollection | str
    ) -> list[RateEntity] | list[Category]:
        return self._resolver.get_project_items(self.overrides, collection)

    def calculation_parameters(self) -> CalculationParameters:
        return self.effective_config().calculation_parameters

    def add_override_item(
        self, collection: ConfigCollection | str, item: Mapping[str, Any]
    ) -> str:
        """Add or patch a project item; returns its id."""
        collection = ConfigCollection.parse(collection)
        record = dict(item)
        record["id"] = record.get("id") or new_item_id(collection)
        with LogContext.bind(project_id=self.project_id):
            self.overrides = self._resolver.add_override_item(
                self.overrides, collection, record
            )
        return record["id"]

    def delete_override_item(self, collection: ConfigCollection | str, item_id: str) -> None:
        with LogContext.bind(project_id=self.project_id):
            self.overrides = self._resolver.delete_override_item(
                self.overrides, collection, item_id
            )

    def update_calculation_params(self, changes: Mapping[str, Any]) -> None:
        with LogContext.bind(project_id=self.project_id):
            self.overrides = self._resolver.update_calculation_params(self.overrides, changes)

    def reset_overrides(self) -> None:
        with LogContext.bind(project_id=self.project_id):
            self.overrides = self._resolver.reset_overrides()

    # ------------------------------------------------------------------
    # Phases and features
    # ------------------------------------------------------------------

    def set_phase_man_days(self, phase_id: str, man_days: Any) -> None:
        self.phases.set_man_days(phase_id, man_days)
        logger.info(
            "phase_man_days_set",
            extra={"project_id": self.project_id, "phase_id": phase_id},
        )

    def set_phase_distribution(
        self, phase_id: str, distribution: RoleValues | Mapping[str, Any]
    ) -> None:
        self.phases.set_distribution(phase_id, distribution)
        logger.info(
            "phase_distribution_set",
            extra={"project_id": self.project_id, "phase_id": phase_id},
        )

    def select_supplier(self, role: Role | str, entity_id: str | None) -> None:
        """Select the rate entity pricing ``role``; ``None`` clears it.

        Raises:
            ValidationError: the id is not in the effective configuration.
        """
        role = Role(role)
        if entity_id and self.effective_config().find_rate_entity(entity_id) is None:
            raise ValidationError([f"Unknown rate entity: {entity_id}"], item_id=entity_id)
        self.phases.select_supplier(role, entity_id)
        logger.info(
            "supplier_selected",
            extra={"project_id": self.project_id, "role": role.value, "entity_id": entity_id},
        )

    def clear_selected_suppliers(self) -> None:
        self.phases.clear_selected_suppliers()
        logger.info("selected_suppliers_cleared", extra={"project_id": self.project_id})

    def reset_phase_data(self) -> None:
        self.phases.reset()
        self._refresh_development_phase()
        logger.info("phase_data_reset", extra={"project_id": self.project_id})

    def update_features(self, features: Iterable[Any], coverage: Any = None) -> None:
        """Replace the feature list and re-derive the development phase.

        ``features`` may mix wire records and ``Feature`` instances; the
        document keeps records as given and stores ``Feature``s in wire shape.
        Entries that are neither are skipped and logged.
        """
        features = list(features)
        self.features = _parse_features(features)
        self._document["features"] = [
            feature_to_record(f) if isinstance(f, Feature) else structural_clone(dict(f))
            for f in features
            if isinstance(f, (Feature, Mapping))
        ]
        if coverage is not None:
            self._document["coverage"] = coverage
        self._refresh_development_phase()

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def phase_costs(self) -> tuple[PhaseCostRecord, ...]:
        with LogContext.bind(project_id=self.project_id):
            return self._engine.cost_project(
                self.phases, self.effective_config(), self.features, self.coverage
            )

    def total_project_cost(self) -> Decimal:
        return sum((r.total_cost for r in self.phase_costs()), Decimal("0"))

    def total_project_man_days(self) -> Decimal:
        return self._engine.total_project_man_days(self.phases, self.features, self.coverage)

    def kpi_report(self) -> KpiReport:
        return self._kpi.aggregate(self.phase_costs())

    def vendor_costs(self) -> tuple[VendorCostLine, ...]:
        return summarize_vendor_costs(self.phase_costs())

    def validate(self) -> PhaseValidationResult:
        return self._engine.validate_all_phases(self.phases)

    def diagnostics(self) -> tuple[str, ...]:
        """Stale rate-entity references found while costing."""
        return tuple(miss.message for record in self.phase_costs() for miss in record.misses)

    def to_document(self) -> dict[str, Any]:
        document = structural_clone(self._document)
        costs = {record.phase_id: record.total_cost for record in self.phase_costs()}
        document["phases"] = self.phases.to_record(costs)
        document["config"]["projectOverrides"] = project_overrides_to_record(self.overrides)
        return document

    def _refresh_development_phase(self) -> None:
        self.phases.apply_calculated_man_days(
            self._engine.calculate_development_phase(self.features, self.coverage)
        )


class ProjectEstimateService:
    """
    Opens and creates project estimates against one catalog.

    Contract:
        Every ``ProjectEstimate`` shares the service's resolver and engines;
        each owns its overrides, phases and features.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        resolver: ConfigResolver | None = None,
        clock: Clock | None = None,
        table: PhaseDefinitionTable = DEFAULT_PHASE_TABLE,
        kpi: KpiAggregator | None = None,
    ):
        self.catalog = catalog
        self.resolver = resolver or ConfigResolver(catalog)
        self.clock = clock or SystemClock()
        self.table = table
        self.engine = PhaseCostEngine(self.resolver, table)
        self.kpi = kpi or KpiAggregator()

    def open_project(self, document: Any) -> ProjectEstimate:
        normalized = normalize_project_document(document, self.resolver)
        project_id = normalized["project"].get("id")
        with LogContext.bind(project_id=str(project_id) if project_id is not None else None):
            estimate = ProjectEstimate(
                document=normalized,
                overrides=parse_project_overrides(normalized["config"]["projectOverrides"]),
                phases=ProjectPhases.from_record(normalized["phases"], self.table, self.clock),
                features=_parse_features(normalized["features"]),
                resolver=self.resolver,
                engine=self.engine,
                kpi=self.kpi,
            )
            logger.info(
                "project_opened",
                extra={
                    "feature_count": len(estimate.features),
                    "override_count": sum(
                        len(estimate.overrides.collection(c)) for c in ConfigCollection
                    ),
                },
            )
        return estimate

    def new_project(self, project_info: Mapping[str, Any]) -> dict[str, Any]:
        """A fresh project document: default phases, empty overrides."""
        overrides = self.resolver.initialize_project_overrides()
        document = {
            "project": structural_clone(dict(project_info)),
            "features": [],
            "phases": ProjectPhases(self.table, clock=self.clock).to_record(),
            "config": {"projectOverrides": project_overrides_to_record(overrides)},
            "versions": [],
        }
        logger.info("project_created", extra={"project_id": project_info.get("id")})
        return document

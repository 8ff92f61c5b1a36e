"""
estimate_engines.phase_cost -- role-based, supplier-priced phase costing.

Responsibility:
    Turn a phase's total man-days into per-role man-days (by its effort
    distribution), price each role against the rate entity selected for it,
    and roll phases up into project totals.  Derive the man-days of the
    calculated development phase from the feature list.

Architecture position:
    Engines -- pure calculation layer.  Reads an ``EffectiveConfig`` (from
    ``ConfigResolver``) and ``ProjectPhases``; never mutates either.

Pricing policy:
    cost(role) = man_days(role) * official_rate(selected entity), quantized
    to cents (ROUND_HALF_UP) per cost line.  The entity is looked up across
    suppliers and internal resources.  In the development phase, the G2 share
    of a feature that names its own supplier is priced at that supplier's
    rate; the remaining G2 man-days use the selected G2 entity.

Invariants enforced:
    - distribute_man_days conserves the total within 0.01.
    - Costs are recomputed from current state on every call; nothing is
      cached across a man-days change.
    - A role without a selected entity costs 0 but its man-days still count.

Failure modes:
    - A selected or feature supplier id that no longer resolves is NOT an
      error: the role (or feature share) costs 0 and a ``LookupMiss`` is
      returned alongside the result.
    - ``ValueError`` when no effective configuration is available.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from estimate_config.resolver import ConfigResolver
from estimate_engines.phases import (
    DEFAULT_PHASE_TABLE,
    PhaseDefinition,
    PhaseDefinitionTable,
    PhaseState,
    ProjectPhases,
    SelectedSuppliers,
)
from estimate_engines.tracer import traced_engine
from estimate_kernel.domain.models import EffectiveConfig, Feature, RateEntity
from estimate_kernel.domain.validation import validate_distribution
from estimate_kernel.domain.values import (
    HUNDRED,
    ZERO,
    Role,
    RoleValues,
    Sourcing,
    json_number,
    quantize_cents,
    to_decimal,
)
from estimate_kernel.logging_config import get_logger

logger = get_logger("engines.phase_cost")

_ONE_DECIMAL = Decimal("0.1")


@dataclass(frozen=True)
class CostLine:
    """Man-days of one role in one phase priced against one rate entity."""

    phase_id: str
    role: Role
    entity_id: str
    entity_name: str
    department: str
    sourcing: Sourcing
    man_days: Decimal
    official_rate: Decimal
    real_rate: Decimal
    cost: Decimal
    real_cost: Decimal


@dataclass(frozen=True)
class LookupMiss:
    """A rate-entity reference that no longer resolves; priced at zero."""

    role: Role
    entity_id: str
    phase_id: str | None = None
    feature_id: str | None = None

    @property
    def message(self) -> str:
        where = f" in {self.phase_id}" if self.phase_id else ""
        source = f" (feature {self.feature_id})" if self.feature_id else ""
        return f"{self.role.value}{where}: rate entity {self.entity_id}{source} not found"


@dataclass(frozen=True)
class ResourcePricing:
    """Result of pricing role man-days: per-role cost plus its lines."""

    cost_by_role: RoleValues
    lines: tuple[CostLine, ...] = ()
    misses: tuple[LookupMiss, ...] = ()

    @property
    def total_cost(self) -> Decimal:
        return self.cost_by_role.total


@dataclass(frozen=True)
class PhaseCostRecord:
    """Costed phase; ``to_record`` is the shape handed to UI and export."""

    phase_id: str
    phase_name: str
    man_days: Decimal
    man_days_by_role: RoleValues
    cost_by_role: RoleValues
    lines: tuple[CostLine, ...] = ()
    misses: tuple[LookupMiss, ...] = ()

    @property
    def total_cost(self) -> Decimal:
        return self.cost_by_role.total

    def to_record(self) -> dict[str, Any]:
        return {
            "phase": self.phase_id,
            "manDaysByRole": self.man_days_by_role.to_record(),
            "costByRole": self.cost_by_role.to_record(),
            "totalCost": json_number(self.total_cost),
        }


@dataclass(frozen=True)
class PhaseValidationResult:
    is_valid: bool
    issues: tuple[str, ...] = ()

    def to_record(self) -> dict[str, Any]:
        return {"isValid": self.is_valid, "issues": list(self.issues)}


class _LineBuilder:
    """Accumulates man-days per (role, entity) before quantizing to lines."""

    def __init__(self, phase_id: str):
        self.phase_id = phase_id
        self._man_days: dict[tuple[Role, str], Decimal] = {}
        self._entities: dict[str, tuple[RateEntity, Sourcing]] = {}

    def add(self, role: Role, entity: RateEntity, sourcing: Sourcing, man_days: Decimal) -> None:
        key = (role, entity.id)
        self._man_days[key] = self._man_days.get(key, ZERO) + man_days
        self._entities[entity.id] = (entity, sourcing)

    def build(self) -> tuple[CostLine, ...]:
        lines = []
        for (role, entity_id), man_days in self._man_days.items():
            if man_days == ZERO:
                continue
            entity, sourcing = self._entities[entity_id]
            lines.append(
                CostLine(
                    phase_id=self.phase_id,
                    role=role,
                    entity_id=entity.id,
                    entity_name=entity.name,
                    department=entity.department,
                    sourcing=sourcing,
                    man_days=man_days,
                    official_rate=entity.official_rate,
                    real_rate=entity.real_rate,
                    cost=quantize_cents(man_days * entity.official_rate),
                    real_cost=quantize_cents(man_days * entity.real_rate),
                )
            )
        return tuple(lines)


def _cost_by_role(lines: Iterable[CostLine]) -> RoleValues:
    totals = {role: ZERO for role in Role}
    for line in lines:
        totals[line.role] += line.cost
    return RoleValues.from_roles(lambda role: totals[role])


class PhaseCostEngine:
    """
    Phase and project costing over an effective configuration.

    Contract:
        Every method taking ``effective_config`` falls back to the resolver's
        global view when it is omitted.  Inputs are never mutated.
    """

    def __init__(
        self,
        resolver: ConfigResolver | None = None,
        table: PhaseDefinitionTable = DEFAULT_PHASE_TABLE,
    ):
        self._resolver = resolver
        self.table = table

    # ------------------------------------------------------------------
    # Single-phase primitives
    # ------------------------------------------------------------------

    @staticmethod
    def distribute_man_days(
        total_man_days: Decimal | int | str,
        distribution: RoleValues | Mapping[str, Any],
    ) -> RoleValues:
        """Split ``total_man_days`` by role: ``total * pct / 100``."""
        total = to_decimal(total_man_days, "manDays")
        if not isinstance(distribution, RoleValues):
            distribution = RoleValues.of(distribution)
        return RoleValues.from_roles(lambda role: total * distribution[role] / HUNDRED)

    def price_by_resource(
        self,
        man_days_by_role: RoleValues,
        selected_suppliers: SelectedSuppliers | Mapping[str, Any],
        effective_config: EffectiveConfig | None = None,
        phase_id: str = "",
    ) -> ResourcePricing:
        config = self._config(effective_config)
        if not isinstance(selected_suppliers, SelectedSuppliers):
            selected_suppliers = SelectedSuppliers.of(selected_suppliers)
        builder = _LineBuilder(phase_id)
        misses = []
        for role, man_days in man_days_by_role.items():
            self._price_role(
                builder, misses, config, role, selected_suppliers[role], man_days, phase_id
            )
        lines = builder.build()
        return ResourcePricing(_cost_by_role(lines), lines, tuple(misses))

    @staticmethod
    def calculate_development_phase(
        features: Iterable[Feature],
        coverage: Decimal | int | str = 0,
    ) -> Decimal:
        """Sum of feature man-days plus coverage, rounded to one decimal."""
        total = sum((f.man_days for f in features), ZERO)
        try:
            total += to_decimal(coverage or 0, "coverage")
        except ValueError:
            logger.warning("coverage_ignored", extra={"coverage": repr(coverage)})
        return total.quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP)

    def cost_phase(
        self,
        definition: PhaseDefinition,
        state: PhaseState,
        selected_suppliers: SelectedSuppliers,
        effective_config: EffectiveConfig | None = None,
        features: Sequence[Feature] = (),
    ) -> PhaseCostRecord:
        config = self._config(effective_config)
        man_days_by_role = self.distribute_man_days(state.man_days, state.distribution)
        builder = _LineBuilder(definition.id)
        misses: list[LookupMiss] = []

        remaining = dict(man_days_by_role.items())
        if definition.calculated:
            g2_share = state.distribution[Role.G2] / HUNDRED
            for feature in features:
                if not feature.supplier or feature.man_days <= ZERO:
                    continue
                feature_man_days = feature.man_days * g2_share
                remaining[Role.G2] = max(ZERO, remaining[Role.G2] - feature_man_days)
                self._price_role(
                    builder,
                    misses,
                    config,
                    Role.G2,
                    feature.supplier,
                    feature_man_days,
                    definition.id,
                    feature_id=feature.id,
                )

        for role, man_days in remaining.items():
            self._price_role(
                builder,
                misses,
                config,
                role,
                selected_suppliers[role],
                man_days,
                definition.id,
            )
        lines = builder.build()
        return PhaseCostRecord(
            phase_id=definition.id,
            phase_name=definition.name,
            man_days=state.man_days,
            man_days_by_role=man_days_by_role,
            cost_by_role=_cost_by_role(lines),
            lines=lines,
            misses=tuple(misses),
        )

    def total_phase_cost(
        self,
        phases: ProjectPhases,
        phase_id: str,
        effective_config: EffectiveConfig | None = None,
        features: Sequence[Feature] = (),
        coverage: Decimal | int | str = 0,
    ) -> Decimal:
        """Cost of one phase; a calculated phase is re-derived from ``features``."""
        definition = self.table.get(phase_id)
        state = self._current_state(
            definition,
            phases.state(phase_id),
            self.calculate_development_phase(features, coverage),
        )
        return self.cost_phase(
            definition, state, phases.selected_suppliers, effective_config, features
        ).total_cost

    # ------------------------------------------------------------------
    # Project roll-ups
    # ------------------------------------------------------------------

    @traced_engine("phase_cost", "1.0", fingerprint_fields=("features", "coverage"))
    def cost_project(
        self,
        phases: ProjectPhases,
        effective_config: EffectiveConfig | None = None,
        features: Sequence[Feature] = (),
        coverage: Decimal | int | str = 0,
    ) -> tuple[PhaseCostRecord, ...]:
        """Cost all eight phases; the development phase is re-derived first."""
        config = self._config(effective_config)
        development_man_days = self.calculate_development_phase(features, coverage)
        records = []
        for definition, state in phases:
            state = self._current_state(definition, state, development_man_days)
            records.append(
                self.cost_phase(definition, state, phases.selected_suppliers, config, features)
            )
        return tuple(records)

    def total_project_cost(
        self,
        phases: ProjectPhases,
        effective_config: EffectiveConfig | None = None,
        features: Sequence[Feature] = (),
        coverage: Decimal | int | str = 0,
    ) -> Decimal:
        records = self.cost_project(phases, effective_config, features, coverage)
        return sum((r.total_cost for r in records), ZERO)

    def total_project_man_days(
        self,
        phases: ProjectPhases,
        features: Sequence[Feature] = (),
        coverage: Decimal | int | str = 0,
    ) -> Decimal:
        development_man_days = self.calculate_development_phase(features, coverage)
        return sum(
            (
                development_man_days if definition.calculated else state.man_days
                for definition, state in phases
            ),
            ZERO,
        )

    @staticmethod
    def validate_all_phases(phases: ProjectPhases) -> PhaseValidationResult:
        """Non-negative man-days and a valid distribution for every phase."""
        issues: list[str] = []
        for definition, state in phases:
            if state.man_days < ZERO:
                issues.append(f"{definition.name}: Man days cannot be negative")
            issues.extend(validate_distribution(state.distribution, label=definition.name).errors)
        return PhaseValidationResult(is_valid=not issues, issues=tuple(issues))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _config(self, effective_config: EffectiveConfig | None) -> EffectiveConfig:
        if effective_config is not None:
            return effective_config
        if self._resolver is None:
            raise ValueError("An effective configuration or a resolver is required")
        return self._resolver.resolve(None)

    @staticmethod
    def _current_state(
        definition: PhaseDefinition, state: PhaseState, development_man_days: Decimal
    ) -> PhaseState:
        """The state to cost: stored man-days of a calculated phase are replaced."""
        if not definition.calculated:
            return state
        return PhaseState(
            phase_id=state.phase_id,
            man_days=development_man_days,
            distribution=state.distribution,
            assigned_resources=list(state.assigned_resources),
            last_modified=state.last_modified,
        )

    @staticmethod
    def _price_role(
        builder: _LineBuilder,
        misses: list[LookupMiss],
        config: EffectiveConfig,
        role: Role,
        entity_id: str | None,
        man_days: Decimal,
        phase_id: str,
        feature_id: str | None = None,
    ) -> None:
        if not entity_id:
            return
        found = config.find_rate_entity(entity_id)
        if found is None:
            misses.append(LookupMiss(role, entity_id, phase_id or None, feature_id))
            return
        entity, sourcing = found
        builder.add(role, entity, sourcing, man_days)

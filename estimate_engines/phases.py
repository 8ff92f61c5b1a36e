"""
estimate_engines.phases -- the fixed phase table and per-project phase state.

Responsibility:
    ``PhaseDefinitionTable`` is the immutable catalog of the eight project
    phases, their default role-effort distributions and which phase is
    calculated from features.  ``ProjectPhases`` holds one project's mutable
    phase data (man-days, distribution, assigned resources, last-modified
    stamp) and its ``SelectedSuppliers``.

Architecture position:
    Engines -- leaf.  Consumed by ``PhaseCostEngine`` and the project
    estimate service.  No I/O; time comes from an injected ``Clock``.

Invariants enforced:
    - Exactly eight phases, in fixed order; every default distribution sums
      to 100.
    - Only ``development`` is calculated; its man-days cannot be set.
    - Setters reject negative man-days and invalid distributions.  Persisted
      data is loaded as-is (after type coercion) and reported by
      ``PhaseCostEngine.validate_all_phases``.

Failure modes:
    - ``UnknownPhaseError`` -- phase id outside the table.
    - ``PhaseNotEditableError`` -- man-days set on the calculated phase.
    - ``ValidationError`` -- negative man-days or invalid distribution.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from estimate_kernel.domain.clock import Clock, SystemClock
from estimate_kernel.domain.validation import validate_distribution
from estimate_kernel.domain.values import (
    DISTRIBUTION_TOLERANCE,
    HUNDRED,
    ROLES,
    ZERO,
    Role,
    RoleValues,
    json_number,
    to_decimal,
)
from estimate_kernel.exceptions import (
    PhaseNotEditableError,
    UnknownPhaseError,
    ValidationError,
)
from estimate_kernel.logging_config import get_logger

logger = get_logger("engines.phases")

DEVELOPMENT_PHASE_ID = "development"

SELECTED_SUPPLIERS_KEY = "selectedSuppliers"


class PhaseType(str, Enum):
    PRE_DEVELOPMENT = "pre-development"
    DEVELOPMENT = "development"
    TESTING = "testing"
    DEPLOYMENT = "deployment"
    POST_DEPLOYMENT = "post-deployment"


@dataclass(frozen=True)
class PhaseDefinition:
    """One row of the phase table."""

    id: str
    name: str
    description: str
    type: PhaseType
    distribution: RoleValues
    calculated: bool = False


def _dist(g1: int, g2: int, ta: int, pm: int) -> RoleValues:
    return RoleValues(Decimal(g1), Decimal(g2), Decimal(ta), Decimal(pm))


PHASE_DEFINITIONS: tuple[PhaseDefinition, ...] = (
    PhaseDefinition(
        "functionalSpec",
        "Functional Specification",
        "Define functional requirements",
        PhaseType.PRE_DEVELOPMENT,
        _dist(0, 0, 80, 20),
    ),
    PhaseDefinition(
        "techSpec",
        "Technical Specification",
        "Technical design and architecture",
        PhaseType.PRE_DEVELOPMENT,
        _dist(20, 60, 15, 5),
    ),
    PhaseDefinition(
        DEVELOPMENT_PHASE_ID,
        "Development",
        "Implementation of features (calculated from features list)",
        PhaseType.DEVELOPMENT,
        _dist(10, 80, 5, 5),
        calculated=True,
    ),
    PhaseDefinition(
        "sit",
        "System Integration Testing",
        "System integration and integration testing",
        PhaseType.TESTING,
        _dist(20, 50, 20, 10),
    ),
    PhaseDefinition(
        "uat",
        "User Acceptance Testing",
        "User acceptance testing support and execution",
        PhaseType.TESTING,
        _dist(0, 20, 60, 20),
    ),
    PhaseDefinition(
        "vapt",
        "Vulnerability Assessment",
        "Vulnerability assessment and penetration testing",
        PhaseType.TESTING,
        _dist(0, 0, 100, 0),
    ),
    PhaseDefinition(
        "consolidation",
        "Consolidation",
        "Final testing, bug fixing and deployment preparation",
        PhaseType.DEPLOYMENT,
        _dist(0, 40, 40, 20),
    ),
    PhaseDefinition(
        "postGoLive",
        "Post Go-Live Support",
        "Production support and monitoring after deployment",
        PhaseType.POST_DEPLOYMENT,
        _dist(0, 50, 30, 20),
    ),
)


class PhaseDefinitionTable:
    """
    Immutable, ordered lookup over the phase definitions.

    Contract:
        Iteration yields definitions in the fixed phase order.
    Guarantees:
        Construction fails (``ValueError``) on duplicate ids, a default
        distribution that does not sum to 100, or a table without exactly
        one calculated phase.
    """

    def __init__(self, definitions: tuple[PhaseDefinition, ...] = PHASE_DEFINITIONS):
        by_id: dict[str, PhaseDefinition] = {}
        for definition in definitions:
            if definition.id in by_id:
                raise ValueError(f"Duplicate phase id: {definition.id}")
            if abs(definition.distribution.total - HUNDRED) > DISTRIBUTION_TOLERANCE:
                raise ValueError(
                    f"Default distribution of {definition.id} sums to "
                    f"{definition.distribution.total}, expected 100"
                )
            by_id[definition.id] = definition
        calculated = [d for d in definitions if d.calculated]
        if len(calculated) != 1:
            raise ValueError("Exactly one phase must be calculated from features")
        self._definitions = tuple(definitions)
        self._by_id = by_id

    def get(self, phase_id: str) -> PhaseDefinition:
        try:
            return self._by_id[phase_id]
        except KeyError:
            raise UnknownPhaseError(phase_id) from None

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(d.id for d in self._definitions)

    @property
    def calculated_phase(self) -> PhaseDefinition:
        return next(d for d in self._definitions if d.calculated)

    def __iter__(self) -> Iterator[PhaseDefinition]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, phase_id: object) -> bool:
        return phase_id in self._by_id


DEFAULT_PHASE_TABLE = PhaseDefinitionTable()


@dataclass(frozen=True)
class SelectedSuppliers:
    """Chosen rate-entity id per role; ``None`` when nothing is selected."""

    g1: str | None = None
    g2: str | None = None
    ta: str | None = None
    pm: str | None = None

    @classmethod
    def of(cls, mapping: Mapping[Role | str, Any] | None) -> SelectedSuppliers:
        mapping = mapping if isinstance(mapping, Mapping) else {}
        values = {}
        for role in ROLES:
            raw = mapping.get(role, mapping.get(role.value))
            values[role.value.lower()] = str(raw) if raw else None
        return cls(**values)

    def __getitem__(self, role: Role | str) -> str | None:
        return getattr(self, Role(role).value.lower())

    def items(self) -> Iterator[tuple[Role, str | None]]:
        for role in ROLES:
            yield role, self[role]

    def with_role(self, role: Role | str, entity_id: str | None) -> SelectedSuppliers:
        values = {r.value.lower(): v for r, v in self.items()}
        values[Role(role).value.lower()] = entity_id or None
        return SelectedSuppliers(**values)

    def to_record(self) -> dict[str, str | None]:
        return {role.value: entity_id for role, entity_id in self.items()}


@dataclass
class PhaseState:
    """Mutable per-project data of one phase."""

    phase_id: str
    man_days: Decimal = ZERO
    distribution: RoleValues = field(default_factory=RoleValues)
    assigned_resources: list[Any] = field(default_factory=list)
    last_modified: str | None = None

    def to_record(self, cost: Decimal | None = None) -> dict[str, Any]:
        record: dict[str, Any] = {
            "manDays": json_number(self.man_days),
            "effort": self.distribution.to_record(),
            "assignedResources": list(self.assigned_resources),
            "lastModified": self.last_modified,
        }
        if cost is not None:
            record["cost"] = json_number(cost)
        return record


class ProjectPhases:
    """
    Phase data of one project.

    Contract:
        Holds one ``PhaseState`` per table phase and the project's
        ``SelectedSuppliers``.  Costs are never stored here; they are always
        recomputed by ``PhaseCostEngine`` from the current state.
    """

    def __init__(
        self,
        table: PhaseDefinitionTable = DEFAULT_PHASE_TABLE,
        states: Mapping[str, PhaseState] | None = None,
        selected_suppliers: SelectedSuppliers | None = None,
        clock: Clock | None = None,
    ):
        self.table = table
        self._clock = clock or SystemClock()
        states = states or {}
        stamp = self._clock.iso_now()
        self._states: dict[str, PhaseState] = {
            d.id: states.get(d.id)
            or PhaseState(d.id, distribution=d.distribution, last_modified=stamp)
            for d in table
        }
        self.selected_suppliers = selected_suppliers or SelectedSuppliers()

    @classmethod
    def from_record(
        cls,
        record: Any,
        table: PhaseDefinitionTable = DEFAULT_PHASE_TABLE,
        clock: Clock | None = None,
    ) -> ProjectPhases:
        """Build from the persisted ``phases`` section of a project document.

        Missing phases get their defaults; unknown phase ids are ignored.
        Unreadable numbers fall back to the phase default and are logged.
        """
        clock = clock or SystemClock()
        record = record if isinstance(record, Mapping) else {}
        states: dict[str, PhaseState] = {}
        for definition in table:
            raw = record.get(definition.id)
            if isinstance(raw, Mapping):
                states[definition.id] = _parse_state(definition, raw, clock)
        ignored = sorted(
            k for k in record if k not in table and k != SELECTED_SUPPLIERS_KEY
        )
        if ignored:
            logger.info("phase_records_ignored", extra={"phase_ids": ignored})
        return cls(
            table,
            states,
            SelectedSuppliers.of(record.get(SELECTED_SUPPLIERS_KEY)),
            clock,
        )

    def state(self, phase_id: str) -> PhaseState:
        self.table.get(phase_id)
        return self._states[phase_id]

    def __iter__(self) -> Iterator[tuple[PhaseDefinition, PhaseState]]:
        for definition in self.table:
            yield definition, self._states[definition.id]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_man_days(self, phase_id: str, man_days: Any) -> PhaseState:
        definition = self.table.get(phase_id)
        if definition.calculated:
            raise PhaseNotEditableError(phase_id)
        try:
            value = to_decimal(man_days, "manDays")
        except ValueError as exc:
            raise ValidationError([str(exc)], item_id=phase_id) from exc
        if value < ZERO:
            raise ValidationError(
                [f"{definition.name}: Man days cannot be negative"], item_id=phase_id
            )
        state = self._states[phase_id]
        state.man_days = value
        self._touch(state)
        return state

    def set_distribution(
        self, phase_id: str, distribution: RoleValues | Mapping[str, Any]
    ) -> PhaseState:
        definition = self.table.get(phase_id)
        result = validate_distribution(distribution, label=definition.name)
        if not result.is_valid:
            raise ValidationError(result.errors, item_id=phase_id)
        state = self._states[phase_id]
        state.distribution = (
            distribution
            if isinstance(distribution, RoleValues)
            else RoleValues.of(distribution)
        )
        self._touch(state)
        return state

    def apply_calculated_man_days(self, man_days: Decimal) -> PhaseState:
        """Store the derived man-days of the calculated phase."""
        state = self._states[self.table.calculated_phase.id]
        if state.man_days != man_days:
            state.man_days = man_days
            self._touch(state)
        return state

    def select_supplier(self, role: Role | str, entity_id: str | None) -> None:
        self.selected_suppliers = self.selected_suppliers.with_role(role, entity_id)

    def clear_selected_suppliers(self) -> None:
        self.selected_suppliers = SelectedSuppliers()

    def reset(self) -> None:
        """Every phase back to zero man-days and its default distribution."""
        stamp = self._clock.iso_now()
        self._states = {
            d.id: PhaseState(d.id, distribution=d.distribution, last_modified=stamp)
            for d in self.table
        }
        self.clear_selected_suppliers()

    def to_record(self, costs: Mapping[str, Decimal] | None = None) -> dict[str, Any]:
        """Persisted ``phases`` section; ``costs`` adds each phase's ``cost``."""
        costs = costs or {}
        record: dict[str, Any] = {
            phase_id: state.to_record(costs.get(phase_id))
            for phase_id, state in self._states.items()
        }
        record[SELECTED_SUPPLIERS_KEY] = self.selected_suppliers.to_record()
        return record

    def _touch(self, state: PhaseState) -> None:
        state.last_modified = self._clock.iso_now()


def _parse_state(
    definition: PhaseDefinition, raw: Mapping[str, Any], clock: Clock
) -> PhaseState:
    try:
        man_days = to_decimal(raw.get("manDays") or 0, "manDays")
    except ValueError:
        logger.warning(
            "phase_value_replaced",
            extra={"phase_id": definition.id, "field": "manDays"},
        )
        man_days = ZERO
    effort = raw.get("effort")
    try:
        distribution = (
            RoleValues.of(effort) if isinstance(effort, Mapping) else definition.distribution
        )
    except ValueError:
        logger.warning(
            "phase_value_replaced",
            extra={"phase_id": definition.id, "field": "effort"},
        )
        distribution = definition.distribution
    resources = raw.get("assignedResources")
    return PhaseState(
        phase_id=definition.id,
        man_days=man_days,
        distribution=distribution,
        assigned_resources=list(resources) if isinstance(resources, list) else [],
        last_modified=raw.get("lastModified") or clock.iso_now(),
    )

"""
Pure domain layer.

Data objects, value types, structural cloning and validation with NO
dependencies on I/O or wall-clock time (``SystemClock`` aside).
"""

from estimate_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from estimate_kernel.domain.clone import structural_clone
from estimate_kernel.domain.models import (
    CalculationParameters,
    Category,
    EffectiveConfig,
    EstimationConfig,
    Feature,
    GlobalConfig,
    ProjectOverrides,
    RateEntity,
    StatusPatch,
)
from estimate_kernel.domain.validation import (
    ValidationResult,
    check_highest_multiplier,
    validate_calculation_params,
    validate_category,
    validate_distribution,
    validate_rate_entity,
)
from estimate_kernel.domain.values import (
    DISTRIBUTION_TOLERANCE,
    MAX_DAILY_RATE,
    ROLES,
    ConfigCollection,
    EntityStatus,
    KpiCategory,
    Role,
    RoleValues,
    Sourcing,
    to_decimal,
)

__all__ = [
    "CalculationParameters",
    "Category",
    "Clock",
    "ConfigCollection",
    "DISTRIBUTION_TOLERANCE",
    "DeterministicClock",
    "EffectiveConfig",
    "EntityStatus",
    "EstimationConfig",
    "Feature",
    "GlobalConfig",
    "KpiCategory",
    "MAX_DAILY_RATE",
    "ProjectOverrides",
    "ROLES",
    "RateEntity",
    "Role",
    "RoleValues",
    "Sourcing",
    "StatusPatch",
    "SystemClock",
    "ValidationResult",
    "check_highest_multiplier",
    "structural_clone",
    "to_decimal",
    "validate_calculation_params",
    "validate_category",
    "validate_distribution",
    "validate_rate_entity",
]

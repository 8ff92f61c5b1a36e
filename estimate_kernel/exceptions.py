"""
Typed Exception Hierarchy for the Estimate Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The configuration screens display per-field messages, and the estimation
pipeline must keep producing partial results when a project is malformed.
Both need to tell error kinds apart without parsing message strings:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, UI-safe)
  3. Exceptions carry structured DATA (reasons, ids, paths)

Example - RIGHT way:
    try:
        overrides = resolver.add_override_item(overrides, "suppliers", record)
    except ValidationError as e:
        show_field_errors(e.item_id, e.reasons)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from EstimateKernelError:

    EstimateKernelError (base)
    |
    +-- ConfigError
    |   +-- ValidationError
    |   +-- ShapeMismatchError
    |   +-- UnknownCollectionError
    |   +-- ItemNotFoundError
    |
    +-- PhaseError
        +-- UnknownPhaseError
        +-- PhaseNotEditableError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Config          | VALIDATION_FAILED           | Item rejected (name, rate, duplicate...)
                | SHAPE_MISMATCH              | Persisted structure has the wrong shape
                | UNKNOWN_COLLECTION          | Not suppliers/internalResources/categories
                | ITEM_NOT_FOUND              | Catalog id does not exist
----------------|-----------------------------|-----------------------------------------
Phase           | UNKNOWN_PHASE               | Phase id outside the fixed table
                | PHASE_NOT_EDITABLE          | Man-days set on a calculated phase

A stale supplier reference is NOT an exception: the engines record a
``LookupMiss`` diagnostic and price the role at zero.

===============================================================================
"""

from __future__ import annotations

from collections.abc import Sequence


class EstimateKernelError(Exception):
    """
    Base exception for all estimate kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "ESTIMATE_KERNEL_ERROR"


# Configuration exceptions


class ConfigError(EstimateKernelError):
    """Base exception for configuration errors."""

    code: str = "CONFIG_ERROR"


class ValidationError(ConfigError):
    """An item, parameter set or distribution was rejected.

    Recoverable: the offending item is never partially applied and
    ``reasons`` holds one human-readable message per failed rule.
    """

    code: str = "VALIDATION_FAILED"

    def __init__(self, reasons: Sequence[str], item_id: str | None = None):
        self.reasons = list(reasons)
        self.item_id = item_id
        subject = f" for {item_id}" if item_id else ""
        super().__init__(f"Validation failed{subject}: " + "; ".join(self.reasons))


class ShapeMismatchError(ConfigError):
    """A persisted structure does not have the expected shape."""

    code: str = "SHAPE_MISMATCH"

    def __init__(self, path: str, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(f"{path}: expected {expected}, got {actual}")


class UnknownCollectionError(ConfigError):
    """Collection name is not one of the overridable collections."""

    code: str = "UNKNOWN_COLLECTION"

    def __init__(self, collection: str):
        self.collection = collection
        super().__init__(f"Unknown configuration collection: {collection}")


class ItemNotFoundError(ConfigError):
    """No item with the given id exists in the collection."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, collection: str, item_id: str):
        self.collection = collection
        self.item_id = item_id
        super().__init__(f"Item {item_id} not found in {collection}")


# Phase exceptions


class PhaseError(EstimateKernelError):
    """Base exception for phase errors."""

    code: str = "PHASE_ERROR"


class UnknownPhaseError(PhaseError):
    """Phase id is not part of the fixed phase table."""

    code: str = "UNKNOWN_PHASE"

    def __init__(self, phase_id: str):
        self.phase_id = phase_id
        super().__init__(f"Unknown phase: {phase_id}")


class PhaseNotEditableError(PhaseError):
    """Man-days of a calculated phase are derived and cannot be set."""

    code: str = "PHASE_NOT_EDITABLE"

    def __init__(self, phase_id: str):
        self.phase_id = phase_id
        super().__init__(
            f"Phase {phase_id} is calculated from features; man-days cannot be set"
        )

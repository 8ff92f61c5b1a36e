"""
Structural clone -- the isolation boundary between scopes.

Responsibility:
    Produce a deep, independent copy of configuration and project data.
    Called at every scope boundary: catalog -> effective configuration,
    effective configuration -> caller, project document in/out.

Depth guarantee:
    - Containers (``dict``, ``list``, ``tuple``, ``set``, ``frozenset``) and
      dataclass instances are rebuilt at EVERY depth; no container reachable
      from the result is shared with the source.
    - Immutable leaves (``None``, ``bool``, ``int``, ``float``, ``str``,
      ``Decimal``, ``Enum`` members, ``date``/``datetime``) are shared, since
      sharing an immutable value cannot leak a mutation.
    - Any other type raises ``TypeError``: an unknown object might be
      mutable, and silently sharing it would break isolation.

Failure modes:
    - ``TypeError`` for unsupported types.
    - ``RecursionError`` for self-referencing structures; configuration data
      is a tree, so a cycle is itself a bug.
"""

from __future__ import annotations

from dataclasses import fields, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

T = TypeVar("T")

_IMMUTABLE_LEAVES = (type(None), bool, int, float, str, Decimal, Enum, date, datetime)


def structural_clone(value: T) -> T:
    """Return a deep, independent copy of ``value`` (see module docstring)."""
    if isinstance(value, _IMMUTABLE_LEAVES):
        return value
    if isinstance(value, dict):
        return {k: structural_clone(v) for k, v in value.items()}  # type: ignore[return-value]
    if isinstance(value, list):
        return [structural_clone(v) for v in value]  # type: ignore[return-value]
    if isinstance(value, tuple):
        return tuple(structural_clone(v) for v in value)  # type: ignore[return-value]
    if isinstance(value, (set, frozenset)):
        return type(value)(structural_clone(v) for v in value)  # type: ignore[return-value]
    if is_dataclass(value) and not isinstance(value, type):
        return _clone_dataclass(value)
    raise TypeError(
        f"structural_clone does not support {type(value).__name__}; "
        "refusing to share a possibly mutable object"
    )


def _clone_dataclass(instance: Any) -> Any:
    cls = type(instance)
    init_values: dict[str, Any] = {}
    late_values: dict[str, Any] = {}
    for f in fields(instance):
        cloned = structural_clone(getattr(instance, f.name))
        if f.init:
            init_values[f.name] = cloned
        else:
            late_values[f.name] = cloned
    clone = cls(**init_values)
    for name, val in late_values.items():
        object.__setattr__(clone, name, val)
    return clone

"""Utility modules for the estimate kernel."""

from estimate_kernel.utils.hashing import (
    canonicalize_json,
    hash_payload,
)

__all__ = [
    "canonicalize_json",
    "hash_payload",
]

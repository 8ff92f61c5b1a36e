"""
Settings stores -- the persistence collaborator seen by the catalog.

The estimation core never decides where settings live.  ``CatalogStore``
reads and writes a settings document (``{"globalConfig": {...}, ...}``)
through any object satisfying ``SettingsStore``.  Two implementations are
provided: an in-memory store for tests and embedding, and a YAML file store.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml

from estimate_kernel.domain.clone import structural_clone
from estimate_kernel.logging_config import get_logger

logger = get_logger("config.store")


@runtime_checkable
class SettingsStore(Protocol):
    """Load/save the application settings document."""

    def load_settings(self) -> dict[str, Any] | None:
        """Return the stored settings, or None when nothing was saved yet."""
        ...

    def save_settings(self, settings: dict[str, Any]) -> None:
        ...


class InMemorySettingsStore:
    """Settings kept in process memory; copies on every read and write."""

    def __init__(self, settings: dict[str, Any] | None = None):
        self._settings = structural_clone(settings) if settings is not None else None
        self.save_count = 0

    def load_settings(self) -> dict[str, Any] | None:
        return structural_clone(self._settings)

    def save_settings(self, settings: dict[str, Any]) -> None:
        self._settings = structural_clone(settings)
        self.save_count += 1


class YamlSettingsStore:
    """Settings persisted as one YAML document on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load_settings(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        with open(self.path, encoding="utf-8") as f:
            return yaml.safe_load(f) or None

    def save_settings(self, settings: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(settings, f, sort_keys=False, allow_unicode=True)
        tmp_path.replace(self.path)
        logger.info("settings_saved", extra={"path": str(self.path)})

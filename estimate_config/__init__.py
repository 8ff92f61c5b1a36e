"""
estimate_config -- global catalog, project overrides and their resolution.

Public entry points:

    catalog = CatalogStore.load(YamlSettingsStore(path))
    resolver = ConfigResolver(catalog)
    effective = resolver.resolve(overrides)

``CatalogStore`` owns the single ``GlobalConfig``; only ``ConfigResolver``
sees it by reference.  Everything else receives deep copies.
"""

from estimate_config.catalog import CatalogStore, load_default_catalog
from estimate_config.migration import is_legacy_config, normalize_project_document
from estimate_config.resolver import ConfigResolver, ConfigStats
from estimate_config.store import InMemorySettingsStore, SettingsStore, YamlSettingsStore

__all__ = [
    "CatalogStore",
    "ConfigResolver",
    "ConfigStats",
    "InMemorySettingsStore",
    "SettingsStore",
    "YamlSettingsStore",
    "is_legacy_config",
    "load_default_catalog",
    "normalize_project_document",
]

"""
estimate_config.catalog -- the process-wide global catalog.

Responsibility:
    Owns the single ``GlobalConfig`` (suppliers, internal resources,
    categories, calculation parameters).  It is mutated only through the
    explicit add / update / delete operations below and persisted only by
    ``save()`` through a ``SettingsStore`` collaborator.

Architecture position:
    Configuration -- leaf of the config layer.  The owned object is handed by
    reference to ``ConfigResolver`` only; every other caller receives a
    structural clone from ``get_global_config()``.

Invariants enforced:
    - The catalog created at first run is the fixed default set from
      ``defaults/catalog.yaml`` and is non-empty.
    - Items are validated before they are applied; an invalid item is never
      partially applied.
    - Items in the catalog are always ``isGlobal``.

Preconditions:
    - Single writer.  Mutations are issued from one UI-driven sequence; the
      catalog does not lock.  A multi-writer port must wrap every mutating
      method and ``save()`` in one critical section.

Failure modes:
    - ``ValidationError`` -- rejected item or parameters.
    - ``ItemNotFoundError`` -- update/delete of an unknown id.
    - ``UnknownCollectionError`` -- collection outside the closed set.
    - ``ConfigError`` -- ``save()`` without a settings store.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from estimate_config.loader import (
    config_to_record,
    item_to_record,
    load_yaml_file,
    new_item_id,
    parse_calculation_parameters,
    parse_config,
    parse_item,
    strip_flags,
    calculation_parameters_to_record,
)
from estimate_config.store import SettingsStore
from estimate_kernel.domain.clone import structural_clone
from estimate_kernel.domain.models import (
    CalculationParameters,
    Category,
    EstimationConfig,
    RateEntity,
)
from estimate_kernel.domain.validation import (
    ValidationResult,
    check_highest_multiplier,
    validate_calculation_params,
    validate_category,
    validate_rate_entity,
)
from estimate_kernel.domain.values import ConfigCollection
from estimate_kernel.exceptions import (
    ConfigError,
    ItemNotFoundError,
    ShapeMismatchError,
    ValidationError,
)
from estimate_kernel.logging_config import get_logger

logger = get_logger("config.catalog")

DEFAULT_CATALOG_PATH = Path(__file__).parent / "defaults" / "catalog.yaml"

SETTINGS_KEY = "globalConfig"


def load_default_catalog(path: Path | None = None) -> EstimationConfig:
    """Load the fixed default catalog shipped with the package.

    Raises:
        ValueError: if a default collection is empty.
    """
    config = parse_config(load_yaml_file(path or DEFAULT_CATALOG_PATH), path="defaults")
    for collection in ConfigCollection:
        if not config.collection(collection):
            raise ValueError(f"Default catalog has no {collection.value}")
    return config


def validate_item_record(
    collection: ConfigCollection,
    record: Mapping[str, Any],
    existing: list[Any],
) -> ValidationResult:
    """Validate a wire record against the items already in its scope."""
    if collection.is_rate_collection:
        return validate_rate_entity(record, existing)
    return validate_category(record, existing)


class CatalogStore:
    """
    Holder of the global catalog.

    Contract:
        ``owned_config()`` is for ``ConfigResolver`` only.  Everything else
        reads through ``get_global_config()``, which returns a deep copy.
    """

    def __init__(
        self,
        config: EstimationConfig | None = None,
        store: SettingsStore | None = None,
    ):
        self._config = structural_clone(config) if config is not None else load_default_catalog()
        self._store = store

    @classmethod
    def load(cls, store: SettingsStore, defaults_path: Path | None = None) -> CatalogStore:
        """Load the catalog from ``store``; fall back to the defaults.

        A missing or malformed ``globalConfig`` is not fatal: the default
        catalog is used and the fallback is logged.
        """
        settings = store.load_settings() or {}
        raw = settings.get(SETTINGS_KEY)
        if raw is None:
            logger.info("catalog_defaults_seeded", extra={"reason": "no_saved_catalog"})
            return cls(load_default_catalog(defaults_path), store)
        try:
            config = parse_config(raw, path=SETTINGS_KEY)
        except ShapeMismatchError as exc:
            logger.warning(
                "catalog_load_fallback",
                extra={"path": exc.path, "expected": exc.expected, "actual": exc.actual},
            )
            return cls(load_default_catalog(defaults_path), store)
        logger.info("catalog_loaded", extra=_collection_counts(config))
        return cls(config, store)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def owned_config(self) -> EstimationConfig:
        """The owned catalog object.  Callers must not mutate it."""
        return self._config

    def get_global_config(self) -> EstimationConfig:
        return structural_clone(self._config)

    def get_item(self, collection: ConfigCollection | str, item_id: str) -> RateEntity | Category:
        collection = ConfigCollection.parse(collection)
        _, item = self._find(collection, item_id)
        return structural_clone(item)

    def validation_warnings(self) -> list[str]:
        """Soft checks over the whole catalog (currently: unique highest multiplier)."""
        return check_highest_multiplier(self._config.categories).warnings

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_item(
        self, collection: ConfigCollection | str, record: Mapping[str, Any]
    ) -> RateEntity | Category:
        """Validate and append a global item; assigns an id when absent."""
        collection = ConfigCollection.parse(collection)
        items = self._config.collection(collection)
        record = strip_flags(record)
        record["id"] = record.get("id") or new_item_id(collection)
        record["isGlobal"] = True

        result = validate_item_record(collection, record, items)
        if any(item.id == record["id"] for item in items):
            result.add_error(f"Id {record['id']} already exists in {collection.value}")
        self._raise_if_invalid(result, record["id"])

        item = self._parse(collection, record)
        items.append(item)
        logger.info(
            "catalog_item_added",
            extra={"collection": collection.value, "item_id": item.id},
        )
        return structural_clone(item)

    def update_item(
        self,
        collection: ConfigCollection | str,
        item_id: str,
        changes: Mapping[str, Any],
    ) -> RateEntity | Category:
        """Patch a global item; the id cannot change."""
        collection = ConfigCollection.parse(collection)
        items = self._config.collection(collection)
        index, current = self._find(collection, item_id)

        record = {**item_to_record(current), **strip_flags(changes), "id": item_id, "isGlobal": True}
        self._raise_if_invalid(validate_item_record(collection, record, items), item_id)

        items[index] = self._parse(collection, record)
        logger.info(
            "catalog_item_updated",
            extra={
                "collection": collection.value,
                "item_id": item_id,
                "fields": sorted(k for k in changes if k != "id"),
            },
        )
        return structural_clone(items[index])

    def delete_item(self, collection: ConfigCollection | str, item_id: str) -> None:
        collection = ConfigCollection.parse(collection)
        index, _ = self._find(collection, item_id)
        del self._config.collection(collection)[index]
        logger.info(
            "catalog_item_deleted",
            extra={"collection": collection.value, "item_id": item_id},
        )

    def update_calculation_parameters(self, changes: Mapping[str, Any]) -> CalculationParameters:
        self._raise_if_invalid(validate_calculation_params(changes))
        try:
            params = parse_calculation_parameters(changes, base=self._config.calculation_parameters)
        except ShapeMismatchError as exc:
            raise ValidationError([str(exc)]) from exc
        self._config.calculation_parameters = params
        logger.info(
            "catalog_parameters_updated",
            extra={"fields": sorted(changes), "parameters": calculation_parameters_to_record(params)},
        )
        return structural_clone(params)

    def save(self) -> None:
        """Persist the catalog through the settings store (explicit save)."""
        if self._store is None:
            raise ConfigError("No settings store configured for the catalog")
        settings = self._store.load_settings() or {}
        settings[SETTINGS_KEY] = config_to_record(self._config)
        self._store.save_settings(settings)
        logger.info("catalog_saved", extra=_collection_counts(self._config))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find(self, collection: ConfigCollection, item_id: str) -> tuple[int, Any]:
        for index, item in enumerate(self._config.collection(collection)):
            if item.id == item_id:
                return index, item
        raise ItemNotFoundError(collection.value, item_id)

    @staticmethod
    def _parse(collection: ConfigCollection, record: Mapping[str, Any]) -> RateEntity | Category:
        try:
            return parse_item(collection, record, collection.value)
        except ShapeMismatchError as exc:
            raise ValidationError([str(exc)], item_id=record.get("id")) from exc

    @staticmethod
    def _raise_if_invalid(result: ValidationResult, item_id: str | None = None) -> None:
        if not result.is_valid:
            logger.warning(
                "catalog_item_rejected",
                extra={"item_id": item_id, "reasons": result.errors},
            )
            raise ValidationError(result.errors, item_id=item_id)


def _collection_counts(config: EstimationConfig) -> dict[str, int]:
    return {
        f"{collection.attr}_count": len(config.collection(collection))
        for collection in ConfigCollection
    }

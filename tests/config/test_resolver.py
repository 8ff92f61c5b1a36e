"""
Tests for ConfigResolver -- catalog + project overrides -> effective config.

Covers:
- Null-override fallback and scope isolation
- Merge policy: patches, project-specific additions, status patches
- Malformed overrides never crash resolution
- Override mutators (add / delete / parameters / reset)
- Legacy flat configuration migration and its idempotence
- Rate entity lookups, display names and stats
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from estimate_config.catalog import CatalogStore
from estimate_config.loader import config_to_record, parse_config, project_overrides_to_record
from estimate_config.resolver import ConfigResolver
from estimate_kernel.domain.models import ProjectOverrides, StatusPatch
from estimate_kernel.domain.values import ConfigCollection, EntityStatus, Sourcing
from estimate_kernel.exceptions import ItemNotFoundError, ValidationError
from estimate_kernel.utils.hashing import hash_payload
from tests.conftest import make_catalog_record


def _supplier_ids(config):
    return [s.id for s in config.suppliers]


def _messages(logs):
    return [record["message"] for record in logs]


class TestResolveWithoutOverrides:
    """resolve(None) is a deep copy of the catalog."""

    def test_two_global_suppliers(self):
        record = make_catalog_record()
        record["suppliers"] = record["suppliers"][:2]
        resolver = ConfigResolver(CatalogStore(parse_config(record)))

        effective = resolver.resolve(None)

        assert [(s.name, s.role, s.department) for s in effective.suppliers] == [
            ("Reply", "G1", "IT"),
            ("Quid", "G1", "IT"),
        ]
        assert effective.suppliers[0].official_rate == Decimal("463.00")
        assert effective.suppliers[1].real_rate == Decimal("506.30")
        assert not any(s.is_project_specific for s in effective.suppliers)

    def test_equals_global_config(self, resolver):
        assert resolver.resolve(None) == resolver.get_global_config()

    def test_mutating_result_does_not_leak(self, resolver, catalog):
        first = resolver.resolve(None)
        first.suppliers[0].name = "Changed"
        first.calculation_parameters.risk_margin = Decimal("9")
        first.categories.pop()

        second = resolver.resolve(None)
        assert second.suppliers[0].name == "Reply"
        assert second.calculation_parameters.risk_margin == Decimal("0.15")
        assert len(catalog.get_global_config().categories) == 3

    def test_inactive_global_entry_kept_only_without_overrides(self):
        record = make_catalog_record()
        record["suppliers"][1]["status"] = "inactive"
        resolver = ConfigResolver(CatalogStore(parse_config(record)))

        verbatim = resolver.resolve(None)
        merged = resolver.resolve(ProjectOverrides())

        assert _supplier_ids(verbatim) == ["reply-g1", "quid-g1", "acme-g2"]
        assert verbatim.suppliers[1].status is EntityStatus.INACTIVE
        assert _supplier_ids(merged) == ["reply-g1", "acme-g2"]
        assert merged.find_rate_entity("quid-g1") is None

    def test_trace_logged_with_stable_fingerprint(self, resolver, captured_logs):
        resolver.resolve(None)
        resolver.resolve(ProjectOverrides())
        traces = [r for r in captured_logs() if r["message"] == "ESTIMATE_CONFIG_TRACE"]
        assert len(traces) == 2
        assert traces[0]["fingerprint"] == traces[1]["fingerprint"]
        assert traces[0]["has_overrides"] is False


GLOBAL_SUPPLIER_IDS = ("reply-g1", "quid-g1", "acme-g2")
GLOBAL_CATEGORY_IDS = ("security", "backend", "integration")


@st.composite
def project_overrides(draw):
    """Patches, project-specific additions, status patches and parameters."""
    rates = st.integers(min_value=1, max_value=10000)
    suppliers = []
    for supplier_id in draw(st.lists(st.sampled_from(GLOBAL_SUPPLIER_IDS), unique=True)):
        patch = {"id": supplier_id, "officialRate": draw(rates)}
        if draw(st.booleans()):
            patch["name"] = draw(st.text(min_size=1, max_size=12))
        suppliers.append(patch)
    for index in range(draw(st.integers(min_value=0, max_value=2))):
        suppliers.append(
            {
                "id": f"ps-{index}",
                "name": f"Project Supplier {index}",
                "role": draw(st.sampled_from(["G1", "G2"])),
                "department": "IT",
                "realRate": draw(rates),
                "officialRate": draw(rates),
                "isGlobal": False,
            }
        )

    internal_resources = []
    if draw(st.booleans()):
        internal_resources.append(StatusPatch("int-pm").to_record())
    if draw(st.booleans()):
        internal_resources.append({"id": "int-ta", "realRate": draw(rates)})

    multipliers = st.decimals(
        min_value="0.5", max_value="3", places=2, allow_nan=False, allow_infinity=False
    )
    categories = [
        {"id": category_id, "multiplier": draw(multipliers)}
        for category_id in draw(st.lists(st.sampled_from(GLOBAL_CATEGORY_IDS), unique=True))
    ]

    params = {}
    if draw(st.booleans()):
        params["riskMargin"] = draw(st.sampled_from([0, 0.2, 0.35]))
    if draw(st.booleans()):
        params["currencySymbol"] = draw(st.sampled_from(["$", "£", "CHF"]))

    return ProjectOverrides(
        suppliers=suppliers,
        internal_resources=internal_resources,
        categories=categories,
        calculation_params=params,
    )


def _fingerprint(config):
    return hash_payload(config_to_record(config, include_flags=True))


def _edit_everything(config):
    """Mutate every reachable part of an effective configuration."""
    for entity in [*config.suppliers, *config.internal_resources]:
        entity.official_rate = Decimal("1")
        entity.name = f"{entity.name} (edited)"
        entity.status = EntityStatus.INACTIVE
    for category in config.categories:
        category.multiplier = Decimal("99")
    if config.suppliers:
        config.suppliers.pop()
    config.internal_resources.clear()
    config.calculation_parameters.currency_symbol = "?"
    config.calculation_parameters.risk_margin = Decimal("42")


class TestScopeIsolation:
    """Editing one project's effective view never reaches another scope."""

    @settings(max_examples=50, deadline=None)
    @given(first=project_overrides(), second=project_overrides())
    def test_edits_stay_in_their_scope(self, first, second):
        resolver = ConfigResolver(CatalogStore(parse_config(make_catalog_record())))
        global_before = _fingerprint(resolver.get_global_config())
        first_before = _fingerprint(resolver.resolve(first))
        second_before = _fingerprint(resolver.resolve(second))
        first_record = project_overrides_to_record(first)

        _edit_everything(resolver.resolve(first))
        _edit_everything(resolver.resolve(None))
        _edit_everything(resolver.get_global_config())

        assert _fingerprint(resolver.get_global_config()) == global_before
        assert _fingerprint(resolver.resolve(second)) == second_before
        assert _fingerprint(resolver.resolve(first)) == first_before
        assert project_overrides_to_record(first) == first_record

    def test_shared_patch_edited_in_one_project(self, resolver):
        patch = {"id": "reply-g1", "officialRate": 480}
        first = ProjectOverrides(suppliers=[patch])
        second = ProjectOverrides(suppliers=[dict(patch)])
        second_before = _fingerprint(resolver.resolve(second))

        effective = resolver.resolve(first)
        effective.suppliers[0].official_rate = Decimal("1")
        effective.suppliers[0].name = "Renamed"

        assert resolver.resolve(second).suppliers[0].official_rate == Decimal("480")
        assert resolver.resolve(first).suppliers[0].name == "Reply"
        assert _fingerprint(resolver.resolve(second)) == second_before
        assert patch == {"id": "reply-g1", "officialRate": 480}


class TestMergePolicy:
    """Keyed merge of override records over global records."""

    def test_patch_overrides_fields(self, resolver):
        overrides = ProjectOverrides(suppliers=[{"id": "reply-g1", "officialRate": 480}])
        effective = resolver.resolve(overrides)

        reply = effective.suppliers[0]
        assert reply.official_rate == Decimal("480")
        assert reply.real_rate == Decimal("463")
        assert reply.is_overridden
        assert reply.is_global
        assert not reply.is_project_specific

    def test_project_specific_addition(self, resolver):
        overrides = ProjectOverrides(
            suppliers=[
                {
                    "id": "ps-1",
                    "name": "Project Specific Supplier",
                    "role": "G2",
                    "department": "IT",
                    "realRate": 150,
                    "officialRate": 150,
                }
            ]
        )
        effective = resolver.resolve(overrides)
        added = effective.suppliers[-1]
        assert added.id == "ps-1"
        assert added.is_project_specific
        assert not added.is_global
        assert _supplier_ids(resolver.get_global_config()) == ["reply-g1", "quid-g1", "acme-g2"]

    def test_inactive_global_excluded(self, resolver):
        overrides = ProjectOverrides(internal_resources=[{"id": "int-ta", "status": "inactive"}])
        effective = resolver.resolve(overrides)
        assert [r.id for r in effective.internal_resources] == ["int-pm"]

    def test_global_order_kept(self, resolver):
        overrides = ProjectOverrides(
            categories=[
                {"id": "custom", "name": "Custom", "multiplier": 1},
                {"id": "security", "multiplier": 1.25},
            ]
        )
        ids = [c.id for c in resolver.resolve(overrides).categories]
        assert ids == ["security", "backend", "integration", "custom"]

    def test_parameters_merged_per_field(self, resolver):
        overrides = ProjectOverrides(calculation_params={"riskMargin": 0.2})
        params = resolver.resolve(overrides).calculation_parameters
        assert params.risk_margin == Decimal("0.2")
        assert params.overhead_percentage == Decimal("0.1")
        assert params.working_days_per_month == 22

    def test_mapping_overrides_accepted(self, resolver):
        effective = resolver.resolve({"suppliers": [{"id": "quid-g1", "name": "Quid SpA"}]})
        assert effective.suppliers[1].name == "Quid SpA"

    def test_overrides_not_mutated_by_resolve(self, resolver):
        overrides = ProjectOverrides(suppliers=[{"id": "reply-g1", "officialRate": 480}])
        resolver.resolve(overrides)
        assert overrides.suppliers == [{"id": "reply-g1", "officialRate": 480}]


class TestMalformedOverrides:
    """Bad override data is skipped and logged, never raised."""

    def test_incomplete_addition_skipped(self, resolver, captured_logs):
        overrides = ProjectOverrides(suppliers=[{"id": "half", "name": "Half"}])
        effective = resolver.resolve(overrides)
        assert "half" not in _supplier_ids(effective)
        assert "override_item_skipped" in _messages(captured_logs())

    def test_bad_patch_keeps_global_entry(self, resolver):
        overrides = ProjectOverrides(suppliers=[{"id": "reply-g1", "officialRate": "lots"}])
        reply = resolver.resolve(overrides).suppliers[0]
        assert reply.official_rate == Decimal("463")
        assert not reply.is_overridden

    def test_bad_parameter_skipped(self, resolver, captured_logs):
        overrides = ProjectOverrides(
            calculation_params={"workingDaysPerMonth": "many", "riskMargin": 0.3}
        )
        params = resolver.resolve(overrides).calculation_parameters
        assert params.working_days_per_month == 22
        assert params.risk_margin == Decimal("0.3")
        assert "override_parameter_skipped" in _messages(captured_logs())

    def test_wrong_shape_falls_back_to_catalog(self, resolver, captured_logs):
        effective = resolver.resolve({"suppliers": "oops"})
        assert effective == resolver.resolve(None)
        assert "overrides_shape_fallback" in _messages(captured_logs())


class TestAddOverrideItem:
    def test_project_specific_supplier(self, resolver):
        overrides = resolver.add_override_item(
            ProjectOverrides(),
            "suppliers",
            {"name": "Project Specific Supplier", "role": "G2", "department": "IT",
             "realRate": 150, "officialRate": 150},
        )

        items = resolver.get_project_items(overrides, "suppliers")
        assert "Project Specific Supplier" in [s.name for s in items]
        assert "Project Specific Supplier" not in [
            s.name for s in resolver.get_global_config().suppliers
        ]
        assert overrides.suppliers[0]["isGlobal"] is False
        assert overrides.suppliers[0]["id"].startswith("supplier_")

    def test_input_overrides_untouched(self, resolver):
        original = ProjectOverrides()
        resolver.add_override_item(original, "categories", {"name": "Mobile", "multiplier": 1.15})
        assert original.is_empty

    def test_patch_of_global_item(self, resolver, captured_logs):
        overrides = resolver.add_override_item(
            ProjectOverrides(), "suppliers", {"id": "quid-g1", "officialRate": 520, "isGlobal": False}
        )
        assert overrides.suppliers == [{"id": "quid-g1", "officialRate": 520}]
        quid = resolver.find_rate_entity("quid-g1", overrides)[0]
        assert quid.official_rate == Decimal("520")
        assert quid.is_global
        assert "override_item_added" in _messages(captured_logs())

    def test_second_patch_upserts(self, resolver, captured_logs):
        overrides = resolver.add_override_item(
            ProjectOverrides(), "suppliers", {"id": "quid-g1", "officialRate": 520}
        )
        overrides = resolver.add_override_item(
            overrides, "suppliers", {"id": "quid-g1", "realRate": 500}
        )
        assert overrides.suppliers == [{"id": "quid-g1", "officialRate": 520, "realRate": 500}]
        assert "override_item_updated" in _messages(captured_logs())

    def test_invalid_item_rejected(self, resolver, captured_logs):
        with pytest.raises(ValidationError) as exc_info:
            resolver.add_override_item(
                ProjectOverrides(), "suppliers", {"name": "Cheap", "realRate": 0, "officialRate": 1}
            )
        assert "Real rate must be greater than 0" in exc_info.value.reasons
        assert "override_item_rejected" in _messages(captured_logs())

    def test_duplicate_of_effective_name_rejected(self, resolver):
        with pytest.raises(ValidationError):
            resolver.add_override_item(
                ProjectOverrides(), "categories", {"name": "backend", "multiplier": 1}
            )

    def test_invalid_patch_of_global_rejected(self, resolver):
        with pytest.raises(ValidationError):
            resolver.add_override_item(
                ProjectOverrides(), "suppliers", {"id": "reply-g1", "officialRate": 20000}
            )


class TestDeleteOverrideItem:
    def test_global_item_gets_status_patch(self, resolver, catalog, captured_logs):
        overrides = resolver.delete_override_item(ProjectOverrides(), "suppliers", "quid-g1")

        assert overrides.suppliers == [{"id": "quid-g1", "status": "inactive"}]
        assert "quid-g1" not in _supplier_ids(resolver.resolve(overrides))
        assert catalog.get_item("suppliers", "quid-g1").status is EntityStatus.ACTIVE
        deleted = [r for r in captured_logs() if r["message"] == "override_item_deleted"]
        assert deleted[0]["action"] == "deactivated"

    def test_status_patch_merges_into_existing_patch(self, resolver):
        overrides = ProjectOverrides(suppliers=[{"id": "quid-g1", "officialRate": 520}])
        overrides = resolver.delete_override_item(overrides, "suppliers", "quid-g1")
        assert overrides.suppliers == [{"id": "quid-g1", "officialRate": 520, "status": "inactive"}]

    def test_project_specific_item_removed(self, resolver):
        overrides = resolver.add_override_item(
            ProjectOverrides(), "categories", {"id": "mobile", "name": "Mobile", "multiplier": 1.15}
        )
        overrides = resolver.delete_override_item(overrides, "categories", "mobile")
        assert overrides.categories == []

    def test_unknown_id(self, resolver):
        with pytest.raises(ItemNotFoundError):
            resolver.delete_override_item(ProjectOverrides(), "categories", "ghost")


class TestCalculationParams:
    def test_update(self, resolver):
        overrides = resolver.update_calculation_params(ProjectOverrides(), {"currencySymbol": "$"})
        assert overrides.calculation_params == {"currencySymbol": "$"}
        assert resolver.resolve(overrides).calculation_parameters.currency_symbol == "$"
        assert resolver.get_global_config().calculation_parameters.currency_symbol == "€"

    def test_unknown_key_rejected(self, resolver):
        with pytest.raises(ValidationError, match="Unknown calculation parameter: bonus"):
            resolver.update_calculation_params(ProjectOverrides(), {"bonus": 1})

    def test_invalid_value_rejected(self, resolver):
        with pytest.raises(ValidationError):
            resolver.update_calculation_params(ProjectOverrides(), {"riskMargin": -1})


class TestReset:
    def test_reset_is_empty_and_catalog_untouched(self, resolver, catalog):
        before = catalog.get_global_config()
        overrides = resolver.delete_override_item(ProjectOverrides(), "suppliers", "reply-g1")
        assert not overrides.is_empty

        reset = resolver.reset_overrides()
        assert reset.is_empty
        assert catalog.get_global_config() == before
        assert resolver.resolve(reset) == resolver.resolve(None)

    def test_initialize_is_empty(self, resolver):
        assert resolver.initialize_project_overrides() == ProjectOverrides()


class TestMigrate:
    """Legacy flat configurations become overrides."""

    def test_none_gives_empty(self, resolver):
        assert resolver.migrate(None).is_empty

    def test_non_mapping_gives_empty(self, resolver, captured_logs):
        assert resolver.migrate(["suppliers"]).is_empty
        assert "overrides_shape_fallback" in _messages(captured_logs())

    def test_current_shape_parsed(self, resolver):
        migrated = resolver.migrate(
            {"projectOverrides": {"suppliers": [{"id": "reply-g1", "status": "inactive"}]}}
        )
        assert migrated.suppliers == [{"id": "reply-g1", "status": "inactive"}]

    def test_malformed_current_shape_gives_empty(self, resolver):
        assert resolver.migrate({"projectOverrides": {"suppliers": {}}}).is_empty

    def test_flat_copy_of_catalog_has_no_overrides(self, resolver, catalog_record):
        legacy = {
            "suppliers": catalog_record["suppliers"],
            "internalResources": catalog_record["internalResources"],
            "categories": catalog_record["categories"],
            "calculationParams": catalog_record["calculationParameters"],
        }
        assert resolver.migrate(legacy).is_empty

    def test_flat_differences_become_patches(self, resolver, catalog_record):
        suppliers = catalog_record["suppliers"]
        suppliers[0] = {**suppliers[0], "officialRate": 470.0, "isOverridden": True}
        suppliers.append(
            {"id": "local", "name": "Local Co", "role": "TA", "realRate": 200, "officialRate": 200}
        )
        legacy = {"suppliers": suppliers, "calculationParams": {"riskMargin": 0.15, "overheadPercentage": 0.2}}

        migrated = resolver.migrate(legacy)

        assert migrated.suppliers == [
            {"id": "reply-g1", "officialRate": 470.0},
            {"id": "local", "name": "Local Co", "role": "TA", "realRate": 200,
             "officialRate": 200, "isGlobal": False},
        ]
        assert migrated.calculation_params == {"overheadPercentage": 0.2}

    def test_integral_float_equals_int(self, resolver):
        legacy = {"suppliers": [{"id": "reply-g1", "realRate": 463.0, "officialRate": 463}]}
        assert resolver.migrate(legacy).is_empty

    def test_unusable_items_ignored(self, resolver):
        legacy = {"suppliers": [None, {"name": "no id"}], "categories": "bad"}
        assert resolver.migrate(legacy).is_empty

    def test_migrate_is_idempotent(self, resolver, catalog_record):
        legacy = {"suppliers": [{**catalog_record["suppliers"][1], "name": "Quid Srl"}]}
        once = resolver.migrate(legacy)
        assert resolver.migrate(once) is once
        assert resolver.migrate({"projectOverrides": project_overrides_to_record(once)}) == once

    @settings(max_examples=30, deadline=None)
    @given(
        rate=st.integers(min_value=1, max_value=10000),
        name=st.text(min_size=1, max_size=10),
        deactivate=st.booleans(),
    )
    def test_migrated_overrides_persist_stably(self, rate, name, deactivate):
        resolver = ConfigResolver(CatalogStore(parse_config(make_catalog_record())))
        item = {"id": "acme-g2", "name": name, "officialRate": rate}
        if deactivate:
            item["status"] = "inactive"
        once = resolver.migrate({"suppliers": [item]})
        persisted = {"projectOverrides": project_overrides_to_record(once)}

        twice = resolver.migrate(persisted)

        assert twice == once
        assert resolver.resolve(twice) == resolver.resolve(once)


class TestLookups:
    def test_find_supplier_and_internal(self, resolver):
        entity, sourcing = resolver.find_rate_entity("quid-g1")
        assert entity.name == "Quid"
        assert sourcing is Sourcing.EXTERNAL
        assert resolver.find_rate_entity("int-pm")[1] is Sourcing.INTERNAL

    def test_unknown_entity(self, resolver):
        assert resolver.find_rate_entity("ghost") is None
        assert not resolver.is_known_rate_entity("ghost")

    def test_deactivated_entity_is_unknown(self, resolver):
        overrides = resolver.delete_override_item(ProjectOverrides(), "suppliers", "reply-g1")
        assert resolver.is_known_rate_entity("reply-g1")
        assert not resolver.is_known_rate_entity("reply-g1", overrides)

    @pytest.mark.parametrize(
        "entity_id, expected",
        [
            ("reply-g1", "Reply (External)"),
            ("int-ta", "Internal TA (Internal)"),
            ("ghost", "Unknown Supplier (ghost)"),
        ],
    )
    def test_display_name(self, resolver, entity_id, expected):
        assert resolver.display_name(entity_id) == expected


class TestConfigStats:
    def test_counts(self, resolver):
        overrides = ProjectOverrides(
            suppliers=[{"id": "quid-g1", "status": "inactive"}],
            calculation_params={"riskMargin": 0.2},
        )
        stats = resolver.config_stats(overrides)
        assert stats.global_counts[ConfigCollection.SUPPLIERS.value] == 3
        assert stats.override_counts["suppliers"] == 1
        assert stats.effective_counts["suppliers"] == 2
        assert stats.overridden_parameters == ("riskMargin",)

    def test_no_overrides(self, resolver):
        stats = resolver.config_stats()
        assert stats.global_counts == stats.effective_counts
        assert sum(stats.override_counts.values()) == 0

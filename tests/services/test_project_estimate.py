"""
Tests for ProjectEstimateService and ProjectEstimate.

Covers:
- Opening current and legacy documents without mutating them
- Project-level configuration edits isolated from the catalog
- Phase and supplier editing
- Reports: phase costs, totals, KPI, vendor summary, diagnostics
- Writing the document back
"""

from decimal import Decimal

import pytest

from estimate_engines.phases import DEFAULT_PHASE_TABLE
from estimate_kernel.domain.models import Feature
from estimate_kernel.domain.values import KpiCategory
from estimate_kernel.exceptions import (
    ItemNotFoundError,
    PhaseNotEditableError,
    ValidationError,
)

PROJECT_SPECIFIC = {
    "name": "Project Specific Supplier",
    "role": "G2",
    "department": "IT",
    "realRate": 150,
    "officialRate": 150,
}


class TestOpenProject:
    def test_open_current_document(self, service, project_document):
        estimate = service.open_project(project_document)
        assert estimate.project_id == "proj-1"
        assert [f.id for f in estimate.features] == ["F1", "F2"]
        assert estimate.overrides.is_empty

    def test_caller_document_not_mutated(self, service, make_document):
        document = make_document()
        estimate = service.open_project(document)
        estimate.set_phase_man_days("uat", 10)
        estimate.update_calculation_params({"riskMargin": 0.3})
        assert document == make_document()

    def test_development_derived_on_open(self, service, project_document):
        estimate = service.open_project(project_document)
        assert estimate.phases.state("development").man_days == Decimal("15.5")

    def test_coverage_counts_towards_development(self, service, make_document):
        estimate = service.open_project(make_document(coverage=4.5))
        assert estimate.phases.state("development").man_days == Decimal("20.0")

    def test_legacy_document_migrated(self, service, make_document, catalog_record):
        suppliers = catalog_record["suppliers"]
        suppliers[0] = {**suppliers[0], "officialRate": 500}
        estimate = service.open_project(make_document(config={"suppliers": suppliers}))
        assert estimate.overrides.suppliers == [{"id": "reply-g1", "officialRate": 500}]
        assert estimate.total_project_cost() == Decimal("49971.25")

    def test_broken_document_opens(self, service, captured_logs):
        estimate = service.open_project({"project": {"id": 7}, "features": [3, {"manDays": 2}]})
        assert estimate.project_id == "7"
        assert len(estimate.features) == 1
        assert estimate.total_project_man_days() == Decimal("2.0")
        assert "feature_skipped" in [r["message"] for r in captured_logs()]

    def test_open_logged_with_project_context(self, service, project_document, captured_logs):
        service.open_project(project_document)
        opened = next(r for r in captured_logs() if r["message"] == "project_opened")
        assert opened["project_id"] == "proj-1"
        assert opened["feature_count"] == 2


class TestNewProject:
    def test_fresh_document(self, service):
        document = service.new_project({"id": "p2", "name": "New"})
        assert document["project"] == {"id": "p2", "name": "New"}
        assert document["features"] == []
        assert document["versions"] == []
        assert set(document["phases"]) == set(DEFAULT_PHASE_TABLE.ids) | {"selectedSuppliers"}
        assert document["config"]["projectOverrides"]["suppliers"] == []

    def test_new_document_can_be_opened(self, service):
        estimate = service.open_project(service.new_project({"id": "p2"}))
        assert estimate.total_project_cost() == Decimal("0")


class TestProjectConfiguration:
    """Project overrides never leak into the catalog."""

    def test_project_specific_supplier(self, service, project_document, catalog):
        estimate = service.open_project(project_document)
        item_id = estimate.add_override_item("suppliers", PROJECT_SPECIFIC)

        names = [s.name for s in estimate.get_project_items("suppliers")]
        assert "Project Specific Supplier" in names
        assert "Project Specific Supplier" not in [
            s.name for s in catalog.get_global_config().suppliers
        ]
        assert estimate.to_document()["config"]["projectOverrides"]["suppliers"][0]["id"] == item_id

    def test_two_projects_are_isolated(self, service, make_document):
        first = service.open_project(make_document())
        second = service.open_project(make_document())
        first.update_calculation_params({"currencySymbol": "$"})
        assert first.calculation_parameters().currency_symbol == "$"
        assert second.calculation_parameters().currency_symbol == "€"

    def test_override_changes_costs(self, service, project_document):
        estimate = service.open_project(project_document)
        before = estimate.total_project_cost()
        estimate.add_override_item("suppliers", {"id": "reply-g1", "officialRate": 500})
        # sit G1 is 20 days, development G1 1.55 days: 21.55 * 37
        assert estimate.total_project_cost() - before == Decimal("797.35")

    def test_delete_global_item_for_project(self, service, project_document):
        estimate = service.open_project(project_document)
        estimate.delete_override_item("internalResources", "int-pm")
        assert [r.id for r in estimate.get_project_items("internalResources")] == ["int-ta"]
        assert any("int-pm" in message for message in estimate.diagnostics())

    def test_delete_unknown(self, service, project_document):
        estimate = service.open_project(project_document)
        with pytest.raises(ItemNotFoundError):
            estimate.delete_override_item("categories", "ghost")

    def test_reset_overrides(self, service, project_document):
        estimate = service.open_project(project_document)
        estimate.update_calculation_params({"riskMargin": 0.5})
        estimate.reset_overrides()
        assert estimate.overrides.is_empty
        assert estimate.calculation_parameters().risk_margin == Decimal("0.15")


class TestPhaseEditing:
    def test_set_man_days_updates_cost(self, service, project_document):
        estimate = service.open_project(project_document)
        estimate.set_phase_man_days("uat", 10)
        uat = next(r for r in estimate.phase_costs() if r.phase_id == "uat")
        # uat: G2 20%, TA 60%, PM 20% -> 2 * 400 + 6 * 400 + 2 * 550
        assert uat.total_cost == Decimal("4300.00")

    def test_development_not_editable(self, service, project_document):
        estimate = service.open_project(project_document)
        with pytest.raises(PhaseNotEditableError):
            estimate.set_phase_man_days("development", 3)

    def test_distribution_validated(self, service, project_document):
        estimate = service.open_project(project_document)
        with pytest.raises(ValidationError):
            estimate.set_phase_distribution("sit", {"G1": 10})

    def test_select_unknown_supplier_rejected(self, service, project_document):
        estimate = service.open_project(project_document)
        with pytest.raises(ValidationError):
            estimate.select_supplier("G1", "ghost")
        assert estimate.phases.selected_suppliers.g1 == "reply-g1"

    def test_select_project_specific_supplier(self, service, project_document):
        estimate = service.open_project(project_document)
        item_id = estimate.add_override_item("suppliers", PROJECT_SPECIFIC)
        estimate.select_supplier("G2", item_id)
        sit = next(r for r in estimate.phase_costs() if r.phase_id == "sit")
        assert sit.cost_by_role.g2 == Decimal("7500.00")

    def test_clear_selected_suppliers(self, service, project_document):
        estimate = service.open_project(project_document)
        estimate.clear_selected_suppliers()
        # feature F1 still names acme-g2 for its G2 share of development
        assert estimate.total_project_cost() == Decimal("3200.00")

    def test_reset_phase_data(self, service, project_document):
        estimate = service.open_project(project_document)
        estimate.reset_phase_data()
        assert estimate.phases.state("sit").man_days == Decimal("0")
        assert estimate.phases.state("development").man_days == Decimal("15.5")

    def test_update_features(self, service, project_document):
        estimate = service.open_project(project_document)
        estimate.update_features([{"id": "F3", "manDays": 7}], coverage=1)
        assert estimate.phases.state("development").man_days == Decimal("8.0")
        document = estimate.to_document()
        assert document["features"] == [{"id": "F3", "manDays": 7}]
        assert document["coverage"] == 1

    def test_update_features_with_feature_objects(self, service, project_document):
        """Features given as objects are saved with the phases costed from them."""
        estimate = service.open_project(project_document)
        estimate.update_features([Feature(id="F9", man_days=Decimal("7"))])

        document = estimate.to_document()
        assert document["features"] == [{"id": "F9", "description": "", "manDays": 7}]
        assert document["phases"]["development"]["manDays"] == 7
        reopened = service.open_project(document)
        assert [f.id for f in reopened.features] == ["F9"]
        assert reopened.total_project_cost() == estimate.total_project_cost()

    def test_update_features_mixed_list(self, service, project_document):
        estimate = service.open_project(project_document)
        estimate.update_features(
            [
                {"id": "F3", "manDays": 2, "owner": "team-a"},
                Feature(id="F4", man_days=Decimal("1.5"), supplier="quid-g1"),
                "not a feature",
            ]
        )
        features = estimate.to_document()["features"]
        assert features == [
            {"id": "F3", "manDays": 2, "owner": "team-a"},
            {"id": "F4", "description": "", "manDays": 1.5, "supplier": "quid-g1"},
        ]
        assert estimate.phases.state("development").man_days == Decimal("3.5")


class TestReports:
    def test_totals(self, service, project_document):
        estimate = service.open_project(project_document)
        assert estimate.total_project_cost() == Decimal("49173.90")
        assert estimate.total_project_man_days() == Decimal("115.5")

    def test_kpi_matches_total(self, service, project_document):
        estimate = service.open_project(project_document)
        report = estimate.kpi_report()
        assert report.total_project_cost == estimate.total_project_cost()
        assert report.category(KpiCategory.GDS).internal == Decimal("5926.25")

    def test_vendor_costs(self, service, project_document):
        estimate = service.open_project(project_document)
        vendors = {v.vendor_id for v in estimate.vendor_costs()}
        assert vendors == {"acme-g2", "int-pm", "int-ta", "reply-g1"}

    def test_validate(self, service, project_document):
        assert service.open_project(project_document).validate().is_valid

    def test_diagnostics_for_stale_selection(self, service, make_document):
        document = make_document()
        document["phases"]["selectedSuppliers"]["TA"] = "retired-ta"
        estimate = service.open_project(document)
        assert "TA in sit: rate entity retired-ta not found" in estimate.diagnostics()
        assert estimate.total_project_cost() == Decimal("40863.90")


class TestToDocument:
    def test_round_trip_sections(self, service, project_document):
        document = service.open_project(project_document).to_document()
        assert document["project"] == project_document["project"]
        assert document["features"] == project_document["features"]
        assert document["versions"] == project_document["versions"]

    def test_phases_carry_cost(self, service, project_document):
        document = service.open_project(project_document).to_document()
        assert document["phases"]["sit"]["cost"] == 42760
        assert document["phases"]["development"]["manDays"] == 15.5
        assert document["phases"]["development"]["cost"] == 6413.9
        assert document["phases"]["selectedSuppliers"]["PM"] == "int-pm"

    def test_reopen_is_stable(self, service, project_document):
        first = service.open_project(project_document)
        first.add_override_item("categories", {"name": "Mobile", "multiplier": 1.15})
        document = first.to_document()
        second = service.open_project(document)
        assert second.overrides == first.overrides
        assert second.total_project_cost() == first.total_project_cost()

    def test_returns_fresh_copy(self, service, project_document):
        estimate = service.open_project(project_document)
        document = estimate.to_document()
        document["project"]["name"] = "Changed"
        assert estimate.to_document()["project"]["name"] == "Portal"

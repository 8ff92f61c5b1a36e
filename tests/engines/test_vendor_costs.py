"""Tests for the per-vendor cost summary."""

from decimal import Decimal

from estimate_config.loader import parse_features
from estimate_engines.phases import ProjectPhases
from estimate_engines.vendor_costs import VendorCostLine, summarize_vendor_costs
from estimate_kernel.domain.values import Role
from tests.conftest import make_project_document


def _records(cost_engine, clock, **sections):
    document = make_project_document(**sections)
    phases = ProjectPhases.from_record(document["phases"], clock=clock)
    return cost_engine.cost_project(phases, features=parse_features(document["features"]))


class TestSummarizeVendorCosts:
    def test_one_line_per_vendor_and_role(self, cost_engine, deterministic_clock):
        lines = summarize_vendor_costs(_records(cost_engine, deterministic_clock, features=[]))
        assert [(v.vendor, v.role) for v in lines] == [
            ("Acme Dev", Role.G2),
            ("Internal PM", Role.PM),
            ("Internal TA", Role.TA),
            ("Reply", Role.G1),
        ]

    def test_folds_across_phases(self, cost_engine, deterministic_clock):
        lines = summarize_vendor_costs(_records(cost_engine, deterministic_clock))
        acme = next(v for v in lines if v.vendor_id == "acme-g2")
        # 50 days in sit plus 12.4 in development
        assert acme.man_days == Decimal("62.4")
        assert acme.cost == Decimal("24960.00")
        assert acme.real_cost == Decimal("23712.00")

    def test_internal_flag(self, cost_engine, deterministic_clock):
        lines = summarize_vendor_costs(_records(cost_engine, deterministic_clock, features=[]))
        flags = {v.vendor_id: v.is_internal for v in lines}
        assert flags == {"acme-g2": False, "int-pm": True, "int-ta": True, "reply-g1": False}

    def test_final_man_days(self, cost_engine, deterministic_clock):
        lines = summarize_vendor_costs(_records(cost_engine, deterministic_clock, features=[]))
        acme = next(v for v in lines if v.vendor_id == "acme-g2")
        # 19000 real cost at the 400 official rate is 47.5 days
        assert acme.final_man_days == Decimal("48")
        assert acme.to_record()["finalMDs"] == 48

    def test_zero_official_rate(self):
        line = VendorCostLine(
            "v", "V", Role.G1, "IT", False,
            Decimal("1"), Decimal("0"), Decimal("1"), Decimal("0"), Decimal("1"),
        )
        assert line.final_man_days == Decimal("0")

    def test_empty(self):
        assert summarize_vendor_costs([]) == ()

    def test_to_record_keys(self, cost_engine, deterministic_clock):
        lines = summarize_vendor_costs(_records(cost_engine, deterministic_clock, features=[]))
        record = lines[-1].to_record()
        assert record == {
            "vendorId": "reply-g1",
            "vendor": "Reply",
            "role": "G1",
            "department": "IT",
            "isInternal": False,
            "manDays": 20,
            "officialRate": 463,
            "realRate": 463,
            "cost": 9260,
            "realCost": 9260,
            "finalMDs": 20,
        }

"""
Pytest fixtures for the estimation core test suite.

Provides:
- Structured logging configured for the session, with per-test capture
- Catalog, resolver and engine fixtures built from in-memory data
- A deterministic clock for phase timestamps
- Project document builders
"""

import json
import logging
from io import StringIO

import pytest

from estimate_config.catalog import CatalogStore
from estimate_config.loader import parse_config
from estimate_config.resolver import ConfigResolver
from estimate_engines.phase_cost import PhaseCostEngine
from estimate_kernel.domain.clock import DeterministicClock
from estimate_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from estimate_services.project_estimate import ProjectEstimateService


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture estimate_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, resolver):
            resolver.resolve(None)
            logs = captured_logs()
            assert any(r["message"] == "ESTIMATE_CONFIG_TRACE" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("estimate_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Catalog data
# =============================================================================


def make_catalog_record() -> dict:
    """A small catalog with suppliers and internal resources on every role."""
    return {
        "suppliers": [
            {
                "id": "reply-g1",
                "name": "Reply",
                "role": "G1",
                "department": "IT",
                "realRate": 463,
                "officialRate": 463,
                "isGlobal": True,
                "status": "active",
            },
            {
                "id": "quid-g1",
                "name": "Quid",
                "role": "G1",
                "department": "IT",
                "realRate": 506.3,
                "officialRate": 506.3,
                "isGlobal": True,
                "status": "active",
            },
            {
                "id": "acme-g2",
                "name": "Acme Dev",
                "role": "G2",
                "department": "IT",
                "realRate": 380,
                "officialRate": 400,
                "isGlobal": True,
                "status": "active",
            },
        ],
        "internalResources": [
            {
                "id": "int-ta",
                "name": "Internal TA",
                "role": "TA",
                "department": "IT",
                "realRate": 350,
                "officialRate": 400,
                "isGlobal": True,
                "status": "active",
            },
            {
                "id": "int-pm",
                "name": "Internal PM",
                "role": "PM",
                "department": "PMO",
                "realRate": 500,
                "officialRate": 550,
                "isGlobal": True,
                "status": "active",
            },
        ],
        "categories": [
            {"id": "security", "name": "Security", "multiplier": 1.2, "isGlobal": True},
            {"id": "backend", "name": "Backend", "multiplier": 1.1, "isGlobal": True},
            {"id": "integration", "name": "Integration", "multiplier": 1.3, "isGlobal": True},
        ],
        "calculationParameters": {
            "workingDaysPerMonth": 22,
            "workingHoursPerDay": 8,
            "currencySymbol": "€",
            "riskMargin": 0.15,
            "overheadPercentage": 0.10,
        },
    }


@pytest.fixture
def catalog_record() -> dict:
    return make_catalog_record()


@pytest.fixture
def catalog(catalog_record) -> CatalogStore:
    return CatalogStore(parse_config(catalog_record))


@pytest.fixture
def resolver(catalog) -> ConfigResolver:
    return ConfigResolver(catalog)


@pytest.fixture
def cost_engine(resolver) -> PhaseCostEngine:
    return PhaseCostEngine(resolver)


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def service(catalog, resolver, deterministic_clock) -> ProjectEstimateService:
    return ProjectEstimateService(catalog, resolver, deterministic_clock)


# =============================================================================
# Project documents
# =============================================================================


def make_project_document(**sections) -> dict:
    """A current-shape project document; keyword sections replace defaults."""
    document = {
        "project": {"id": "proj-1", "name": "Portal", "version": "1.0"},
        "features": [
            {"id": "F1", "description": "Login", "manDays": 10, "supplier": "acme-g2"},
            {"id": "F2", "description": "Reports", "manDays": 5.5},
        ],
        "phases": {
            "sit": {"manDays": 100, "effort": {"G1": 20, "G2": 50, "TA": 20, "PM": 10}},
            "selectedSuppliers": {"G1": "reply-g1", "G2": "acme-g2", "TA": "int-ta", "PM": "int-pm"},
        },
        "config": {
            "projectOverrides": {
                "suppliers": [],
                "internalResources": [],
                "categories": [],
                "calculationParams": {},
            }
        },
        "versions": [{"id": "V1", "reason": "Initial"}],
    }
    document.update(sections)
    return document


@pytest.fixture
def project_document() -> dict:
    return make_project_document()


@pytest.fixture
def make_document():
    """Factory fixture for project documents with replaced sections."""
    return make_project_document

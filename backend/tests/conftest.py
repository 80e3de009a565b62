"""
Pytest configuration and fixtures for the cash flow analytics test suite

Markers:
    - unit: Fast unit tests
    - property: Property-based tests (Hypothesis)
    - metamorphic: Metamorphic relation tests
    - slow: Performance and stress tests (excluded by default)
    - integration: Tests that go through a record store
"""

import pytest
import sys
import os
from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import cashflow_models
from record_models import ForecastEntry, Payable, Receivable, WorkingCapitalSnapshot


# ═══════════════════════════════════════════════════════════════════════════════
# PYTEST CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "property: Property-based tests (Hypothesis)")
    config.addinivalue_line("markers", "metamorphic: Metamorphic relation tests")
    config.addinivalue_line("markers", "slow: Performance/stress tests (excluded by default)")
    config.addinivalue_line("markers", "integration: Tests that go through a record store")


def pytest_addoption(parser):
    """Add custom CLI options."""
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests"
    )


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --run-slow is passed."""
    if config.getoption("--run-slow"):
        return

    skip_slow = pytest.mark.skip(reason="Need --run-slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


# ═══════════════════════════════════════════════════════════════════════════════
# DATABASE FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_engine():
    """In-memory SQLite engine with the record tables created."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    cashflow_models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def db_session(session_factory):
    """Create a fresh database session for each test"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def sample_organization(db_session):
    org = cashflow_models.Organization(id=1, name="Test Org", currency="USD")
    db_session.add(org)
    db_session.commit()
    return org


# ═══════════════════════════════════════════════════════════════════════════════
# RECORD FACTORIES
# ═══════════════════════════════════════════════════════════════════════════════

AS_OF = date(2024, 6, 30)


def make_receivable(ref, due_date, amount_due, amount_paid="0", status="pending",
                    customer="ACME Corp", issue_date=None, payment_date=None, org=1):
    return Receivable(
        id=f"ar-{ref}",
        organization_id=org,
        counterpart_name=customer,
        reference_number=ref,
        issue_date=issue_date or date(2024, 1, 1),
        due_date=due_date,
        amount_due=Decimal(str(amount_due)),
        amount_paid=Decimal(str(amount_paid)),
        status=status,
        payment_date=payment_date,
    )


def make_payable(ref, due_date, amount_due, amount_paid="0", status="pending",
                 vendor="Supply Co", issue_date=None, payment_date=None, org=1):
    return Payable(
        id=f"ap-{ref}",
        organization_id=org,
        counterpart_name=vendor,
        reference_number=ref,
        issue_date=issue_date or date(2024, 1, 1),
        due_date=due_date,
        amount_due=Decimal(str(amount_due)),
        amount_paid=Decimal(str(amount_paid)),
        status=status,
        payment_date=payment_date,
    )


def make_forecast(entry_id, forecast_date, direction, amount, category="general", org=1):
    return ForecastEntry(
        id=entry_id,
        organization_id=org,
        forecast_date=forecast_date,
        direction=direction,
        amount=Decimal(str(amount)),
        category=category,
    )


def make_snapshot(snapshot_date, assets, liabilities, inventory="0", org=1):
    return WorkingCapitalSnapshot(
        organization_id=org,
        snapshot_date=snapshot_date,
        current_assets=Decimal(str(assets)),
        current_liabilities=Decimal(str(liabilities)),
        inventory=Decimal(str(inventory)),
    )


@pytest.fixture
def as_of():
    return AS_OF


@pytest.fixture
def aged_receivables():
    """Receivables due 10, 40 and 70 days before AS_OF"""
    from datetime import timedelta
    return [
        make_receivable("INV-001", AS_OF - timedelta(days=10), "100"),
        make_receivable("INV-002", AS_OF - timedelta(days=40), "200"),
        make_receivable("INV-003", AS_OF - timedelta(days=70), "50"),
    ]

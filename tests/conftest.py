"""
Pytest fixtures for the production kernel test suite.

Provides:
- Structured-logging capture (the production_kernel logger does not
  propagate, so ``caplog`` sees nothing; use ``captured_logs``)
- A deterministic clock
- In-memory repositories, services and trackers
- SQLite-backed session factories: a fresh in-memory database per test
- A PostgreSQL engine for tests marked ``postgres``

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL (postgresql://...).
  Tests marked ``postgres`` are skipped when it is unset.
"""

import json
import logging
import os
from io import StringIO
from typing import Any

import pytest

from production_config.schema import KernelConfig, LedgerConfig
from production_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    make_session_factory,
)
from production_kernel.domain.clock import DeterministicClock
from production_kernel.domain.values import ProducedSource
from production_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from production_kernel.repositories.memory import (
    InMemoryAssignmentRepository,
    InMemoryLedgerRepository,
    InMemoryProductionEntryRepository,
    InMemoryTargetRepository,
)
from production_kernel.services.ledger_service import BalanceLedger
from production_kernel.services.production_tracker import ProductionTracker
from production_kernel.services.reconciliation_engine import ReconciliationEngine

TEST_ACTOR_ID = "planner-01"
TEST_DAY = "2024-03-01"


def make_target_payload(**overrides: Any) -> dict[str, Any]:
    """A valid create_target payload; keyword arguments replace fields."""
    payload = {
        "line_code": "L1",
        "style_code": "ST001",
        "date": TEST_DAY,
        "line_target": 300,
        "hourly_production": 0,
    }
    payload.update(overrides)
    return payload


def make_entry_payload(**overrides: Any) -> dict[str, Any]:
    """A valid add_production_entry payload; keyword arguments replace fields."""
    payload = {
        "date": TEST_DAY,
        "hour_index": 8,
        "line_code": "L1",
        "style_code": "ST001",
        "stage": "SEWING",
        "input_qty": 50,
        "output_qty": 40,
        "defect_qty": 2,
        "rework_qty": 1,
    }
    payload.update(overrides)
    return payload


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
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
    Capture production_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, tracker):
            tracker.create_target(make_target_payload())
            logs = captured_logs()
            assert any(r["message"] == "delta_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("production_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Clock and in-memory wiring
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def ledger_repo():
    return InMemoryLedgerRepository()


@pytest.fixture
def target_repo():
    return InMemoryTargetRepository()


@pytest.fixture
def entry_repo():
    return InMemoryProductionEntryRepository()


@pytest.fixture
def assignment_repo():
    return InMemoryAssignmentRepository()


@pytest.fixture
def ledger(ledger_repo, clock):
    return BalanceLedger(ledger_repo, clock)


@pytest.fixture
def reconciliation(ledger):
    return ReconciliationEngine(ledger)


@pytest.fixture
def entries_config():
    """Configuration in which SEWING entries feed total_produced."""
    return KernelConfig(
        ledger=LedgerConfig(produced_source=ProducedSource.PRODUCTION_ENTRIES)
    )


@pytest.fixture
def tracker(target_repo, entry_repo, assignment_repo, ledger_repo, clock):
    """In-memory tracker with targets as the produced source."""
    return ProductionTracker(
        targets=target_repo,
        entries=entry_repo,
        assignments=assignment_repo,
        ledger=ledger_repo,
        clock=clock,
    )


@pytest.fixture
def entry_tracker(target_repo, entry_repo, assignment_repo, ledger_repo, clock, entries_config):
    """In-memory tracker with production entries as the produced source."""
    return ProductionTracker(
        targets=target_repo,
        entries=entry_repo,
        assignments=assignment_repo,
        ledger=ledger_repo,
        config=entries_config,
        clock=clock,
    )


# =============================================================================
# SQLite
# =============================================================================
#
# One in-memory database per test.  Sessions on the shared connection take
# turns, so SQLite-backed trackers keep the default bulk worker count.
# =============================================================================


@pytest.fixture
def sqlite_engine():
    engine = build_engine("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return make_session_factory(sqlite_engine)


@pytest.fixture
def sql_tracker(session_factory, clock):
    return ProductionTracker.from_session_factory(
        session_factory, clock, KernelConfig()
    )


@pytest.fixture
def sql_entry_tracker(session_factory, clock):
    return ProductionTracker.from_session_factory(
        session_factory,
        clock,
        KernelConfig(
            ledger=LedgerConfig(produced_source=ProducedSource.PRODUCTION_ENTRIES),
        ),
    )


# =============================================================================
# PostgreSQL
# =============================================================================


def get_database_url() -> str | None:
    url = os.environ.get("DATABASE_URL")
    if url and url.startswith("postgresql"):
        return url
    return None


@pytest.fixture
def postgres_engine():
    url = get_database_url()
    if url is None:
        pytest.skip("DATABASE_URL does not point at PostgreSQL")
    engine = build_engine(url, pool_size=10, max_overflow=10)
    drop_tables(engine)
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()

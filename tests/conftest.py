"""
Pytest fixtures for the GST ITC engine test suite.

Provides:
- Structured logging configured once per session, plus a log capture fixture
- A deterministic clock
- A SQLite database (in memory by default) for the store tests

Environment Variables:
- GST_TEST_DATABASE_URL: database URL for store tests (default ``sqlite://``).
"""

import json
import logging
import os
from collections.abc import Generator
from datetime import UTC, datetime
from io import StringIO

import pytest
from sqlalchemy.orm import Session, sessionmaker

from gst_config import clear_config_cache
from gst_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from gst_kernel.domain.clock import DeterministicClock
from gst_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

DEFAULT_TEST_DATABASE_URL = "sqlite://"


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
def info_logging():
    """
    Reconfigure structured logging at INFO, the production default, and
    return a function giving the records written so far as parsed JSON.
    """
    stream = StringIO()
    reset_logging()
    configure_logging(level=logging.INFO, stream=stream)

    def _get_records() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    yield _get_records

    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def captured_logs():
    """
    Capture gst_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.run_reconciliation("biz-1", "2024-04")
            logs = captured_logs()
            assert any(r["message"] == "reconciliation_run_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("gst_kernel")
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
# Clock and config fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Clock fixed at 2024-05-15 10:00 UTC (mid-way through a filing month)."""
    return DeterministicClock(datetime(2024, 5, 15, 10, 0, tzinfo=UTC))


@pytest.fixture(autouse=True)
def _reset_config_cache():
    clear_config_cache()
    yield
    clear_config_cache()


# =============================================================================
# Database fixtures
# =============================================================================


def get_database_url() -> str:
    return os.environ.get("GST_TEST_DATABASE_URL", DEFAULT_TEST_DATABASE_URL)


@pytest.fixture
def db_engine():
    """Fresh schema per test; dropped and disposed on teardown."""
    engine = init_engine_from_url(get_database_url())
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker[Session]:
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """A plain session for inspecting rows directly."""
    s = session_factory()
    yield s
    s.close()

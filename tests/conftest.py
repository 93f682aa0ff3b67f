"""
Pytest configuration and shared fixtures for testing.

Provides reusable test fixtures:
- session_factory: In-memory SQLite ledger database for isolated testing
- sample_document: The standard four weekday layers plus one weekend layer
- services: Service container with a recording notification sink
- test_client: FastAPI TestClient over an app built from `services`
"""

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# ruff: noqa: E402
from oncall.core.config import AppSettings
from oncall.core.history import VersionedScheduleService
from oncall.core.ledger import Ledger
from oncall.core.models import ScheduleDocument
from oncall.core.notifications import NotificationDispatcher, RecordingSink
from oncall.core.rotation import OverrideStore
from oncall.core.scheduler import ShiftScheduler
from oncall.core.services import Services
from oncall.core.storage import OverrideSource, ScheduleSource
from oncall.database.database import Base
from oncall.main import create_app
from tests.sample_data import FIXED_NOW, SAMPLE_SCHEDULE


@pytest.fixture(scope="function")
def session_factory():
    """
    Create an in-memory SQLite database for the ledger.

    StaticPool keeps a single connection so the database survives across
    sessions and worker threads for the duration of one test.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def ledger(session_factory):
    return Ledger(session_factory)


@pytest.fixture
def sample_document():
    return ScheduleDocument.from_raw(SAMPLE_SCHEDULE)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def services(sample_document, ledger, sink):
    """Service container wired like production, minus files and Slack."""
    settings = AppSettings(scheduler_autostart=False, retention_months=6)
    source = ScheduleSource(document=sample_document)
    overrides = OverrideSource(store=OverrideStore())
    history = VersionedScheduleService(ledger, source, overrides)
    dispatcher = NotificationDispatcher(sink, timeout_seconds=1.0)
    scheduler = ShiftScheduler(
        source,
        dispatcher,
        overrides=overrides,
        history=history,
        clock=lambda: FIXED_NOW,
    )
    return Services(
        settings=settings,
        source=source,
        overrides=overrides,
        ledger=ledger,
        history=history,
        dispatcher=dispatcher,
        scheduler=scheduler,
    )


@pytest.fixture(scope="function")
def test_client(services):
    """
    Create FastAPI TestClient over an app built with the test services.

    The lifespan runs (tables, schedule load, version check) but the
    scheduler loop is not started.
    """
    app = create_app(services=services, autostart=False)
    with TestClient(app) as client:
        yield client

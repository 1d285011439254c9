"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.changes import get_lifecycle_service
from api.sync import set_orchestrator_override
from config import settings
from database import Base, get_db
from main import app
from services.change_lifecycle_service import ChangeLifecycleService
from services.event_bus import EventBus
from services.sync_service import SyncOrchestrator
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    audit_entry,
    orphan_change,
    pending_change,
    sync_history,
)
from tests.fixtures.mocks import (
    SAMPLE_SOURCE_USERS,
    MockSourceDirectory,
    MockTargetDirectory,
    target_user,
)


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(name="db")
def db_fixture(session_factory):
    """Create a session on the in-memory database."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(name="sync_settings")
def sync_settings_fixture():
    """Settings with every sync feature enabled and dry run off."""
    return settings.model_copy(
        update={
            "SYNC_DRY_RUN": False,
            "SYNC_GROUPS": True,
            "SYNC_CREATE_USERS": True,
            "SYNC_UPDATE_USERS": True,
            "SYNC_DELETE_USERS": True,
            "SYNC_INTERVAL_MINUTES": 5,
            "LDAP_USER_BASE_DN": "ou=people,dc=example,dc=com",
            "MAIL_DOMAIN": "example.com",
        }
    )


@pytest.fixture(name="mock_source")
def mock_source_fixture():
    return MockSourceDirectory(users=SAMPLE_SOURCE_USERS)


@pytest.fixture(name="mock_target")
def mock_target_fixture():
    return MockTargetDirectory(
        users=[
            target_user("bob", "old-bob@example.com", "Bob Brown", "Brown"),
            target_user("carol", "carol@example.com", "Carol Clark", "Clark"),
        ]
    )


@pytest.fixture(name="event_bus")
def event_bus_fixture():
    return EventBus()


@pytest.fixture(name="orchestrator")
def orchestrator_fixture(mock_source, mock_target, session_factory, event_bus, sync_settings):
    orchestrator = SyncOrchestrator(
        source=mock_source,
        target=mock_target,
        session_factory=session_factory,
        event_sink=event_bus,
        settings=sync_settings,
    )
    yield orchestrator
    orchestrator.stop()


@pytest.fixture(name="lifecycle")
def lifecycle_fixture(mock_target):
    return ChangeLifecycleService(target=mock_target)


@pytest.fixture(name="client")
def client_fixture(db, orchestrator, lifecycle):
    """Create a test client with the test database and mock directories."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_lifecycle_service] = lambda: lifecycle
    set_orchestrator_override(orchestrator)
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
    set_orchestrator_override(None)

"""Test fixtures and sample data."""
import pytest
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from models import AuditLogEntry, Change, ChangeStatus, ChangeType, SyncHistory


def create_change(
    db: Session,
    entity_id: str = "bob",
    change_type: ChangeType = ChangeType.FIELD_MISMATCH,
    field_name: str | None = "email",
    source_value: str | None = "bob@example.com",
    target_value: str | None = "old@example.com",
    status: ChangeStatus = ChangeStatus.PENDING,
    **kwargs,
) -> Change:
    """Insert a committed Change row."""
    change = Change(
        entity_type=kwargs.pop("entity_type", "user"),
        entity_id=entity_id,
        change_type=change_type.value if isinstance(change_type, ChangeType) else change_type,
        field_name=field_name,
        source_value=source_value,
        target_value=target_value,
        status=status.value,
        details=kwargs.pop("details", {}),
        **kwargs,
    )
    db.add(change)
    db.commit()
    return change


@pytest.fixture
def pending_change(db: Session) -> Change:
    """A pending email mismatch for bob."""
    return create_change(db)


@pytest.fixture
def orphan_change(db: Session) -> Change:
    """A pending orphan for carol."""
    return create_change(
        db,
        entity_id="carol",
        change_type=ChangeType.ORPHAN,
        field_name=None,
        source_value=None,
        target_value='{"uid": "carol"}',
        details={"dn": "uid=carol,ou=people,dc=example,dc=com"},
    )


@pytest.fixture
def audit_entry(db: Session) -> AuditLogEntry:
    entry = AuditLogEntry(
        action="user_created",
        actor="system",
        entity_type="user",
        entity_id="alice",
        changes={"mail": "alice@example.com"},
        source="sync",
        success=True,
    )
    db.add(entry)
    db.commit()
    return entry


@pytest.fixture
def sync_history(db: Session) -> SyncHistory:
    record = SyncHistory(
        cycle_id="sync-1700000000000",
        started_at=datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc),
        completed_at=datetime(2026, 1, 1, 12, 0, 2, tzinfo=timezone.utc),
        duration_ms=2000,
        status="success",
        users_created=1,
        total_source_users=3,
        total_target_users=2,
        error_details=[],
    )
    db.add(record)
    db.commit()
    return record

"""Tests for AuditService."""

from datetime import datetime, timedelta, timezone

from models import AuditLogEntry, AuditSource
from services.audit_service import AuditService


def _append(db, action="user_created", entity_type="user", entity_id="alice", **kwargs):
    entry = AuditService.append(db, action, entity_type, entity_id, **kwargs)
    db.commit()
    return entry


class TestAppend:
    def test_defaults(self, db):
        entry = _append(db)

        assert entry.actor == "system"
        assert entry.source == "api"
        assert entry.success is True
        assert entry.changes == {}

    def test_records_failure(self, db):
        entry = _append(
            db,
            action="change_apply_failed",
            entity_type="change",
            entity_id="c-1",
            actor="admin",
            source=AuditSource.MANUAL,
            success=False,
            error_message="noSuchObject",
            ip_address="10.0.0.1",
        )

        assert entry.source == "manual"
        assert entry.success is False
        assert entry.error_message == "noSuchObject"
        assert entry.ip_address == "10.0.0.1"

    def test_rolls_back_with_caller(self, db):
        AuditService.append(db, "user_created", "user", "alice")
        db.rollback()

        assert db.query(AuditLogEntry).count() == 0


class TestQuery:
    def test_filters(self, db):
        _append(db, action="user_created", actor="system")
        _append(db, action="change_approved", entity_type="change", entity_id="c-1", actor="admin")
        _append(db, action="user_deleted", entity_id="carol")

        assert [e.action for e in AuditService.query(db, actor="admin")] == ["change_approved"]
        assert [e.entity_id for e in AuditService.query(db, action="user_deleted")] == ["carol"]
        assert len(AuditService.query(db, entity_type="user")) == 2

    def test_time_window_and_order(self, db):
        now = datetime.now(timezone.utc)
        old = AuditLogEntry(action="user_created", timestamp=now - timedelta(days=2))
        new = AuditLogEntry(action="user_updated", timestamp=now)
        db.add_all([old, new])
        db.commit()

        recent = AuditService.query(db, start=now - timedelta(days=1))
        everything = AuditService.query(db)

        assert [e.action for e in recent] == ["user_updated"]
        assert [e.action for e in everything] == ["user_updated", "user_created"]

    def test_limit(self, db):
        for i in range(5):
            _append(db, entity_id=f"u{i}")

        assert len(AuditService.query(db, limit=3)) == 3


class TestStats:
    def test_aggregates(self, db):
        _append(db, action="user_created")
        _append(db, action="user_created", entity_id="bob")
        _append(db, action="change_approved", entity_type="change", entity_id="c-1")

        stats = AuditService.stats(db, recent=2)

        assert stats["total"] == 3
        assert stats["by_action"][0] == {"action": "user_created", "count": 2}
        assert {"entity_type": "change", "count": 1} in stats["by_entity"]
        assert len(stats["recent"]) == 2

    def test_empty(self, db):
        stats = AuditService.stats(db)

        assert stats == {"total": 0, "by_action": [], "by_entity": [], "recent": []}

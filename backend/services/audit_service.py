"""Audit service - append-only audit trail for state-changing actions."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import AuditLogEntry, AuditSource

logger = logging.getLogger(__name__)


class AuditService:
    """Writes and queries audit log entries. Entries are never mutated."""

    @staticmethod
    def append(
        db: Session,
        action: str,
        entity_type: str | None,
        entity_id: str | None,
        changes: dict[str, Any] | None = None,
        actor: str | None = None,
        source: AuditSource | str = AuditSource.API,
        success: bool = True,
        error_message: str | None = None,
        ip_address: str | None = None,
    ) -> AuditLogEntry:
        """Add an audit entry to the session and flush it.

        The caller owns the transaction, so the entry commits (or rolls back)
        together with the action it describes.

        Args:
            db: Database session
            action: Action name, e.g. ``"user_created"`` or ``"change_approved"``
            entity_type: Kind of entity acted on (``"user"``, ``"group"``, ``"change"``)
            entity_id: Identifier of the entity acted on
            changes: Before/after or outcome payload
            actor: Who performed the action; defaults to ``"system"``
            source: Origin of the action
            success: Whether the action succeeded
            error_message: Failure detail when ``success`` is False
            ip_address: Client address, when the action came through the API

        Returns:
            The flushed AuditLogEntry
        """
        entry = AuditLogEntry(
            action=action,
            actor=actor or "system",
            entity_type=entity_type,
            entity_id=entity_id,
            changes=changes or {},
            source=source.value if isinstance(source, AuditSource) else source,
            success=success,
            error_message=error_message,
            ip_address=ip_address,
        )
        db.add(entry)
        db.flush()
        logger.debug(
            "Audit: %s %s:%s by %s (success=%s)",
            action, entity_type, entity_id, entry.actor, success,
        )
        return entry

    @staticmethod
    def query(
        db: Session,
        action: str | None = None,
        entity_type: str | None = None,
        actor: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = 100,
    ) -> list[AuditLogEntry]:
        """Return matching entries, newest first."""
        q = db.query(AuditLogEntry)
        if action:
            q = q.filter(AuditLogEntry.action == action)
        if entity_type:
            q = q.filter(AuditLogEntry.entity_type == entity_type)
        if actor:
            q = q.filter(AuditLogEntry.actor == actor)
        if start:
            q = q.filter(AuditLogEntry.timestamp >= start)
        if end:
            q = q.filter(AuditLogEntry.timestamp <= end)
        q = q.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
        if limit:
            q = q.limit(limit)
        return q.all()

    @staticmethod
    def stats(db: Session, recent: int = 5) -> dict[str, Any]:
        """Aggregate counts by action and entity type plus the latest entries."""
        total = db.query(func.count(AuditLogEntry.id)).scalar() or 0

        count_col = func.count(AuditLogEntry.id)
        by_action = (
            db.query(AuditLogEntry.action, count_col)
            .group_by(AuditLogEntry.action)
            .order_by(count_col.desc())
            .all()
        )
        by_entity = (
            db.query(AuditLogEntry.entity_type, count_col)
            .group_by(AuditLogEntry.entity_type)
            .order_by(count_col.desc())
            .all()
        )
        latest = (
            db.query(AuditLogEntry)
            .order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
            .limit(recent)
            .all()
        )
        return {
            "total": total,
            "by_action": [{"action": a, "count": c} for a, c in by_action],
            "by_entity": [{"entity_type": e, "count": c} for e, c in by_entity],
            "recent": latest,
        }

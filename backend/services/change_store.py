"""Change store - persistence for changes, sync cycle records and versions.

Transaction conventions:
- ``upsert_changes()`` commits its own all-or-nothing batch
- ``start_cycle()`` / ``finalize_cycle()`` commit, so cycle rows are visible
  to operators while the cycle runs
- everything else only flushes; the caller commits
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Change, ChangeStatus, ChangeType, EntityVersion, SyncHistory
from services.reconciliation_service import ChangeCandidate

logger = logging.getLogger(__name__)


class DetectionPersistenceError(Exception):
    """A batch of detected changes could not be stored; nothing was written."""

    pass


@dataclass
class UpsertResult:
    inserted: int = 0
    refreshed: int = 0
    inserted_ids: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.inserted + self.refreshed


class ChangeStore:
    """Repository for Change, SyncHistory and EntityVersion rows."""

    # --- Changes ---

    @staticmethod
    def find_pending(
        db: Session,
        entity_type: str,
        entity_id: str,
        change_type: str,
        field_name: str | None,
    ) -> Change | None:
        """Return the pending row for a dedup key, if any."""
        q = db.query(Change).filter(
            Change.entity_type == entity_type,
            Change.entity_id == entity_id,
            Change.change_type == change_type,
            Change.status == ChangeStatus.PENDING.value,
        )
        if field_name is None:
            q = q.filter(Change.field_name.is_(None))
        else:
            q = q.filter(Change.field_name == field_name)
        return q.order_by(Change.detected_at.desc()).first()

    @staticmethod
    def upsert_changes(db: Session, candidates: list[ChangeCandidate]) -> UpsertResult:
        """Merge detected candidates into the store in one transaction.

        A candidate matching an existing *pending* row refreshes its values,
        metadata and detected_at; otherwise a new pending row is inserted.
        Non-pending rows are never touched.

        Args:
            db: Database session (no other pending work expected)
            candidates: Output of ReconciliationEngine.detect()

        Returns:
            UpsertResult with insert/refresh counts

        Raises:
            DetectionPersistenceError: If any write fails. The whole batch
                is rolled back.
        """
        result = UpsertResult()
        if not candidates:
            logger.info("No changes detected")
            return result

        now = datetime.now(timezone.utc)
        try:
            with db.begin_nested():
                for candidate in candidates:
                    change_type = candidate.change_type.value
                    existing = ChangeStore.find_pending(
                        db,
                        candidate.entity_type,
                        candidate.entity_id,
                        change_type,
                        candidate.field_name,
                    )
                    if existing:
                        existing.source_value = candidate.source_value
                        existing.target_value = candidate.target_value
                        existing.details = candidate.metadata
                        existing.detected_at = now
                        result.refreshed += 1
                        logger.debug(
                            "Refreshed pending change %s (%s %s)",
                            existing.id[:8], change_type, candidate.entity_id,
                        )
                    else:
                        change = Change(
                            entity_type=candidate.entity_type,
                            entity_id=candidate.entity_id,
                            change_type=change_type,
                            field_name=candidate.field_name,
                            source_value=candidate.source_value,
                            target_value=candidate.target_value,
                            status=ChangeStatus.PENDING.value,
                            detected_at=now,
                            details=candidate.metadata,
                        )
                        db.add(change)
                        # Flush per insert so duplicates inside one batch
                        # resolve to the row inserted a moment ago
                        db.flush()
                        result.inserted_ids.append(change.id)
                        result.inserted += 1
                        logger.info(
                            "Detected new change: %s %s %s",
                            change_type, candidate.entity_id, candidate.field_name or "",
                        )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to store %d changes: %s", len(candidates), e)
            raise DetectionPersistenceError(f"Failed to store changes: {e}") from e

        logger.info(
            "Stored %d changes (%d new, %d refreshed)",
            result.total, result.inserted, result.refreshed,
        )
        return result

    @staticmethod
    def get_change(db: Session, change_id: str) -> Change | None:
        return db.query(Change).filter(Change.id == change_id).first()

    @staticmethod
    def list_changes(
        db: Session,
        status: str | None = None,
        entity_type: str | None = None,
        change_type: str | None = None,
        limit: int | None = 100,
    ) -> list[Change]:
        """Return changes matching the filters, most recently detected first."""
        q = db.query(Change)
        if status:
            q = q.filter(Change.status == status)
        if entity_type:
            q = q.filter(Change.entity_type == entity_type)
        if change_type:
            q = q.filter(Change.change_type == change_type)
        q = q.order_by(Change.detected_at.desc())
        if limit:
            q = q.limit(limit)
        return q.all()

    @staticmethod
    def change_stats(db: Session) -> dict[str, Any]:
        """Counts per status plus pending counts per change type."""
        by_status = dict(
            db.query(Change.status, func.count(Change.id)).group_by(Change.status).all()
        )
        pending_by_type = dict(
            db.query(Change.change_type, func.count(Change.id))
            .filter(Change.status == ChangeStatus.PENDING.value)
            .group_by(Change.change_type)
            .all()
        )
        stats = {s.value: by_status.get(s.value, 0) for s in ChangeStatus}
        stats["total"] = sum(by_status.values())
        stats["pending_by_type"] = {t.value: pending_by_type.get(t.value, 0) for t in ChangeType}
        return stats

    # --- Sync history ---

    @staticmethod
    def start_cycle(db: Session, cycle_id: str, started_at: datetime) -> SyncHistory:
        record = SyncHistory(cycle_id=cycle_id, started_at=started_at)
        db.add(record)
        db.commit()
        return record

    @staticmethod
    def finalize_cycle(db: Session, record: SyncHistory, **fields: Any) -> SyncHistory:
        """Write the final summary of a cycle.

        Raises:
            ValueError: If the record was already finalized.
        """
        if record.is_finalized:
            raise ValueError(f"Sync cycle {record.cycle_id} is already finalized")
        for name, value in fields.items():
            if not hasattr(SyncHistory, name):
                raise ValueError(f"Unknown sync history field: {name}")
            setattr(record, name, value)
        if record.completed_at is None:
            record.completed_at = datetime.now(timezone.utc)
        db.commit()
        return record

    @staticmethod
    def recent_cycles(db: Session, limit: int = 50) -> list[SyncHistory]:
        return (
            db.query(SyncHistory)
            .order_by(SyncHistory.started_at.desc())
            .limit(limit)
            .all()
        )

    # --- Versions ---

    @staticmethod
    def record_version(
        db: Session,
        entity_type: str,
        entity_id: str,
        snapshot: dict[str, Any],
        created_by: str | None = None,
        description: str | None = None,
    ) -> EntityVersion:
        """Append the next numbered snapshot for an entity (flush only)."""
        current = (
            db.query(func.max(EntityVersion.version_number))
            .filter(
                EntityVersion.entity_type == entity_type,
                EntityVersion.entity_id == entity_id,
            )
            .scalar()
        )
        version = EntityVersion(
            entity_type=entity_type,
            entity_id=entity_id,
            version_number=(current or 0) + 1,
            snapshot_data=snapshot,
            created_by=created_by,
            description=description,
        )
        db.add(version)
        db.flush()
        return version

    @staticmethod
    def list_versions(db: Session, entity_type: str, entity_id: str) -> list[EntityVersion]:
        return (
            db.query(EntityVersion)
            .filter(
                EntityVersion.entity_type == entity_type,
                EntityVersion.entity_id == entity_id,
            )
            .order_by(EntityVersion.version_number.desc())
            .all()
        )

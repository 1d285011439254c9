"""Change lifecycle service - approve, reject and apply detected changes.

State machine for a Change row::

    pending --approve--> approved --apply ok--> applied
       |                     |
       +--reject--> rejected +--apply failed--> approved (error_message set)

Approval and apply are separate commits: an approved change stays approved
when its directory mutation fails, and the operator can retry ``apply``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from integrations.directory_protocol import TargetDirectory
from integrations.exceptions import DirectoryError
from models import AuditSource, Change, ChangeStatus, ChangeType
from services.audit_service import AuditService
from services.change_store import ChangeStore
from services.reconciliation_service import FIELD_ATTRIBUTE_MAP

logger = logging.getLogger(__name__)

ENTITY_CHANGE = "change"


class ChangeNotFoundError(Exception):
    """No change exists with the given id."""

    pass


class InvalidChangeTransitionError(Exception):
    """The requested transition is not allowed from the change's current status."""

    def __init__(self, change_id: str, current_status: str, action: str):
        self.change_id = change_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} change {change_id}: status is {current_status}"
        )


class ApplyError(Exception):
    """The directory mutation for an approved change failed."""

    pass


@dataclass
class ApplyResult:
    """Outcome of one apply attempt."""

    success: bool
    applied: bool
    message: str
    error: str | None = None


class ChangeLifecycleService:
    """Moves Change rows through their lifecycle and executes approved fixes."""

    def __init__(self, target: TargetDirectory):
        self.target = target

    # --- Queries ---

    @staticmethod
    def get(db: Session, change_id: str) -> Change:
        change = ChangeStore.get_change(db, change_id)
        if change is None:
            raise ChangeNotFoundError(f"Change {change_id} not found")
        return change

    @staticmethod
    def list_changes(
        db: Session,
        status: str | None = None,
        entity_type: str | None = None,
        change_type: str | None = None,
        limit: int | None = 100,
    ) -> list[Change]:
        return ChangeStore.list_changes(
            db, status=status, entity_type=entity_type, change_type=change_type, limit=limit
        )

    @staticmethod
    def get_pending(db: Session) -> list[Change]:
        return ChangeStore.list_changes(db, status=ChangeStatus.PENDING.value, limit=None)

    @staticmethod
    def stats(db: Session) -> dict:
        return ChangeStore.change_stats(db)

    # --- Transitions ---

    def approve(
        self,
        db: Session,
        change_id: str,
        approver: str,
        ip_address: str | None = None,
    ) -> Change:
        """Approve a pending change, then attempt to apply it.

        The approval is committed before the apply runs, so a failed apply
        leaves the change ``approved`` with ``error_message`` set.

        Args:
            db: Database session
            change_id: Change to approve
            approver: Operator recording the decision
            ip_address: Client address for the audit entry

        Returns:
            The refreshed Change, reflecting the apply outcome

        Raises:
            ChangeNotFoundError: If the change doesn't exist
            InvalidChangeTransitionError: If the change is not pending
        """
        change = self.get(db, change_id)
        if change.status != ChangeStatus.PENDING.value:
            raise InvalidChangeTransitionError(change_id, change.status, "approve")

        change.status = ChangeStatus.APPROVED.value
        change.approved_by = approver
        change.approved_at = datetime.now(timezone.utc)
        AuditService.append(
            db,
            action="change_approved",
            entity_type=ENTITY_CHANGE,
            entity_id=change.id,
            changes={
                "change_type": change.change_type,
                "entity_type": change.entity_type,
                "entity_id": change.entity_id,
                "field_name": change.field_name,
            },
            actor=approver,
            source=AuditSource.API,
            ip_address=ip_address,
        )
        db.commit()
        logger.info("Change %s approved by %s", change.id[:8], approver)

        self.apply(db, change_id, actor=approver, ip_address=ip_address)
        db.refresh(change)
        return change

    @staticmethod
    def reject(
        db: Session,
        change_id: str,
        rejecter: str,
        reason: str | None = None,
        ip_address: str | None = None,
    ) -> Change:
        """Reject a pending change. Never touches the target directory.

        Raises:
            ChangeNotFoundError: If the change doesn't exist
            InvalidChangeTransitionError: If the change is not pending
        """
        change = ChangeLifecycleService.get(db, change_id)
        if change.status != ChangeStatus.PENDING.value:
            raise InvalidChangeTransitionError(change_id, change.status, "reject")

        change.status = ChangeStatus.REJECTED.value
        change.approved_by = rejecter
        change.approved_at = datetime.now(timezone.utc)
        details = dict(change.details or {})
        if reason:
            details["rejection_reason"] = reason
        change.details = details

        AuditService.append(
            db,
            action="change_rejected",
            entity_type=ENTITY_CHANGE,
            entity_id=change.id,
            changes={
                "change_type": change.change_type,
                "entity_id": change.entity_id,
                "reason": reason,
            },
            actor=rejecter,
            source=AuditSource.API,
            ip_address=ip_address,
        )
        db.commit()
        logger.info("Change %s rejected by %s", change.id[:8], rejecter)
        return change

    def apply(
        self,
        db: Session,
        change_id: str,
        actor: str | None = None,
        ip_address: str | None = None,
    ) -> ApplyResult:
        """Execute the directory mutation for an approved change.

        May be called again after a failed attempt. Never retries on its own.

        Returns:
            ApplyResult describing the attempt. Directory failures are
            reported here, not raised.

        Raises:
            ChangeNotFoundError: If the change doesn't exist
            InvalidChangeTransitionError: If the change is not approved
        """
        change = self.get(db, change_id)
        if change.status != ChangeStatus.APPROVED.value:
            raise InvalidChangeTransitionError(change_id, change.status, "apply")

        try:
            change_type = ChangeType(change.change_type)
        except ValueError:
            logger.warning(
                "Change %s has unknown change type %r; leaving it untouched",
                change.id[:8], change.change_type,
            )
            AuditService.append(
                db,
                action="change_apply_failed",
                entity_type=ENTITY_CHANGE,
                entity_id=change.id,
                changes={"change_type": change.change_type},
                actor=actor,
                source=AuditSource.API,
                success=False,
                error_message=f"Unknown change type: {change.change_type}",
                ip_address=ip_address,
            )
            db.commit()
            return ApplyResult(
                success=False,
                applied=False,
                message=f"Unknown change type: {change.change_type}",
            )

        try:
            message = self._execute(db, change, change_type, actor)
        except ApplyError as e:
            change.error_message = str(e)
            AuditService.append(
                db,
                action="change_apply_failed",
                entity_type=ENTITY_CHANGE,
                entity_id=change.id,
                changes=self._audit_payload(change),
                actor=actor,
                source=AuditSource.API,
                success=False,
                error_message=str(e),
                ip_address=ip_address,
            )
            db.commit()
            logger.warning("Failed to apply change %s: %s", change.id[:8], e)
            return ApplyResult(success=False, applied=False, message="Apply failed", error=str(e))

        change.status = ChangeStatus.APPLIED.value
        change.applied_at = datetime.now(timezone.utc)
        change.error_message = None
        AuditService.append(
            db,
            action="change_applied",
            entity_type=ENTITY_CHANGE,
            entity_id=change.id,
            changes=self._audit_payload(change),
            actor=actor,
            source=AuditSource.API,
            ip_address=ip_address,
        )
        db.commit()
        logger.info("Change %s applied: %s", change.id[:8], message)
        return ApplyResult(success=True, applied=True, message=message)

    # --- Execution ---

    def _execute(
        self,
        db: Session,
        change: Change,
        change_type: ChangeType,
        actor: str | None,
    ) -> str:
        """Perform the mutation for one change type.

        Returns:
            Human-readable description of what was done

        Raises:
            ApplyError: If the target directory rejects the mutation
        """
        if change_type == ChangeType.INACTIVE_USER:
            return f"Acknowledged inactive user {change.entity_id}"

        # The snapshot is discarded with the savepoint when the mutation fails
        try:
            with db.begin_nested():
                self._snapshot_target(db, change, actor)

                if change_type == ChangeType.FIELD_MISMATCH:
                    attribute = FIELD_ATTRIBUTE_MAP.get(change.field_name or "")
                    if attribute is None:
                        raise ApplyError(f"No target attribute for field {change.field_name!r}")
                    if not change.source_value:
                        raise ApplyError(f"No source value to write for {change.field_name}")
                    self.target.update_user_attribute(change.entity_id, attribute, change.source_value)
                    return f"Updated {attribute} on {change.entity_id}"

                # ChangeType.ORPHAN
                self.target.delete_user(change.entity_id)
                return f"Deleted orphaned user {change.entity_id}"
        except DirectoryError as e:
            raise ApplyError(str(e)) from e

    def _snapshot_target(self, db: Session, change: Change, actor: str | None) -> None:
        """Record the target entry as it was before this change mutates it."""
        current = self.target.get_user(change.entity_id)
        if current is None:
            return
        ChangeStore.record_version(
            db,
            entity_type=change.entity_type,
            entity_id=change.entity_id,
            snapshot=current.to_dict(),
            created_by=actor,
            description=f"Before applying {change.change_type} change {change.id}",
        )

    @staticmethod
    def _audit_payload(change: Change) -> dict:
        return {
            "change_type": change.change_type,
            "entity_type": change.entity_type,
            "entity_id": change.entity_id,
            "field_name": change.field_name,
            "source_value": change.source_value,
            "target_value": change.target_value,
        }

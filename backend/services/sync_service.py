"""Sync service - runs directory sync cycles and owns the sync state.

A cycle pushes the source of truth (identity provider) into the target
directory, then records drift that needs an operator decision:

1. Ensure the target connection (reconnect when the last cycle broke it)
2. Fetch both rosters concurrently
3. Create missing users / update drifted users
4. Delete users absent from the source (when enabled)
5. Reconcile group membership (when enabled)
6. Detect and store pending changes on the rosters from step 2
7. Finalize the cycle record and publish status

Connection and fetch failures are fatal to the cycle. Per-entity mutation
failures, group failures and detection failures are counted and the cycle
continues.
"""

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.orm import Session

from config import Settings, settings as default_settings
from integrations.directory_protocol import (
    SourceDirectory,
    SourceUser,
    TargetDirectory,
    TargetUser,
)
from integrations.exceptions import (
    DirectoryConnectionError,
    DirectoryOperationError,
    UpstreamFetchError,
)
from integrations.ldap_client import USER_OBJECT_CLASSES
from models import AuditSource, SyncHistory
from services.audit_service import AuditService
from services.change_store import ChangeStore, DetectionPersistenceError
from services.event_bus import (
    TOPIC_CHANGES,
    TOPIC_LOGS,
    TOPIC_SYNC_STATUS,
    EventSink,
    NullEventSink,
    log_event,
)
from services.reconciliation_service import (
    FIELD_ATTRIBUTE_MAP,
    ReconciliationEngine,
    expected_target_fields,
    source_display_name,
    source_given_name,
    source_surname,
)

logger = logging.getLogger(__name__)

STATUS_IDLE = "idle"
STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_PARTIAL = "partial"  # cycle record only

ERRORS_KEPT = 10
ERRORS_EXPOSED = 5
HISTORY_KEPT = 50
HISTORY_EXPOSED = 10


class SyncInProgressError(Exception):
    """A sync cycle is already running; the request is rejected, not queued."""

    pass


@dataclass
class SyncState:
    """In-memory state owned by one SyncOrchestrator."""

    status: str = STATUS_IDLE
    last_sync_time: datetime | None = None
    last_sync_duration_ms: int | None = None
    current_cycle: str | None = None
    is_connected: bool = False
    errors: deque = field(default_factory=lambda: deque(maxlen=ERRORS_KEPT))
    history: deque = field(default_factory=lambda: deque(maxlen=HISTORY_KEPT))


@dataclass
class _CycleCounts:
    users_created: int = 0
    users_updated: int = 0
    users_deleted: int = 0
    groups_synced: int = 0
    changes_detected: int = 0
    total_source_users: int | None = None
    total_target_users: int | None = None
    error_details: list[dict[str, Any]] = field(default_factory=list)

    @property
    def errors(self) -> int:
        return len(self.error_details)


def cycle_summary(record: SyncHistory) -> dict[str, Any]:
    """Plain-dict view of a finalized cycle record."""
    return {
        "cycle_id": record.cycle_id,
        "started_at": record.started_at.isoformat() if record.started_at else None,
        "completed_at": record.completed_at.isoformat() if record.completed_at else None,
        "duration_ms": record.duration_ms,
        "status": record.status,
        "users_created": record.users_created,
        "users_updated": record.users_updated,
        "users_deleted": record.users_deleted,
        "groups_synced": record.groups_synced,
        "errors": record.errors,
        "changes_detected": record.changes_detected,
        "total_source_users": record.total_source_users,
        "total_target_users": record.total_target_users,
        "error_details": record.error_details or [],
    }


class SyncOrchestrator:
    """Runs sync cycles one at a time and optionally on a timer."""

    def __init__(
        self,
        source: SourceDirectory,
        target: TargetDirectory,
        session_factory: Callable[[], Session],
        event_sink: EventSink | None = None,
        settings: Settings | None = None,
        engine: ReconciliationEngine | None = None,
    ):
        """Initialize with gateways and collaborators.

        Args:
            source: Source-of-truth directory (read-only)
            target: Target directory receiving mutations
            session_factory: Callable returning a new database session; each
                cycle opens and closes its own
            event_sink: Where status/log/change events go (dropped if None)
            settings: Sync configuration; defaults to the global settings
            engine: Drift detector; a default ReconciliationEngine if None
        """
        self.source = source
        self.target = target
        self._session_factory = session_factory
        self._events = event_sink or NullEventSink()
        self.settings = settings or default_settings
        self._engine = engine or ReconciliationEngine()

        self.state = SyncState()
        self._cycle_lock = threading.Lock()
        self._connection_broken = False
        self._last_cycle_ms = 0

        self._schedule_lock = threading.Lock()
        self._scheduler: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._interval_minutes: int | None = None
        self._disconnect_when_idle = False

    # --- Control surface ---

    @property
    def is_running(self) -> bool:
        """True while a cycle holds the lock."""
        return self._cycle_lock.locked()

    @property
    def is_scheduled(self) -> bool:
        return self._scheduler is not None and self._scheduler.is_alive()

    def get_state(self) -> dict[str, Any]:
        """Snapshot of status, recent errors, recent history and active config."""
        state = self.state
        return {
            "status": state.status,
            "is_running": self.is_running,
            "is_scheduled": self.is_scheduled,
            "last_sync_time": state.last_sync_time.isoformat() if state.last_sync_time else None,
            "last_sync_duration_ms": state.last_sync_duration_ms,
            "current_cycle": state.current_cycle,
            "is_connected": state.is_connected,
            "errors": list(state.errors)[-ERRORS_EXPOSED:],
            "history": list(reversed(state.history))[:HISTORY_EXPOSED],
            "config": {
                "interval_minutes": self._interval_minutes or self.settings.SYNC_INTERVAL_MINUTES,
                "dry_run": self.settings.SYNC_DRY_RUN,
                "sync_groups": self.settings.SYNC_GROUPS,
                "create_users": self.settings.SYNC_CREATE_USERS,
                "update_users": self.settings.SYNC_UPDATE_USERS,
                "delete_users": self.settings.SYNC_DELETE_USERS,
            },
        }

    def trigger_manual_cycle(self) -> SyncHistory:
        """Run one cycle now.

        Raises:
            SyncInProgressError: If a cycle is already running
        """
        logger.info("Manual sync cycle requested")
        return self.run_cycle()

    def start(self, interval_minutes: int | None = None) -> bool:
        """Start the background scheduler. The first cycle runs immediately.

        Returns:
            False if the scheduler was already running, True otherwise

        Raises:
            ValueError: If the interval is not a positive number of minutes
        """
        interval = interval_minutes or self.settings.SYNC_INTERVAL_MINUTES
        if interval < 1:
            raise ValueError(f"Sync interval must be >= 1 minute, got {interval}")

        with self._schedule_lock:
            if self.is_scheduled:
                logger.info("Sync scheduler already running")
                return False
            self._stop_event = threading.Event()
            self._interval_minutes = interval
            self._disconnect_when_idle = False
            self._scheduler = threading.Thread(
                target=self._run_scheduler,
                args=(interval * 60, self._stop_event),
                name="sync-scheduler",
                daemon=True,
            )
            self._scheduler.start()

        self._emit(logging.INFO, "Sync scheduler started (every %d minutes)", interval)
        return True

    def stop(self) -> None:
        """Stop the scheduler. An in-flight cycle runs to completion first."""
        with self._schedule_lock:
            self._stop_event.set()
            self._scheduler = None

        self._disconnect_when_idle = True
        if self.is_running:
            self._emit(logging.INFO, "Sync scheduler stopped; disconnecting after current cycle")
            return

        self._go_idle()
        self._emit(logging.INFO, "Sync scheduler stopped")

    def _go_idle(self) -> None:
        self.target.disconnect()
        self.state.is_connected = False
        self.state.status = STATUS_IDLE
        self._disconnect_when_idle = False
        self._publish_status()

    def _run_scheduler(self, interval_seconds: float, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self.run_cycle()
            except SyncInProgressError:
                logger.info("Scheduled cycle skipped: a cycle is already running")
            except Exception:
                logger.error("Scheduled sync cycle failed", exc_info=True)
            if stop_event.wait(interval_seconds):
                break

    # --- Cycle ---

    def run_cycle(self) -> SyncHistory:
        """Run one full sync cycle.

        Returns:
            The finalized SyncHistory record (detached from its session)

        Raises:
            SyncInProgressError: If a cycle is already running
        """
        acquired = self._cycle_lock.acquire(blocking=False)
        if not acquired:
            logger.warning("Sync blocked: another cycle is already in progress")
            raise SyncInProgressError("Sync already in progress")

        try:
            return self._execute_cycle()
        finally:
            self._cycle_lock.release()
            if self._disconnect_when_idle:
                self._go_idle()

    def _next_cycle_id(self, started: datetime) -> str:
        ms = max(int(started.timestamp() * 1000), self._last_cycle_ms + 1)
        self._last_cycle_ms = ms
        return f"sync-{ms}"

    def _execute_cycle(self) -> SyncHistory:
        started = datetime.now(timezone.utc)
        cycle_id = self._next_cycle_id(started)
        counts = _CycleCounts()
        dry_run = self.settings.SYNC_DRY_RUN

        db = self._session_factory()
        try:
            record = ChangeStore.start_cycle(db, cycle_id, started)
            self.state.status = STATUS_RUNNING
            self.state.current_cycle = cycle_id
            self._publish_status()
            self._emit(
                logging.INFO, "Sync cycle %s started%s",
                cycle_id, " [DRY RUN]" if dry_run else "",
            )

            fatal_error: Exception | None = None
            stage = "connect"
            try:
                self._ensure_connected()

                stage = "fetch"
                source_users, target_users = self._fetch_rosters()
                counts.total_source_users = len(source_users)
                counts.total_target_users = len(target_users)

                stage = "users"
                provisioned = self._sync_users(db, source_users, target_users, counts)

                if self.settings.SYNC_DELETE_USERS:
                    stage = "delete"
                    provisioned -= self._delete_orphans(db, source_users, target_users, counts)

                if self.settings.SYNC_GROUPS:
                    stage = "groups"
                    self._sync_groups(db, provisioned, counts)

                stage = "detection"
                self._detect_changes(db, source_users, target_users, counts)

            except (DirectoryConnectionError, UpstreamFetchError) as e:
                fatal_error = e
                self._emit(logging.ERROR, "Sync cycle %s failed during %s: %s", cycle_id, stage, e)
            except Exception as e:
                fatal_error = e
                logger.error("Unexpected error in sync cycle %s", cycle_id, exc_info=True)
                self._emit(logging.ERROR, "Sync cycle %s failed during %s: %s", cycle_id, stage, e)

            if fatal_error is not None:
                db.rollback()
                self._record_error(counts, stage, None, fatal_error)
                self._mark_connection_broken()

            return self._finalize(db, record, started, counts, fatal_error)

        except Exception:
            self.state.status = STATUS_FAILED
            self.state.current_cycle = None
            raise
        finally:
            db.close()

    def _finalize(
        self,
        db: Session,
        record: SyncHistory,
        started: datetime,
        counts: _CycleCounts,
        fatal_error: Exception | None,
    ) -> SyncHistory:
        completed = datetime.now(timezone.utc)
        duration_ms = int((completed - started).total_seconds() * 1000)
        if fatal_error is not None:
            status = STATUS_FAILED
        elif counts.errors:
            status = STATUS_PARTIAL
        else:
            status = STATUS_SUCCESS

        ChangeStore.finalize_cycle(
            db,
            record,
            completed_at=completed,
            duration_ms=duration_ms,
            status=status,
            users_created=counts.users_created,
            users_updated=counts.users_updated,
            users_deleted=counts.users_deleted,
            groups_synced=counts.groups_synced,
            errors=counts.errors,
            changes_detected=counts.changes_detected,
            total_source_users=counts.total_source_users,
            total_target_users=counts.total_target_users,
            error_details=counts.error_details,
        )
        db.refresh(record)
        db.expunge(record)

        self.state.history.append(cycle_summary(record))
        self.state.status = STATUS_FAILED if fatal_error is not None else STATUS_SUCCESS
        self.state.last_sync_time = completed
        self.state.last_sync_duration_ms = duration_ms
        self.state.current_cycle = None
        self._publish_status(record)

        self._emit(
            logging.INFO if status == STATUS_SUCCESS else logging.WARNING,
            "Sync cycle %s finished: %s (%d created, %d updated, %d deleted, "
            "%d groups, %d new changes, %d errors) in %dms",
            record.cycle_id, status, counts.users_created, counts.users_updated,
            counts.users_deleted, counts.groups_synced, counts.changes_detected,
            counts.errors, duration_ms,
        )
        return record

    # --- Steps ---

    def _ensure_connected(self) -> None:
        """Connect the target, reconnecting if the previous cycle broke it.

        Raises:
            DirectoryConnectionError: If the connection cannot be established
        """
        if self._connection_broken:
            logger.info("Reconnecting to %s after previous failure", self.target.directory_name)
            self.target.disconnect()
        if self._connection_broken or not self.target.is_connected:
            self.target.connect()
        self._connection_broken = False
        self.state.is_connected = True

    def _mark_connection_broken(self) -> None:
        self._connection_broken = True
        self.state.is_connected = False
        self.target.disconnect()

    def _fetch_rosters(self) -> tuple[list[SourceUser], list[TargetUser]]:
        """Fetch the source and target rosters in parallel."""
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="roster") as pool:
            source_future = pool.submit(self.source.list_users)
            target_future = pool.submit(self.target.list_users)
            source_users = source_future.result()
            target_users = target_future.result()
        logger.info(
            "Fetched %d source users and %d target users",
            len(source_users), len(target_users),
        )
        return source_users, target_users

    def _sync_users(
        self,
        db: Session,
        source_users: list[SourceUser],
        target_users: list[TargetUser],
        counts: _CycleCounts,
    ) -> set[str]:
        """Create missing users and update drifted ones.

        Only source users with a credential are provisioned.

        Returns:
            Identifiers expected to exist in the target after this step
        """
        targets = {t.identifier: t for t in target_users}
        provisioned = set(targets)

        for user in source_users:
            if not user.has_credential:
                continue
            entry = targets.get(user.identifier)
            try:
                if entry is None:
                    if self.settings.SYNC_CREATE_USERS:
                        if self._create_user(db, user, counts):
                            provisioned.add(user.identifier)
                elif self.settings.SYNC_UPDATE_USERS:
                    self._update_user(db, user, entry, counts)
            except DirectoryConnectionError:
                raise
            except Exception as e:
                action = "user_created" if entry is None else "user_updated"
                self._entity_failed(db, counts, action, "users", user.identifier, e)

        return provisioned

    def build_user_entry(self, user: SourceUser) -> dict[str, Any]:
        """Target entry for a new user, including mapped optional attributes."""
        domain = self.settings.MAIL_DOMAIN
        entry: dict[str, Any] = {
            "objectClass": USER_OBJECT_CLASSES,
            "uid": user.identifier,
            "cn": source_display_name(user),
            "sn": source_surname(user),
            "givenName": source_given_name(user),
            "mail": user.email or f"{user.identifier}@{domain}",
            "userPassword": f"{{SASL}}{user.identifier}@{domain}",
        }
        for source_attr, target_attr in self.settings.SYNC_ATTRIBUTE_MAPPING.items():
            value = user.attributes.get(source_attr)
            if value is not None and value != "":
                entry[target_attr] = str(value)
        return entry

    def _create_user(self, db: Session, user: SourceUser, counts: _CycleCounts) -> bool:
        entry = self.build_user_entry(user)
        if self.settings.SYNC_DRY_RUN:
            self._emit(logging.INFO, "[DRY RUN] Would create user %s", user.identifier)
            return False

        self.target.create_user(user.identifier, entry)
        counts.users_created += 1
        AuditService.append(
            db,
            action="user_created",
            entity_type="user",
            entity_id=user.identifier,
            changes={k: v for k, v in entry.items() if k not in ("objectClass", "userPassword")},
            source=AuditSource.SYNC,
        )
        db.commit()
        self._emit(logging.INFO, "Created user %s", user.identifier)
        return True

    def _update_user(
        self,
        db: Session,
        user: SourceUser,
        entry: TargetUser,
        counts: _CycleCounts,
    ) -> None:
        expected = expected_target_fields(user)
        actual = {"email": entry.mail, "name": entry.cn, "sn": entry.sn}
        updates = {
            field_name: value
            for field_name, value in expected.items()
            if value and value != actual[field_name]
        }
        if not updates:
            return

        if self.settings.SYNC_DRY_RUN:
            self._emit(
                logging.INFO, "[DRY RUN] Would update user %s: %s",
                user.identifier, ", ".join(sorted(updates)),
            )
            return

        for field_name, value in updates.items():
            self.target.update_user_attribute(user.identifier, FIELD_ATTRIBUTE_MAP[field_name], value)
        counts.users_updated += 1
        AuditService.append(
            db,
            action="user_updated",
            entity_type="user",
            entity_id=user.identifier,
            changes={
                field_name: {"old": actual[field_name], "new": value}
                for field_name, value in updates.items()
            },
            source=AuditSource.SYNC,
        )
        db.commit()
        self._emit(logging.INFO, "Updated user %s (%s)", user.identifier, ", ".join(sorted(updates)))

    def _delete_orphans(
        self,
        db: Session,
        source_users: list[SourceUser],
        target_users: list[TargetUser],
        counts: _CycleCounts,
    ) -> set[str]:
        """Delete target users absent from the source.

        Returns:
            Identifiers actually deleted
        """
        source_ids = {u.identifier for u in source_users}
        deleted = set()
        for entry in target_users:
            if entry.identifier in source_ids:
                continue
            if self.settings.SYNC_DRY_RUN:
                self._emit(logging.INFO, "[DRY RUN] Would delete user %s", entry.identifier)
                continue
            try:
                self.target.delete_user(entry.identifier)
                counts.users_deleted += 1
                deleted.add(entry.identifier)
                AuditService.append(
                    db,
                    action="user_deleted",
                    entity_type="user",
                    entity_id=entry.identifier,
                    changes={"before": entry.to_dict()},
                    source=AuditSource.SYNC,
                )
                db.commit()
                self._emit(logging.INFO, "Deleted user %s", entry.identifier)
            except DirectoryConnectionError:
                raise
            except Exception as e:
                self._entity_failed(db, counts, "user_deleted", "delete", entry.identifier, e)
        return deleted

    def _sync_groups(self, db: Session, provisioned: set[str], counts: _CycleCounts) -> None:
        """Mirror source group membership into the target.

        Failures are logged and counted; they never fail the cycle.
        """
        try:
            source_groups = self.source.list_groups()
            target_groups = {g.name: g for g in self.target.list_groups()}
        except Exception as e:
            self._record_error(counts, "groups", None, e)
            self._emit(logging.WARNING, "Group sync skipped: %s", e)
            if isinstance(e, DirectoryConnectionError):
                self._mark_connection_broken()
            return

        placeholder = f"uid=placeholder,{self.settings.LDAP_USER_BASE_DN}"
        for group in source_groups:
            try:
                identifiers = self.source.list_group_members(group.id)
                members = sorted(
                    self.target.user_dn(i) for i in identifiers if i in provisioned
                )
                if not members:
                    members = [placeholder]

                existing = target_groups.get(group.name)
                if existing is not None and sorted(existing.members) == members:
                    continue

                if self.settings.SYNC_DRY_RUN:
                    self._emit(
                        logging.INFO, "[DRY RUN] Would sync group %s (%d members)",
                        group.name, len(members),
                    )
                    continue

                if existing is not None:
                    self.target.replace_group_members(group.name, members)
                else:
                    self._create_or_replace_group(group.name, members)

                counts.groups_synced += 1
                AuditService.append(
                    db,
                    action="group_synced",
                    entity_type="group",
                    entity_id=group.name,
                    changes={"members": members},
                    source=AuditSource.SYNC,
                )
                db.commit()
                logger.info("Synced group %s (%d members)", group.name, len(members))
            except DirectoryConnectionError as e:
                self._record_error(counts, "groups", group.name, e)
                self._emit(logging.WARNING, "Group sync aborted: %s", e)
                self._mark_connection_broken()
                return
            except Exception as e:
                self._entity_failed(db, counts, "group_synced", "groups", group.name, e)

    def _create_or_replace_group(self, name: str, members: list[str]) -> None:
        try:
            self.target.create_group(name, members)
        except DirectoryOperationError as e:
            if not e.entry_already_exists:
                raise
            logger.info("Group %s already exists; replacing members", name)
            self.target.replace_group_members(name, members)

    def _detect_changes(
        self,
        db: Session,
        source_users: list[SourceUser],
        target_users: list[TargetUser],
        counts: _CycleCounts,
    ) -> None:
        result = self._engine.detect(source_users, target_users)
        for error in result.errors:
            self._record_error(counts, "detection", error.detector, error.message)

        try:
            upsert = ChangeStore.upsert_changes(db, result.candidates)
        except DetectionPersistenceError as e:
            self._record_error(counts, "detection", None, e)
            self._emit(logging.ERROR, "Storing detected changes failed: %s", e)
            return

        counts.changes_detected = upsert.inserted
        summary = result.summary()
        summary.update({"new": upsert.inserted, "refreshed": upsert.refreshed})
        self._publish(TOPIC_CHANGES, {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "summary": summary,
            "new_change_ids": upsert.inserted_ids,
        })
        if upsert.inserted:
            self._emit(logging.INFO, "Detected %d new changes", upsert.inserted, **summary)

    # --- Errors and events ---

    def _entity_failed(
        self,
        db: Session,
        counts: _CycleCounts,
        action: str,
        stage: str,
        entity_id: str,
        error: Exception,
    ) -> None:
        """Record a non-fatal per-entity failure and its audit entry."""
        db.rollback()
        self._record_error(counts, stage, entity_id, error)
        self._emit(logging.WARNING, "Failed %s for %s: %s", action, entity_id, error)
        AuditService.append(
            db,
            action=action,
            entity_type="group" if stage == "groups" else "user",
            entity_id=entity_id,
            source=AuditSource.SYNC,
            success=False,
            error_message=str(error),
        )
        db.commit()

    def _record_error(
        self,
        counts: _CycleCounts,
        stage: str,
        entity_id: str | None,
        error: Exception | str,
    ) -> None:
        detail = {"stage": stage, "entity_id": entity_id, "error": str(error)}
        counts.error_details.append(detail)
        self.state.errors.append(
            {"timestamp": datetime.now(timezone.utc).isoformat(), **detail}
        )

    def _publish(self, topic: str, event: dict[str, Any]) -> None:
        try:
            self._events.publish(topic, event)
        except Exception:
            logger.warning("Failed to publish %s event", topic, exc_info=True)

    def _publish_status(self, record: SyncHistory | None = None) -> None:
        event = {
            "status": self.state.status,
            "current_cycle": self.state.current_cycle,
            "is_connected": self.state.is_connected,
        }
        if record is not None:
            event["cycle"] = cycle_summary(record)
        self._publish(TOPIC_SYNC_STATUS, event)

    def _emit(self, level: int, message: str, *args: Any, **context: Any) -> None:
        """Log a line and mirror it to the ``logs`` topic."""
        logger.log(level, message, *args)
        text = message % args if args else message
        self._publish(TOPIC_LOGS, log_event(logging.getLevelName(level).lower(), text, context))


_orchestrator: SyncOrchestrator | None = None
_orchestrator_lock = threading.Lock()


def get_sync_orchestrator() -> SyncOrchestrator:
    """Return the process-wide orchestrator, creating it on first use."""
    global _orchestrator
    with _orchestrator_lock:
        if _orchestrator is None:
            from database import get_session_local
            from integrations.directory_registry import get_directory_registry
            from services.event_bus import get_event_bus

            registry = get_directory_registry()
            _orchestrator = SyncOrchestrator(
                source=registry.source,
                target=registry.target,
                session_factory=get_session_local(),
                event_sink=get_event_bus(),
            )
        return _orchestrator

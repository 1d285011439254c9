"""SQLAlchemy ORM models."""

from .audit_log import AuditLogEntry, AuditSource
from .change import Change, ChangeStatus, ChangeType
from .entity_version import EntityVersion
from .sync_history import SyncHistory
from .utils import generate_uuid

__all__ = ["AuditLogEntry", "AuditSource", "Change", "ChangeStatus", "ChangeType", "EntityVersion", "SyncHistory", "generate_uuid"]

"""EntityVersion model - point-in-time snapshot of a directory entry."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text

from database import Base
from models.utils import generate_uuid


class EntityVersion(Base):
    """Snapshot of a target entry taken before an approved change mutates it."""

    __tablename__ = "versions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(255), nullable=False)
    version_number = Column(Integer, nullable=False)
    snapshot_data = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    created_by = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_versions_entity", "entity_type", "entity_id"),
        Index("idx_versions_created", created_at.desc()),
        Index("idx_versions_unique", "entity_type", "entity_id", "version_number", unique=True),
    )

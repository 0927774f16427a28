from sqlalchemy import (
    Column, String, Integer, DateTime, Boolean, Enum, Index, ForeignKey, UniqueConstraint, Uuid
)
from datetime import datetime, timedelta
from typing import Optional
import uuid
from core.timeutils import utcnow
from models.base import Base, JSONType, PipelineStatus, ConnectorKind, ConnectorStatus


class Pipeline(Base):
    """
    User-facing pairing of one source and one sink connector.

    Soft delete:
    - deleted_at marks the pipeline as deleted without touching status
    - the pipeline stays restorable until deleted_at + backup_retention_hours
    - after that window the retention sweep purges it with all dependent rows
    """
    __tablename__ = "pipelines"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, unique=True, index=True)

    # Source / sink description
    source_type = Column(String(50), nullable=False)
    source_config = Column(JSONType, nullable=False, default=dict)
    sink_type = Column(String(50), nullable=False)
    sink_config = Column(JSONType, nullable=False, default=dict)

    # Scheduling
    mode = Column(String(50), nullable=False, default="cdc")
    schedule_config = Column(JSONType, nullable=True)

    status = Column(Enum(PipelineStatus), nullable=False, default=PipelineStatus.DRAFT, index=True)

    # Log (WAL) monitoring
    enable_log_monitoring = Column(Boolean, nullable=False, default=False)
    max_wal_size_mb = Column(Integer, nullable=False, default=1024)
    alert_threshold_percent = Column(Integer, nullable=False, default=80)
    wal_check_interval_seconds = Column(Integer, nullable=False, default=60)

    # Soft delete / restore
    deleted_at = Column(DateTime, nullable=True, index=True)
    backup_retention_hours = Column(Integer, nullable=True)
    restore_count = Column(Integer, nullable=False, default=0)

    last_deployed_at = Column(DateTime, nullable=True)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def purge_after(self, default_retention_hours: int = 24) -> Optional[datetime]:
        """Instant from which the pipeline may be permanently purged."""
        if self.deleted_at is None:
            return None
        hours = self.backup_retention_hours or default_retention_hours
        return self.deleted_at + timedelta(hours=hours)


class PipelineConnector(Base):
    """
    Engine-side connector owned by a pipeline.

    Invariant: has_pending_changes is true iff pending_config is set and
    differs from the deployed config.
    """
    __tablename__ = "pipeline_connectors"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    pipeline_id = Column(Uuid, ForeignKey("pipelines.id"), nullable=False, index=True)

    name = Column(String(255), nullable=False, index=True)  # Name on the engine
    type = Column(Enum(ConnectorKind), nullable=False)
    connector_class = Column(String(255), nullable=True)
    registry_connector = Column(String(255), nullable=True, index=True)  # ConnectorDefinition.name

    config = Column(JSONType, nullable=True)  # Deployed config
    pending_config = Column(JSONType, nullable=True)
    has_pending_changes = Column(Boolean, nullable=False, default=False)

    status = Column(Enum(ConnectorStatus), nullable=True)
    last_deployed_version = Column(Integer, nullable=True)
    last_deployed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("pipeline_id", "type", name="uq_pipeline_connector_type"),
        Index("idx_pipeline_connector_registry", "registry_connector"),
    )

    def stage_pending(self, pending_config: Optional[dict]) -> None:
        """Stage an undeployed edit, keeping has_pending_changes consistent."""
        if pending_config is None or pending_config == (self.config or {}):
            self.pending_config = None
            self.has_pending_changes = False
        else:
            self.pending_config = pending_config
            self.has_pending_changes = True

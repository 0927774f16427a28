from sqlalchemy import (
    Column, String, Integer, DateTime, Text, Boolean, Enum, Index, ForeignKey, Uuid, text
)
import uuid
from core.timeutils import utcnow
from models.base import Base, BigIntPK, JSONType, AlertType, AlertSeverity


class AlertEvent(Base):
    """
    Alert raised by the monitoring loop.

    Design:
    - dedup key is (pipeline_id, alert_type); at most one unresolved row per key
    - a persisting condition refreshes message/metadata of the open row
    - the loop resolves the row the first cycle the condition is clear
    """
    __tablename__ = "alert_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    pipeline_id = Column(Uuid, ForeignKey("pipelines.id"), nullable=False, index=True)
    alert_type = Column(Enum(AlertType), nullable=False)
    severity = Column(Enum(AlertSeverity), nullable=False, default=AlertSeverity.WARNING)
    message = Column(Text, nullable=False)
    alert_metadata = Column("metadata", JSONType, nullable=True)

    resolved = Column(Boolean, nullable=False, default=False)
    resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        # At most one unresolved alert per (pipeline, type)
        Index(
            "uq_alert_open",
            "pipeline_id",
            "alert_type",
            unique=True,
            postgresql_where=text("resolved = false"),
            sqlite_where=text("resolved = 0"),
        ),
    )


class AlertPreference(Base):
    __tablename__ = "alert_preferences"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    pipeline_id = Column(Uuid, ForeignKey("pipelines.id"), nullable=False, index=True)
    alert_type = Column(Enum(AlertType), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)


class AlertRecipient(Base):
    __tablename__ = "alert_recipients"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    pipeline_id = Column(Uuid, ForeignKey("pipelines.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False)


class MonitoringSettings(Base):
    """
    Global monitoring thresholds.

    Read-mostly; the latest row by updated_at wins. The monitoring loop
    re-reads it at the top of every cycle.
    """
    __tablename__ = "monitoring_settings"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    lag_ms = Column(Integer, nullable=False, default=5000)
    throughput_drop_percent = Column(Integer, nullable=False, default=50)
    error_rate_percent = Column(Integer, nullable=False, default=1)
    dlq_count = Column(Integer, nullable=False, default=0)
    check_interval_ms = Column(Integer, nullable=False, default=60000)
    pause_duration_seconds = Column(Integer, nullable=False, default=5)
    backup_retention_hours = Column(Integer, nullable=False, default=24)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class NotificationChannel(Base):
    """Delivery endpoint for alert transitions (e.g. a Slack webhook)"""
    __tablename__ = "notification_channels"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    channel_type = Column(String(50), nullable=False, default="webhook")
    webhook_url = Column(String(2048), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class PipelineNotificationChannel(Base):
    __tablename__ = "pipeline_notification_channels"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    pipeline_id = Column(Uuid, ForeignKey("pipelines.id"), nullable=False, index=True)
    channel_id = Column(Uuid, ForeignKey("notification_channels.id"), nullable=False)

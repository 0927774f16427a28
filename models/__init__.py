"""
SQLAlchemy ORM models for database tables.

This package defines the metadata store of the control plane:

Models:
    base: Base declarative class, portable column types and shared enums
    registry: Connector definitions, append-only config versions, deployments
    pipeline: Pipelines and the two engine connectors each one owns
    pipeline_artifacts: Dependent records purged with a pipeline by the retention sweep
    alert: Alert events, monitoring thresholds, notification channels

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and plain JSON elsewhere, so the same metadata can
    be created on SQLite for tests.

Usage:
    from models import Pipeline, PipelineConnector, ConnectorVersion
    from models.base import PipelineStatus, AlertType

Example:
    pipeline = Pipeline(
        name="orders",
        source_type="postgresql",
        sink_type="postgresql",
    )
    session.add(pipeline)
    await session.commit()

Relationships:
    - ConnectorDefinition → ConnectorVersion (one-to-many, one active)
    - ConnectorVersion → Deployment (one-to-many)
    - Pipeline → PipelineConnector (exactly one source, one sink)
    - Pipeline → AlertEvent (at most one unresolved per alert type)
"""

from models.base import (
    Base,
    ConnectorKind,
    DeploymentStatus,
    PipelineStatus,
    ConnectorStatus,
    AlertType,
    AlertSeverity,
)
from models.registry import ConnectorDefinition, ConnectorVersion, Deployment
from models.pipeline import Pipeline, PipelineConnector
from models.pipeline_artifacts import (
    PipelineTableObject,
    PipelineTask,
    PipelineRestoreStaging,
    PipelineObject,
    PipelineLog,
    PipelineProgressEvent,
    MappingConfig,
    JobRun,
    PrecheckResult,
)
from models.alert import (
    AlertEvent,
    AlertPreference,
    AlertRecipient,
    MonitoringSettings,
    NotificationChannel,
    PipelineNotificationChannel,
)

__all__ = [
    "Base",
    "ConnectorKind",
    "DeploymentStatus",
    "PipelineStatus",
    "ConnectorStatus",
    "AlertType",
    "AlertSeverity",
    "ConnectorDefinition",
    "ConnectorVersion",
    "Deployment",
    "Pipeline",
    "PipelineConnector",
    "PipelineTableObject",
    "PipelineTask",
    "PipelineRestoreStaging",
    "PipelineObject",
    "PipelineLog",
    "PipelineProgressEvent",
    "MappingConfig",
    "JobRun",
    "PrecheckResult",
    "AlertEvent",
    "AlertPreference",
    "AlertRecipient",
    "MonitoringSettings",
    "NotificationChannel",
    "PipelineNotificationChannel",
]

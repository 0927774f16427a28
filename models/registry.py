from sqlalchemy import (
    Column, String, Integer, DateTime, Text, Boolean, Enum, Index, ForeignKey, UniqueConstraint, Uuid
)
import uuid
from core.timeutils import utcnow
from models.base import Base, JSONType, ConnectorKind, DeploymentStatus


class ConnectorDefinition(Base):
    """
    Logical connector identity in the configuration registry.

    One row per named source or sink connector. The name, kind and class
    never change after creation; configuration lives in ConnectorVersion.
    """
    __tablename__ = "connectors"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, unique=True, index=True)
    kind = Column(Enum(ConnectorKind), nullable=False)
    connector_class = Column("class", String(255), nullable=False)
    owner_id = Column(String(255), nullable=True)
    extra_metadata = Column("metadata", JSONType, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class ConnectorVersion(Base):
    """
    Append-only configuration version of a connector.

    Design:
    - version is allocated as max(version) + 1 per connector
    - checksum is the SHA-256 of the canonical (key-sorted) config
    - at most one row per connector has is_active = true
    """
    __tablename__ = "connector_versions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    connector_id = Column(Uuid, ForeignKey("connectors.id", ondelete="CASCADE"), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    config = Column(JSONType, nullable=False)
    schema_version = Column(String(50), nullable=False, default="v1")
    checksum = Column(String(64), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=False)
    policy_warnings = Column(JSONType, nullable=False, default=list)

    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("connector_id", "version", name="uq_connector_version"),
        Index("idx_connector_versions_active", "connector_id", "is_active"),
    )


class Deployment(Base):
    """One attempt to push a connector version to an engine."""
    __tablename__ = "deployments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    connector_version_id = Column(
        Uuid, ForeignKey("connector_versions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    environment = Column(String(100), nullable=False)
    connect_cluster_url = Column(String(2048), nullable=False)
    status = Column(Enum(DeploymentStatus), nullable=False, default=DeploymentStatus.PENDING)
    status_msg = Column(Text, nullable=True)
    deployed_at = Column(DateTime, nullable=True)

    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "connector_version_id", "environment", "connect_cluster_url", name="uq_deployment_target"
        ),
    )

"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import ConnectorKind, ConnectorStatus, DeploymentStatus, PipelineStatus
from uuid import UUID


# ============================================================================
# Pipeline Schemas
# ============================================================================

class PipelineCreate(BaseModel):
    """Request body for creating a draft pipeline"""
    name: str = Field(..., min_length=1, max_length=255, description="Unique pipeline name")
    source_type: str = Field(..., description="Source system, e.g. postgresql, mysql")
    sink_type: str = Field(..., description="Sink system, e.g. jdbc, snowflake")
    source_config: Dict[str, Any] = Field(default_factory=dict)
    sink_config: Dict[str, Any] = Field(default_factory=dict)
    mode: str = Field(default="cdc", description="cdc or full_load_cdc")
    schedule_config: Optional[Dict[str, Any]] = None
    source_registry_connector: Optional[str] = Field(None, description="Registry connector bound to the source")
    sink_registry_connector: Optional[str] = Field(None, description="Registry connector bound to the sink")
    enable_log_monitoring: bool = False
    max_wal_size_mb: int = Field(default=1024, gt=0)
    alert_threshold_percent: int = Field(default=80, gt=0, le=100)
    wal_check_interval_seconds: int = Field(default=60, gt=0)
    created_by: Optional[str] = None

    @validator("name")
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()

    class Config:
        json_schema_extra = {
            "example": {
                "name": "orders-to-warehouse",
                "source_type": "postgresql",
                "sink_type": "jdbc",
                "source_registry_connector": "orders-pg-source",
                "sink_registry_connector": "orders-jdbc-sink",
                "enable_log_monitoring": True
            }
        }


class TransitionRequest(BaseModel):
    status: PipelineStatus


class PipelineConnectorResponse(BaseModel):
    id: UUID
    name: str
    type: ConnectorKind
    connector_class: Optional[str]
    registry_connector: Optional[str]
    status: Optional[ConnectorStatus]
    has_pending_changes: bool
    pending_config: Optional[Dict[str, Any]] = None
    last_deployed_version: Optional[int]
    last_deployed_at: Optional[datetime]

    class Config:
        from_attributes = True
        use_enum_values = True


class PipelineResponse(BaseModel):
    """Pipeline as returned by the API"""
    id: UUID
    name: str
    source_type: str
    sink_type: str
    mode: str
    schedule_config: Optional[Dict[str, Any]]
    status: PipelineStatus
    enable_log_monitoring: bool
    max_wal_size_mb: int
    alert_threshold_percent: int
    wal_check_interval_seconds: int
    deleted_at: Optional[datetime]
    backup_retention_hours: Optional[int]
    restore_count: int
    last_deployed_at: Optional[datetime]
    created_by: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
        use_enum_values = True


# ============================================================================
# Registry Schemas
# ============================================================================

class VersionCreate(BaseModel):
    """Request body for POST /registry/connectors/{name}/versions"""
    kind: ConnectorKind
    connector_class: str = Field(..., min_length=1)
    config: Dict[str, Any]
    created_by: Optional[str] = None
    owner_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    schema_version: str = "v1"

    class Config:
        json_schema_extra = {
            "example": {
                "kind": "source",
                "connector_class": "io.debezium.connector.postgresql.PostgresConnector",
                "config": {
                    "database.hostname": "postgres",
                    "database.port": "5432",
                    "database.dbname": "shop",
                    "table.include.list": "public.orders",
                    "tasks.max": "1"
                },
                "created_by": "ops@example.com"
            }
        }


class ConnectorDefinitionResponse(BaseModel):
    id: UUID
    name: str
    kind: ConnectorKind
    connector_class: str
    owner_id: Optional[str]
    extra_metadata: Optional[Dict[str, Any]] = Field(None, serialization_alias="metadata")
    created_at: datetime

    class Config:
        from_attributes = True
        use_enum_values = True


class ConnectorVersionResponse(BaseModel):
    id: UUID
    version: int
    config: Dict[str, Any]
    schema_version: str
    checksum: str
    is_active: bool
    policy_warnings: List[str] = Field(default_factory=list)
    created_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class DeploymentCreate(BaseModel):
    """Request body for POST /registry/deployments"""
    connector_name: str
    version: int = Field(..., ge=1)
    environment: Optional[str] = None
    connect_url: Optional[str] = None
    created_by: Optional[str] = None


class DeploymentResponse(BaseModel):
    id: UUID
    connector_version_id: UUID
    environment: str
    connect_cluster_url: str
    status: DeploymentStatus
    status_msg: Optional[str]
    deployed_at: Optional[datetime]
    created_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True
        use_enum_values = True


# ============================================================================
# Operations Schemas
# ============================================================================

class CleanupRequest(BaseModel):
    """Request body for POST /pipeline-cleanup"""
    dry_run: bool = False


class RestartRequest(BaseModel):
    include_tasks: bool = False
    only_failed: bool = False


class ThresholdsUpdate(BaseModel):
    """Partial update of the global monitoring thresholds"""
    lag_ms: Optional[int] = Field(None, ge=0)
    throughput_drop_percent: Optional[int] = Field(None, ge=0)
    error_rate_percent: Optional[int] = Field(None, ge=0)
    dlq_count: Optional[int] = Field(None, ge=0)
    check_interval_ms: Optional[int] = Field(None, gt=0)
    pause_duration_seconds: Optional[int] = Field(None, ge=0)
    backup_retention_hours: Optional[int] = Field(None, gt=0)

    class Config:
        extra = "forbid"


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    success: bool = False
    error: str

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "Pipeline 6f1c0b9e-2d1f-4c55-9a7e-2f0f5d1a9c10 not found"
            }
        }

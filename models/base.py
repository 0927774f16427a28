from sqlalchemy import JSON, BigInteger, Integer
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


# ============================================================================
# ENUMS
# ============================================================================

class ConnectorKind(str, enum.Enum):
    """Connector direction"""
    SOURCE = "source"
    SINK = "sink"


class DeploymentStatus(str, enum.Enum):
    """Status of one attempt to push a connector version live"""
    PENDING = "pending"
    DEPLOYED = "deployed"
    PAUSED = "paused"
    ERROR = "error"


class PipelineStatus(str, enum.Enum):
    """Pipeline lifecycle status"""
    DRAFT = "draft"
    READY = "ready"
    RUNNING = "running"
    PAUSED = "paused"
    IDLE = "idle"
    SEEDING = "seeding"
    INCREMENTAL = "incremental"
    ERROR = "error"
    DELETED = "deleted"


class ConnectorStatus(str, enum.Enum):
    """Last known state of a pipeline connector"""
    RUNNING = "running"
    PAUSED = "paused"
    FAILED = "failed"


class AlertType(str, enum.Enum):
    """Alert conditions evaluated by the monitoring loop"""
    CONNECTOR_FAILED = "CONNECTOR_FAILED"
    CONNECTOR_PAUSED = "CONNECTOR_PAUSED"
    TASK_FAILED = "TASK_FAILED"
    HIGH_LAG = "HIGH_LAG"
    THROUGHPUT_DROP = "THROUGHPUT_DROP"
    ERROR_RATE = "ERROR_RATE"
    DLQ_COUNT = "DLQ_COUNT"
    WAL_SIZE = "WAL_SIZE"


class AlertSeverity(str, enum.Enum):
    """Alert severity"""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

"""
Records that hang off a pipeline and are removed together with it by the
retention sweep. They are written by collaborators outside this service
(wizard, snapshot workers, precheck runner); only their pipeline linkage
matters here.
"""

from sqlalchemy import Column, String, Integer, DateTime, Text, Boolean, ForeignKey, Uuid
from core.timeutils import utcnow
from models.base import Base, BigIntPK, JSONType


class PipelineTableObject(Base):
    """Table selected for replication in a pipeline"""
    __tablename__ = "pipeline_table_objects"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    pipeline_id = Column(Uuid, ForeignKey("pipelines.id"), nullable=False, index=True)
    schema_name = Column(String(255), nullable=True)
    table_name = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class PipelineTask(Base):
    """Per-table snapshot/stream task"""
    __tablename__ = "pipeline_tasks"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    table_object_id = Column(BigIntPK, ForeignKey("pipeline_table_objects.id"), nullable=False, index=True)
    status = Column(String(50), nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False, default=utcnow)


class PipelineRestoreStaging(Base):
    """Registry version staged for a connector while restoring a pipeline"""
    __tablename__ = "pipeline_restore_staging"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    pipeline_id = Column(Uuid, ForeignKey("pipelines.id"), nullable=False, index=True)
    connector_id = Column(Uuid, ForeignKey("pipeline_connectors.id"), nullable=False)
    registry_name = Column(String(255), nullable=False)
    version = Column(Integer, nullable=False)
    checksum = Column(String(64), nullable=True)
    staged_config = Column(JSONType, nullable=False)
    diff = Column(JSONType, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class PipelineObject(Base):
    __tablename__ = "pipeline_objects"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    pipeline_id = Column(Uuid, ForeignKey("pipelines.id"), nullable=False, index=True)
    object_name = Column(String(255), nullable=False)
    object_type = Column(String(50), nullable=True)


class PipelineLog(Base):
    __tablename__ = "pipeline_logs"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    pipeline_id = Column(Uuid, ForeignKey("pipelines.id"), nullable=False, index=True)
    level = Column(String(20), nullable=False, default="info")
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class PipelineProgressEvent(Base):
    __tablename__ = "pipeline_progress_events"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    pipeline_id = Column(Uuid, ForeignKey("pipelines.id"), nullable=False, index=True)
    phase = Column(String(50), nullable=False)
    payload = Column(JSONType, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class MappingConfig(Base):
    __tablename__ = "mapping_configs"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    pipeline_id = Column(Uuid, ForeignKey("pipelines.id"), nullable=False, index=True)
    config = Column(JSONType, nullable=False)


class JobRun(Base):
    __tablename__ = "job_runs"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    pipeline_id = Column(Uuid, ForeignKey("pipelines.id"), nullable=False, index=True)
    status = Column(String(50), nullable=False)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)


class PrecheckResult(Base):
    __tablename__ = "precheck_results"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    pipeline_id = Column(Uuid, ForeignKey("pipelines.id"), nullable=False, index=True)
    check_name = Column(String(100), nullable=False)
    passed = Column(Boolean, nullable=False)
    details = Column(JSONType, nullable=True)

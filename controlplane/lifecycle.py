"""
Pipeline lifecycle: creation, the status state machine, soft delete,
restore and the retention sweep.

State machine:
    draft → ready → running ⇄ paused
    running → seeding / incremental / idle (sub-phases of a live pipeline)
    any live state → error; error is left by redeploying
    any state → soft-deleted (deleted_at set, status kept) → draft via restore

Soft-deleted pipelines are restorable while now < deleted_at + retention.
Past that instant the sweep purges them with every dependent row. Restore and
purge both re-check the row immediately before writing, so whichever commits
first wins and the other fails cleanly.
"""

from sqlalchemy import select, update, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
from typing import Any, Dict, List, Optional
import time
from core.config import settings
from core.database import commit_or_raise
from core.exceptions import ValidationError, NotFoundError, ConflictError
from core.timeutils import utcnow
from models.base import PipelineStatus, ConnectorKind
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
from models.alert import AlertEvent, AlertPreference, AlertRecipient, PipelineNotificationChannel
from models.registry import ConnectorDefinition
from controlplane.monitoring.thresholds import get_monitoring_settings
import logging

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    PipelineStatus.DRAFT: {PipelineStatus.READY},
    PipelineStatus.READY: {PipelineStatus.DRAFT, PipelineStatus.RUNNING},
    PipelineStatus.RUNNING: {
        PipelineStatus.PAUSED, PipelineStatus.SEEDING, PipelineStatus.INCREMENTAL, PipelineStatus.IDLE
    },
    PipelineStatus.SEEDING: {PipelineStatus.INCREMENTAL, PipelineStatus.RUNNING, PipelineStatus.PAUSED},
    PipelineStatus.INCREMENTAL: {PipelineStatus.SEEDING, PipelineStatus.RUNNING, PipelineStatus.PAUSED},
    PipelineStatus.IDLE: {PipelineStatus.RUNNING, PipelineStatus.PAUSED},
    PipelineStatus.PAUSED: {PipelineStatus.RUNNING},
    PipelineStatus.ERROR: {PipelineStatus.READY, PipelineStatus.RUNNING},
    PipelineStatus.DELETED: set(),
}

# Purge order; children before parents
DEPENDENT_TABLES = [
    ("pipeline_table_objects", PipelineTableObject),
    ("pipeline_restore_staging", PipelineRestoreStaging),
    ("pipeline_connectors", PipelineConnector),
    ("pipeline_objects", PipelineObject),
    ("pipeline_logs", PipelineLog),
    ("pipeline_progress_events", PipelineProgressEvent),
    ("pipeline_notification_channels", PipelineNotificationChannel),
    ("alert_events", AlertEvent),
    ("alert_preferences", AlertPreference),
    ("alert_recipients", AlertRecipient),
    ("mapping_configs", MappingConfig),
    ("job_runs", JobRun),
    ("precheck_results", PrecheckResult),
]


def can_transition(current: PipelineStatus, target: PipelineStatus) -> bool:
    if target == PipelineStatus.ERROR:
        return current != PipelineStatus.DELETED
    return target in ALLOWED_TRANSITIONS.get(current, set())


class PipelineLifecycle:
    """Pipeline state operations bound to one database session."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    # ========================================================================
    # Lookups
    # ========================================================================

    async def get_pipeline(self, pipeline_id, include_deleted: bool = True) -> Pipeline:
        pipeline = await self.db.get(Pipeline, pipeline_id)
        if pipeline is None or (not include_deleted and pipeline.deleted_at is not None):
            raise NotFoundError(
                f"Pipeline {pipeline_id} not found",
                context={"resource": "pipeline", "identifier": str(pipeline_id)}
            )
        return pipeline

    async def list_pipelines(self, include_deleted: bool = False) -> List[Pipeline]:
        query = select(Pipeline).order_by(Pipeline.created_at.desc())
        if not include_deleted:
            query = query.where(Pipeline.deleted_at.is_(None))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_connectors(self, pipeline_id) -> Dict[ConnectorKind, PipelineConnector]:
        result = await self.db.execute(
            select(PipelineConnector).where(PipelineConnector.pipeline_id == pipeline_id)
        )
        return {connector.type: connector for connector in result.scalars().all()}

    # ========================================================================
    # Creation and transitions
    # ========================================================================

    async def _connector_class(self, registry_name: Optional[str], config: Dict[str, Any]) -> Optional[str]:
        if registry_name:
            definition = await self.db.scalar(
                select(ConnectorDefinition).where(ConnectorDefinition.name == registry_name)
            )
            if definition is not None:
                return definition.connector_class
        return config.get("connector.class") or config.get("connector_class")

    async def create_pipeline(
        self,
        name: str,
        source_type: str,
        sink_type: str,
        source_config: Optional[Dict[str, Any]] = None,
        sink_config: Optional[Dict[str, Any]] = None,
        mode: str = "cdc",
        schedule_config: Optional[Dict[str, Any]] = None,
        source_registry_connector: Optional[str] = None,
        sink_registry_connector: Optional[str] = None,
        created_by: Optional[str] = None,
        **options
    ) -> Pipeline:
        """
        Create a draft pipeline with its source and sink connector rows.

        Connector names on the engine are '<pipeline>-source' and
        '<pipeline>-sink'. Each row is bound to a registry connector when one
        is given explicitly or referenced by config['registry_connector'].
        """
        if not name or not name.strip():
            raise ValidationError("Pipeline name is required", context={"field_name": "name"})

        existing = await self.db.scalar(select(Pipeline.id).where(Pipeline.name == name))
        if existing is not None:
            raise ConflictError(f"Pipeline {name} already exists", context={"pipeline": name})

        source_config = source_config or {}
        sink_config = sink_config or {}
        pipeline = Pipeline(
            name=name,
            source_type=source_type,
            source_config=source_config,
            sink_type=sink_type,
            sink_config=sink_config,
            mode=mode,
            schedule_config=schedule_config,
            status=PipelineStatus.DRAFT,
            restore_count=0,
            created_by=created_by,
            **options
        )
        self.db.add(pipeline)
        await self.db.flush()

        for kind, config, registry_name in (
            (ConnectorKind.SOURCE, source_config, source_registry_connector),
            (ConnectorKind.SINK, sink_config, sink_registry_connector),
        ):
            registry_name = registry_name or config.get("registry_connector")
            self.db.add(PipelineConnector(
                pipeline_id=pipeline.id,
                name=f"{name}-{kind.value}",
                type=kind,
                connector_class=await self._connector_class(registry_name, config),
                registry_connector=registry_name,
                has_pending_changes=False
            ))

        await commit_or_raise(self.db, "create pipeline")
        logger.info(f"Created pipeline {name} ({pipeline.id})")
        return pipeline

    async def transition(self, pipeline_id, target: PipelineStatus) -> Pipeline:
        """
        Move a pipeline to a new status along the state machine.

        Raises:
            NotFoundError: Unknown pipeline
            ConflictError: Soft-deleted pipeline or illegal transition
        """
        pipeline = await self.get_pipeline(pipeline_id)
        if pipeline.deleted_at is not None:
            raise ConflictError(
                f"Pipeline {pipeline.name} is deleted",
                context={"pipeline_id": str(pipeline_id)}
            )
        if pipeline.status == target:
            return pipeline
        if not can_transition(pipeline.status, target):
            raise ConflictError(
                f"Illegal transition {pipeline.status.value} -> {target.value}",
                context={"pipeline_id": str(pipeline_id), "from": pipeline.status.value, "to": target.value}
            )

        previous = pipeline.status
        pipeline.status = target
        await commit_or_raise(self.db, "transition pipeline")
        logger.info(f"Pipeline {pipeline.name}: {previous.value} -> {target.value}")
        return pipeline

    # ========================================================================
    # Soft delete / restore
    # ========================================================================

    async def check_soft_delete(self, pipeline_id, retention_hours: Optional[int] = None) -> Pipeline:
        """
        Preconditions of soft_delete, for callers that act on the engine first.

        Raises:
            NotFoundError: Unknown pipeline
            ConflictError: Already soft-deleted
            ValidationError: Non-positive retention
        """
        pipeline = await self.get_pipeline(pipeline_id)
        if pipeline.deleted_at is not None:
            raise ConflictError(
                f"Pipeline {pipeline.name} is already deleted",
                context={"pipeline_id": str(pipeline_id)}
            )
        if retention_hours is not None and retention_hours <= 0:
            raise ValidationError("retention_hours must be positive", context={"field_name": "retention_hours"})
        return pipeline

    async def soft_delete(
        self,
        pipeline_id,
        retention_hours: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> Pipeline:
        """Mark a pipeline deleted; status and connector rows are kept for restore."""
        pipeline = await self.check_soft_delete(pipeline_id, retention_hours)

        if retention_hours is None:
            retention_hours = (await get_monitoring_settings(self.db)).backup_retention_hours

        pipeline.deleted_at = now or utcnow()
        pipeline.backup_retention_hours = retention_hours
        await commit_or_raise(self.db, "soft delete pipeline")
        logger.info(
            f"Soft-deleted pipeline {pipeline.name}; restorable for {retention_hours}h"
        )
        return pipeline

    async def restore(self, pipeline_id, now: Optional[datetime] = None) -> Pipeline:
        """
        Bring a soft-deleted pipeline back as a draft. Connectors are not redeployed.

        Raises:
            NotFoundError: The pipeline does not exist (never existed or purged)
            ConflictError: Not deleted, retention window elapsed, or raced by the sweep
        """
        now = now or utcnow()
        pipeline = await self.get_pipeline(pipeline_id)
        if pipeline.deleted_at is None:
            raise ConflictError(
                f"Pipeline {pipeline.name} is not deleted",
                context={"pipeline_id": str(pipeline_id)}
            )
        if now >= pipeline.purge_after(settings.DEFAULT_RETENTION_HOURS):
            raise ConflictError(
                f"Retention window for pipeline {pipeline.name} has elapsed",
                context={"pipeline_id": str(pipeline_id), "deleted_at": pipeline.deleted_at.isoformat()}
            )

        # Only succeeds if nobody purged or restored the row in between
        result = await self.db.execute(
            update(Pipeline)
            .where(Pipeline.id == pipeline.id, Pipeline.deleted_at == pipeline.deleted_at)
            .values(
                deleted_at=None,
                status=PipelineStatus.DRAFT,
                restore_count=Pipeline.restore_count + 1,
                updated_at=now
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            if await self.db.get(Pipeline, pipeline_id) is None:
                raise NotFoundError(
                    f"Pipeline {pipeline_id} not found",
                    context={"resource": "pipeline", "identifier": str(pipeline_id)}
                )
            raise ConflictError(
                f"Pipeline {pipeline_id} changed during restore",
                context={"pipeline_id": str(pipeline_id)}
            )

        await self.db.execute(
            update(PipelineConnector)
            .where(PipelineConnector.pipeline_id == pipeline.id)
            .values(status=None)
            .execution_options(synchronize_session=False)
        )
        await commit_or_raise(self.db, "restore pipeline")
        await self.db.refresh(pipeline)
        logger.info(f"Restored pipeline {pipeline.name} (restore #{pipeline.restore_count})")
        return pipeline

    # ========================================================================
    # Retention sweep
    # ========================================================================

    async def _expired(self, now: datetime) -> List[Pipeline]:
        result = await self.db.execute(
            select(Pipeline).where(Pipeline.deleted_at.is_not(None)).order_by(Pipeline.deleted_at.asc())
        )
        return [
            pipeline for pipeline in result.scalars().all()
            if now >= pipeline.purge_after(settings.DEFAULT_RETENTION_HOURS)
        ]

    async def _purge(self, pipeline_id, now: datetime) -> Optional[Dict[str, int]]:
        """Delete one pipeline and its dependents inside a single transaction."""
        # Re-check under lock; a restore may have won
        pipeline = await self.db.scalar(
            select(Pipeline)
            .where(Pipeline.id == pipeline_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if pipeline is None:
            return None
        if pipeline.deleted_at is None or now < pipeline.purge_after(settings.DEFAULT_RETENTION_HOURS):
            raise ConflictError(
                f"Pipeline {pipeline.name} was restored before purge",
                context={"pipeline_id": str(pipeline_id)}
            )

        counts: Dict[str, int] = {}
        table_objects = select(PipelineTableObject.id).where(PipelineTableObject.pipeline_id == pipeline_id)
        result = await self.db.execute(
            delete(PipelineTask).where(PipelineTask.table_object_id.in_(table_objects))
        )
        counts["pipeline_tasks"] = result.rowcount

        for table_name, model in DEPENDENT_TABLES:
            result = await self.db.execute(delete(model).where(model.pipeline_id == pipeline_id))
            counts[table_name] = result.rowcount

        result = await self.db.execute(delete(Pipeline).where(Pipeline.id == pipeline_id))
        counts["pipelines"] = result.rowcount
        await self.db.commit()
        return counts

    async def sweep(self, dry_run: bool = False, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Purge pipelines whose retention window has elapsed.

        Re-running is safe: deleting already-absent rows is a no-op. With
        dry_run=True the candidates are reported and nothing is written.
        """
        started = time.perf_counter()
        now = now or utcnow()
        candidates = await self._expired(now)
        retention_default = settings.DEFAULT_RETENTION_HOURS

        results = []
        deleted = 0
        errors = 0
        for pipeline in [
            (p.id, p.name, p.deleted_at, p.backup_retention_hours or retention_default) for p in candidates
        ]:
            pipeline_id, name, deleted_at, retention = pipeline
            entry = {
                "pipeline_id": str(pipeline_id),
                "pipeline_name": name,
                "deleted_at": deleted_at.isoformat(),
                "retention_hours": retention,
            }

            if dry_run:
                entry["status"] = "would_delete"
                results.append(entry)
                continue

            try:
                counts = await self._purge(pipeline_id, now)
                if counts is None:
                    entry["status"] = "already_deleted"
                else:
                    entry["status"] = "deleted"
                    entry["rows"] = counts
                    deleted += 1
                    logger.info(f"Purged pipeline {name} ({pipeline_id}) after {retention}h retention")
            except (ConflictError, SQLAlchemyError) as e:
                await self.db.rollback()
                entry["status"] = "error"
                entry["error"] = e.message if isinstance(e, ConflictError) else str(e)
                errors += 1
                logger.error(f"Failed to purge pipeline {name} ({pipeline_id}): {entry['error']}")
            results.append(entry)

        summary = {
            "success": errors == 0,
            "dry_run": dry_run,
            "checked": len(candidates),
            "deleted": deleted,
            "errors": errors,
            "results": results,
            "duration_ms": int((time.perf_counter() - started) * 1000),
        }
        logger.info(
            f"Retention sweep finished: checked={summary['checked']} deleted={deleted} "
            f"errors={errors} dry_run={dry_run}"
        )
        return summary

"""
Monitoring loop.

One cycle:
1. Re-read thresholds and resume connectors whose remediation pause is over
2. For every pipeline that is neither soft-deleted nor a draft, read live
   connector status and metrics and evaluate the checks
3. Reconcile the pipeline's alerts (create / refresh / resolve)
4. Optionally pause a connector whose CONNECTOR_FAILED or HIGH_LAG alert
   persisted from an earlier cycle
5. Dispatch notifications for created and resolved alerts only

Cycles never overlap: a cycle requested while one is running is skipped.
An unreachable engine or any other failure on one pipeline is logged and
the cycle moves on to the next pipeline.
"""

import time
from datetime import datetime, timedelta
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing import Any, Callable, Dict, List, Optional
from core.config import settings
from core.database import commit_or_raise
from core.exceptions import ConnectorNotFoundError, EngineError
from core.timeutils import utcnow
from models.base import AlertType, ConnectorKind, ConnectorStatus, PipelineStatus
from models.pipeline import Pipeline, PipelineConnector
from controlplane.connect.client import ConnectClient
from controlplane.lifecycle import PipelineLifecycle
from controlplane.locks import KeyedLock, pipeline_locks
from controlplane.monitoring.alerts import AlertManager, AlertTransition, CREATED, UPDATED, serialize_alert
from controlplane.monitoring.checks import (
    Evaluation,
    STATE_FAILED,
    STATE_PAUSED,
    STATE_RUNNING,
    check_connector_state,
    check_dlq,
    check_error_rate,
    check_lag,
    check_throughput,
    check_wal_size,
    merge_evaluations,
)
from controlplane.monitoring.metrics import MetricsSource
from controlplane.monitoring.notifier import LoggingNotificationDispatcher, NotificationDispatcher
from controlplane.monitoring.thresholds import Thresholds, get_monitoring_settings
from controlplane.orchestrator import DeploymentOrchestrator
import logging

logger = logging.getLogger(__name__)

REMEDIABLE_ALERTS = (AlertType.CONNECTOR_FAILED, AlertType.HIGH_LAG)
UNMONITORED_STATUSES = (PipelineStatus.DRAFT, PipelineStatus.DELETED)
ENGINE_STATES = {
    STATE_RUNNING: ConnectorStatus.RUNNING,
    STATE_PAUSED: ConnectorStatus.PAUSED,
    STATE_FAILED: ConnectorStatus.FAILED,
}


class MonitoringLoop:
    """
    Periodic observer of running pipelines.

    State kept between cycles (in memory, per process):
    - when each connector was first seen PAUSED
    - the previous throughput sample per connector
    - the last WAL check per pipeline
    - remediation pauses and when to resume them
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        client: ConnectClient,
        metrics: Optional[MetricsSource] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        auto_remediation: Optional[bool] = None,
        locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session_factory = session_factory
        self.client = client
        self.metrics = metrics or MetricsSource()
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()
        self.auto_remediation = settings.AUTO_REMEDIATION_ENABLED if auto_remediation is None else auto_remediation
        self.locks = locks or pipeline_locks
        self.clock = clock

        self.thresholds: Optional[Thresholds] = None
        self._running = False
        self._paused_since: Dict[str, datetime] = {}
        self._previous_throughput: Dict[str, float] = {}
        self._last_wal_check: Dict[Any, datetime] = {}
        self._remediations: Dict[str, Dict[str, Any]] = {}

    @property
    def running(self) -> bool:
        return self._running

    async def run_cycle(self) -> Dict[str, Any]:
        """Run one cycle, or skip it if the previous one is still running."""
        if self._running:
            logger.warning("Monitoring cycle still running; skipping this tick")
            return {"skipped": True}

        self._running = True
        try:
            return await self._cycle()
        finally:
            self._running = False

    # ========================================================================
    # Cycle
    # ========================================================================

    async def _cycle(self) -> Dict[str, Any]:
        started = time.perf_counter()
        now = self.clock()
        report: Dict[str, Any] = {
            "skipped": False,
            "checked": 0,
            "unreachable": [],
            "errors": [],
            "missing_connectors": [],
            "alerts_created": 0,
            "alerts_resolved": 0,
            "remediations": [],
        }

        async with self.session_factory() as session:
            self.thresholds = await get_monitoring_settings(session)
            await self._resume_due(session, now, report)
            result = await session.execute(
                select(Pipeline.id)
                .where(Pipeline.deleted_at.is_(None), Pipeline.status.not_in(UNMONITORED_STATUSES))
                .order_by(Pipeline.created_at)
            )
            pipeline_ids = list(result.scalars().all())

        for stale in set(self._last_wal_check) - set(pipeline_ids):
            self._last_wal_check.pop(stale, None)

        for pipeline_id in pipeline_ids:
            async with self.session_factory() as session:
                try:
                    await self._check_pipeline(session, pipeline_id, self.thresholds, now, report)
                    report["checked"] += 1
                except EngineError as e:
                    await session.rollback()
                    logger.warning(f"Pipeline {pipeline_id} UNREACHABLE this cycle: {e.message}")
                    report["unreachable"].append({"pipeline_id": str(pipeline_id), "error": e.message})
                except Exception as e:
                    await session.rollback()
                    logger.error(f"Monitoring pipeline {pipeline_id} failed: {e}", exc_info=True)
                    report["errors"].append({"pipeline_id": str(pipeline_id), "error": str(e)})

        report["duration_ms"] = int((time.perf_counter() - started) * 1000)
        logger.info(
            f"Monitoring cycle: {report['checked']} checked, {len(report['unreachable'])} unreachable, "
            f"{report['alerts_created']} raised, {report['alerts_resolved']} resolved "
            f"in {report['duration_ms']}ms"
        )
        return report

    async def _check_pipeline(
        self,
        session: AsyncSession,
        pipeline_id,
        thresholds: Thresholds,
        now: datetime,
        report: Dict[str, Any]
    ) -> None:
        pipeline = await session.get(Pipeline, pipeline_id)
        if pipeline is None or pipeline.deleted_at is not None:
            return
        connectors = await PipelineLifecycle(session).get_connectors(pipeline.id)
        pipeline_paused = pipeline.status == PipelineStatus.PAUSED

        evaluations: List[Evaluation] = []
        for kind in (ConnectorKind.SOURCE, ConnectorKind.SINK):
            connector = connectors.get(kind)
            if connector is None:
                continue
            try:
                status = await self.client.get_connector_status(connector.name)
            except ConnectorNotFoundError:
                logger.warning(f"Connector {connector.name} of pipeline {pipeline.name} is not on the engine")
                report["missing_connectors"].append(connector.name)
                continue

            state = (status.get("connector") or {}).get("state")
            evaluations.append(check_connector_state(
                kind.value,
                connector.name,
                status,
                self._paused_seconds(connector.name, state, now),
                thresholds.pause_duration_seconds,
                pipeline_paused=pipeline_paused,
                remediating=connector.name in self._remediations
            ))
            if state in ENGINE_STATES:
                connector.status = ENGINE_STATES[state]

            evaluations.extend(await self._metric_checks(connector, kind, thresholds))

        evaluations.append(await self._wal_check(pipeline, connectors.get(ConnectorKind.SOURCE), now))

        transitions = await AlertManager(session).apply(pipeline.id, merge_evaluations(evaluations), now)
        await commit_or_raise(session, "record monitoring cycle")

        for transition in transitions:
            if transition.action == UPDATED:
                continue
            report["alerts_created" if transition.action == CREATED else "alerts_resolved"] += 1
            await self._notify(pipeline, transition)

        if self.auto_remediation:
            await self._remediate(session, pipeline, transitions, thresholds, now, report)

    def _paused_seconds(self, name: str, state: Optional[str], now: datetime) -> Optional[float]:
        if state != STATE_PAUSED:
            self._paused_since.pop(name, None)
            return None
        since = self._paused_since.setdefault(name, now)
        return (now - since).total_seconds()

    async def _metric_checks(
        self, connector: PipelineConnector, kind: ConnectorKind, thresholds: Thresholds
    ) -> List[Evaluation]:
        metrics = await self.metrics.connector_metrics(connector.name, kind.value)

        previous = self._previous_throughput.get(connector.name)
        current = metrics.throughput_per_minute
        if current is not None:
            self._previous_throughput[connector.name] = current

        return [
            check_lag(connector.name, metrics.lag_ms, thresholds.lag_ms),
            check_throughput(connector.name, current, previous, thresholds.throughput_drop_percent),
            check_error_rate(connector.name, metrics.error_rate_percent, thresholds.error_rate_percent),
            check_dlq(connector.name, metrics.dlq_count, thresholds.dlq_count),
        ]

    async def _wal_check(self, pipeline: Pipeline, source: Optional[PipelineConnector], now: datetime) -> Evaluation:
        """Replication slot size of PostgreSQL sources, at most once per wal_check_interval_seconds."""
        if not pipeline.enable_log_monitoring or source is None:
            return {}
        if "postgres" not in (pipeline.source_type or "").lower():
            return {}

        last = self._last_wal_check.get(pipeline.id)
        if last is not None and (now - last).total_seconds() < pipeline.wal_check_interval_seconds:
            return {}

        slot_name = (source.config or {}).get("slot.name")
        if not slot_name:
            return {}

        self._last_wal_check[pipeline.id] = now
        size = await self.metrics.wal_size_mb(slot_name)
        return check_wal_size(slot_name, size, pipeline.max_wal_size_mb, pipeline.alert_threshold_percent)

    async def _notify(self, pipeline: Pipeline, transition: AlertTransition) -> None:
        event = {
            "event": transition.action,
            "pipeline_id": str(pipeline.id),
            "pipeline_name": pipeline.name,
            "alert": serialize_alert(transition.alert),
        }
        try:
            await self.dispatcher.send(pipeline.id, event)
        except Exception as e:
            logger.error(f"Notification dispatch for pipeline {pipeline.name} failed: {e}")

    # ========================================================================
    # Remediation
    # ========================================================================

    async def _remediate(
        self,
        session: AsyncSession,
        pipeline: Pipeline,
        transitions: List[AlertTransition],
        thresholds: Thresholds,
        now: datetime,
        report: Dict[str, Any]
    ) -> None:
        """Pause connectors whose failure or lag persisted since an earlier cycle."""
        for transition in transitions:
            alert = transition.alert
            if transition.action != UPDATED or alert.alert_type not in REMEDIABLE_ALERTS:
                continue
            name = (alert.alert_metadata or {}).get("connector_name")
            if not name or name in self._remediations:
                continue
            if self.locks.is_locked(pipeline.id):
                logger.info(f"Skipping remediation of {name}: pipeline {pipeline.name} is busy")
                continue

            orchestrator = DeploymentOrchestrator(session, self.client, locks=self.locks)
            try:
                await orchestrator.pause_connector(name)
            except EngineError as e:
                logger.error(f"Remediation pause of {name} failed: {e.message}")
                continue

            resume_at = now + timedelta(seconds=thresholds.pause_duration_seconds)
            self._remediations[name] = {
                "pipeline_id": pipeline.id,
                "reason": alert.alert_type.value,
                "resume_at": resume_at,
            }
            logger.warning(
                f"Remediation: paused {name} of pipeline {pipeline.name} "
                f"({alert.alert_type.value}) until {resume_at.isoformat()}"
            )
            report["remediations"].append({
                "connector": name,
                "pipeline_id": str(pipeline.id),
                "reason": alert.alert_type.value,
                "resume_at": resume_at.isoformat(),
            })

    async def _resume_due(self, session: AsyncSession, now: datetime, report: Dict[str, Any]) -> None:
        """
        Resume connectors whose remediation pause is over.

        An operator pause or delete of the pipeline in the meantime wins: the
        entry is dropped and the connector stays as the operator left it. A
        pipeline busy with an orchestrator call is retried next cycle.
        """
        due = [name for name, entry in self._remediations.items() if entry["resume_at"] <= now]
        for name in due:
            pipeline_id = self._remediations[name]["pipeline_id"]
            pipeline = await session.get(Pipeline, pipeline_id)
            if pipeline is None or pipeline.deleted_at is not None or pipeline.status == PipelineStatus.PAUSED:
                logger.info(f"Remediation of {name} ended without resume: pipeline was paused or deleted")
                self._remediations.pop(name, None)
                continue
            if self.locks.is_locked(pipeline_id):
                logger.info(f"Deferring resume of {name}: pipeline {pipeline.name} is busy")
                continue

            orchestrator = DeploymentOrchestrator(session, self.client, locks=self.locks)
            try:
                await orchestrator.resume_connector(name)
            except ConnectorNotFoundError:
                logger.info(f"Remediated connector {name} no longer exists")
            except EngineError as e:
                logger.error(f"Resuming remediated connector {name} failed: {e.message}")
                continue
            self._remediations.pop(name, None)
            self._paused_since.pop(name, None)
            logger.info(f"Remediation over: resumed {name}")

"""
Alert lifecycle: deduplicated creation, refresh, auto-resolution and the
operator-facing alert queries.
"""

from dataclasses import dataclass
from datetime import datetime
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, List, Optional
from core.database import commit_or_raise
from core.exceptions import ConflictError, ConnectorNotFoundError, NotFoundError
from core.timeutils import utcnow
from models.alert import AlertEvent
from models.base import AlertType
from models.pipeline import Pipeline, PipelineConnector
from controlplane.connect.client import ConnectClient
from controlplane.monitoring.checks import Condition, Evaluation
import logging

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
RESOLVED = "resolved"


@dataclass
class AlertTransition:
    action: str  # created | updated | resolved
    alert: AlertEvent


def serialize_alert(alert: AlertEvent) -> Dict[str, Any]:
    return {
        "id": str(alert.id),
        "pipeline_id": str(alert.pipeline_id),
        "alert_type": alert.alert_type.value,
        "severity": alert.severity.value,
        "message": alert.message,
        "metadata": alert.alert_metadata or {},
        "resolved": alert.resolved,
        "resolved_at": alert.resolved_at.isoformat() if alert.resolved_at else None,
        "created_at": alert.created_at.isoformat() if alert.created_at else None,
        "updated_at": alert.updated_at.isoformat() if alert.updated_at else None,
    }


class AlertManager:
    """Alert writes and reads bound to one database session."""

    def __init__(self, db_session: AsyncSession, client: Optional[ConnectClient] = None):
        self.db = db_session
        self.client = client

    async def _open_alert(self, pipeline_id, alert_type: AlertType) -> Optional[AlertEvent]:
        result = await self.db.execute(
            select(AlertEvent)
            .where(
                AlertEvent.pipeline_id == pipeline_id,
                AlertEvent.alert_type == alert_type,
                AlertEvent.resolved.is_(False)
            )
            .order_by(AlertEvent.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def apply(self, pipeline_id, evaluation: Evaluation, now: Optional[datetime] = None) -> List[AlertTransition]:
        """
        Bring the alerts of a pipeline in line with one cycle's evaluation.

        - condition, no open alert: create
        - condition, open alert: refresh message/metadata (no new row)
        - clear, open alert: resolve
        - not evaluated: untouched

        The caller commits.
        """
        now = now or utcnow()
        transitions: List[AlertTransition] = []

        for alert_type, condition in evaluation.items():
            existing = await self._open_alert(pipeline_id, alert_type)

            if condition is not None and existing is None:
                alert = self._new_alert(pipeline_id, condition, now)
                self.db.add(alert)
                transitions.append(AlertTransition(CREATED, alert))
                logger.warning(f"Alert raised for pipeline {pipeline_id}: {alert_type.value} - {condition.message}")

            elif condition is not None:
                metadata = dict(condition.metadata)
                metadata["occurrences"] = int((existing.alert_metadata or {}).get("occurrences", 1)) + 1
                metadata["last_seen_at"] = now.isoformat()
                existing.message = condition.message
                existing.severity = condition.severity
                existing.alert_metadata = metadata
                existing.updated_at = now
                transitions.append(AlertTransition(UPDATED, existing))

            elif existing is not None:
                existing.resolved = True
                existing.resolved_at = now
                existing.updated_at = now
                transitions.append(AlertTransition(RESOLVED, existing))
                logger.info(f"Alert resolved for pipeline {pipeline_id}: {alert_type.value}")

        await self.db.flush()
        return transitions

    @staticmethod
    def _new_alert(pipeline_id, condition: Condition, now: datetime) -> AlertEvent:
        metadata = dict(condition.metadata)
        metadata["occurrences"] = 1
        metadata["last_seen_at"] = now.isoformat()
        return AlertEvent(
            pipeline_id=pipeline_id,
            alert_type=condition.alert_type,
            severity=condition.severity,
            message=condition.message,
            alert_metadata=metadata,
            resolved=False,
            created_at=now,
            updated_at=now
        )

    # ========================================================================
    # Operator queries
    # ========================================================================

    async def list_unresolved(self, limit: int = 100) -> List[AlertEvent]:
        result = await self.db.execute(
            select(AlertEvent)
            .where(AlertEvent.resolved.is_(False))
            .order_by(AlertEvent.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_for_pipeline(self, pipeline_id, resolved: Optional[bool] = None, limit: int = 100) -> List[AlertEvent]:
        query = select(AlertEvent).where(AlertEvent.pipeline_id == pipeline_id)
        if resolved is not None:
            query = query.where(AlertEvent.resolved.is_(resolved))
        result = await self.db.execute(query.order_by(AlertEvent.created_at.desc()).limit(limit))
        return list(result.scalars().all())

    async def _ensure_not_paused(self, pipeline_id) -> None:
        """Manual resolution is refused while a connector of the pipeline is paused on the engine."""
        if self.client is None:
            return
        result = await self.db.execute(
            select(PipelineConnector.name).where(PipelineConnector.pipeline_id == pipeline_id)
        )
        for name in result.scalars().all():
            try:
                status = await self.client.get_connector_status(name)
            except ConnectorNotFoundError:
                continue
            if (status.get("connector") or {}).get("state") == "PAUSED":
                raise ConflictError(
                    f"Connector {name} is paused; resume it before resolving alerts",
                    context={"pipeline_id": str(pipeline_id), "connector": name}
                )

    async def resolve(self, alert_id) -> AlertEvent:
        alert = await self.db.get(AlertEvent, alert_id)
        if alert is None:
            raise NotFoundError(
                f"Alert {alert_id} not found",
                context={"resource": "alert", "identifier": str(alert_id)}
            )
        if alert.resolved:
            return alert

        await self._ensure_not_paused(alert.pipeline_id)
        now = utcnow()
        alert.resolved = True
        alert.resolved_at = now
        alert.updated_at = now
        await commit_or_raise(self.db, "resolve alert")
        logger.info(f"Alert {alert_id} resolved manually")
        return alert

    async def resolve_all(self, pipeline_id) -> int:
        pipeline = await self.db.get(Pipeline, pipeline_id)
        if pipeline is None:
            raise NotFoundError(
                f"Pipeline {pipeline_id} not found",
                context={"resource": "pipeline", "identifier": str(pipeline_id)}
            )
        await self._ensure_not_paused(pipeline_id)

        now = utcnow()
        result = await self.db.execute(
            update(AlertEvent)
            .where(AlertEvent.pipeline_id == pipeline_id, AlertEvent.resolved.is_(False))
            .values(resolved=True, resolved_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await commit_or_raise(self.db, "resolve pipeline alerts")
        logger.info(f"Resolved {result.rowcount} alert(s) of pipeline {pipeline_id}")
        return result.rowcount

    async def stats(self) -> Dict[str, Any]:
        by_severity = await self.db.execute(
            select(AlertEvent.severity, func.count())
            .where(AlertEvent.resolved.is_(False))
            .group_by(AlertEvent.severity)
        )
        severity_counts = {severity.value: count for severity, count in by_severity.all()}

        by_type = await self.db.execute(
            select(AlertEvent.alert_type, func.count())
            .where(AlertEvent.resolved.is_(False))
            .group_by(AlertEvent.alert_type)
        )
        affected = await self.db.scalar(
            select(func.count(func.distinct(AlertEvent.pipeline_id))).where(AlertEvent.resolved.is_(False))
        )
        total = await self.db.scalar(select(func.count()).select_from(AlertEvent))

        return {
            "total": total or 0,
            "unresolved": sum(severity_counts.values()),
            "by_severity": severity_counts,
            "by_type": {alert_type.value: count for alert_type, count in by_type.all()},
            "affected_pipelines": affected or 0,
        }

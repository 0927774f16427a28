"""
Pipeline endpoints: lifecycle, deployment and per-pipeline alerts
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, Optional
from uuid import UUID
from api.dependencies import get_db, get_connect_client, get_topic_admin
from schemas.api import PipelineCreate, PipelineResponse, PipelineConnectorResponse, TransitionRequest
from controlplane.connect.client import ConnectClient
from controlplane.connect.topics import TopicAdmin
from controlplane.lifecycle import PipelineLifecycle
from controlplane.monitoring.alerts import AlertManager, serialize_alert
from controlplane.orchestrator import DeploymentOrchestrator
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/pipelines", tags=["Pipelines"])


async def _pipeline_body(lifecycle: PipelineLifecycle, pipeline) -> Dict[str, Any]:
    connectors = await lifecycle.get_connectors(pipeline.id)
    body = PipelineResponse.model_validate(pipeline).model_dump(mode="json")
    body["connectors"] = {
        kind.value: PipelineConnectorResponse.model_validate(connector).model_dump(mode="json")
        for kind, connector in connectors.items()
    }
    return body


def outcome_response(result: Dict[str, Any]) -> JSONResponse:
    """
    200 when every step succeeded; otherwise 502 if a failure was an
    unreachable engine, else 400.
    """
    if result.get("success"):
        return JSONResponse(status_code=200, content=result)
    retryable = any(error.get("retryable") for error in result.get("errors", []))
    return JSONResponse(status_code=502 if retryable else 400, content=result)


def _orchestrator(db: AsyncSession, client: ConnectClient, topic_admin: TopicAdmin) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(db, client, topic_admin=topic_admin)


# ============================================================================
# Lifecycle
# ============================================================================

@router.post("", status_code=201)
async def create_pipeline(body: PipelineCreate, db: AsyncSession = Depends(get_db)):
    lifecycle = PipelineLifecycle(db)
    pipeline = await lifecycle.create_pipeline(
        name=body.name,
        source_type=body.source_type,
        sink_type=body.sink_type,
        source_config=body.source_config,
        sink_config=body.sink_config,
        mode=body.mode,
        schedule_config=body.schedule_config,
        source_registry_connector=body.source_registry_connector,
        sink_registry_connector=body.sink_registry_connector,
        created_by=body.created_by,
        enable_log_monitoring=body.enable_log_monitoring,
        max_wal_size_mb=body.max_wal_size_mb,
        alert_threshold_percent=body.alert_threshold_percent,
        wal_check_interval_seconds=body.wal_check_interval_seconds
    )
    return {"success": True, "pipeline": await _pipeline_body(lifecycle, pipeline)}


@router.get("")
async def list_pipelines(
    include_deleted: bool = Query(False, description="Include soft-deleted pipelines"),
    db: AsyncSession = Depends(get_db)
):
    lifecycle = PipelineLifecycle(db)
    pipelines = await lifecycle.list_pipelines(include_deleted=include_deleted)
    return {
        "success": True,
        "pipelines": [PipelineResponse.model_validate(p).model_dump(mode="json") for p in pipelines],
        "count": len(pipelines),
    }


@router.get("/{pipeline_id}")
async def get_pipeline(pipeline_id: UUID, db: AsyncSession = Depends(get_db)):
    lifecycle = PipelineLifecycle(db)
    pipeline = await lifecycle.get_pipeline(pipeline_id)
    return {"success": True, "pipeline": await _pipeline_body(lifecycle, pipeline)}


@router.post("/{pipeline_id}/transition")
async def transition_pipeline(pipeline_id: UUID, body: TransitionRequest, db: AsyncSession = Depends(get_db)):
    lifecycle = PipelineLifecycle(db)
    pipeline = await lifecycle.transition(pipeline_id, body.status)
    return {"success": True, "pipeline": await _pipeline_body(lifecycle, pipeline)}


@router.delete("/{pipeline_id}")
async def delete_pipeline(
    pipeline_id: UUID,
    retention_hours: Optional[int] = Query(None, gt=0, description="Restore window; defaults to the global setting"),
    delete_connectors: bool = Query(False, description="Also remove the connectors from Kafka Connect"),
    delete_topics: bool = Query(False, description="With delete_connectors, also delete related topics"),
    db: AsyncSession = Depends(get_db),
    client: ConnectClient = Depends(get_connect_client),
    topic_admin: TopicAdmin = Depends(get_topic_admin)
):
    """Soft delete. The pipeline stays restorable until its retention window elapses."""
    lifecycle = PipelineLifecycle(db)
    await lifecycle.check_soft_delete(pipeline_id, retention_hours)

    connectors_result = None
    if delete_connectors:
        connectors_result = await _orchestrator(db, client, topic_admin).delete_connectors(
            pipeline_id, delete_topics=delete_topics
        )

    pipeline = await lifecycle.soft_delete(pipeline_id, retention_hours=retention_hours)
    purge_after = pipeline.purge_after()
    return {
        "success": True,
        "pipeline_id": str(pipeline.id),
        "deleted_at": pipeline.deleted_at.isoformat(),
        "restorable_until": purge_after.isoformat() if purge_after else None,
        "connectors": connectors_result,
    }


@router.post("/{pipeline_id}/restore")
async def restore_pipeline(pipeline_id: UUID, db: AsyncSession = Depends(get_db)):
    lifecycle = PipelineLifecycle(db)
    pipeline = await lifecycle.restore(pipeline_id)
    return {"success": True, "pipeline": await _pipeline_body(lifecycle, pipeline)}


# ============================================================================
# Engine operations
# ============================================================================

@router.post("/{pipeline_id}/deploy")
async def deploy_pipeline(
    pipeline_id: UUID,
    db: AsyncSession = Depends(get_db),
    client: ConnectClient = Depends(get_connect_client),
    topic_admin: TopicAdmin = Depends(get_topic_admin)
):
    result = await _orchestrator(db, client, topic_admin).deploy_pipeline(pipeline_id)
    return outcome_response(result)


@router.post("/{pipeline_id}/start")
async def start_pipeline(
    pipeline_id: UUID,
    db: AsyncSession = Depends(get_db),
    client: ConnectClient = Depends(get_connect_client),
    topic_admin: TopicAdmin = Depends(get_topic_admin)
):
    result = await _orchestrator(db, client, topic_admin).start_pipeline(pipeline_id)
    return outcome_response(result)


@router.post("/{pipeline_id}/pause")
async def pause_pipeline(
    pipeline_id: UUID,
    db: AsyncSession = Depends(get_db),
    client: ConnectClient = Depends(get_connect_client),
    topic_admin: TopicAdmin = Depends(get_topic_admin)
):
    result = await _orchestrator(db, client, topic_admin).pause_pipeline(pipeline_id)
    return outcome_response(result)


@router.delete("/{pipeline_id}/connectors")
async def delete_pipeline_connectors(
    pipeline_id: UUID,
    delete_topics: bool = Query(False, description="Also delete related topics"),
    db: AsyncSession = Depends(get_db),
    client: ConnectClient = Depends(get_connect_client),
    topic_admin: TopicAdmin = Depends(get_topic_admin)
):
    result = await _orchestrator(db, client, topic_admin).delete_connectors(
        pipeline_id, delete_topics=delete_topics
    )
    return outcome_response(result)


@router.get("/{pipeline_id}/status")
async def pipeline_status(
    pipeline_id: UUID,
    db: AsyncSession = Depends(get_db),
    client: ConnectClient = Depends(get_connect_client),
    topic_admin: TopicAdmin = Depends(get_topic_admin)
):
    return await _orchestrator(db, client, topic_admin).get_status(pipeline_id)


# ============================================================================
# Alerts
# ============================================================================

@router.get("/{pipeline_id}/alerts")
async def pipeline_alerts(
    pipeline_id: UUID,
    resolved: Optional[bool] = Query(None, description="Filter by resolved flag"),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    await PipelineLifecycle(db).get_pipeline(pipeline_id)
    alerts = await AlertManager(db).list_for_pipeline(pipeline_id, resolved=resolved, limit=limit)
    return {"success": True, "alerts": [serialize_alert(a) for a in alerts], "count": len(alerts)}


@router.post("/{pipeline_id}/alerts/resolve-all")
async def resolve_pipeline_alerts(
    pipeline_id: UUID,
    db: AsyncSession = Depends(get_db),
    client: ConnectClient = Depends(get_connect_client)
):
    resolved = await AlertManager(db, client).resolve_all(pipeline_id)
    return {"success": True, "pipeline_id": str(pipeline_id), "resolved": resolved}

"""
Single connector controls
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID
from api.dependencies import get_db, get_connect_client
from schemas.api import RestartRequest
from controlplane.connect.client import ConnectClient
from controlplane.orchestrator import DeploymentOrchestrator

router = APIRouter(prefix="/connectors", tags=["Connectors"])


@router.post("/{name}/pause")
async def pause_connector(
    name: str,
    db: AsyncSession = Depends(get_db),
    client: ConnectClient = Depends(get_connect_client)
):
    return await DeploymentOrchestrator(db, client).pause_connector(name)


@router.post("/{name}/resume")
async def resume_connector(
    name: str,
    db: AsyncSession = Depends(get_db),
    client: ConnectClient = Depends(get_connect_client)
):
    return await DeploymentOrchestrator(db, client).resume_connector(name)


@router.post("/{name}/restart")
async def restart_connector(
    name: str,
    body: Optional[RestartRequest] = None,
    db: AsyncSession = Depends(get_db),
    client: ConnectClient = Depends(get_connect_client)
):
    """Restart a connector, optionally with its (failed) tasks."""
    body = body or RestartRequest()
    return await DeploymentOrchestrator(db, client).restart_connector(
        name, include_tasks=body.include_tasks, only_failed=body.only_failed
    )


@router.post("/{connector_id}/deploy-pending")
async def deploy_pending(
    connector_id: UUID,
    db: AsyncSession = Depends(get_db),
    client: ConnectClient = Depends(get_connect_client)
):
    """Push the staged config of a pipeline connector to Kafka Connect."""
    return await DeploymentOrchestrator(db, client).deploy_pending(connector_id)

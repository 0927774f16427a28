"""
Connector registry endpoints: versions, activation, diff and deployments
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID
from api.dependencies import get_db, get_connect_client
from schemas.api import (
    ConnectorDefinitionResponse,
    ConnectorVersionResponse,
    DeploymentCreate,
    DeploymentResponse,
    VersionCreate,
)
from controlplane.connect.client import ConnectClient
from controlplane.orchestrator import DeploymentOrchestrator
from controlplane.registry.service import ConfigRegistry
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/registry", tags=["Registry"])


def _version(version) -> dict:
    return ConnectorVersionResponse.model_validate(version).model_dump(mode="json")


def _deployment(deployment) -> dict:
    return DeploymentResponse.model_validate(deployment).model_dump(mode="json")


@router.get("/connectors")
async def list_connectors(db: AsyncSession = Depends(get_db)):
    entries = await ConfigRegistry(db).list_connectors()
    connectors = []
    for entry in entries:
        body = ConnectorDefinitionResponse.model_validate(entry["connector"]).model_dump(mode="json", by_alias=True)
        body["active_version"] = entry["active_version"]
        body["active_checksum"] = entry["active_checksum"]
        connectors.append(body)
    return {"success": True, "connectors": connectors, "count": len(connectors)}


@router.post("/connectors/{name}/versions")
async def create_version(name: str, body: VersionCreate, db: AsyncSession = Depends(get_db)):
    """
    Store a new config version. An identical config returns the existing
    version with created=false.
    """
    result = await ConfigRegistry(db).create_version(
        name=name,
        kind=body.kind,
        connector_class=body.connector_class,
        config=body.config,
        created_by=body.created_by,
        owner_id=body.owner_id,
        metadata=body.metadata,
        schema_version=body.schema_version
    )
    return {
        "success": True,
        "connector": name,
        "created": result["created"],
        "version": _version(result["version"]),
        "warnings": result["warnings"],
    }


@router.get("/connectors/{name}/versions")
async def list_versions(name: str, db: AsyncSession = Depends(get_db)):
    versions = await ConfigRegistry(db).list_versions(name)
    return {"success": True, "connector": name, "versions": [_version(v) for v in versions]}


@router.post("/connectors/{name}/versions/{version}/activate")
async def activate_version(name: str, version: int, db: AsyncSession = Depends(get_db)):
    result = await ConfigRegistry(db).activate_version(name, version)
    return {
        "success": True,
        "connector": name,
        "version": _version(result["version"]),
        "staged_connectors": result["staged_connectors"],
    }


@router.get("/connectors/{name}/diff")
async def diff_versions(
    name: str,
    from_version: int = Query(..., alias="from", ge=1),
    to_version: int = Query(..., alias="to", ge=1),
    db: AsyncSession = Depends(get_db)
):
    diff = await ConfigRegistry(db).diff(name, from_version, to_version)
    return {"success": True, "connector": name, "from": from_version, "to": to_version, "diff": diff}


@router.post("/deployments", status_code=201)
async def create_deployment(body: DeploymentCreate, db: AsyncSession = Depends(get_db)):
    deployment = await ConfigRegistry(db).create_deployment(
        body.connector_name,
        body.version,
        environment=body.environment,
        connect_url=body.connect_url,
        created_by=body.created_by
    )
    return {"success": True, "deployment": _deployment(deployment)}


@router.get("/deployments")
async def list_deployments(
    connector: Optional[str] = Query(None, description="Filter by connector name"),
    db: AsyncSession = Depends(get_db)
):
    entries = await ConfigRegistry(db).list_deployments(connector_name=connector)
    deployments = []
    for entry in entries:
        body = _deployment(entry["deployment"])
        body["connector_name"] = entry["connector_name"]
        body["connector_version"] = entry["connector_version"]
        deployments.append(body)
    return {"success": True, "deployments": deployments, "count": len(deployments)}


@router.post("/deployments/{deployment_id}/apply")
async def apply_deployment(
    deployment_id: UUID,
    db: AsyncSession = Depends(get_db),
    client: ConnectClient = Depends(get_connect_client)
):
    result = await DeploymentOrchestrator(db, client).apply_deployment(deployment_id)
    return {"success": True, "deployment": _deployment(result["deployment"]), "action": result["action"]}

"""
Alert endpoints
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID
from api.dependencies import get_db, get_connect_client
from controlplane.connect.client import ConnectClient
from controlplane.monitoring.alerts import AlertManager, serialize_alert

router = APIRouter(prefix="/alerts", tags=["Alerts"])


@router.get("")
async def list_unresolved_alerts(
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    alerts = await AlertManager(db).list_unresolved(limit=limit)
    return {"success": True, "alerts": [serialize_alert(a) for a in alerts], "count": len(alerts)}


@router.get("/stats")
async def alert_stats(db: AsyncSession = Depends(get_db)):
    return {"success": True, "stats": await AlertManager(db).stats()}


@router.post("/{alert_id}/resolve")
async def resolve_alert(
    alert_id: UUID,
    db: AsyncSession = Depends(get_db),
    client: ConnectClient = Depends(get_connect_client)
):
    """Resolve one alert; refused while a connector of its pipeline is paused."""
    alert = await AlertManager(db, client).resolve(alert_id)
    return {"success": True, "alert": serialize_alert(alert)}

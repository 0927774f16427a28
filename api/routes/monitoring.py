"""
Monitoring threshold endpoints
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_db
from schemas.api import ThresholdsUpdate
from controlplane.monitoring.thresholds import get_monitoring_settings, update_monitoring_settings

router = APIRouter(prefix="/monitoring", tags=["Monitoring"])


@router.get("/thresholds")
async def get_thresholds(db: AsyncSession = Depends(get_db)):
    thresholds = await get_monitoring_settings(db)
    return {"success": True, "thresholds": thresholds.to_dict()}


@router.put("/thresholds")
async def update_thresholds(body: ThresholdsUpdate, db: AsyncSession = Depends(get_db)):
    """Partial update; the monitoring loop picks the values up on its next cycle."""
    thresholds = await update_monitoring_settings(db, body.model_dump(exclude_none=True))
    return {"success": True, "thresholds": thresholds.to_dict()}

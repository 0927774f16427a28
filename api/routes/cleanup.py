"""
Retention sweep endpoint
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from api.dependencies import get_db
from schemas.api import CleanupRequest
from controlplane.lifecycle import PipelineLifecycle

router = APIRouter(tags=["Cleanup"])


@router.post("/pipeline-cleanup")
async def pipeline_cleanup(body: Optional[CleanupRequest] = None, db: AsyncSession = Depends(get_db)):
    """
    Purge soft-deleted pipelines whose retention window has elapsed.

    With dry_run=true the candidates are listed and nothing is deleted.
    """
    body = body or CleanupRequest()
    return await PipelineLifecycle(db).sweep(dry_run=body.dry_run)

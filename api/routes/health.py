"""
Health check endpoint with database and Kafka Connect status
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from api.dependencies import get_db, get_connect_client
from controlplane.connect.client import ConnectClient
from core.exceptions import EngineError
from core.timeutils import utcnow
import time
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
    client: ConnectClient = Depends(get_connect_client)
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity
    - Kafka Connect reachability and connector count
    - healthy / degraded (engine down) / unhealthy (database down)
    """
    db_connected = False
    db_error = None
    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except SQLAlchemyError as e:
        db_error = str(e)
        logger.error(f"Database connection failed: {db_error}")

    engine_reachable = False
    engine_error = None
    connector_count = None
    started = time.perf_counter()
    try:
        connector_count = len(await client.list_connectors())
        engine_reachable = True
    except EngineError as e:
        engine_error = e.message
        logger.warning(f"Kafka Connect health check failed: {engine_error}")
    engine_latency_ms = int((time.perf_counter() - started) * 1000)

    if not db_connected:
        status = "unhealthy"
    elif not engine_reachable:
        status = "degraded"
    else:
        status = "healthy"

    return {
        "success": db_connected,
        "status": status,
        "timestamp": utcnow().isoformat(),
        "request_id": getattr(request.state, "request_id", None),
        "database": {"connected": db_connected, "error": db_error},
        "engine": {
            "url": client.base_url,
            "reachable": engine_reachable,
            "connectors": connector_count,
            "latency_ms": engine_latency_ms,
            "error": engine_error,
        },
    }

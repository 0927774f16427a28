
"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import alerts, cleanup, connectors, health, monitoring, pipelines, registry
from api.errors import register_exception_handlers
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.database import async_session_maker
from core.logging import setup_logging
from controlplane.connect.client import ConnectClient
from controlplane.monitoring.loop import MonitoringLoop
from controlplane.monitoring.metrics import PrometheusMetricsSource
from controlplane.monitoring.notifier import WebhookNotificationDispatcher
from controlplane.scheduler import ControlPlaneScheduler
import logging

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="CDC Control Plane API",
    description="Connector registry, pipeline deployment and monitoring for Kafka Connect",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)
register_exception_handlers(app)

# Include routers
app.include_router(health.router)
app.include_router(pipelines.router)
app.include_router(registry.router)
app.include_router(connectors.router)
app.include_router(cleanup.router)
app.include_router(alerts.router)
app.include_router(monitoring.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting CDC Control Plane API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")
    logger.info(f"Kafka Connect: {settings.CONNECT_URL}")

    app.state.connect_client = ConnectClient()

    monitoring_loop = None
    if settings.MONITORING_ENABLED:
        app.state.metrics = PrometheusMetricsSource()
        app.state.dispatcher = WebhookNotificationDispatcher(async_session_maker)
        monitoring_loop = MonitoringLoop(
            async_session_maker,
            app.state.connect_client,
            metrics=app.state.metrics,
            dispatcher=app.state.dispatcher
        )

    app.state.scheduler = ControlPlaneScheduler(async_session_maker, monitoring_loop=monitoring_loop)
    await app.state.scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down CDC Control Plane API")
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.stop()
    for name in ("dispatcher", "metrics", "connect_client"):
        resource = getattr(app.state, name, None)
        if resource is not None:
            await resource.aclose()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "CDC Control Plane API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "pipelines": "/pipelines",
            "registry": "/registry/connectors",
            "alerts": "/alerts",
            "cleanup": "/pipeline-cleanup",
            "thresholds": "/monitoring/thresholds"
        }
    }

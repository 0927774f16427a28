import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker
from typing import Optional
from core.config import settings
from controlplane.lifecycle import PipelineLifecycle
from controlplane.monitoring.loop import MonitoringLoop
from controlplane.monitoring.thresholds import get_monitoring_settings

logger = logging.getLogger(__name__)

MONITORING_JOB_ID = "monitoring_cycle"
CLEANUP_JOB_ID = "retention_sweep"


class ControlPlaneScheduler:
    """Background jobs: the monitoring loop and the retention sweep."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        monitoring_loop: Optional[MonitoringLoop] = None,
        cleanup_enabled: Optional[bool] = None,
        cleanup_interval_minutes: Optional[int] = None
    ):
        self.scheduler = AsyncIOScheduler()
        self.session_factory = session_factory
        self.monitoring_loop = monitoring_loop
        self.cleanup_enabled = settings.CLEANUP_ENABLED if cleanup_enabled is None else cleanup_enabled
        self.cleanup_interval_minutes = cleanup_interval_minutes or settings.CLEANUP_INTERVAL_MINUTES
        self.check_interval_ms: Optional[int] = None

    async def run_monitoring_job(self):
        """Job to run one monitoring cycle"""
        try:
            await self.monitoring_loop.run_cycle()
        except Exception as e:
            logger.error(f"Scheduler: monitoring cycle failed - {e}", exc_info=True)

        thresholds = self.monitoring_loop.thresholds
        if thresholds is not None and thresholds.check_interval_ms != self.check_interval_ms:
            self.check_interval_ms = thresholds.check_interval_ms
            self.scheduler.reschedule_job(
                MONITORING_JOB_ID,
                trigger=IntervalTrigger(seconds=self.check_interval_ms / 1000)
            )
            logger.info(f"Monitoring interval changed to {self.check_interval_ms}ms")

    async def run_cleanup_job(self):
        """Job to purge soft-deleted pipelines past their retention window"""
        logger.info("Scheduler: Starting retention sweep")
        async with self.session_factory() as session:
            try:
                result = await PipelineLifecycle(session).sweep(dry_run=False)
                logger.info(
                    f"Scheduler: retention sweep deleted {result['deleted']} of {result['checked']} "
                    f"candidate(s), {result['errors']} error(s)"
                )
            except Exception as e:
                logger.error(f"Scheduler: retention sweep failed - {e}", exc_info=True)

    async def start(self):
        """Start the scheduler"""
        if self.monitoring_loop is not None:
            async with self.session_factory() as session:
                thresholds = await get_monitoring_settings(session)
            self.check_interval_ms = thresholds.check_interval_ms
            self.scheduler.add_job(
                self.run_monitoring_job,
                trigger=IntervalTrigger(seconds=self.check_interval_ms / 1000),
                id=MONITORING_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True
            )
            logger.info(f"Monitoring job scheduled every {self.check_interval_ms}ms")

        if self.cleanup_enabled:
            self.scheduler.add_job(
                self.run_cleanup_job,
                trigger=IntervalTrigger(minutes=self.cleanup_interval_minutes),
                id=CLEANUP_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True
            )
            logger.info(f"Retention sweep scheduled every {self.cleanup_interval_minutes} minutes")

        self.scheduler.start()
        logger.info("Control plane scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Control plane scheduler stopped")

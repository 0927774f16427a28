import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from controlplane.monitoring.thresholds import Thresholds
from controlplane.scheduler import CLEANUP_JOB_ID, MONITORING_JOB_ID, ControlPlaneScheduler


def mock_loop(check_interval_ms=60000):
    loop = MagicMock()
    loop.run_cycle = AsyncMock(return_value={"skipped": False})
    loop.thresholds = Thresholds(check_interval_ms=check_interval_ms)
    return loop


@pytest.mark.asyncio
async def test_scheduler_initialization(session_factory):
    scheduler = ControlPlaneScheduler(session_factory, cleanup_enabled=False)
    assert scheduler.scheduler is not None
    assert scheduler.monitoring_loop is None


@pytest.mark.asyncio
async def test_start_registers_jobs(session_factory):
    scheduler = ControlPlaneScheduler(session_factory, monitoring_loop=mock_loop(), cleanup_enabled=True)

    await scheduler.start()
    try:
        assert scheduler.scheduler.get_job(MONITORING_JOB_ID) is not None
        assert scheduler.scheduler.get_job(CLEANUP_JOB_ID) is not None
        assert scheduler.check_interval_ms == 60000
    finally:
        scheduler.stop()


@pytest.mark.asyncio
async def test_start_without_monitoring(session_factory):
    scheduler = ControlPlaneScheduler(session_factory, cleanup_enabled=False)

    await scheduler.start()
    try:
        assert scheduler.scheduler.get_jobs() == []
    finally:
        scheduler.stop()


@pytest.mark.asyncio
async def test_monitoring_job_reschedules_on_interval_change(session_factory):
    loop = mock_loop()
    scheduler = ControlPlaneScheduler(session_factory, monitoring_loop=loop, cleanup_enabled=False)
    await scheduler.start()

    try:
        loop.thresholds = Thresholds(check_interval_ms=15000)
        await scheduler.run_monitoring_job()

        assert loop.run_cycle.called
        assert scheduler.check_interval_ms == 15000
        job = scheduler.scheduler.get_job(MONITORING_JOB_ID)
        assert job.trigger.interval.total_seconds() == 15
    finally:
        scheduler.stop()


@pytest.mark.asyncio
async def test_monitoring_job_survives_cycle_failure(session_factory):
    loop = mock_loop()
    loop.run_cycle = AsyncMock(side_effect=RuntimeError("boom"))
    scheduler = ControlPlaneScheduler(session_factory, monitoring_loop=loop, cleanup_enabled=False)
    scheduler.check_interval_ms = 60000

    await scheduler.run_monitoring_job()

    assert loop.run_cycle.called


@pytest.mark.asyncio
async def test_cleanup_job_runs_sweep(session_factory):
    with patch("controlplane.scheduler.PipelineLifecycle") as mock_lifecycle_cls:
        mock_lifecycle = MagicMock()
        mock_lifecycle.sweep = AsyncMock(return_value={"checked": 2, "deleted": 2, "errors": 0})
        mock_lifecycle_cls.return_value = mock_lifecycle

        scheduler = ControlPlaneScheduler(session_factory, cleanup_enabled=True)
        await scheduler.run_cleanup_job()

        mock_lifecycle.sweep.assert_awaited_once_with(dry_run=False)

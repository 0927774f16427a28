"""
Script to run a single monitoring cycle against the configured Kafka Connect
"""

import argparse
import asyncio
import json
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import async_session_maker, engine
from core.logging import setup_logging
from controlplane.connect.client import ConnectClient
from controlplane.monitoring.loop import MonitoringLoop
from controlplane.monitoring.metrics import PrometheusMetricsSource
from controlplane.monitoring.notifier import WebhookNotificationDispatcher

logger = logging.getLogger(__name__)


async def run_monitoring(auto_remediation: bool) -> int:
    metrics = PrometheusMetricsSource()
    dispatcher = WebhookNotificationDispatcher(async_session_maker)
    async with ConnectClient() as client:
        loop = MonitoringLoop(
            async_session_maker,
            client,
            metrics=metrics,
            dispatcher=dispatcher,
            auto_remediation=auto_remediation
        )
        report = await loop.run_cycle()
    await dispatcher.aclose()
    await metrics.aclose()
    await engine.dispose()

    print(json.dumps(report, indent=2, default=str))
    return 0 if not report.get("errors") else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one monitoring cycle")
    parser.add_argument("--auto-remediate", action="store_true", help="Allow pausing misbehaving connectors")
    args = parser.parse_args()

    setup_logging()
    sys.exit(asyncio.run(run_monitoring(args.auto_remediate)))

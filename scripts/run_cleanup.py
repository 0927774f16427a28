"""
Script to run the retention sweep once

Usage:
    python scripts/run_cleanup.py            # purge expired pipelines
    python scripts/run_cleanup.py --dry-run  # only list them
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
from controlplane.lifecycle import PipelineLifecycle

logger = logging.getLogger(__name__)


async def run_cleanup(dry_run: bool) -> int:
    async with async_session_maker() as session:
        result = await PipelineLifecycle(session).sweep(dry_run=dry_run)
    await engine.dispose()

    print(json.dumps(result, indent=2, default=str))
    return 0 if result["success"] else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Purge soft-deleted pipelines past their retention window")
    parser.add_argument("--dry-run", action="store_true", help="List candidates without deleting anything")
    args = parser.parse_args()

    setup_logging()
    sys.exit(asyncio.run(run_cleanup(args.dry_run)))

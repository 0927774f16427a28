"""
Create the metadata tables and seed the default monitoring thresholds

Usage:
    python scripts/init_db.py           # create missing tables
    python scripts/init_db.py --reset   # drop and recreate everything
"""

import argparse
import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from core.config import settings
from core.logging import setup_logging
from controlplane.monitoring.thresholds import get_monitoring_settings, update_monitoring_settings
from models.base import Base
import models  # noqa: F401

logger = logging.getLogger(__name__)


async def init_database(reset: bool = False):
    logger.info("Connecting to metadata database...")
    engine = create_async_engine(settings.DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        if reset:
            logger.warning("Dropping all control plane tables")
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Ensured {len(Base.metadata.tables)} tables: {', '.join(sorted(Base.metadata.tables))}")

    session_maker = async_sessionmaker(engine, expire_on_commit=False)
    async with session_maker() as session:
        thresholds = await get_monitoring_settings(session)
        await update_monitoring_settings(session, {"check_interval_ms": thresholds.check_interval_ms})
        logger.info(f"Monitoring thresholds: {thresholds.to_dict()}")

    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Initialise the control plane metadata store")
    parser.add_argument("--reset", action="store_true", help="Drop existing tables first")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(init_database(reset=args.reset))

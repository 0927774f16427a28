"""
Global monitoring thresholds stored in the monitoring_settings table.

The monitoring loop reads an immutable snapshot at the top of every cycle;
writers update the latest stored row in place, creating it from the defaults
when the table is empty.
"""

from dataclasses import dataclass, asdict, fields
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict
from core.database import commit_or_raise
from core.exceptions import ValidationError
from models.alert import MonitoringSettings
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Thresholds:
    lag_ms: int = 5000
    throughput_drop_percent: int = 50
    error_rate_percent: int = 1
    dlq_count: int = 0
    check_interval_ms: int = 60000
    pause_duration_seconds: int = 5
    backup_retention_hours: int = 24

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


THRESHOLD_FIELDS = tuple(f.name for f in fields(Thresholds))


async def _latest_row(db: AsyncSession):
    result = await db.execute(
        select(MonitoringSettings).order_by(MonitoringSettings.updated_at.desc()).limit(1)
    )
    return result.scalar_one_or_none()


async def get_monitoring_settings(db: AsyncSession) -> Thresholds:
    """Current thresholds; defaults when nothing is stored."""
    row = await _latest_row(db)
    if row is None:
        return Thresholds()
    return Thresholds(**{name: getattr(row, name) for name in THRESHOLD_FIELDS})


async def update_monitoring_settings(db: AsyncSession, values: Dict[str, Any]) -> Thresholds:
    """
    Merge new values into the stored thresholds.

    Raises:
        ValidationError: Unknown key or a negative / non-integer value
    """
    unknown = set(values) - set(THRESHOLD_FIELDS)
    if unknown:
        raise ValidationError(
            f"Unknown monitoring settings: {', '.join(sorted(unknown))}",
            context={"details": sorted(unknown)}
        )
    for name, value in values.items():
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(
                f"{name} must be a non-negative integer",
                context={"field_name": name}
            )
    if values.get("check_interval_ms") == 0:
        raise ValidationError("check_interval_ms must be positive", context={"field_name": "check_interval_ms"})

    row = await _latest_row(db)
    if row is None:
        row = MonitoringSettings(**Thresholds().to_dict())
        db.add(row)
    for name, value in values.items():
        setattr(row, name, value)

    await commit_or_raise(db, "update monitoring settings")
    logger.info(f"Monitoring settings updated: {values}")
    return Thresholds(**{name: getattr(row, name) for name in THRESHOLD_FIELDS})

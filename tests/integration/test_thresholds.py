"""
Integration tests for stored monitoring thresholds
"""

import pytest
from controlplane.monitoring.thresholds import Thresholds, get_monitoring_settings, update_monitoring_settings
from core.exceptions import ValidationError


class TestThresholds:

    @pytest.mark.asyncio
    async def test_defaults_without_stored_row(self, db_session):
        thresholds = await get_monitoring_settings(db_session)

        assert thresholds == Thresholds()
        assert thresholds.lag_ms == 5000
        assert thresholds.backup_retention_hours == 24

    @pytest.mark.asyncio
    async def test_partial_update_merges(self, db_session):
        await update_monitoring_settings(db_session, {"lag_ms": 8000})
        updated = await update_monitoring_settings(db_session, {"dlq_count": 10})

        assert updated.lag_ms == 8000
        assert updated.dlq_count == 10
        assert (await get_monitoring_settings(db_session)).to_dict() == updated.to_dict()

    @pytest.mark.asyncio
    async def test_unknown_key(self, db_session):
        with pytest.raises(ValidationError) as exc:
            await update_monitoring_settings(db_session, {"lag_seconds": 5})

        assert "lag_seconds" in exc.value.message

    @pytest.mark.asyncio
    async def test_negative_or_non_integer(self, db_session):
        with pytest.raises(ValidationError):
            await update_monitoring_settings(db_session, {"lag_ms": -1})
        with pytest.raises(ValidationError):
            await update_monitoring_settings(db_session, {"lag_ms": "fast"})
        with pytest.raises(ValidationError):
            await update_monitoring_settings(db_session, {"check_interval_ms": 0})

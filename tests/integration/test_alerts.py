"""
Integration tests for alert management and notification delivery
"""

import json
import uuid
import httpx
import pytest
from controlplane.monitoring.alerts import CREATED, RESOLVED, UPDATED, AlertManager, serialize_alert
from controlplane.monitoring.checks import Condition
from controlplane.monitoring.notifier import WebhookNotificationDispatcher
from core.exceptions import ConflictError, NotFoundError
from models.alert import NotificationChannel, PipelineNotificationChannel
from models.base import AlertSeverity, AlertType


def lag_condition(lag_ms=6500):
    return Condition(
        AlertType.HIGH_LAG,
        AlertSeverity.WARNING,
        f"Connector \"orders-source\" lag is {lag_ms}ms (threshold: 5000ms)",
        {"connector_name": "orders-source", "lag_ms": lag_ms},
    )


def failed_condition():
    return Condition(
        AlertType.CONNECTOR_FAILED,
        AlertSeverity.CRITICAL,
        "SINK connector \"orders-sink\" is FAILED",
        {"connector_name": "orders-sink"},
    )


async def raise_alerts(db_session, pipeline_id, evaluation):
    transitions = await AlertManager(db_session).apply(pipeline_id, evaluation)
    await db_session.commit()
    return transitions


class TestApply:
    """Dedup and auto-resolution"""

    @pytest.mark.asyncio
    async def test_create_update_resolve(self, db_session, make_pipeline):
        pipeline = await make_pipeline(registry=False)

        created = await raise_alerts(db_session, pipeline.id, {AlertType.HIGH_LAG: lag_condition()})
        updated = await raise_alerts(db_session, pipeline.id, {AlertType.HIGH_LAG: lag_condition(9000)})
        untouched = await raise_alerts(db_session, pipeline.id, {})
        resolved = await raise_alerts(db_session, pipeline.id, {AlertType.HIGH_LAG: None})

        assert [t.action for t in created] == [CREATED]
        assert [t.action for t in updated] == [UPDATED]
        assert untouched == []
        assert [t.action for t in resolved] == [RESOLVED]
        assert created[0].alert.id == updated[0].alert.id == resolved[0].alert.id

        alert = resolved[0].alert
        assert alert.resolved is True
        assert alert.alert_metadata["occurrences"] == 2
        assert alert.alert_metadata["lag_ms"] == 9000
        assert "9000ms" in alert.message

    @pytest.mark.asyncio
    async def test_clear_without_open_alert_is_a_no_op(self, db_session, make_pipeline):
        pipeline = await make_pipeline(registry=False)

        transitions = await raise_alerts(db_session, pipeline.id, {AlertType.HIGH_LAG: None})

        assert transitions == []

    @pytest.mark.asyncio
    async def test_reopened_condition_creates_new_row(self, db_session, make_pipeline):
        pipeline = await make_pipeline(registry=False)
        await raise_alerts(db_session, pipeline.id, {AlertType.HIGH_LAG: lag_condition()})
        await raise_alerts(db_session, pipeline.id, {AlertType.HIGH_LAG: None})

        reopened = await raise_alerts(db_session, pipeline.id, {AlertType.HIGH_LAG: lag_condition()})

        assert reopened[0].action == CREATED
        alerts = await AlertManager(db_session).list_for_pipeline(pipeline.id)
        assert len(alerts) == 2
        assert len(await AlertManager(db_session).list_for_pipeline(pipeline.id, resolved=False)) == 1

    @pytest.mark.asyncio
    async def test_serialize_alert(self, db_session, make_pipeline):
        pipeline = await make_pipeline(registry=False)
        transitions = await raise_alerts(db_session, pipeline.id, {AlertType.CONNECTOR_FAILED: failed_condition()})

        data = serialize_alert(transitions[0].alert)

        assert data["pipeline_id"] == str(pipeline.id)
        assert data["alert_type"] == "CONNECTOR_FAILED"
        assert data["severity"] == "critical"
        assert data["metadata"]["occurrences"] == 1
        assert data["resolved"] is False
        assert data["resolved_at"] is None


class TestOperatorActions:
    """Manual resolution and statistics"""

    @pytest.mark.asyncio
    async def test_resolve_refused_while_connector_paused(
        self, db_session, connect_client, fake_engine, make_pipeline
    ):
        pipeline = await make_pipeline(registry=False)
        fake_engine.add("orders-source", state="PAUSED")
        fake_engine.add("orders-sink")
        transitions = await raise_alerts(db_session, pipeline.id, {AlertType.HIGH_LAG: lag_condition()})
        manager = AlertManager(db_session, client=connect_client)

        with pytest.raises(ConflictError):
            await manager.resolve(transitions[0].alert.id)

        fake_engine.set_state("orders-source", "RUNNING")
        alert = await manager.resolve(transitions[0].alert.id)

        assert alert.resolved is True
        assert alert.resolved_at is not None

    @pytest.mark.asyncio
    async def test_resolve_ignores_connectors_absent_from_engine(self, db_session, connect_client, make_pipeline):
        pipeline = await make_pipeline(registry=False)
        transitions = await raise_alerts(db_session, pipeline.id, {AlertType.HIGH_LAG: lag_condition()})

        alert = await AlertManager(db_session, client=connect_client).resolve(transitions[0].alert.id)

        assert alert.resolved is True

    @pytest.mark.asyncio
    async def test_resolve_unknown_alert(self, db_session):
        with pytest.raises(NotFoundError):
            await AlertManager(db_session).resolve(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_resolve_already_resolved_is_unchanged(self, db_session, make_pipeline):
        pipeline = await make_pipeline(registry=False)
        transitions = await raise_alerts(db_session, pipeline.id, {AlertType.HIGH_LAG: lag_condition()})
        manager = AlertManager(db_session)
        first = await manager.resolve(transitions[0].alert.id)
        resolved_at = first.resolved_at

        second = await manager.resolve(transitions[0].alert.id)

        assert second.resolved_at == resolved_at

    @pytest.mark.asyncio
    async def test_resolve_all(self, db_session, make_pipeline):
        pipeline = await make_pipeline(registry=False)
        await raise_alerts(db_session, pipeline.id, {
            AlertType.HIGH_LAG: lag_condition(),
            AlertType.CONNECTOR_FAILED: failed_condition(),
        })

        count = await AlertManager(db_session).resolve_all(pipeline.id)

        assert count == 2
        db_session.expire_all()
        assert await AlertManager(db_session).list_unresolved() == []

    @pytest.mark.asyncio
    async def test_resolve_all_unknown_pipeline(self, db_session):
        with pytest.raises(NotFoundError):
            await AlertManager(db_session).resolve_all(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_stats(self, db_session, make_pipeline):
        orders = await make_pipeline(name="orders", registry=False)
        billing = await make_pipeline(name="billing", registry=False)
        await raise_alerts(db_session, orders.id, {
            AlertType.HIGH_LAG: lag_condition(),
            AlertType.CONNECTOR_FAILED: failed_condition(),
        })
        await raise_alerts(db_session, billing.id, {AlertType.HIGH_LAG: lag_condition()})
        await raise_alerts(db_session, billing.id, {AlertType.HIGH_LAG: None})

        stats = await AlertManager(db_session).stats()

        assert stats["total"] == 3
        assert stats["unresolved"] == 2
        assert stats["by_severity"] == {"warning": 1, "critical": 1}
        assert stats["by_type"] == {"HIGH_LAG": 1, "CONNECTOR_FAILED": 1}
        assert stats["affected_pipelines"] == 1


class TestWebhookDispatcher:
    """Fire-and-forget delivery to linked channels"""

    @pytest.mark.asyncio
    async def test_posts_to_active_linked_channels(self, db_session, session_factory, make_pipeline):
        pipeline = await make_pipeline(registry=False)
        active = NotificationChannel(name="ops-slack", webhook_url="https://hooks.test/ops")
        inactive = NotificationChannel(name="old", webhook_url="https://hooks.test/old", is_active=False)
        db_session.add_all([active, inactive])
        await db_session.flush()
        db_session.add_all([
            PipelineNotificationChannel(pipeline_id=pipeline.id, channel_id=active.id),
            PipelineNotificationChannel(pipeline_id=pipeline.id, channel_id=inactive.id),
        ])
        await db_session.commit()

        posted = []

        def hook(request: httpx.Request) -> httpx.Response:
            posted.append((str(request.url), json.loads(request.content)))
            return httpx.Response(200)

        dispatcher = WebhookNotificationDispatcher(session_factory, transport=httpx.MockTransport(hook))
        event = {"event": "created", "pipeline_id": str(pipeline.id), "alert": {"alert_type": "HIGH_LAG"}}

        await dispatcher.send(pipeline.id, event)
        await dispatcher.aclose()

        assert posted == [("https://hooks.test/ops", event)]

    @pytest.mark.asyncio
    async def test_delivery_failures_are_swallowed(self, db_session, session_factory, make_pipeline):
        pipeline = await make_pipeline(registry=False)
        channel = NotificationChannel(name="ops-slack", webhook_url="https://hooks.test/ops")
        db_session.add(channel)
        await db_session.flush()
        db_session.add(PipelineNotificationChannel(pipeline_id=pipeline.id, channel_id=channel.id))
        await db_session.commit()

        def hook(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        dispatcher = WebhookNotificationDispatcher(session_factory, transport=httpx.MockTransport(hook))

        await dispatcher.send(pipeline.id, {"event": "resolved", "alert": {}})
        await dispatcher.drain()
        await dispatcher.aclose()

    @pytest.mark.asyncio
    async def test_no_channels_falls_back_to_log(self, session_factory):
        calls = []

        def hook(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200)

        dispatcher = WebhookNotificationDispatcher(session_factory, transport=httpx.MockTransport(hook))

        await dispatcher.send(uuid.uuid4(), {"event": "created", "alert": {"alert_type": "HIGH_LAG"}})
        await dispatcher.aclose()

        assert calls == []

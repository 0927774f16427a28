"""
Connector metrics read from Prometheus.

Kafka Connect and Debezium export JMX metrics that Prometheus scrapes; the
replication slot size comes from postgres_exporter. A query that fails or
returns no series yields None, which the checks treat as "not evaluated".
"""

import httpx
from dataclasses import dataclass
from typing import Optional
from core.config import settings
import logging

logger = logging.getLogger(__name__)


@dataclass
class ConnectorMetrics:
    lag_ms: Optional[float] = None
    throughput_per_minute: Optional[float] = None
    error_rate_percent: Optional[float] = None
    dlq_count: Optional[float] = None


class MetricsSource:
    """Interface used by the monitoring loop."""

    async def connector_metrics(self, connector_name: str, kind: str) -> ConnectorMetrics:
        return ConnectorMetrics()

    async def wal_size_mb(self, slot_name: str) -> Optional[float]:
        return None

    async def aclose(self):
        pass


class PrometheusMetricsSource(MetricsSource):
    """
    Instant queries against the Prometheus HTTP API.

    Query templates take the connector (or slot) name and can be overridden
    per deployment.
    """

    LAG_QUERY = 'max(debezium_metrics_MilliSecondsBehindSource{{connector="{name}"}})'
    THROUGHPUT_QUERY = 'sum(kafka_connect_source_task_metrics_source_record_poll_rate{{connector="{name}"}}) * 60'
    ERROR_RATE_QUERY = (
        '100 * sum(increase(kafka_connect_task_error_metrics_total_record_errors{{connector="{name}"}}[5m]))'
        ' / clamp_min('
        '(sum(increase(kafka_connect_source_task_metrics_source_record_poll_total{{connector="{name}"}}[5m])) or vector(0))'
        ' + (sum(increase(kafka_connect_sink_task_metrics_sink_record_read_total{{connector="{name}"}}[5m])) or vector(0)),'
        ' 1)'
    )
    DLQ_QUERY = 'sum(kafka_connect_task_error_metrics_deadletterqueue_produce_requests{{connector="{name}"}})'
    WAL_QUERY = 'max(pg_replication_slots_pg_wal_lsn_diff{{slot_name="{name}"}}) / 1048576'

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url or settings.PROMETHEUS_URL).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.METRICS_TIMEOUT_SECONDS,
            transport=transport
        )

    async def query(self, promql: str) -> Optional[float]:
        """First sample of an instant query, or None."""
        try:
            response = await self._client.get("/api/v1/query", params={"query": promql})
        except httpx.TransportError as e:
            logger.warning(f"Prometheus query failed ({type(e).__name__}): {promql}")
            return None

        if response.status_code != 200:
            logger.warning(f"Prometheus returned {response.status_code} for {promql}")
            return None

        try:
            result = response.json()["data"]["result"]
            if not result:
                return None
            return float(result[0]["value"][1])
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning(f"Unexpected Prometheus response for {promql}")
            return None

    async def connector_metrics(self, connector_name: str, kind: str) -> ConnectorMetrics:
        metrics = ConnectorMetrics(
            error_rate_percent=await self.query(self.ERROR_RATE_QUERY.format(name=connector_name)),
            dlq_count=await self.query(self.DLQ_QUERY.format(name=connector_name)),
        )
        if kind == "source":
            metrics.lag_ms = await self.query(self.LAG_QUERY.format(name=connector_name))
            metrics.throughput_per_minute = await self.query(self.THROUGHPUT_QUERY.format(name=connector_name))
        return metrics

    async def wal_size_mb(self, slot_name: str) -> Optional[float]:
        return await self.query(self.WAL_QUERY.format(name=slot_name))

    async def aclose(self):
        await self._client.aclose()

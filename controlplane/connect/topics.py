"""
Topic removal through the Kafka REST Proxy (v3 API).

Used only when connectors are deleted with delete_topics=true. Topic
deletion is optional and best-effort: callers collect the failures
instead of aborting.
"""

import httpx
from typing import List, Optional
from urllib.parse import quote
from core.config import settings
from core.exceptions import EngineUnreachable, EngineRejected
import logging

logger = logging.getLogger(__name__)


class TopicAdmin:
    """Lists and deletes topics of the first cluster behind a REST proxy."""

    def __init__(
        self,
        rest_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.rest_url = (rest_url or settings.KAFKA_REST_URL or "").rstrip("/")
        self.timeout = timeout or settings.CONNECT_TIMEOUT_SECONDS
        self._transport = transport
        self._cluster_id: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.rest_url)

    async def _call(self, client: httpx.AsyncClient, method: str, path: str) -> httpx.Response:
        try:
            response = await client.request(method, f"{self.rest_url}{path}")
        except httpx.TransportError as e:
            raise EngineUnreachable(
                f"Kafka REST proxy unreachable at {self.rest_url}",
                context={"rest_url": self.rest_url, "path": path},
                original_exception=e
            )
        if response.status_code >= 500:
            raise EngineUnreachable(
                f"Kafka REST proxy error {response.status_code}",
                context={"rest_url": self.rest_url, "path": path}
            )
        if response.status_code >= 400:
            raise EngineRejected(
                response.text[:500] or f"HTTP {response.status_code}",
                context={"rest_url": self.rest_url, "path": path},
                engine_status=response.status_code
            )
        return response

    async def _resolve_cluster(self, client: httpx.AsyncClient) -> str:
        if self._cluster_id is None:
            body = (await self._call(client, "GET", "/v3/clusters")).json()
            self._cluster_id = body["data"][0]["cluster_id"]
        return self._cluster_id

    async def delete_related_topics(self, prefixes: List[str]) -> List[str]:
        """
        Delete every topic whose name starts with one of the prefixes.

        Returns:
            Names of deleted topics
        """
        deleted = []
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            cluster_id = await self._resolve_cluster(client)
            body = (await self._call(client, "GET", f"/v3/clusters/{cluster_id}/topics")).json()
            topics = [item["topic_name"] for item in body.get("data", [])]

            for topic in topics:
                if not any(prefix and topic.startswith(prefix) for prefix in prefixes):
                    continue
                await self._call(
                    client, "DELETE", f"/v3/clusters/{cluster_id}/topics/{quote(topic, safe='')}"
                )
                logger.info(f"Deleted topic {topic}")
                deleted.append(topic)
        return deleted

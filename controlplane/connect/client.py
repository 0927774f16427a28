"""
Typed async client for the execution engine's REST control API.

The engine speaks the Kafka Connect REST contract. Every call is bounded by
a timeout and every failure is translated into one of three outcomes the
orchestrator can act on:

- EngineUnreachable: transport failure, timeout or HTTP 5xx
- ConnectorNotFoundError: HTTP 404
- EngineRejected: any other HTTP 4xx (config rejected, rebalance in progress)
"""

import httpx
from typing import Any, Dict, List, Optional
from urllib.parse import quote
from core.config import settings
from core.exceptions import EngineUnreachable, EngineRejected, ConnectorNotFoundError
import logging

logger = logging.getLogger(__name__)


class ConnectClient:
    """
    Thin client over one execution engine (Kafka Connect cluster).

    Attributes:
        base_url: Engine base URL, e.g. http://connect:8083
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url or settings.CONNECT_URL).rstrip("/")
        self.timeout = timeout or settings.CONNECT_TIMEOUT_SECONDS
        self._transport = transport
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
            headers={"Accept": "application/json", "Content-Type": "application/json"}
        )

    def for_url(self, base_url: str) -> "ConnectClient":
        """Client for another engine sharing this client's timeout and transport."""
        return ConnectClient(base_url=base_url, timeout=self.timeout, transport=self._transport)

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self) -> "ConnectClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    # ========================================================================
    # Transport
    # ========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        connector: Optional[str] = None
    ) -> Any:
        """
        Perform one engine call and map its outcome.

        Returns:
            Decoded JSON body, or None for empty responses (202/204)

        Raises:
            EngineUnreachable: Network error, timeout or 5xx
            ConnectorNotFoundError: 404
            EngineRejected: Other 4xx
        """
        context = {"connect_url": self.base_url, "method": method, "path": path}
        if connector:
            context["connector"] = connector

        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            raise EngineUnreachable(
                f"Timed out after {self.timeout}s calling {method} {path}",
                context=context,
                original_exception=e
            )
        except httpx.TransportError as e:
            raise EngineUnreachable(
                f"Execution engine unreachable at {self.base_url}",
                context=context,
                original_exception=e
            )

        if response.status_code >= 500:
            context["status_code"] = response.status_code
            raise EngineUnreachable(
                f"Execution engine error {response.status_code}: {_error_message(response)}",
                context=context
            )

        if response.status_code == 404:
            context["status_code"] = 404
            raise ConnectorNotFoundError(
                f"Connector {connector} not found" if connector else f"Not found: {path}",
                context=context
            )

        if response.status_code >= 400:
            raise EngineRejected(
                _error_message(response),
                context=context,
                engine_status=response.status_code
            )

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ========================================================================
    # Connectors
    # ========================================================================

    async def list_connectors(self) -> List[str]:
        return await self._request("GET", "/connectors") or []

    async def get_connector(self, name: str) -> Dict[str, Any]:
        return await self._request("GET", f"/connectors/{_quote(name)}", connector=name)

    async def connector_exists(self, name: str) -> bool:
        try:
            await self.get_connector(name)
            return True
        except ConnectorNotFoundError:
            return False

    async def create_connector(self, name: str, config: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "POST", "/connectors", json={"name": name, "config": config}, connector=name
        )

    async def get_connector_config(self, name: str) -> Dict[str, Any]:
        return await self._request("GET", f"/connectors/{_quote(name)}/config", connector=name)

    async def put_connector_config(self, name: str, config: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "PUT", f"/connectors/{_quote(name)}/config", json=config, connector=name
        )

    async def delete_connector(self, name: str) -> None:
        await self._request("DELETE", f"/connectors/{_quote(name)}", connector=name)

    async def pause_connector(self, name: str) -> None:
        await self._request("PUT", f"/connectors/{_quote(name)}/pause", connector=name)

    async def resume_connector(self, name: str) -> None:
        await self._request("PUT", f"/connectors/{_quote(name)}/resume", connector=name)

    async def restart_connector(
        self,
        name: str,
        include_tasks: bool = False,
        only_failed: bool = False
    ) -> Optional[Dict[str, Any]]:
        params = {
            "includeTasks": str(include_tasks).lower(),
            "onlyFailed": str(only_failed).lower(),
        }
        return await self._request(
            "POST", f"/connectors/{_quote(name)}/restart", params=params, connector=name
        )

    async def get_connector_status(self, name: str) -> Dict[str, Any]:
        return await self._request("GET", f"/connectors/{_quote(name)}/status", connector=name)

    async def get_connector_tasks(self, name: str) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/connectors/{_quote(name)}/tasks", connector=name) or []

    async def get_task_status(self, name: str, task_id: int) -> Dict[str, Any]:
        return await self._request(
            "GET", f"/connectors/{_quote(name)}/tasks/{task_id}/status", connector=name
        )

    async def restart_task(self, name: str, task_id: int) -> None:
        await self._request(
            "POST", f"/connectors/{_quote(name)}/tasks/{task_id}/restart", connector=name
        )

    # ========================================================================
    # Plugins
    # ========================================================================

    async def list_plugins(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/connector-plugins") or []

    async def validate_config(self, plugin: str, config: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "PUT", f"/connector-plugins/{_quote(plugin)}/config/validate", json=config
        )

    # ========================================================================
    # Idempotent primitive
    # ========================================================================

    async def upsert_connector(self, name: str, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create the connector if absent, otherwise replace its config.

        Returns:
            {"action": "created" | "updated", "connector": engine response}
        """
        if await self.connector_exists(name):
            connector = await self.put_connector_config(name, config)
            logger.info(f"Updated connector {name} on {self.base_url}")
            return {"action": "updated", "connector": connector}

        connector = await self.create_connector(name, config)
        logger.info(f"Created connector {name} on {self.base_url}")
        return {"action": "created", "connector": connector}


def _quote(value: str) -> str:
    return quote(value, safe="")


def _error_message(response: httpx.Response) -> str:
    """Extract the engine's error message from a non-2xx response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.text[:500]

"""
Pytest configuration and fixtures
"""

import json
import pytest
import pytest_asyncio
import httpx
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple
from urllib.parse import unquote
import models  # noqa: F401  registers every table
from models.base import Base
from controlplane.connect.client import ConnectClient
from controlplane.locks import KeyedLock
from controlplane.monitoring.metrics import ConnectorMetrics, MetricsSource

# In-memory SQLite shared by every session of a test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
CONNECT_URL = "http://connect.test:8083"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Fake Kafka Connect
# ============================================================================

class FakeConnectEngine:
    """
    In-memory Kafka Connect REST API served through httpx.MockTransport.

    Failure injection:
        down: every request fails with a connection error
        unreachable_on_create: connector names whose creation hits a network error
        reject_on_create: connector name -> (status, message) returned on creation
        fail_status: connector names whose status call fails with a 500
    """

    def __init__(self):
        self.connectors: Dict[str, Dict[str, Any]] = {}
        self.requests: List[Tuple[str, str]] = []
        self.down = False
        self.unreachable_on_create: set = set()
        self.reject_on_create: Dict[str, Tuple[int, str]] = {}
        self.fail_status: set = set()
        self.fail_pause: set = set()

    # Test helpers

    def add(self, name: str, config: Optional[Dict[str, Any]] = None, state: str = "RUNNING", tasks: int = 1):
        self.connectors[name] = {
            "config": dict(config or {}, name=name),
            "state": state,
            "trace": None,
            "tasks": [{"id": i, "state": "RUNNING", "worker_id": "connect:8083"} for i in range(tasks)],
        }

    def set_state(self, name: str, state: str, trace: Optional[str] = None):
        self.connectors[name]["state"] = state
        self.connectors[name]["trace"] = trace

    def fail_task(self, name: str, task_id: int = 0, trace: str = "org.apache.kafka.connect.errors.ConnectException"):
        for task in self.connectors[name]["tasks"]:
            if task["id"] == task_id:
                task["state"] = "FAILED"
                task["trace"] = trace

    def count(self, method: str, path_prefix: str) -> int:
        return sum(1 for m, p in self.requests if m == method and p.startswith(path_prefix))

    # Transport

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = unquote(request.url.path)
        self.requests.append((request.method, path))
        if self.down:
            raise httpx.ConnectError("Connection refused", request=request)

        parts = [part for part in path.split("/") if part]

        if parts == ["connectors"]:
            if request.method == "GET":
                return httpx.Response(200, json=sorted(self.connectors))
            body = json.loads(request.content)
            return self._create(request, body["name"], body["config"])

        if parts == ["connector-plugins"]:
            return httpx.Response(200, json=[{"class": "io.debezium.connector.postgresql.PostgresConnector"}])

        if len(parts) >= 2 and parts[0] == "connectors":
            name = parts[1]
            connector = self.connectors.get(name)
            if connector is None:
                return httpx.Response(404, json={"error_code": 404, "message": f"Connector {name} not found"})
            action = parts[2] if len(parts) > 2 else None
            return self._connector_call(request, name, connector, action, parts[3:])

        return httpx.Response(404, json={"error_code": 404, "message": "Unknown path"})

    def _create(self, request: httpx.Request, name: str, config: Dict[str, Any]) -> httpx.Response:
        if name in self.unreachable_on_create:
            raise httpx.ConnectError("Connection refused", request=request)
        if name in self.reject_on_create:
            status, message = self.reject_on_create[name]
            return httpx.Response(status, json={"error_code": status, "message": message})
        if name in self.connectors:
            return httpx.Response(409, json={"error_code": 409, "message": f"Connector {name} already exists"})
        self.add(name, config)
        return httpx.Response(201, json={"name": name, "config": self.connectors[name]["config"], "tasks": []})

    def _status(self, name: str, connector: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "name": name,
            "connector": {"state": connector["state"], "worker_id": "connect:8083", "trace": connector["trace"]},
            "tasks": connector["tasks"],
            "type": "source" if name.endswith("-source") else "sink",
        }

    def _connector_call(
        self, request: httpx.Request, name: str, connector: Dict[str, Any], action: Optional[str], rest: List[str]
    ) -> httpx.Response:
        method = request.method
        if action is None:
            if method == "DELETE":
                del self.connectors[name]
                return httpx.Response(204)
            return httpx.Response(200, json={"name": name, "config": connector["config"], "tasks": []})

        if action == "config":
            if method == "PUT":
                connector["config"] = dict(json.loads(request.content), name=name)
            return httpx.Response(200, json=connector["config"])

        if action == "status":
            if name in self.fail_status:
                return httpx.Response(500, json={"error_code": 500, "message": "Request timed out"})
            return httpx.Response(200, json=self._status(name, connector))

        if action == "pause":
            if name in self.fail_pause:
                return httpx.Response(500, json={"error_code": 500, "message": "Worker unavailable"})
            connector["state"] = "PAUSED"
            return httpx.Response(202)

        if action == "resume":
            connector["state"] = "RUNNING"
            return httpx.Response(202)

        if action == "restart":
            connector["state"] = "RUNNING"
            if request.url.params.get("includeTasks") == "true":
                for task in connector["tasks"]:
                    if request.url.params.get("onlyFailed") != "true" or task["state"] == "FAILED":
                        task["state"] = "RUNNING"
                return httpx.Response(202, json=self._status(name, connector))
            return httpx.Response(204)

        if action == "tasks":
            if not rest:
                return httpx.Response(200, json=[{"id": {"connector": name, "task": t["id"]}} for t in connector["tasks"]])
            task = next((t for t in connector["tasks"] if str(t["id"]) == rest[0]), None)
            if task is None:
                return httpx.Response(404, json={"error_code": 404, "message": "Task not found"})
            if rest[1:] == ["restart"]:
                task["state"] = "RUNNING"
                return httpx.Response(204)
            return httpx.Response(200, json=task)

        return httpx.Response(404, json={"error_code": 404, "message": "Unknown path"})


@pytest.fixture
def fake_engine() -> FakeConnectEngine:
    return FakeConnectEngine()


@pytest_asyncio.fixture
async def connect_client(fake_engine) -> AsyncGenerator[ConnectClient, None]:
    client = ConnectClient(base_url=CONNECT_URL, timeout=1.0, transport=httpx.MockTransport(fake_engine.handler))
    yield client
    await client.aclose()


@pytest.fixture
def locks() -> KeyedLock:
    """Per-test lock registry so tests never share lock state"""
    return KeyedLock()


# ============================================================================
# Fake metrics
# ============================================================================

class FakeMetricsSource(MetricsSource):
    """Metrics keyed by connector name; absent entries mean no series."""

    def __init__(self):
        self.connectors: Dict[str, ConnectorMetrics] = {}
        self.wal: Dict[str, float] = {}
        self.wal_queries: List[str] = []

    def set(self, name: str, **values):
        self.connectors[name] = ConnectorMetrics(**values)

    async def connector_metrics(self, connector_name: str, kind: str) -> ConnectorMetrics:
        return self.connectors.get(connector_name, ConnectorMetrics())

    async def wal_size_mb(self, slot_name: str) -> Optional[float]:
        self.wal_queries.append(slot_name)
        return self.wal.get(slot_name)


@pytest.fixture
def fake_metrics() -> FakeMetricsSource:
    return FakeMetricsSource()


class RecordingDispatcher:
    """Collects dispatched alert events"""

    def __init__(self):
        self.events: List[Tuple[Any, Dict[str, Any]]] = []

    async def send(self, pipeline_id, event):
        self.events.append((pipeline_id, event))


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


# ============================================================================
# Sample configs
# ============================================================================

@pytest.fixture
def postgres_source_config():
    return {
        "database.hostname": "postgres",
        "database.port": "5432",
        "database.user": "cdc",
        "database.password": "secret",
        "database.dbname": "shop",
        "database.server.name": "shop",
        "topic.prefix": "shop",
        "slot.name": "orders-slot",
        "plugin.name": "pgoutput",
        "table.include.list": "public.orders",
        "tasks.max": "1",
    }


@pytest.fixture
def jdbc_sink_config():
    return {
        "connection.url": "jdbc:postgresql://warehouse:5432/dw",
        "connection.username": "loader",
        "connection.password": "secret",
        "topics.regex": "shop\\.public\\..*",
        "insert.mode": "upsert",
        "primary.key.mode": "record_key",
        "tasks.max": "1",
    }


POSTGRES_SOURCE_CLASS = "io.debezium.connector.postgresql.PostgresConnector"
JDBC_SINK_CLASS = "io.debezium.connector.jdbc.JdbcSinkConnector"


@pytest.fixture
def make_pipeline(db_session, postgres_source_config, jdbc_sink_config):
    """
    Factory for a pipeline in READY state.

    With registry=True the source and sink are bound to active registry
    versions named '<name>-pg' and '<name>-jdbc'; otherwise the configs are
    stored on the pipeline itself.
    """
    from controlplane.lifecycle import PipelineLifecycle
    from controlplane.registry.service import ConfigRegistry
    from models.base import PipelineStatus

    async def _make(name: str = "orders", registry: bool = True, status: PipelineStatus = PipelineStatus.READY, **options):
        lifecycle = PipelineLifecycle(db_session)
        source_config = dict(postgres_source_config)
        sink_config = dict(jdbc_sink_config)
        source_registry = sink_registry = None

        if registry:
            service = ConfigRegistry(db_session)
            source_registry, sink_registry = f"{name}-pg", f"{name}-jdbc"
            await service.create_version(source_registry, "source", POSTGRES_SOURCE_CLASS, source_config)
            await service.activate_version(source_registry, 1)
            await service.create_version(sink_registry, "sink", JDBC_SINK_CLASS, sink_config)
            await service.activate_version(sink_registry, 1)
            source_config, sink_config = {}, {}
        else:
            source_config["connector.class"] = POSTGRES_SOURCE_CLASS
            sink_config["connector.class"] = JDBC_SINK_CLASS

        pipeline = await lifecycle.create_pipeline(
            name,
            "postgresql",
            "jdbc",
            source_config=source_config,
            sink_config=sink_config,
            source_registry_connector=source_registry,
            sink_registry_connector=sink_registry,
            **options
        )
        if status != PipelineStatus.DRAFT:
            await lifecycle.transition(pipeline.id, PipelineStatus.READY)
        if status not in (PipelineStatus.DRAFT, PipelineStatus.READY):
            await lifecycle.transition(pipeline.id, status)
        return pipeline

    return _make

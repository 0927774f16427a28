"""
Deployment orchestrator: reconciles a pipeline's desired configuration
against the execution engine.

Two-connector deploy protocol:
1. Resolve each connector's config (active registry version, else the
   config stored on the pipeline) and normalize it for the engine
2. Create-or-update the source, then the sink
3. Sink failure after a successful source: delete the source again
   (compensating action) and mark the pipeline as error
4. Full success: pipeline running, deployed versions recorded, pending
   edits cleared

Multi-step operations (start, pause, delete, status) are best-effort: every
step runs and its outcome lands in the per-step result list. All calls on
one pipeline are serialized by a keyed lock.
"""

import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, List, Optional, Tuple
from core.config import settings
from core.database import commit_or_raise
from core.exceptions import (
    ConflictError,
    ConnectorNotFoundError,
    EngineError,
    EngineUnreachable,
    NotFoundError,
    RetryableError,
    ValidationError,
)
from core.logging import mask_sensitive
from core.timeutils import utcnow
from models.base import ConnectorKind, ConnectorStatus, DeploymentStatus, PipelineStatus
from models.pipeline import Pipeline, PipelineConnector
from models.registry import ConnectorVersion
from controlplane.connect.client import ConnectClient
from controlplane.connect.topics import TopicAdmin
from controlplane.lifecycle import PipelineLifecycle
from controlplane.locks import KeyedLock, pipeline_locks
from controlplane.registry.normalizer import normalize_config
from controlplane.registry.service import ConfigRegistry
import logging

logger = logging.getLogger(__name__)

MASKED_VALUE = "********"
DEPLOY_ORDER = (ConnectorKind.SOURCE, ConnectorKind.SINK)


def _error_entry(connector: str, error: Exception) -> Dict[str, Any]:
    message = getattr(error, "message", str(error))
    return {
        "connector": connector,
        "error": message,
        "error_type": error.__class__.__name__,
        "retryable": isinstance(error, RetryableError),
    }


class DeploymentOrchestrator:
    """
    Engine-side operations for pipelines and their connectors.

    Attributes:
        retry_attempts: Extra attempts of a failed deploy step (unreachable engine only)
        retry_delay: Base delay in seconds, doubled per attempt
    """

    def __init__(
        self,
        db_session: AsyncSession,
        client: ConnectClient,
        topic_admin: Optional[TopicAdmin] = None,
        locks: Optional[KeyedLock] = None,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None
    ):
        self.db = db_session
        self.client = client
        self.topic_admin = topic_admin or TopicAdmin()
        self.locks = locks or pipeline_locks
        self.retry_attempts = settings.DEPLOY_RETRY_ATTEMPTS if retry_attempts is None else retry_attempts
        self.retry_delay = settings.DEPLOY_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.lifecycle = PipelineLifecycle(db_session)
        self.registry = ConfigRegistry(db_session)

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _load(self, pipeline_id, allow_deleted: bool = False) -> Tuple[Pipeline, Dict[ConnectorKind, PipelineConnector]]:
        pipeline = await self.lifecycle.get_pipeline(pipeline_id)
        if pipeline.deleted_at is not None and not allow_deleted:
            raise ConflictError(
                f"Pipeline {pipeline.name} is deleted",
                context={"pipeline_id": str(pipeline_id)}
            )
        connectors = await self.lifecycle.get_connectors(pipeline.id)
        return pipeline, connectors

    async def _resolve_config(
        self, pipeline: Pipeline, connector: PipelineConnector
    ) -> Tuple[Dict[str, Any], Optional[ConnectorVersion]]:
        """Desired config of a connector: active registry version, else stored config."""
        if connector.registry_connector:
            active = await self.registry.get_active_version(connector.registry_connector)
            if active is not None:
                logger.info(
                    f"Using {connector.registry_connector} v{active.version} for {connector.name}"
                )
                return active.config, active
            logger.warning(
                f"No active version of {connector.registry_connector}; using stored config for {connector.name}"
            )
        stored = pipeline.source_config if connector.type == ConnectorKind.SOURCE else pipeline.sink_config
        return stored or {}, None

    async def _push(self, name: str, config: Dict[str, Any]) -> Dict[str, Any]:
        """Create-or-update with optional retry of unreachable-engine failures."""
        for attempt in range(self.retry_attempts + 1):
            try:
                return await self.client.upsert_connector(name, config)
            except EngineUnreachable as e:
                if attempt >= self.retry_attempts:
                    raise
                delay = self.retry_delay * (2 ** attempt)
                logger.warning(
                    f"Engine unreachable deploying {name}. "
                    f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.retry_attempts}): {e.message}"
                )
                await asyncio.sleep(delay)

    async def _rollback_source(self, name: str) -> Dict[str, Any]:
        """Compensate a failed deploy by removing the source again."""
        try:
            await self.client.delete_connector(name)
            logger.info(f"Rollback: deleted source connector {name}")
            return {"connector": name, "action": "deleted", "success": True}
        except ConnectorNotFoundError:
            logger.info(f"Rollback: source connector {name} already absent")
            return {"connector": name, "action": "already_absent", "success": True}
        except EngineError as e:
            logger.error(f"Rollback of source connector {name} failed: {e.message}")
            return {"connector": name, "action": "delete_failed", "success": False, "error": e.message}

    # ========================================================================
    # Deploy
    # ========================================================================

    async def deploy_pipeline(self, pipeline_id) -> Dict[str, Any]:
        """
        Reconcile both connectors of a pipeline with their desired config.

        Returns:
            {"success", "pipeline_id", "status", "results": {"source", "sink"},
             "errors": [{connector, error, ...}], "rollback"}

        Raises:
            NotFoundError: Unknown pipeline
            ConflictError: Pipeline is deleted or still a draft
            ValidationError: Pipeline lacks a source or sink connector
        """
        async with self.locks.hold(pipeline_id):
            pipeline, connectors = await self._load(pipeline_id)
            if pipeline.status == PipelineStatus.DRAFT:
                raise ConflictError(
                    f"Pipeline {pipeline.name} is a draft; mark it ready before deploying",
                    context={"pipeline_id": str(pipeline_id), "status": pipeline.status.value}
                )
            if set(connectors) != set(DEPLOY_ORDER):
                raise ValidationError(
                    f"Pipeline {pipeline.name} is missing its source or sink connector",
                    context={"pipeline_id": str(pipeline_id)}
                )

            planned = {}
            for kind in DEPLOY_ORDER:
                connector = connectors[kind]
                raw, version = await self._resolve_config(pipeline, connector)
                config = normalize_config(
                    raw, connector.name, pipeline.name, kind.value, pipeline.restore_count or 0
                )
                planned[kind] = (connector, config, version)

            results: Dict[str, Any] = {"source": None, "sink": None}
            errors: List[Dict[str, Any]] = []
            rollback = None
            deployed: List[ConnectorKind] = []
            failed: Optional[ConnectorKind] = None
            now = utcnow()

            for kind in DEPLOY_ORDER:
                connector, config, version = planned[kind]
                logger.info(f"Deploying {kind.value} connector {connector.name}")
                logger.debug(f"Config for {connector.name}: {mask_sensitive(config)}")
                try:
                    outcome = await self._push(connector.name, config)
                except EngineError as e:
                    logger.error(f"Deploy of {connector.name} failed: {e.message}")
                    results[kind.value] = {"connector": connector.name, "error": e.message}
                    errors.append(_error_entry(connector.name, e))
                    failed = kind
                    if version is not None:
                        await self.registry.record_deployment(
                            version, self.client.base_url, DeploymentStatus.ERROR, e.message
                        )
                    break

                results[kind.value] = {
                    "connector": connector.name,
                    "action": outcome["action"],
                    "version": version.version if version is not None else None,
                }
                deployed.append(kind)

            if not errors:
                for kind in DEPLOY_ORDER:
                    connector, config, version = planned[kind]
                    connector.config = config
                    connector.connector_class = config.get("connector.class", connector.connector_class)
                    connector.status = ConnectorStatus.RUNNING
                    connector.last_deployed_at = now
                    if version is not None:
                        connector.last_deployed_version = version.version
                        await self.registry.record_deployment(
                            version, self.client.base_url, DeploymentStatus.DEPLOYED,
                            "Applied to Kafka Connect", deployed_at=now
                        )
                    connector.stage_pending(None)
                pipeline.status = PipelineStatus.RUNNING
                pipeline.last_deployed_at = now
            else:
                if ConnectorKind.SOURCE in deployed:
                    source, _, source_version = planned[ConnectorKind.SOURCE]
                    logger.warning(f"Sink failed for {pipeline.name}; rolling back source {source.name}")
                    rollback = await self._rollback_source(source.name)
                    if source_version is not None:
                        await self.registry.record_deployment(
                            source_version, self.client.base_url, DeploymentStatus.ERROR,
                            "Rolled back after sink failure"
                        )
                    if not rollback["success"]:
                        errors.append({
                            "connector": source.name,
                            "error": f"Rollback failed: {rollback['error']}",
                            "error_type": "RollbackFailed",
                            "retryable": True,
                        })
                for kind, connector in connectors.items():
                    connector.status = ConnectorStatus.FAILED if kind == failed else None
                pipeline.status = PipelineStatus.ERROR

            await commit_or_raise(self.db, "record pipeline deployment")

            return {
                "success": not errors,
                "pipeline_id": str(pipeline.id),
                "status": pipeline.status.value,
                "results": results,
                "errors": errors,
                "rollback": rollback,
            }

    # ========================================================================
    # Best-effort multi-connector operations
    # ========================================================================

    async def _for_each_connector(
        self,
        pipeline_id,
        action: str,
        call,
        target_status: Optional[ConnectorStatus],
        pipeline_status: Optional[PipelineStatus]
    ) -> Dict[str, Any]:
        async with self.locks.hold(pipeline_id):
            pipeline, connectors = await self._load(pipeline_id)
            results: Dict[str, Any] = {}
            errors: List[Dict[str, Any]] = []

            for kind in DEPLOY_ORDER:
                connector = connectors.get(kind)
                if connector is None:
                    continue
                try:
                    await call(connector.name)
                    connector.status = target_status
                    results[kind.value] = {"connector": connector.name, "action": action}
                except EngineError as e:
                    logger.warning(f"Failed to {action} connector {connector.name}: {e.message}")
                    results[kind.value] = {"connector": connector.name, "error": e.message}
                    errors.append(_error_entry(connector.name, e))

            if not errors and pipeline_status is not None and results:
                pipeline.status = pipeline_status
            await commit_or_raise(self.db, f"{action} pipeline")

            logger.info(f"{action} pipeline {pipeline.name}: {len(results) - len(errors)} ok, {len(errors)} failed")
            return {
                "success": not errors,
                "pipeline_id": str(pipeline.id),
                "status": pipeline.status.value,
                "results": results,
                "errors": errors,
            }

    async def start_pipeline(self, pipeline_id) -> Dict[str, Any]:
        """Resume both connectors; one failing does not stop the other."""
        return await self._for_each_connector(
            pipeline_id, "resumed", self.client.resume_connector,
            ConnectorStatus.RUNNING, PipelineStatus.RUNNING
        )

    async def pause_pipeline(self, pipeline_id) -> Dict[str, Any]:
        """Pause both connectors; one failing does not stop the other."""
        return await self._for_each_connector(
            pipeline_id, "paused", self.client.pause_connector,
            ConnectorStatus.PAUSED, PipelineStatus.PAUSED
        )

    async def delete_connectors(self, pipeline_id, delete_topics: bool = False) -> Dict[str, Any]:
        """
        Remove both connectors from the engine. Metadata rows are kept so the
        pipeline can be restored; topic deletion is optional and best-effort.
        """
        async with self.locks.hold(pipeline_id):
            pipeline, connectors = await self._load(pipeline_id, allow_deleted=True)
            deleted_connectors: List[str] = []
            deleted_topics: List[str] = []
            errors: List[Dict[str, Any]] = []
            warnings: List[str] = []

            for kind in DEPLOY_ORDER:
                connector = connectors.get(kind)
                if connector is None:
                    continue
                try:
                    await self.client.delete_connector(connector.name)
                    deleted_connectors.append(connector.name)
                    logger.info(f"Deleted connector {connector.name}")
                except ConnectorNotFoundError:
                    deleted_connectors.append(connector.name)
                except EngineError as e:
                    logger.warning(f"Failed to delete connector {connector.name}: {e.message}")
                    errors.append(_error_entry(connector.name, e))
                    continue
                connector.status = None

            if delete_topics:
                if not self.topic_admin.enabled:
                    warnings.append("Topic deletion skipped: KAFKA_REST_URL is not configured")
                else:
                    prefixes = [f"{pipeline.name}-source-dlq", f"{pipeline.name}-sink-dlq"]
                    for connector in connectors.values():
                        config = connector.config or {}
                        prefix = config.get("topic.prefix") or config.get("database.server.name")
                        if prefix:
                            prefixes.append(prefix)
                    try:
                        deleted_topics = await self.topic_admin.delete_related_topics(prefixes)
                    except EngineError as e:
                        logger.warning(f"Topic deletion for {pipeline.name} failed: {e.message}")
                        errors.append(_error_entry(pipeline.name, e))

            await commit_or_raise(self.db, "delete pipeline connectors")
            return {
                "success": not errors,
                "pipeline_id": str(pipeline.id),
                "deleted_connectors": deleted_connectors,
                "deleted_topics": deleted_topics,
                "errors": errors,
                "warnings": warnings,
            }

    async def get_status(self, pipeline_id) -> Dict[str, Any]:
        """Live status and tasks of both connectors, failures reported per connector."""
        pipeline, connectors = await self._load(pipeline_id, allow_deleted=True)
        statuses: Dict[str, Any] = {"source": None, "sink": None}
        errors: List[Dict[str, Any]] = []

        for kind in DEPLOY_ORDER:
            connector = connectors.get(kind)
            if connector is None:
                continue
            try:
                statuses[kind.value] = await self.client.get_connector_status(connector.name)
            except EngineError as e:
                errors.append(_error_entry(connector.name, e))

        return {
            "success": True,
            "pipeline_id": str(pipeline.id),
            "pipeline_status": pipeline.status.value,
            "connectors": statuses,
            "errors": errors,
        }

    # ========================================================================
    # Single connector controls
    # ========================================================================

    async def _pipeline_connector_by_name(self, name: str) -> Optional[PipelineConnector]:
        return await self.db.scalar(select(PipelineConnector).where(PipelineConnector.name == name))

    async def _control(self, name: str, action: str, call, status: Optional[ConnectorStatus]) -> Dict[str, Any]:
        connector = await self._pipeline_connector_by_name(name)
        lock_key = connector.pipeline_id if connector is not None else name
        async with self.locks.hold(lock_key):
            await call()
            if connector is not None and status is not None:
                connector.status = status
                await commit_or_raise(self.db, f"{action} connector")
        logger.info(f"Connector {name} {action}")
        return {"success": True, "connector": name, "action": action}

    async def pause_connector(self, name: str) -> Dict[str, Any]:
        return await self._control(
            name, "paused", lambda: self.client.pause_connector(name), ConnectorStatus.PAUSED
        )

    async def resume_connector(self, name: str) -> Dict[str, Any]:
        return await self._control(
            name, "resumed", lambda: self.client.resume_connector(name), ConnectorStatus.RUNNING
        )

    async def restart_connector(self, name: str, include_tasks: bool = False, only_failed: bool = False) -> Dict[str, Any]:
        return await self._control(
            name,
            "restarted",
            lambda: self.client.restart_connector(name, include_tasks=include_tasks, only_failed=only_failed),
            None
        )

    # ========================================================================
    # Pending config and registry deployments
    # ========================================================================

    async def deploy_pending(self, connector_id) -> Dict[str, Any]:
        """
        Push the staged config of one pipeline connector.

        Masked secret values are replaced by the currently deployed ones. The
        pending fields are cleared only after the engine accepted the config.
        """
        connector = await self.db.get(PipelineConnector, connector_id)
        if connector is None:
            raise NotFoundError(
                f"Pipeline connector {connector_id} not found",
                context={"resource": "pipeline_connector", "identifier": str(connector_id)}
            )

        async with self.locks.hold(connector.pipeline_id):
            pipeline = await self.lifecycle.get_pipeline(connector.pipeline_id)
            if pipeline.deleted_at is not None:
                raise ConflictError(
                    f"Pipeline {pipeline.name} is deleted",
                    context={"pipeline_id": str(pipeline.id)}
                )
            if not connector.has_pending_changes or not connector.pending_config:
                raise ValidationError(
                    f"Connector {connector.name} has no pending changes",
                    context={"connector": connector.name}
                )

            deployed = connector.config or {}
            config = {
                key: deployed[key] if value == MASKED_VALUE and key in deployed else value
                for key, value in connector.pending_config.items()
            }

            outcome = await self._push(connector.name, config)

            now = utcnow()
            version = None
            if connector.registry_connector:
                version = await self.registry.get_active_version(connector.registry_connector)
            if version is not None:
                connector.last_deployed_version = version.version
                await self.registry.record_deployment(
                    version, self.client.base_url, DeploymentStatus.DEPLOYED,
                    "Applied pending configuration", deployed_at=now
                )
            connector.config = config
            connector.last_deployed_at = now
            connector.stage_pending(None)
            await commit_or_raise(self.db, "deploy pending configuration")

            logger.info(f"Deployed pending configuration of {connector.name} ({outcome['action']})")
            return {
                "success": True,
                "connector": connector.name,
                "action": outcome["action"],
                "version": version.version if version is not None else None,
            }

    async def apply_deployment(self, deployment_id) -> Dict[str, Any]:
        """
        Push the version referenced by a deployment record to its target engine.

        The record ends up deployed, or error with the engine's message (and
        the engine error is re-raised).
        """
        record = await self.registry.get_deployment(deployment_id)
        deployment = record["deployment"]
        version = record["version"]
        name = record["connector"].name

        config = dict(version.config)
        config["name"] = name

        client = self.client
        if deployment.connect_cluster_url.rstrip("/") != self.client.base_url:
            client = self.client.for_url(deployment.connect_cluster_url)
        try:
            outcome = await client.upsert_connector(name, config)
        except EngineError as e:
            deployment.status = DeploymentStatus.ERROR
            deployment.status_msg = e.message
            await commit_or_raise(self.db, "apply deployment")
            logger.error(f"Deployment {deployment_id} of {name} failed: {e.message}")
            raise
        finally:
            if client is not self.client:
                await client.aclose()

        deployment.status = DeploymentStatus.DEPLOYED
        deployment.status_msg = "Applied to Kafka Connect"
        deployment.deployed_at = utcnow()
        await commit_or_raise(self.db, "apply deployment")

        logger.info(f"Applied deployment {deployment_id}: {name} v{version.version} ({outcome['action']})")
        return {"success": True, "deployment": deployment, "action": outcome["action"]}

"""
Configuration registry: append-only, checksum-deduplicated connector
config versions with a single active pointer per connector.

Features:
- Idempotent version creation (same canonical config returns the same version)
- Policy validation (advisory warnings stored, hard errors refused)
- Activation flips desired state only and stages the normalized config on
  every bound pipeline connector; pushing it live is the orchestrator's job
- Path-level diff between any two versions
- Deployment records (one row per version/environment/engine target)
"""

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, List, Optional
from core.config import settings
from core.database import commit_or_raise
from core.exceptions import ValidationError, NotFoundError, ConflictError
from core.logging import mask_sensitive
from models.base import ConnectorKind, DeploymentStatus
from models.registry import ConnectorDefinition, ConnectorVersion, Deployment
from models.pipeline import Pipeline, PipelineConnector
from controlplane.registry.diff import config_checksum, diff_configs
from controlplane.registry.normalizer import normalize_config
from controlplane.registry.policies import evaluate_policies
import logging

logger = logging.getLogger(__name__)

UNCHANGED_WARNING = "Configuration unchanged; existing version returned"


class ConfigRegistry:
    """Registry operations bound to one database session."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    # ========================================================================
    # Lookups
    # ========================================================================

    async def get_definition(self, name: str) -> ConnectorDefinition:
        result = await self.db.execute(
            select(ConnectorDefinition).where(ConnectorDefinition.name == name)
        )
        definition = result.scalar_one_or_none()
        if definition is None:
            raise NotFoundError(
                f"Connector {name} not found",
                context={"resource": "connector", "identifier": name}
            )
        return definition

    async def get_version(self, name: str, version: int) -> ConnectorVersion:
        definition = await self.get_definition(name)
        result = await self.db.execute(
            select(ConnectorVersion).where(
                ConnectorVersion.connector_id == definition.id,
                ConnectorVersion.version == version
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError(
                f"Version {version} of connector {name} not found",
                context={"resource": "version", "identifier": f"{name}@{version}"}
            )
        return row

    async def get_active_version(self, name: str) -> Optional[ConnectorVersion]:
        """Active version of a connector, or None when nothing is active."""
        result = await self.db.execute(
            select(ConnectorVersion)
            .join(ConnectorDefinition, ConnectorVersion.connector_id == ConnectorDefinition.id)
            .where(ConnectorDefinition.name == name, ConnectorVersion.is_active.is_(True))
        )
        return result.scalar_one_or_none()

    async def list_connectors(self) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(ConnectorDefinition, ConnectorVersion.version, ConnectorVersion.checksum)
            .outerjoin(
                ConnectorVersion,
                (ConnectorVersion.connector_id == ConnectorDefinition.id)
                & (ConnectorVersion.is_active.is_(True))
            )
            .order_by(ConnectorDefinition.name.asc())
        )
        return [
            {"connector": definition, "active_version": version, "active_checksum": checksum}
            for definition, version, checksum in result.all()
        ]

    async def list_versions(self, name: str) -> List[ConnectorVersion]:
        definition = await self.get_definition(name)
        result = await self.db.execute(
            select(ConnectorVersion)
            .where(ConnectorVersion.connector_id == definition.id)
            .order_by(ConnectorVersion.version.desc())
        )
        return list(result.scalars().all())

    # ========================================================================
    # Versions
    # ========================================================================

    async def _get_or_create_definition(
        self,
        name: str,
        kind: ConnectorKind,
        connector_class: str,
        owner_id: Optional[str],
        metadata: Optional[Dict[str, Any]]
    ) -> ConnectorDefinition:
        result = await self.db.execute(
            select(ConnectorDefinition).where(ConnectorDefinition.name == name)
        )
        definition = result.scalar_one_or_none()

        if definition is not None:
            if definition.kind != kind or definition.connector_class != connector_class:
                raise ValidationError(
                    f"Connector kind or class mismatch with existing record: "
                    f"expected kind={kind.value} class={connector_class}, "
                    f"found kind={definition.kind.value} class={definition.connector_class}",
                    context={"field_name": "connector_class", "connector": name}
                )
            return definition

        definition = ConnectorDefinition(
            name=name,
            kind=kind,
            connector_class=connector_class,
            owner_id=owner_id,
            extra_metadata=metadata or {}
        )
        self.db.add(definition)
        await self.db.flush()
        logger.info(f"Registered connector {name} ({kind.value}, {connector_class})")
        return definition

    async def create_version(
        self,
        name: str,
        kind: Any,
        connector_class: str,
        config: Dict[str, Any],
        created_by: Optional[str] = None,
        owner_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        schema_version: str = "v1"
    ) -> Dict[str, Any]:
        """
        Store a connector config as a new version unless an identical one exists.

        Returns:
            {"connector", "version", "created", "warnings"}

        Raises:
            ValidationError: Malformed input, kind/class mismatch or policy error
            ConflictError: A concurrent writer took the same version number
        """
        if not name or not connector_class or not isinstance(config, dict):
            raise ValidationError(
                "name, kind, connector_class and config are required",
                context={"connector": name}
            )
        try:
            kind = ConnectorKind(kind)
        except ValueError:
            raise ValidationError(
                f"Invalid connector kind: {kind}",
                context={"field_name": "kind"}
            )

        definition = await self._get_or_create_definition(
            name, kind, connector_class, owner_id, metadata
        )

        warnings, errors = evaluate_policies(kind.value, connector_class, config)
        if errors:
            await self.db.rollback()
            raise ValidationError(
                "Configuration policy violations: " + "; ".join(errors),
                context={"connector": name, "details": errors}
            )

        checksum = config_checksum(config)

        # Prefer the active version, then the newest one with the same content
        result = await self.db.execute(
            select(ConnectorVersion)
            .where(
                ConnectorVersion.connector_id == definition.id,
                ConnectorVersion.checksum == checksum
            )
            .order_by(ConnectorVersion.is_active.desc(), ConnectorVersion.version.desc())
            .limit(1)
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            await commit_or_raise(self.db, "create connector version")
            logger.info(f"Config for {name} unchanged; returning version {existing.version}")
            return {
                "connector": definition,
                "version": existing,
                "created": False,
                "warnings": [UNCHANGED_WARNING] + warnings,
            }

        max_version = await self.db.scalar(
            select(func.max(ConnectorVersion.version)).where(
                ConnectorVersion.connector_id == definition.id
            )
        )
        version = ConnectorVersion(
            connector_id=definition.id,
            version=(max_version or 0) + 1,
            config=config,
            schema_version=schema_version or "v1",
            checksum=checksum,
            is_active=False,
            policy_warnings=warnings,
            created_by=created_by
        )
        self.db.add(version)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError(
                f"Concurrent version creation for connector {name}",
                context={"connector": name},
                original_exception=e
            )
        await commit_or_raise(self.db, "create connector version")

        logger.info(
            f"Created version {version.version} of {name} "
            f"(checksum {checksum[:12]}, {len(warnings)} warning(s))"
        )
        logger.debug(f"Config of {name} v{version.version}: {mask_sensitive(config)}")
        return {"connector": definition, "version": version, "created": True, "warnings": warnings}

    async def activate_version(self, name: str, version: int) -> Dict[str, Any]:
        """
        Make a version the desired state of its connector.

        No engine call is made. The normalized config is staged as pending on
        every pipeline connector bound to this registry connector.

        Raises:
            NotFoundError: Unknown connector
            ConflictError: The version does not exist
        """
        definition = await self.get_definition(name)
        result = await self.db.execute(
            select(ConnectorVersion).where(
                ConnectorVersion.connector_id == definition.id,
                ConnectorVersion.version == version
            )
        )
        target = result.scalar_one_or_none()
        if target is None:
            raise ConflictError(
                f"Cannot activate missing version {version} of connector {name}",
                context={"connector": name, "version": version}
            )

        await self.db.execute(
            update(ConnectorVersion)
            .where(ConnectorVersion.connector_id == definition.id, ConnectorVersion.id != target.id)
            .values(is_active=False)
        )
        target.is_active = True

        staged = await self._stage_pending(name, target)
        await commit_or_raise(self.db, "activate connector version")

        logger.info(f"Activated version {version} of {name}; staged on {staged} pipeline connector(s)")
        return {"connector": definition, "version": target, "staged_connectors": staged}

    async def _stage_pending(self, name: str, version: ConnectorVersion) -> int:
        result = await self.db.execute(
            select(PipelineConnector, Pipeline)
            .join(Pipeline, PipelineConnector.pipeline_id == Pipeline.id)
            .where(PipelineConnector.registry_connector == name)
        )
        staged = 0
        for connector, pipeline in result.all():
            pending = normalize_config(
                version.config,
                connector.name,
                pipeline.name,
                connector.type.value,
                pipeline.restore_count or 0
            )
            connector.stage_pending(pending)
            staged += 1
        return staged

    async def diff(self, name: str, from_version: int, to_version: int) -> Dict[str, Any]:
        source = await self.get_version(name, from_version)
        target = await self.get_version(name, to_version)
        return diff_configs(source.config, target.config)

    # ========================================================================
    # Deployments
    # ========================================================================

    async def create_deployment(
        self,
        name: str,
        version: int,
        environment: Optional[str] = None,
        connect_url: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> Deployment:
        """Record a pending deployment; an existing row for the same target is returned."""
        target = await self.get_version(name, version)
        environment = environment or settings.ENVIRONMENT
        connect_url = (connect_url or settings.CONNECT_URL).rstrip("/")

        deployment = await self._find_deployment(target.id, environment, connect_url)
        if deployment is not None:
            return deployment

        deployment = Deployment(
            connector_version_id=target.id,
            environment=environment,
            connect_cluster_url=connect_url,
            status=DeploymentStatus.PENDING,
            created_by=created_by
        )
        self.db.add(deployment)
        await commit_or_raise(self.db, "create deployment")
        logger.info(f"Created deployment of {name} v{version} to {connect_url} ({environment})")
        return deployment

    async def _find_deployment(
        self, version_id, environment: str, connect_url: str
    ) -> Optional[Deployment]:
        result = await self.db.execute(
            select(Deployment).where(
                Deployment.connector_version_id == version_id,
                Deployment.environment == environment,
                Deployment.connect_cluster_url == connect_url
            )
        )
        return result.scalar_one_or_none()

    async def record_deployment(
        self,
        version: ConnectorVersion,
        connect_url: str,
        status: DeploymentStatus,
        status_msg: Optional[str] = None,
        deployed_at=None
    ) -> Deployment:
        """Upsert the deployment row of a version on a target (no commit)."""
        environment = settings.ENVIRONMENT
        deployment = await self._find_deployment(version.id, environment, connect_url)
        if deployment is None:
            deployment = Deployment(
                connector_version_id=version.id,
                environment=environment,
                connect_cluster_url=connect_url
            )
            self.db.add(deployment)
        deployment.status = status
        deployment.status_msg = status_msg
        if deployed_at is not None:
            deployment.deployed_at = deployed_at
        return deployment

    async def get_deployment(self, deployment_id) -> Dict[str, Any]:
        """Deployment with its version and connector definition."""
        result = await self.db.execute(
            select(Deployment, ConnectorVersion, ConnectorDefinition)
            .join(ConnectorVersion, Deployment.connector_version_id == ConnectorVersion.id)
            .join(ConnectorDefinition, ConnectorVersion.connector_id == ConnectorDefinition.id)
            .where(Deployment.id == deployment_id)
        )
        row = result.one_or_none()
        if row is None:
            raise NotFoundError(
                f"Deployment {deployment_id} not found",
                context={"resource": "deployment", "identifier": str(deployment_id)}
            )
        deployment, version, definition = row
        return {"deployment": deployment, "version": version, "connector": definition}

    async def list_deployments(self, connector_name: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        query = (
            select(Deployment, ConnectorDefinition.name, ConnectorVersion.version)
            .join(ConnectorVersion, Deployment.connector_version_id == ConnectorVersion.id)
            .join(ConnectorDefinition, ConnectorVersion.connector_id == ConnectorDefinition.id)
        )
        if connector_name:
            query = query.where(ConnectorDefinition.name == connector_name)
        query = query.order_by(Deployment.created_at.desc()).limit(limit)

        result = await self.db.execute(query)
        return [
            {"deployment": deployment, "connector_name": name, "connector_version": version}
            for deployment, name, version in result.all()
        ]

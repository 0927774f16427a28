"""
Advisory and blocking policy checks for connector configurations.

Warnings are stored on the version and never block the write; errors make
the registry refuse the version.
"""

from typing import Any, Dict, List, Optional, Tuple
from core.config import settings

JDBC_SINK_CLASS = "io.debezium.connector.jdbc.JdbcSinkConnector"
RECORD_PK_MODES = ("record_key", "record_value")


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if value.lower() == "true":
            return True
        if value.lower() == "false":
            return False
    return None


def evaluate_policies(
    kind: str,
    connector_class: str,
    config: Dict[str, Any],
    max_tasks: Optional[int] = None
) -> Tuple[List[str], List[str]]:
    """
    Evaluate a config against the policy set.

    Args:
        kind: "source" or "sink"
        connector_class: Fully qualified connector class
        config: Flat connector config
        max_tasks: tasks.max ceiling (defaults to POLICY_MAX_TASKS)

    Returns:
        (warnings, errors)
    """
    warnings: List[str] = []
    errors: List[str] = []
    ceiling = max_tasks if max_tasks is not None else settings.POLICY_MAX_TASKS

    try:
        tasks_max = int(config.get("tasks.max")) if config.get("tasks.max") is not None else None
    except (TypeError, ValueError):
        tasks_max = None
    if tasks_max is not None and tasks_max > ceiling:
        warnings.append(f"tasks.max exceeds recommended threshold ({ceiling})")

    if str(config.get("errors.tolerance", "")).lower() == "all":
        warnings.append("errors.tolerance=all may hide data issues")

    if connector_class == JDBC_SINK_CLASS:
        pk_mode = config.get("primary.key.mode") or config.get("pk.mode")
        if config.get("insert.mode") == "upsert" and pk_mode not in RECORD_PK_MODES:
            errors.append("insert.mode=upsert requires pk.mode to be record_key or record_value")

        # Both must be explicit
        if _as_bool(config.get("auto.create")) is False and _as_bool(config.get("auto.evolve")) is True:
            warnings.append("auto.evolve enabled while auto.create disabled")

    return warnings, errors

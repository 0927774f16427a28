"""
Rule-driven normalization of stored connector configs into the flat string
map the execution engine accepts.

Stored configs come in several historical shapes (nested snapshot blocks,
stringified JSON, snake_case keys, registry bookkeeping). normalize_config
maps all of them to one canonical form per connector kind. It is pure: no
I/O, no logging of values.
"""

import json
from typing import Any, Dict, Optional

from controlplane.registry.policies import JDBC_SINK_CLASS

NESTED_CONFIG_KEYS = ("snapshot_config", "config")
REGISTRY_KEYS = ("registry_connector", "registry_version", "checksum", "snapshot_config")
RESTORE_SUFFIX_KEYS = ("database.server.name", "slot.name", "topic.prefix")
PLACEHOLDER_TOPICS = ("", "placeholder")


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _flatten(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Lift nested blocks (and stringified JSON blocks) to the top level."""
    flat: Dict[str, Any] = {}
    for key, value in (raw or {}).items():
        if value is None:
            continue

        if isinstance(value, dict):
            flat.update({k: v for k, v in value.items() if v is not None})
            continue

        if isinstance(value, str) and key in NESTED_CONFIG_KEYS and value.strip().startswith("{"):
            try:
                parsed = json.loads(value)
            except ValueError:
                flat[key] = value
                continue
            if isinstance(parsed, dict):
                flat.update({k: v for k, v in parsed.items() if v is not None})
            else:
                flat[key] = value
            continue

        flat[key] = value
    return flat


def _fix_jdbc_sink(flat: Dict[str, Any]) -> None:
    if flat.get("connection.user") and not flat.get("connection.username"):
        flat["connection.username"] = flat.pop("connection.user")

    topics = flat.get("topics")
    if flat.get("topics.regex") and topics is not None:
        if str(topics).strip() in PLACEHOLDER_TOPICS:
            del flat["topics"]
        else:
            del flat["topics.regex"]
    elif topics is not None and str(topics).strip() in PLACEHOLDER_TOPICS:
        del flat["topics"]

    if not flat.get("primary.key.mode"):
        flat["primary.key.mode"] = "record_key"
    if not flat.get("delete.enabled"):
        flat["delete.enabled"] = "true"


def normalize_config(
    raw: Optional[Dict[str, Any]],
    connector_name: str,
    pipeline_name: str,
    kind: str,
    restore_count: int = 0
) -> Dict[str, str]:
    """
    Produce the engine-ready config for one pipeline connector.

    Args:
        raw: Stored config in any supported shape
        connector_name: Name of the connector on the engine
        pipeline_name: Owning pipeline name (used for the DLQ topic)
        kind: "source" or "sink"
        restore_count: Times the pipeline was restored; a restored source
            gets a `_r<N>` suffix on its server name, slot and topic prefix
            so it does not collide with the pre-delete offsets

    Returns:
        Flat config with string values only
    """
    flat = _flatten(raw or {})

    if flat.get("connector_class") and not flat.get("connector.class"):
        flat["connector.class"] = flat["connector_class"]
    flat.pop("connector_class", None)
    for key in REGISTRY_KEYS:
        flat.pop(key, None)

    if flat.get("connector.class") == JDBC_SINK_CLASS:
        _fix_jdbc_sink(flat)

    flat["name"] = connector_name

    # Replication slot names allow lowercase, digits and underscores only
    slot_name = flat.get("slot.name")
    if isinstance(slot_name, str) and "-" in slot_name:
        flat["slot.name"] = slot_name.replace("-", "_")

    flat["errors.tolerance"] = "all"
    flat["errors.deadletterqueue.topic.name"] = f"{pipeline_name}-{kind}-dlq"
    flat["errors.deadletterqueue.topic.replication.factor"] = "1"
    flat["errors.deadletterqueue.context.headers.enable"] = "true"

    if kind == "source" and restore_count > 0 and flat.get("database.server.name"):
        for key in RESTORE_SUFFIX_KEYS:
            if flat.get(key):
                flat[key] = f"{flat[key]}_r{restore_count}"

    return {key: _stringify(value) for key, value in flat.items()}

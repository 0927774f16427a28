"""
Canonical form, checksum and structural diff of connector configurations.
"""

import hashlib
import json
from typing import Any, Dict, List


def canonicalize(config: Any) -> str:
    """Serialize a config with stable key ordering."""
    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def config_checksum(config: Dict[str, Any]) -> str:
    """SHA-256 of the canonical config"""
    return hashlib.sha256(canonicalize(config).encode("utf-8")).hexdigest()


def flatten_config(value: Any, prefix: str = "") -> Dict[str, str]:
    """
    Flatten a nested config into dotted paths with string leaves.

    Nested mappings join with '.', list items are addressed as 'key[i]'.
    """
    if value is None:
        return {prefix or "value": "null"}

    if isinstance(value, list):
        flat: Dict[str, str] = {}
        for index, item in enumerate(value):
            flat.update(flatten_config(item, f"{prefix}[{index}]"))
        return flat

    if isinstance(value, dict):
        flat = {}
        for key, item in value.items():
            flat.update(flatten_config(item, f"{prefix}.{key}" if prefix else str(key)))
        return flat

    return {prefix or "value": value if isinstance(value, str) else json.dumps(value)}


def diff_configs(from_config: Dict[str, Any], to_config: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Compare two configs path by path.

    Returns:
        {"added": [{path, value}], "removed": [{path, value}],
         "changed": [{path, from, to}]}; the three lists are disjoint and
        together cover every path present in either config.
    """
    from_flat = flatten_config(from_config or {})
    to_flat = flatten_config(to_config or {})

    added = []
    removed = []
    changed = []

    for path, value in to_flat.items():
        if path not in from_flat:
            added.append({"path": path, "value": value})
        elif from_flat[path] != value:
            changed.append({"path": path, "from": from_flat[path], "to": value})

    for path, value in from_flat.items():
        if path not in to_flat:
            removed.append({"path": path, "value": value})

    return {"added": added, "removed": removed, "changed": changed}

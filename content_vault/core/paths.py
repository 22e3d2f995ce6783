"""
Dotted-path helpers and canonical JSON for stored values.
"""

import copy
import json
from typing import Any, Dict, List

_MISSING = object()


def canonical_json(value: Any) -> str:
    """Serialize a value to the normalized form stored in the vault.

    Two values are considered equal by the stores iff their canonical JSON is
    byte-equal.
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def load_json(text: str, default: Any = None) -> Any:
    if text is None:
        return default
    return json.loads(text)


def split_path(path: str) -> List[str]:
    if not isinstance(path, str) or not path.strip():
        raise ValueError("Field path must be a non-empty string")
    parts = path.strip().split(".")
    if any(not part for part in parts):
        raise ValueError(f"Invalid field path: {path!r}")
    return parts


def get_path(document: Dict[str, Any], path: str, default: Any = None) -> Any:
    """Read a dotted path from a nested dict, returning default when absent."""
    node: Any = document
    for part in split_path(path):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def has_path(document: Dict[str, Any], path: str) -> bool:
    return get_path(document, path, _MISSING) is not _MISSING


def set_path(document: Dict[str, Any], path: str, value: Any) -> Dict[str, Any]:
    """Return a deep copy of document with value written at the dotted path.

    Intermediate objects are created as needed; a non-dict intermediate is
    replaced by an object.
    """
    result = copy.deepcopy(document) if document else {}
    parts = split_path(path)
    node = result
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = copy.deepcopy(value)
    return result


def is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}

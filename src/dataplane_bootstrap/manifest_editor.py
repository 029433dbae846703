"""Path-addressable editing helpers for untyped Kubernetes manifest trees.

Manifests are plain ``dict``/``list`` trees as produced by ``yaml.safe_load``.
Paths are dotted keys with optional array indices, for example::

    metadata.namespace
    spec.template.spec.imagePullSecrets[0].name
    subjects[1].namespace

Setting a path creates missing intermediate objects and arrays. Arrays are
padded with ``None`` up to the requested index, and an intermediate node that
is not an object is replaced by a fresh object before descending further.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple

from .errors import ManifestError

Manifest = Dict[str, Any]

_ARRAY_SEGMENT = re.compile(r"^([^\[\]]+)\[(\d+)\]$")


def parse_segment(segment: str) -> Tuple[str, Optional[int]]:
    """Split a ``key[index]`` segment into its key and index (``None`` for plain keys)."""

    match = _ARRAY_SEGMENT.match(segment)
    if match is None:
        return segment, None
    return match.group(1), int(match.group(2))


def _split(path: str) -> List[str]:
    parts = path.split(".")
    if not path or any(not part for part in parts):
        raise ManifestError(f"Invalid manifest path '{path}'.")
    return parts


def set_path(tree: Manifest, path: str, value: Any) -> None:
    """Write ``value`` at ``path``, creating intermediate nodes as needed."""

    parts = _split(path)
    current: Any = tree
    for position, part in enumerate(parts):
        is_last = position == len(parts) - 1
        key, index = parse_segment(part)
        if not isinstance(current, dict):
            raise ManifestError(f"Cannot set '{path}': parent of '{part}' is not an object.")

        if index is None:
            if is_last:
                current[key] = value
                return
            next_node = current.get(key)
            if not isinstance(next_node, dict):
                next_node = {}
                current[key] = next_node
            current = next_node
            continue

        array = current.get(key)
        if not isinstance(array, list):
            array = []
            current[key] = array
        while len(array) <= index:
            array.append(None)
        if is_last:
            array[index] = value
            return
        if not isinstance(array[index], dict):
            array[index] = {}
        current = array[index]


def get_path(tree: Manifest, path: str, default: Any = None) -> Any:
    """Return the value at ``path`` or ``default`` when any segment is missing."""

    current: Any = tree
    for part in _split(path):
        key, index = parse_segment(part)
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
        if index is not None:
            if not isinstance(current, list) or index >= len(current):
                return default
            current = current[index]
    return current


def try_get_string(tree: Manifest, path: str) -> Optional[str]:
    """Return the string at ``path``; non-string values count as absent."""

    value = get_path(tree, path)
    return value if isinstance(value, str) else None


def get_required_string(tree: Manifest, path: str) -> str:
    """Return a non-blank string at ``path`` or raise :class:`ManifestError`."""

    value = try_get_string(tree, path)
    if value is None or not value.strip():
        raise ManifestError(f"Required value '{path}' not found in manifest.")
    return value


def ensure_object_path(tree: Manifest, path: str) -> Dict[str, Any]:
    """Return the object at ``path``, creating it (and its parents) when absent."""

    current: Any = tree
    for part in _split(path):
        key, index = parse_segment(part)
        if index is not None:
            array = ensure_array(current, key)
            while len(array) <= index:
                array.append(None)
            if not isinstance(array[index], dict):
                array[index] = {}
            current = array[index]
            continue
        next_node = current.get(key)
        if not isinstance(next_node, dict):
            next_node = {}
            current[key] = next_node
        current = next_node
    return current


def ensure_array(node: Dict[str, Any], key: str) -> List[Any]:
    """Return ``node[key]`` as a list, replacing a missing or non-list value."""

    array = node.get(key)
    if not isinstance(array, list):
        array = []
        node[key] = array
    return array


def find_by_name(array: List[Any], name: str) -> Optional[Dict[str, Any]]:
    for entry in array:
        if isinstance(entry, dict) and entry.get("name") == name:
            return entry
    return None


def ensure_named_object(array: List[Any], name: str) -> Dict[str, Any]:
    """Return the entry called ``name``, appending ``{"name": name}`` when missing."""

    existing = find_by_name(array, name)
    if existing is not None:
        return existing
    created: Dict[str, Any] = {"name": name}
    array.append(created)
    return created


def ensure_named_entry(array: List[Any], entry: Dict[str, Any]) -> bool:
    """Append ``entry`` unless an entry with the same name exists; return whether it was added."""

    if find_by_name(array, entry["name"]) is not None:
        return False
    array.append(entry)
    return True


def ensure_env_var(env: List[Any], name: str, value: str) -> bool:
    return ensure_named_entry(env, {"name": name, "value": value})


def ensure_first_container(tree: Manifest, pod_spec_path: str = "spec.template.spec") -> Dict[str, Any]:
    """Return the first container of the pod spec at ``pod_spec_path``, creating it if needed."""

    containers = ensure_array(ensure_object_path(tree, pod_spec_path), "containers")
    if not containers:
        containers.append({})
    if not isinstance(containers[0], dict):
        containers[0] = {}
    return containers[0]

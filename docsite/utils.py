"""Shared helpers for merging, freezing and serialising build data."""

from __future__ import annotations

import functools
import json
import re
from datetime import date, datetime, time
from types import MappingProxyType
from typing import Any, Dict, Mapping


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a new mapping with ``override`` merged into ``base``.

    Mappings merge key by key, sequences concatenate, scalars in ``override``
    win and ``None`` leaves the existing value untouched.
    """
    merged: Dict[str, Any] = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        elif isinstance(current, (list, tuple)) and isinstance(value, (list, tuple)):
            merged[key] = [*current, *value]
        else:
            merged[key] = value
    return merged


def freeze(value: Any) -> Any:
    """Recursively convert mappings to read-only proxies and lists to tuples."""
    if isinstance(value, MappingProxyType):
        return value
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of :func:`freeze`, producing plain JSON-compatible containers."""
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(value, Mapping):
        return {str(key): thaw(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((thaw(item) for item in value), key=repr)
    return value


def normalize_data(value: Any) -> Any:
    """Coerce YAML-loaded data into JSON-compatible values."""
    if isinstance(value, Mapping):
        return {str(key): normalize_data(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [normalize_data(item) for item in value]
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def dump_json(payload: Any) -> str:
    """Serialise payload deterministically for artifacts and caches."""
    return json.dumps(thaw(payload), indent=2, sort_keys=True, ensure_ascii=False, default=str) + "\n"


@functools.lru_cache(maxsize=256)
def _glob_regex(pattern: str) -> "re.Pattern[str]":
    parts = []
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if pattern.startswith("**/", index):
            parts.append("(?:.*/)?")
            index += 3
            continue
        if pattern.startswith("**", index):
            parts.append(".*")
            index += 2
            continue
        if char == "*":
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        else:
            parts.append(re.escape(char))
        index += 1
    return re.compile("^" + "".join(parts) + "$")


def glob_match(path: str, pattern: str) -> bool:
    """Match a POSIX relative path against a ``**``-aware glob."""
    normalized = path.replace("\\", "/")
    return bool(_glob_regex(pattern.lstrip("/")).match(normalized))


__all__ = ["deep_merge", "dump_json", "freeze", "glob_match", "normalize_data", "thaw"]

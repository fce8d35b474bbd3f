"""Plugin contract, hook orchestration and discovery utilities."""

from __future__ import annotations

from importlib import metadata
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence

from .base import ConfigEnv, FunctionPlugin, Hook, PageContext, Plugin, define_plugin
from .container import PluginContainer
from .last_updated import LastUpdatedPlugin
from .reading_time import ReadingTimePlugin

_ENTRY_POINT_GROUP = "docsite.plugins"

_BUILTIN_FACTORIES: dict[str, Callable[..., Plugin]] = {
    "reading-time": ReadingTimePlugin,
    "last-updated": LastUpdatedPlugin,
}


def available_plugins() -> List[str]:
    """Return the names of builtin and installed plugins."""
    names = list(_BUILTIN_FACTORIES)
    for entry in _iter_entry_points():
        if entry.name not in names:
            names.append(entry.name)
    return names


def resolve_plugins(specs: Sequence[Any] | None) -> List[Plugin]:
    """Turn configured plugin specs into instances, preserving order.

    A spec is a :class:`Plugin` instance, a registered name, or a mapping with
    ``name`` and optional ``options`` passed to the factory as keyword
    arguments.
    """

    plugins: List[Plugin] = []
    seen: set[str] = set()
    for spec in specs or ():
        plugin = _resolve_one(spec)
        key = plugin.name.lower()
        if key in seen:
            raise ValueError(f"Plugin '{plugin.name}' is configured more than once")
        seen.add(key)
        plugins.append(plugin)
    return plugins


def _resolve_one(spec: Any) -> Plugin:
    if isinstance(spec, Plugin):
        return spec
    if isinstance(spec, str):
        return _instantiate(spec, {})
    if isinstance(spec, Mapping):
        name = spec.get("name")
        if not isinstance(name, str) or not name:
            raise TypeError("Plugin mapping must contain a non-empty 'name'")
        options = spec.get("options") or {}
        if not isinstance(options, Mapping):
            raise TypeError(f"Options for plugin '{name}' must be a mapping")
        return _instantiate(name, dict(options))
    raise TypeError(f"Unsupported plugin specification: {spec!r}")


def _instantiate(name: str, options: Dict[str, Any]) -> Plugin:
    factory = _lookup_factory(name)
    try:
        instance = factory(**options)
    except TypeError as exc:
        raise TypeError(f"Invalid options for plugin '{name}': {exc}") from exc
    if not isinstance(instance, Plugin):
        raise TypeError(f"Plugin factory for '{name}' did not return a Plugin instance")
    return instance


def _lookup_factory(name: str) -> Callable[..., Plugin]:
    key = name.lower()
    if key in _BUILTIN_FACTORIES:
        return _BUILTIN_FACTORIES[key]
    for entry in _iter_entry_points():
        if entry.name.lower() != key:
            continue
        try:
            loaded = entry.load()
        except Exception as exc:  # pragma: no cover
            raise RuntimeError(f"Failed to load plugin entry point '{name}': {exc}") from exc
        return _coerce_factory(name, loaded)
    raise ValueError(f"Unknown plugin requested: {name}")


def _coerce_factory(name: str, obj: object) -> Callable[..., Plugin]:
    if isinstance(obj, Plugin):
        if obj.name != name:
            raise TypeError(f"Plugin entry point '{name}' returned plugin '{obj.name}'")

        def _existing(**options: Any) -> Plugin:
            if options:
                raise TypeError("pre-built plugin instances take no options")
            return obj

        return _existing
    if isinstance(obj, type) and issubclass(obj, Plugin):
        return obj
    if callable(obj):
        return obj  # type: ignore[return-value]
    raise TypeError("Plugin entry point must be a Plugin subclass, instance or factory")


def _iter_entry_points() -> Iterable[metadata.EntryPoint]:
    return metadata.entry_points(group=_ENTRY_POINT_GROUP)


__all__ = [
    "ConfigEnv",
    "FunctionPlugin",
    "Hook",
    "LastUpdatedPlugin",
    "PageContext",
    "Plugin",
    "PluginContainer",
    "ReadingTimePlugin",
    "available_plugins",
    "define_plugin",
    "resolve_plugins",
]

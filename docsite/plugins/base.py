"""Base classes for docsite plugins."""

from __future__ import annotations

import hashlib
import inspect
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from importlib import metadata
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Dict, FrozenSet, Mapping, Optional

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from markdown_it import MarkdownIt

    from ..config import SiteConfig
    from ..models import PageData, SourceFile


class Hook(str, Enum):
    """The fixed set of lifecycle hooks a plugin may implement."""

    CONFIG = "config"
    CONFIG_RESOLVED = "config_resolved"
    EXTEND_MARKDOWN = "extend_markdown"
    EXTEND_PAGE_DATA = "extend_page_data"
    BUILD_START = "build_start"
    BUILD_END = "build_end"


@dataclass(frozen=True)
class ConfigEnv:
    """Execution environment handed to ``config`` hooks."""

    mode: str
    command: str


@dataclass(frozen=True)
class PageContext:
    """Read-only context handed to ``extend_page_data`` hooks."""

    config: "SiteConfig"
    source: "SourceFile"

    @property
    def relative_path(self) -> str:
        return self.source.relative_path


class Plugin:
    """Contract for plugins taking part in the build pipeline.

    Subclasses list the hooks they implement in ``hooks``; the container never
    calls a hook that is not declared there. Any hook may be a coroutine.
    """

    name: str = ""
    hooks: FrozenSet[Hook] = frozenset()
    needs_content: bool = False
    slots: Mapping[str, str] = MappingProxyType({})
    global_components: Mapping[str, str] = MappingProxyType({})
    client_module: Optional[str] = None

    def config(self, config: dict, env: ConfigEnv) -> Optional[Mapping[str, Any]]:
        """Return a partial override merged into the tentative configuration."""
        return None

    def config_resolved(self, config: "SiteConfig") -> None:
        """Observe the final configuration; no mutation is possible."""

    def extend_markdown(self, md: "MarkdownIt") -> None:
        """Register syntax extensions on the process-lifetime engine."""

    def extend_page_data(self, page: "PageData", ctx: PageContext) -> None:
        """Mutate the in-progress page record."""

    def build_start(self, config: "SiteConfig") -> None:
        """Called before sources are scanned."""

    def build_end(self, config: "SiteConfig") -> None:
        """Called after the route table has been produced."""

    def cache_key(self) -> Dict[str, Any]:
        """Identify what this plugin contributes to compiled Markdown.

        Cached pages are reused only while every ``extend_markdown`` plugin
        reports the same key. The default covers the plugin class and a hash of
        its source, the version of the distribution providing it and its plain
        public attributes. Override it when output depends on anything else.
        """
        cls = type(self)
        return {
            "name": self.name,
            "plugin": f"{cls.__module__}.{cls.__qualname__}",
            "version": distribution_version(cls.__module__),
            "options": _plain_attributes(self),
            "code": code_digest(cls),
        }

    def implements(self, hook: Hook) -> bool:
        return hook in self.hooks

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class FunctionPlugin(Plugin):
    """Plugin assembled from plain callables by :func:`define_plugin`."""

    def __init__(
        self,
        name: str,
        callables: Mapping[Hook, Callable[..., Any]],
        *,
        needs_content: bool = False,
        slots: Optional[Mapping[str, str]] = None,
        global_components: Optional[Mapping[str, str]] = None,
        client_module: Optional[str] = None,
    ) -> None:
        self.name = name
        self._callables = dict(callables)
        self.hooks = frozenset(self._callables)
        self.needs_content = needs_content
        self.slots = dict(slots or {})
        self.global_components = dict(global_components or {})
        self.client_module = client_module

    def config(self, config, env):
        return self._callables[Hook.CONFIG](config, env)

    def config_resolved(self, config):
        return self._callables[Hook.CONFIG_RESOLVED](config)

    def extend_markdown(self, md):
        return self._callables[Hook.EXTEND_MARKDOWN](md)

    def extend_page_data(self, page, ctx):
        return self._callables[Hook.EXTEND_PAGE_DATA](page, ctx)

    def build_start(self, config):
        return self._callables[Hook.BUILD_START](config)

    def build_end(self, config):
        return self._callables[Hook.BUILD_END](config)

    def cache_key(self) -> Dict[str, Any]:
        key = super().cache_key()
        key["code"] = code_digest(self._callables.get(Hook.EXTEND_MARKDOWN))
        return key


def define_plugin(
    name: str,
    *,
    config: Optional[Callable[..., Any]] = None,
    config_resolved: Optional[Callable[..., Any]] = None,
    extend_markdown: Optional[Callable[..., Any]] = None,
    extend_page_data: Optional[Callable[..., Any]] = None,
    build_start: Optional[Callable[..., Any]] = None,
    build_end: Optional[Callable[..., Any]] = None,
    needs_content: bool = False,
    slots: Optional[Mapping[str, str]] = None,
    global_components: Optional[Mapping[str, str]] = None,
    client_module: Optional[str] = None,
) -> Plugin:
    """Build a plugin whose capabilities are exactly the callables supplied."""
    provided = {
        Hook.CONFIG: config,
        Hook.CONFIG_RESOLVED: config_resolved,
        Hook.EXTEND_MARKDOWN: extend_markdown,
        Hook.EXTEND_PAGE_DATA: extend_page_data,
        Hook.BUILD_START: build_start,
        Hook.BUILD_END: build_end,
    }
    callables = {hook: func for hook, func in provided.items() if func is not None}
    return FunctionPlugin(
        name,
        callables,
        needs_content=needs_content,
        slots=slots,
        global_components=global_components,
        client_module=client_module,
    )


_CLIENT_FIELDS = frozenset({"name", "hooks", "needs_content", "slots", "global_components", "client_module"})
_PLAIN_TYPES = (str, int, float, bool, type(None))


@lru_cache(maxsize=None)
def distribution_version(module: str) -> Optional[str]:
    """Return the installed version of the distribution providing ``module``."""
    top_level = module.split(".", 1)[0]
    for distribution in metadata.packages_distributions().get(top_level, []):
        try:
            return metadata.version(distribution)
        except metadata.PackageNotFoundError:
            continue
    return None


def code_digest(obj: Any) -> Optional[str]:
    """Hash the source of ``obj`` plus the plain values its closure captured."""
    if obj is None:
        return None
    obj = inspect.unwrap(getattr(obj, "__func__", obj))
    try:
        source = inspect.getsource(obj)
    except (OSError, TypeError):
        source = f"{getattr(obj, '__module__', '')}:{getattr(obj, '__qualname__', type(obj).__qualname__)}"
    digest = hashlib.sha256(source.encode("utf-8"))
    for cell in getattr(obj, "__closure__", None) or ():
        try:
            value = cell.cell_contents
        except ValueError:
            continue
        digest.update(repr(value).encode("utf-8") if _is_plain(value) else b"?")
    return digest.hexdigest()


def _plain_attributes(plugin: Plugin) -> Dict[str, Any]:
    return {
        key: value
        for key, value in sorted(vars(plugin).items())
        if not key.startswith("_") and key not in _CLIENT_FIELDS and _is_plain(value)
    }


def _is_plain(value: Any) -> bool:
    if isinstance(value, _PLAIN_TYPES):
        return True
    if isinstance(value, (list, tuple)):
        return all(_is_plain(item) for item in value)
    if isinstance(value, Mapping):
        return all(isinstance(key, str) and _is_plain(item) for key, item in value.items())
    return False


__all__ = [
    "ConfigEnv",
    "FunctionPlugin",
    "Hook",
    "PageContext",
    "Plugin",
    "code_digest",
    "define_plugin",
    "distribution_version",
]

"""Ordered execution of plugin lifecycle hooks."""

from __future__ import annotations

import inspect
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..errors import PluginHookError
from ..logging import get_logger
from ..utils import deep_merge
from .base import ConfigEnv, Hook, PageContext, Plugin

_ACCUMULATING_HOOKS = frozenset({Hook.CONFIG})


class PluginContainer:
    """Runs hooks across plugins in configuration order.

    Hooks are awaited one at a time, so two plugins touching the same page
    always mutate it in registration order.
    """

    def __init__(self, plugins: Sequence[Plugin] = ()) -> None:
        self.logger = get_logger("plugins")
        self._plugins: List[Plugin] = []
        for plugin in plugins:
            _validate_plugin(plugin)
            self._plugins.append(plugin)

    @property
    def plugins(self) -> List[Plugin]:
        return list(self._plugins)

    @property
    def needs_content(self) -> bool:
        return any(plugin.needs_content for plugin in self._plugins)

    def with_capability(self, hook: Hook) -> List[Plugin]:
        return [plugin for plugin in self._plugins if plugin.implements(hook)]

    async def run_accumulating(
        self, hook: Hook, value: Mapping[str, Any], *args: Any
    ) -> Dict[str, Any]:
        """Feed each plugin the merged result of all prior plugins."""
        if hook not in _ACCUMULATING_HOOKS:
            raise ValueError(f"Hook '{hook.value}' does not accumulate results")
        current: Dict[str, Any] = dict(value)
        for plugin in self.with_capability(hook):
            override = await self._invoke(plugin, hook, (_deep_copy(current), *args))
            if override is None:
                continue
            if not isinstance(override, Mapping):
                raise PluginHookError(
                    plugin.name,
                    hook.value,
                    TypeError(f"expected a mapping override, got {type(override).__name__}"),
                )
            current = deep_merge(current, override)
        return current

    async def run_independent(
        self, hook: Hook, *args: Any, file: Optional[str] = None
    ) -> None:
        """Invoke each plugin on the same shared target, discarding return values."""
        if hook in _ACCUMULATING_HOOKS:
            raise ValueError(f"Hook '{hook.value}' must run in accumulating mode")
        for plugin in self.with_capability(hook):
            await self._invoke(plugin, hook, args, file=file)

    async def config(self, raw: Mapping[str, Any], env: ConfigEnv) -> Dict[str, Any]:
        return await self.run_accumulating(Hook.CONFIG, raw, env)

    async def config_resolved(self, config: Any) -> None:
        await self.run_independent(Hook.CONFIG_RESOLVED, config)

    async def extend_markdown(self, md: Any) -> None:
        await self.run_independent(Hook.EXTEND_MARKDOWN, md)

    async def extend_page_data(self, page: Any, ctx: PageContext) -> None:
        await self.run_independent(Hook.EXTEND_PAGE_DATA, page, ctx, file=ctx.relative_path)

    async def build_start(self, config: Any) -> None:
        await self.run_independent(Hook.BUILD_START, config)

    async def build_end(self, config: Any) -> None:
        await self.run_independent(Hook.BUILD_END, config)

    def client_manifest(self) -> List[Dict[str, Any]]:
        """Return the opaque client-side declarations of every plugin."""
        manifest: List[Dict[str, Any]] = []
        for plugin in self._plugins:
            manifest.append(
                {
                    "name": plugin.name,
                    "slots": dict(plugin.slots),
                    "globalComponents": dict(plugin.global_components),
                    "clientModule": plugin.client_module,
                }
            )
        return manifest

    async def _invoke(
        self,
        plugin: Plugin,
        hook: Hook,
        args: Sequence[Any],
        *,
        file: Optional[str] = None,
    ) -> Any:
        method = getattr(plugin, hook.value)
        self.logger.debug("Running %s.%s%s", plugin.name, hook.value, f" for {file}" if file else "")
        try:
            result = method(*args)
            if inspect.isawaitable(result):
                result = await result
        except PluginHookError:
            raise
        except Exception as exc:
            raise PluginHookError(plugin.name, hook.value, exc, file=file) from exc
        return result


def _validate_plugin(plugin: Plugin) -> None:
    if not isinstance(plugin, Plugin):
        raise TypeError(f"Expected a Plugin instance, got {type(plugin).__name__}")
    if not plugin.name:
        raise TypeError(f"Plugin {plugin.__class__.__name__} must declare a name")
    for hook in plugin.hooks:
        if not isinstance(hook, Hook):
            raise TypeError(f"Plugin '{plugin.name}' declares unknown hook {hook!r}")
        implementation = getattr(type(plugin), hook.value, None)
        if implementation is None or implementation is getattr(Plugin, hook.value):
            raise TypeError(
                f"Plugin '{plugin.name}' declares '{hook.value}' but does not implement it"
            )


def _deep_copy(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _deep_copy(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_deep_copy(item) for item in value]
    return value


__all__ = ["PluginContainer"]

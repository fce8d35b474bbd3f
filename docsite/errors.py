"""Error taxonomy for the docsite build pipeline."""

from __future__ import annotations

from typing import Optional, Sequence


class ConfigError(RuntimeError):
    """Raised when the site configuration is missing, malformed or rejected by a plugin."""


class MarkdownCompileError(RuntimeError):
    """Raised when one source file cannot be compiled."""

    def __init__(self, file: Optional[str], reason: str) -> None:
        location = file or "<string>"
        super().__init__(f"Failed to compile {location}: {reason}")
        self.file = file
        self.reason = reason


class PluginHookError(RuntimeError):
    """Raised when a plugin hook throws; tagged with the plugin and the file in flight."""

    def __init__(
        self,
        plugin: str,
        hook: str,
        cause: BaseException,
        *,
        file: Optional[str] = None,
    ) -> None:
        message = f"Plugin '{plugin}' failed in {hook}"
        if file:
            message += f" while processing {file}"
        message += f": {cause}"
        super().__init__(message)
        self.plugin = plugin
        self.hook = hook
        self.file = file
        self.cause = cause


class RouteCollisionError(RuntimeError):
    """Raised when two source files resolve to the same route or relative path."""

    def __init__(self, path: str, sources: Sequence[str]) -> None:
        joined = " and ".join(sources)
        super().__init__(f"Route collision on '{path}' between {joined}")
        self.path = path
        self.sources = list(sources)


class FrozenPageError(AttributeError):
    """Raised when a page record is mutated after assembly completed."""


__all__ = [
    "ConfigError",
    "FrozenPageError",
    "MarkdownCompileError",
    "PluginHookError",
    "RouteCollisionError",
]

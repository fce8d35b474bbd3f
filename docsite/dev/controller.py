"""Incremental rebuilds driven by file-system change notifications."""

from __future__ import annotations

import asyncio
import functools
import inspect
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from ..config import CONFIG_FILENAME, SiteConfig, resolve_config
from ..errors import ConfigError, MarkdownCompileError, PluginHookError, RouteCollisionError
from ..logging import get_logger
from ..models import PageData, SourceFile
from ..pipeline import Builder, BuildResult
from ..routes import RouteTable

_REBUILD_ERRORS = (MarkdownCompileError, PluginHookError, RouteCollisionError)


class PathState(str, Enum):
    """Lifecycle of a single source path inside the controller."""

    CLEAN = "clean"
    PENDING = "pending"
    COMPILING = "compiling"
    ERROR = "error"


class ChangeKind(str, Enum):
    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"


@dataclass(frozen=True)
class SiteSnapshot:
    """Immutable view of the site handed to development consumers."""

    version: int
    config: SiteConfig
    pages: Mapping[str, PageData]
    routes: RouteTable
    errors: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


@dataclass
class _PathEntry:
    source: SourceFile
    kind: ChangeKind
    state: PathState = PathState.PENDING
    generation: int = 0
    rerun: bool = False
    handle: Optional[asyncio.TimerHandle] = None
    task: Optional[asyncio.Task] = None


SnapshotListener = Callable[[SiteSnapshot], Any]
ErrorListener = Callable[[str, BaseException], Any]


class RebuildController:
    """Keeps a published :class:`SiteSnapshot` in step with the source tree.

    Events are debounced per path. A path has at most one recompilation in
    flight; events arriving meanwhile collapse into a single rerun. A new
    snapshot is published only after the page and the full route table were
    regenerated successfully, otherwise the previous snapshot stays current
    and error listeners are told which path failed.

    All public methods must be called from the event loop thread.
    """

    def __init__(
        self,
        config: SiteConfig,
        *,
        builder: Builder | None = None,
        config_loader: Callable[[], Awaitable[SiteConfig]] | None = None,
        write: bool = True,
    ) -> None:
        self.config = config
        self.builder = builder or Builder(config)
        self.write = write
        self.logger = get_logger("dev")
        self._config_loader = config_loader or self._default_config_loader
        self._snapshot: Optional[SiteSnapshot] = None
        self._entries: Dict[str, _PathEntry] = {}
        self._errors: Dict[str, str] = {}
        self._listeners: List[SnapshotListener] = []
        self._error_listeners: List[ErrorListener] = []
        self._config_handle: Optional[asyncio.TimerHandle] = None
        self._config_task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()
        self._stopped = False

    # ------------------------------------------------------------------
    # Public API

    @property
    def snapshot(self) -> Optional[SiteSnapshot]:
        return self._snapshot

    @property
    def errors(self) -> Mapping[str, str]:
        """Current per-path failures, including ones newer than the snapshot."""
        return MappingProxyType(dict(self._errors))

    async def start(self) -> SiteSnapshot:
        """Run the initial full build and publish the first snapshot."""
        result = await self.builder.build(write=self.write)
        self._errors = dict(result.errors)
        return self._publish_result(result)

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call ``listener`` with every newly published snapshot."""
        return _register(self._listeners, listener)

    def subscribe_errors(self, listener: ErrorListener) -> Callable[[], None]:
        """Call ``listener`` with the failing path and error after each failure."""
        return _register(self._error_listeners, listener)

    def notify(self, path: Path | str, kind: ChangeKind | str) -> None:
        """Record a file-system event for ``path``."""
        kind = ChangeKind(kind)
        target = self._absolute(path)
        if self._is_config_file(target):
            self._schedule_config_reload()
            return
        source = self.builder.scanner.resolve(self.config, target)
        if source is None:
            self.logger.debug("Ignoring event for %s", target)
            return
        key = source.relative_path
        entry = self._entries.get(key)
        if entry is None:
            entry = _PathEntry(source=source, kind=kind)
            self._entries[key] = entry
        entry.source = source
        entry.kind = kind
        if kind is ChangeKind.REMOVED:
            entry.generation += 1
        if entry.state is PathState.COMPILING:
            entry.rerun = True
            return
        entry.state = PathState.PENDING
        self._schedule(key, entry)

    def state_of(self, path: Path | str) -> PathState:
        key = self._key_for(path)
        entry = self._entries.get(key) if key else None
        return entry.state if entry else PathState.CLEAN

    async def wait_idle(self) -> None:
        """Wait until no debounce timer or recompilation is outstanding."""
        loop = asyncio.get_running_loop()
        while True:
            tasks = [entry.task for entry in self._entries.values() if entry.task is not None]
            if self._config_task is not None:
                tasks.append(self._config_task)
            tasks.extend(self._background)
            waiting = any(entry.handle is not None for entry in self._entries.values())
            waiting = waiting or self._config_handle is not None
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
                continue
            if not waiting:
                return
            future = loop.create_future()
            loop.call_later(self._debounce_seconds / 2 or 0.001, _resolve, future)
            await future

    async def reload_config(self) -> Optional[SiteSnapshot]:
        """Re-resolve configuration and rebuild; keep the old state on failure."""
        try:
            config = await self._config_loader()
        except ConfigError as exc:
            self.logger.error("Keeping previous configuration: %s", exc)
            self._emit_error(str(self.config.config_file or CONFIG_FILENAME), exc)
            return None

        builder = Builder(config)
        try:
            result = await builder.build(write=self.write)
        except _REBUILD_ERRORS as exc:
            builder.close()
            self.logger.error("Rebuild after config change failed: %s", exc)
            self._emit_error(str(self.config.config_file or CONFIG_FILENAME), exc)
            return None

        self._cancel_pending()
        await self._drain()
        previous = self.builder
        self.config = config
        self.builder = builder
        previous.close()
        self._errors = dict(result.errors)
        self.logger.info("Configuration reloaded")
        return self._publish_result(result)

    async def stop(self) -> None:
        self._stopped = True
        self._cancel_pending()
        await self._drain(include_background=True)
        self.builder.close()

    # ------------------------------------------------------------------
    # Scheduling

    @property
    def _debounce_seconds(self) -> float:
        return self.config.debounce_ms / 1000

    def _schedule(self, key: str, entry: _PathEntry) -> None:
        if self._stopped:
            return
        loop = asyncio.get_running_loop()
        if entry.handle is not None:
            entry.handle.cancel()
        entry.handle = loop.call_later(self._debounce_seconds, self._fire, key)

    def _fire(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.handle = None
        entry.state = PathState.COMPILING
        entry.task = asyncio.get_running_loop().create_task(self._process(key, entry))

    def _schedule_config_reload(self) -> None:
        if self._stopped:
            return
        loop = asyncio.get_running_loop()
        if self._config_handle is not None:
            self._config_handle.cancel()
        self._config_handle = loop.call_later(self._debounce_seconds, self._fire_config_reload)

    def _fire_config_reload(self) -> None:
        self._config_handle = None
        task = asyncio.get_running_loop().create_task(self.reload_config())
        self._config_task = task

        def _done(_: asyncio.Task) -> None:
            if self._config_task is task:
                self._config_task = None

        task.add_done_callback(_done)

    async def _drain(self, *, include_background: bool = False) -> None:
        tasks = [entry.task for entry in self._entries.values() if entry.task is not None]
        if include_background:
            tasks.extend(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._entries.clear()

    def _cancel_pending(self) -> None:
        for entry in self._entries.values():
            if entry.handle is not None:
                entry.handle.cancel()
                entry.handle = None
        if self._config_handle is not None:
            self._config_handle.cancel()
            self._config_handle = None

    # ------------------------------------------------------------------
    # Recompilation

    async def _process(self, key: str, entry: _PathEntry) -> None:
        generation = entry.generation
        kind = entry.kind
        try:
            if kind is ChangeKind.REMOVED:
                self._apply_removal(key)
            else:
                page = await self._assemble(entry.source)
                if entry.generation != generation:
                    self.logger.debug("Discarding stale result for %s", key)
                elif page is None:
                    self._apply_removal(key)
                else:
                    self._apply_page(key, page)
            if entry.generation == generation or kind is ChangeKind.REMOVED:
                entry.state = PathState.CLEAN
        except _REBUILD_ERRORS as exc:
            self._fail(key, entry, exc)
            self.logger.error("%s", exc)
        except Exception as exc:
            self._fail(key, entry, exc)
            self.logger.exception("Unexpected failure while rebuilding %s", key)
        finally:
            entry.task = None
            if entry.rerun:
                entry.rerun = False
                entry.state = PathState.PENDING
                self._schedule(key, entry)
            elif entry.state is PathState.CLEAN and self._entries.get(key) is entry:
                del self._entries[key]

    def _fail(self, key: str, entry: _PathEntry, exc: BaseException) -> None:
        entry.state = PathState.ERROR
        self._errors[key] = str(exc) or exc.__class__.__name__
        self._emit_error(key, exc)

    async def _assemble(self, source: SourceFile) -> Optional[PageData]:
        fresh = self.builder.scanner.resolve(self.config, source.path) or source
        assembler = await self.builder.assembler()
        try:
            return await assembler.assemble(fresh, degrade_errors=False)
        except FileNotFoundError:
            return None

    def _apply_page(self, key: str, page: PageData) -> None:
        snapshot = self._require_snapshot()
        existing = snapshot.pages.get(key)
        if (
            existing is not None
            and existing.file_path != page.file_path
            and Path(existing.file_path).exists()
        ):
            raise RouteCollisionError(key, [existing.file_path, page.file_path])
        pages = dict(snapshot.pages)
        pages[key] = page
        routes = self.builder.generator.generate(pages.values(), previous=snapshot.routes)
        self._errors.pop(key, None)
        self._publish(pages, routes)

    def _apply_removal(self, key: str) -> None:
        snapshot = self._require_snapshot()
        self._errors.pop(key, None)
        if key not in snapshot.pages:
            return
        pages = dict(snapshot.pages)
        del pages[key]
        routes = self.builder.generator.generate(pages.values(), previous=snapshot.routes)
        if self.builder.cache is not None:
            self.builder.cache.discard(key)
        self._publish(pages, routes)

    # ------------------------------------------------------------------
    # Publication

    def _publish_result(self, result: BuildResult) -> SiteSnapshot:
        return self._publish(dict(result.pages), result.routes, write=False)

    def _publish(
        self, pages: Dict[str, PageData], routes: RouteTable, *, write: bool = True
    ) -> SiteSnapshot:
        version = self._snapshot.version + 1 if self._snapshot else 1
        snapshot = SiteSnapshot(
            version=version,
            config=self.config,
            pages=MappingProxyType(pages),
            routes=routes,
            errors=MappingProxyType(dict(self._errors)),
        )
        self._snapshot = snapshot
        self.logger.debug("Published snapshot v%d with %d routes", version, len(routes))
        if write and self.write:
            self._spawn(self._write_latest(), failure_key=str(self.builder.writer.target_dir))
        for listener in list(self._listeners):
            self._call(listener, snapshot)
        return snapshot

    async def _write_latest(self) -> None:
        async with self._write_lock:
            snapshot = self._snapshot
            if snapshot is None:
                return
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                self.builder.executor,
                self.builder.writer.write,
                snapshot.pages,
                snapshot.routes,
                self.builder.plugins.client_manifest(),
            )

    def _emit_error(self, key: str, error: BaseException) -> None:
        for listener in list(self._error_listeners):
            self._call(listener, key, error)

    def _call(self, listener: Callable[..., Any], *args: Any) -> None:
        try:
            result = listener(*args)
        except Exception:
            self.logger.exception("Listener %r failed", listener)
            return
        if inspect.isawaitable(result):
            self._spawn(result)

    def _spawn(self, awaitable: Awaitable[Any], *, failure_key: Optional[str] = None) -> None:
        """Run ``awaitable`` in the background and report its failure.

        Failures are always logged; with ``failure_key`` they also reach the
        error listeners under that key.
        """
        task = asyncio.ensure_future(awaitable)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(functools.partial(self._report_background, failure_key))

    def _report_background(self, failure_key: Optional[str], task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        if failure_key is None:
            self.logger.error("Listener failed: %s", exc, exc_info=exc)
            return
        self.logger.error("Writing artifacts to %s failed: %s", failure_key, exc, exc_info=exc)
        self._emit_error(failure_key, exc)

    # ------------------------------------------------------------------
    # Helpers

    def _require_snapshot(self) -> SiteSnapshot:
        if self._snapshot is None:
            raise RuntimeError("RebuildController.start() must run before changes are applied")
        return self._snapshot

    def _absolute(self, path: Path | str) -> Path:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.config.src_dir / candidate
        return candidate.resolve()

    def _key_for(self, path: Path | str) -> Optional[str]:
        if isinstance(path, str) and path in self._entries:
            return path
        source = self.builder.scanner.resolve(self.config, self._absolute(path))
        return source.relative_path if source else None

    def _is_config_file(self, target: Path) -> bool:
        if self.config.config_file is not None:
            return target == self.config.config_file
        return target == self.config.root / CONFIG_FILENAME

    async def _default_config_loader(self) -> SiteConfig:
        return await resolve_config(
            self.config.root, mode=self.config.mode, command=self.config.command
        )


def _register(listeners: List[Any], listener: Any) -> Callable[[], None]:
    listeners.append(listener)

    def _unsubscribe() -> None:
        if listener in listeners:
            listeners.remove(listener)

    return _unsubscribe


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


__all__ = ["ChangeKind", "PathState", "RebuildController", "SiteSnapshot"]

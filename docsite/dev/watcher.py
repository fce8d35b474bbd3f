"""Bridges watchdog file-system events onto the rebuild controller."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..logging import get_logger
from .controller import ChangeKind, RebuildController


class _ChangeHandler(FileSystemEventHandler):
    """Forwards file events from the observer thread to the event loop."""

    def __init__(self, controller: RebuildController, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__()
        self.controller = controller
        self.loop = loop

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.forward(event.src_path, ChangeKind.ADDED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.forward(event.src_path, ChangeKind.CHANGED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.forward(event.src_path, ChangeKind.REMOVED)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.forward(event.src_path, ChangeKind.REMOVED)
        self.forward(event.dest_path, ChangeKind.ADDED)

    def forward(self, path: str | bytes, kind: ChangeKind) -> None:
        if isinstance(path, bytes):
            path = path.decode("utf-8", errors="surrogateescape")
        self.loop.call_soon_threadsafe(self.controller.notify, Path(path), kind)


class SourceWatcher:
    """Watches the source root, extra sources and the config file."""

    def __init__(self, controller: RebuildController) -> None:
        self.controller = controller
        self.logger = get_logger("watcher")
        self._observer = None

    def directories(self) -> List[Path]:
        config = self.controller.config
        roots = [config.src_dir, config.root]
        roots.extend(extra.dir for extra in config.extra_sources)
        unique: List[Path] = []
        for root in roots:
            if any(root == existing or existing in root.parents for existing in unique):
                continue
            unique = [existing for existing in unique if root not in existing.parents]
            unique.append(root)
        return unique

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        handler = _ChangeHandler(self.controller, loop)
        observer = Observer()
        for directory in self.directories():
            observer.schedule(handler, str(directory), recursive=True)
            self.logger.debug("Watching %s", directory)
        observer.daemon = True
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None


__all__ = ["SourceWatcher"]

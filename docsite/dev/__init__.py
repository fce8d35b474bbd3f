"""Development-mode incremental rebuilds."""

from .controller import ChangeKind, PathState, RebuildController, SiteSnapshot
from .watcher import SourceWatcher

__all__ = ["ChangeKind", "PathState", "RebuildController", "SiteSnapshot", "SourceWatcher"]

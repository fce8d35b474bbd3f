"""Builtin plugin stamping pages with their last modification time."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

from ..logging import get_logger
from .base import Hook, PageContext, Plugin


class LastUpdatedPlugin(Plugin):
    """Sets ``last_updated`` from git history or the file's mtime."""

    name = "last-updated"
    hooks = frozenset({Hook.EXTEND_PAGE_DATA})

    def __init__(
        self,
        use_git_time: bool = False,
        exclude: Iterable[str] = (),
        runner: Callable[..., str] | None = None,
    ) -> None:
        self.use_git_time = use_git_time
        self.exclude = tuple(item.strip("/") for item in exclude)
        self._runner = runner or self._default_runner
        self.logger = get_logger("plugins.last_updated")

    async def extend_page_data(self, page, ctx: PageContext) -> None:
        if any(
            page.relative_path == prefix or page.relative_path.startswith(prefix + "/")
            for prefix in self.exclude
        ):
            return
        timestamp: Optional[int] = None
        if self.use_git_time:
            loop = asyncio.get_running_loop()
            timestamp = await loop.run_in_executor(None, self._git_timestamp, ctx.source.path)
        if timestamp is None:
            timestamp = int(ctx.source.mtime * 1000)
        page.last_updated = timestamp
        page.frontmatter["lastUpdated"] = (
            datetime.fromtimestamp(timestamp / 1000, tz=UTC).isoformat()
        )

    def _git_timestamp(self, path: Path) -> Optional[int]:
        args = ["git", "log", "-1", "--format=%ct", "--", path.name]
        try:
            output = self._runner(args, cwd=path.parent)
        except Exception as exc:  # pragma: no cover - depends on environment
            self.logger.debug("git log failed for %s: %s", path, exc)
            return None
        value = output.strip()
        if not value.isdigit():
            return None
        return int(value) * 1000

    @staticmethod
    def _default_runner(args: Iterable[str], *, cwd: Path) -> str:
        import subprocess

        completed = subprocess.run(
            list(args),
            cwd=str(cwd),
            check=True,
            text=True,
            capture_output=True,
        )
        return completed.stdout


__all__ = ["LastUpdatedPlugin"]

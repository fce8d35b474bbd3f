"""Per-file page data assembly: read, compile, extend and freeze."""

from __future__ import annotations

import asyncio
import copy
from concurrent.futures import Executor
from pathlib import Path
from typing import Optional, Tuple

from .config import SiteConfig
from .errors import MarkdownCompileError
from .failsafe import build_error_page
from .logging import get_logger
from .markdown.compiler import CompiledPage, MarkdownCompiler
from .models import PageData, SourceFile
from .plugins import PageContext, PluginContainer
from .stores.compile_cache import CompileCache, fingerprint as fingerprint_of, signature_of


class PageDataAssembler:
    """Turns one :class:`SourceFile` into a frozen :class:`PageData`.

    File reads and Markdown rendering run on ``executor``; at most
    ``config.workers`` of them are in flight at once. Plugin hooks for a page
    run on the event loop, one after another.
    """

    def __init__(
        self,
        config: SiteConfig,
        compiler: MarkdownCompiler,
        plugins: PluginContainer,
        *,
        executor: Optional[Executor] = None,
        cache: Optional[CompileCache] = None,
        degrade_errors: bool = False,
    ) -> None:
        self.config = config
        self.compiler = compiler
        self.plugins = plugins
        self.executor = executor
        self.cache = cache
        self.degrade_errors = degrade_errors
        self.logger = get_logger("assembler")
        self._semaphore = asyncio.Semaphore(config.workers)
        self._signature = signature_of(compiler.signature())

    async def assemble(
        self, source: SourceFile, *, degrade_errors: Optional[bool] = None
    ) -> PageData:
        """Build the page record for ``source``.

        ``FileNotFoundError`` propagates so callers can treat it as a removal.
        """
        degrade = self.degrade_errors if degrade_errors is None else degrade_errors
        loop = asyncio.get_running_loop()
        async with self._semaphore:
            data, fingerprint = await loop.run_in_executor(self.executor, _read_source, source.path)
            compiled = self._cached(source, fingerprint)
            error: Optional[str] = None
            if compiled is None:
                try:
                    compiled = await loop.run_in_executor(
                        self.executor, self._compile, data, source.relative_path
                    )
                except MarkdownCompileError as exc:
                    if not degrade:
                        raise
                    self.logger.warning("%s", exc)
                    compiled = build_error_page(source, exc)
                    error = str(exc)
                else:
                    self._remember(source, fingerprint, compiled)

        page = self._build_page(source, compiled, error)
        if error is None:
            await self.plugins.extend_page_data(page, PageContext(config=self.config, source=source))
        return page.freeze()

    def _compile(self, data: bytes, relative_path: str) -> CompiledPage:
        return self.compiler.compile_bytes(data, file=relative_path)

    def _cached(self, source: SourceFile, fingerprint: str) -> Optional[CompiledPage]:
        if self.cache is None:
            return None
        return self.cache.get(source.relative_path, signature=self._signature, fingerprint=fingerprint)

    def _remember(self, source: SourceFile, fingerprint: str, compiled: CompiledPage) -> None:
        if self.cache is None:
            return
        self.cache.store(
            source.relative_path,
            signature=self._signature,
            fingerprint=fingerprint,
            page=compiled,
        )

    def _build_page(
        self, source: SourceFile, compiled: CompiledPage, error: Optional[str]
    ) -> PageData:
        frontmatter = copy.deepcopy(compiled.frontmatter)
        locale = self.config.locale(source.locale)
        title = _first_text(
            frontmatter.get("title"),
            locale.title if locale else None,
            self.config.title,
        )
        description = _first_text(
            frontmatter.get("description"),
            locale.description if locale else None,
            self.config.description,
        )
        retain = self.plugins.needs_content or self.config.markdown.retain_content
        return PageData(
            title=title,
            description=description,
            relative_path=source.relative_path,
            file_path=str(source.path),
            locale=source.locale,
            frontmatter=frontmatter,
            headers=list(compiled.headers),
            last_updated=int(source.mtime * 1000) if source.mtime else None,
            content=compiled.body if retain else None,
            html=compiled.html,
            error=error,
        )


def _read_source(path: Path) -> Tuple[bytes, str]:
    data = path.read_bytes()
    return data, fingerprint_of(data)


def _first_text(*candidates: object) -> str:
    for candidate in candidates:
        if isinstance(candidate, (str, int, float)) and not isinstance(candidate, bool):
            text = str(candidate).strip()
            if text:
                return text
    return ""


__all__ = ["PageDataAssembler"]

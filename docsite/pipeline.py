"""Full-site build pipeline shared by production builds and the dev server."""

from __future__ import annotations

import asyncio
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .assembler import PageDataAssembler
from .config import PRODUCTION, SiteConfig, resolve_config
from .errors import PluginHookError
from .logging import get_logger
from .markdown.compiler import MarkdownCompiler
from .models import PageData, SourceFile
from .plugins import PluginContainer
from .routes import RouteTable, RouteTableGenerator
from .source_scanner import SourceScanner
from .stores.compile_cache import CompileCache
from .writer import ArtifactWriter


@dataclass(frozen=True)
class BuildResult:
    """Outcome of one full build."""

    config: SiteConfig
    pages: Mapping[str, PageData]
    routes: RouteTable
    errors: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    written: Tuple[Path, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors


class Builder:
    """Runs scan, per-page assembly, route generation and artifact writing.

    In production the first failing page aborts the build before anything is
    written. In development compile errors become inline error pages, pages
    whose hooks fail are skipped, and both are reported in ``errors``.
    """

    def __init__(
        self,
        config: SiteConfig,
        *,
        scanner: SourceScanner | None = None,
        writer: ArtifactWriter | None = None,
        executor: Executor | None = None,
        cache: CompileCache | None = None,
    ) -> None:
        self.config = config
        self.logger = get_logger("pipeline")
        self.plugins = PluginContainer(config.plugins)
        self.scanner = scanner or SourceScanner()
        self.writer = writer or ArtifactWriter(config)
        self.generator = RouteTableGenerator(config)
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=config.workers, thread_name_prefix="docsite"
        )
        if cache is None and config.cache:
            cache = CompileCache.for_directory(config.cache_dir)
        self.cache = cache
        self._compiler: Optional[MarkdownCompiler] = None
        self._assembler: Optional[PageDataAssembler] = None

    async def __aenter__(self) -> "Builder":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        if self.cache is not None:
            self.cache.persist()
        if self._owns_executor:
            self.executor.shutdown(wait=True)

    async def assembler(self) -> PageDataAssembler:
        """Return the page assembler, creating the Markdown engine on first use."""
        if self._assembler is None:
            self._compiler = await MarkdownCompiler.create(self.config, self.plugins)
            self._assembler = PageDataAssembler(
                self.config,
                self._compiler,
                self.plugins,
                executor=self.executor,
                cache=self.cache,
                degrade_errors=not self.config.is_production,
            )
        return self._assembler

    async def scan(self) -> Tuple[SourceFile, ...]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, self.scanner.scan, self.config)

    async def build(self, *, write: bool = True) -> BuildResult:
        """Build every page and the route table."""
        self.logger.info("Building %s (%s)", self.config.src_dir, self.config.mode)
        await self.plugins.build_start(self.config)

        sources = await self.scan()
        assembler = await self.assembler()
        results = await asyncio.gather(
            *(assembler.assemble(source) for source in sources), return_exceptions=True
        )
        pages, errors = self._collect(sources, results)

        routes = self.generator.generate(pages.values())
        written: Sequence[Path] = ()
        if write:
            written = self.writer.write(pages, routes, self.plugins.client_manifest())
        if self.cache is not None:
            self.cache.prune(pages)
            self.cache.persist()

        await self.plugins.build_end(self.config)
        self.logger.info(
            "Built %d pages into %d routes (%d errors)", len(pages), len(routes), len(errors)
        )
        return BuildResult(
            config=self.config,
            pages=MappingProxyType(pages),
            routes=routes,
            errors=MappingProxyType(errors),
            written=tuple(written),
        )

    def _collect(
        self, sources: Sequence[SourceFile], results: Sequence[Any]
    ) -> Tuple[Dict[str, PageData], Dict[str, str]]:
        pages: Dict[str, PageData] = {}
        errors: Dict[str, str] = {}
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception) or self.config.is_production:
                    raise result
                if isinstance(result, FileNotFoundError):
                    self.logger.debug("Skipping %s; removed during build", source.relative_path)
                    continue
                if isinstance(result, PluginHookError):
                    self.logger.error("Skipping %s: %s", source.relative_path, result)
                else:
                    self.logger.error("%s", result)
                errors[source.relative_path] = str(result)
                continue
            pages[source.relative_path] = result
            if result.error is not None:
                errors[source.relative_path] = result.error
        return pages, errors


async def build_site(
    root: Path,
    *,
    mode: str = PRODUCTION,
    user_config: Optional[Mapping[str, Any]] = None,
    plugins: Optional[Sequence[Any]] = None,
    write: bool = True,
) -> BuildResult:
    """Resolve configuration for ``root`` and run one full build."""
    config = await resolve_config(root, user_config, mode=mode, plugins=plugins)
    async with Builder(config) as builder:
        return await builder.build(write=write)


__all__ = ["BuildResult", "Builder", "build_site"]

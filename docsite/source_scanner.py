"""Discovery of Markdown sources under the configured content roots."""

from __future__ import annotations

import os
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .config import SiteConfig
from .errors import RouteCollisionError
from .logging import get_logger
from .models import SourceFile
from .utils import glob_match

_EXCLUDED_DIRS = {
    "node_modules",
    "__pycache__",
    "venv",
}

_EXCLUDED_FILES = {
    ".DS_Store",
    "Thumbs.db",
}


@dataclass
class IgnoreRule:
    """Represents an ignore rule parsed from .gitignore or the exclude globs."""

    pattern: str
    directory_only: bool
    anchored: bool
    negate: bool
    has_slash: bool

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        if not self.pattern:
            return False
        if self.directory_only and not is_dir:
            return False

        target = rel_path
        if self.anchored or self.has_slash:
            if fnmatchcase(target, self.pattern) or glob_match(target, self.pattern):
                return True
            if target.startswith(f"{self.pattern}/"):
                return True
            return False

        for part in target.split("/"):
            if fnmatchcase(part, self.pattern):
                return True
        return False


def _build_ignore_rule(pattern: str) -> IgnoreRule | None:
    pattern = pattern.strip()
    if not pattern or pattern.startswith("#"):
        return None

    negate = pattern.startswith("!")
    if negate:
        pattern = pattern[1:]

    directory_only = pattern.endswith("/")
    if directory_only:
        pattern = pattern[:-1]

    anchored = pattern.startswith("/")
    if anchored:
        pattern = pattern[1:]

    has_slash = "/" in pattern
    return IgnoreRule(
        pattern=pattern,
        directory_only=directory_only,
        anchored=anchored,
        negate=negate,
        has_slash=has_slash,
    )


def _parse_gitignore(path: Path) -> List[IgnoreRule]:
    if not path.exists():
        return []
    rules: List[IgnoreRule] = []
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        rule = _build_ignore_rule(raw_line)
        if rule is not None:
            rules.append(rule)
    return rules


def _rules_from_globs(patterns: Sequence[str]) -> List[IgnoreRule]:
    rules: List[IgnoreRule] = []
    for pattern in patterns:
        rule = _build_ignore_rule(pattern)
        if rule is not None:
            rules.append(rule)
    return rules


def _should_ignore(rel_path: str, is_dir: bool, rules: Sequence[IgnoreRule]) -> bool:
    ignored = False
    for rule in rules:
        if rule.matches(rel_path, is_dir):
            ignored = not rule.negate
    return ignored


def _excluded(rel_path: str, rules: Sequence[IgnoreRule]) -> bool:
    parts = rel_path.split("/")
    for depth in range(1, len(parts)):
        if _should_ignore("/".join(parts[:depth]), True, rules):
            return True
    return _should_ignore(rel_path, False, rules)


@dataclass(frozen=True)
class _ContentRoot:
    path: Path
    prefix: str
    patterns: Tuple[str, ...]
    rules: Tuple[IgnoreRule, ...]
    origin: str

    def public_path(self, rel_path: str) -> str:
        return f"{self.prefix}/{rel_path}" if self.prefix else rel_path


class SourceScanner:
    """Walks the source root and extra sources to list every page file."""

    def __init__(self) -> None:
        self.logger = get_logger("scanner")

    def scan(self, config: SiteConfig) -> Tuple[SourceFile, ...]:
        """Return all sources sorted by relative path.

        Raises :class:`RouteCollisionError` when two files map to the same
        relative path, before anything is compiled.
        """
        excluded = _excluded_directories(config)
        exclude_rules = _rules_from_globs(config.exclude)
        found: Dict[str, SourceFile] = {}
        for root in _content_roots(config):
            for path, rel_path in _iter_files(root, excluded):
                public = root.public_path(rel_path)
                if _excluded(public, exclude_rules):
                    continue
                source = _make_source(config, root, path, public)
                existing = found.get(public)
                if existing is not None:
                    raise RouteCollisionError(public, [str(existing.path), str(source.path)])
                found[public] = source
        ordered = tuple(found[key] for key in sorted(found))
        self.logger.debug("Discovered %d source files under %s", len(ordered), config.src_dir)
        return ordered

    def resolve(self, config: SiteConfig, path: Path) -> Optional[SourceFile]:
        """Map one path to its source record, or ``None`` if it is not a page.

        The file need not exist, so removals can be resolved too.
        """
        target = Path(path).expanduser().resolve()
        excluded = _excluded_directories(config)
        roots = sorted(_content_roots(config), key=lambda item: len(item.path.parts), reverse=True)
        for root in roots:
            try:
                rel_path = target.relative_to(root.path).as_posix()
            except ValueError:
                continue
            if not _accepts(root, target, rel_path, excluded):
                return None
            public = root.public_path(rel_path)
            if _excluded(public, _rules_from_globs(config.exclude)):
                return None
            return _make_source(config, root, target, public)
        return None


def _content_roots(config: SiteConfig) -> List[_ContentRoot]:
    roots = [
        _ContentRoot(
            path=config.src_dir,
            prefix="",
            patterns=tuple(config.include),
            rules=tuple(_parse_gitignore(config.src_dir / ".gitignore")),
            origin="src",
        )
    ]
    for extra in config.extra_sources:
        roots.append(
            _ContentRoot(
                path=extra.dir,
                prefix=extra.prefix,
                patterns=(extra.pattern,),
                rules=(),
                origin=f"extra:{extra.prefix or extra.dir.name}",
            )
        )
    return roots


def _excluded_directories(config: SiteConfig) -> set[Path]:
    excluded = {config.out_dir, config.temp_dir, config.cache_dir}
    excluded.update(extra.dir for extra in config.extra_sources)
    return excluded


def _iter_files(root: _ContentRoot, excluded: set[Path]) -> Iterator[Tuple[Path, str]]:
    for dirpath, dirnames, filenames in os.walk(root.path):
        current_dir = Path(dirpath)
        rel_dir = current_dir.relative_to(root.path).as_posix() if current_dir != root.path else ""

        filtered_dirs = []
        for name in sorted(dirnames):
            if name.startswith(".") or name in _EXCLUDED_DIRS:
                continue
            if (current_dir / name).resolve() in excluded:
                continue
            rel_path = f"{rel_dir}/{name}" if rel_dir else name
            if _should_ignore(rel_path, True, root.rules):
                continue
            filtered_dirs.append(name)
        dirnames[:] = filtered_dirs

        for filename in filenames:
            if filename.startswith(".") or filename in _EXCLUDED_FILES:
                continue
            rel_path = f"{rel_dir}/{filename}" if rel_dir else filename
            if not any(glob_match(rel_path, pattern) for pattern in root.patterns):
                continue
            if _should_ignore(rel_path, False, root.rules):
                continue
            yield current_dir / filename, rel_path


def _accepts(root: _ContentRoot, target: Path, rel_path: str, excluded: set[Path]) -> bool:
    parts = rel_path.split("/")
    if not rel_path or any(part.startswith(".") for part in parts):
        return False
    if parts[-1] in _EXCLUDED_FILES or any(part in _EXCLUDED_DIRS for part in parts[:-1]):
        return False
    for parent in target.parents:
        if parent == root.path:
            break
        if parent in excluded:
            return False
    for depth in range(1, len(parts)):
        if _should_ignore("/".join(parts[:depth]), True, root.rules):
            return False
    if not any(glob_match(rel_path, pattern) for pattern in root.patterns):
        return False
    return not _should_ignore(rel_path, False, root.rules)


def _make_source(config: SiteConfig, root: _ContentRoot, path: Path, public: str) -> SourceFile:
    try:
        mtime = path.stat().st_mtime
    except FileNotFoundError:
        mtime = 0.0
    return SourceFile(
        path=path,
        relative_path=public,
        locale=config.locale_for(public),
        mtime=mtime,
        root=root.path,
        origin=root.origin,
    )


__all__ = ["IgnoreRule", "SourceScanner"]

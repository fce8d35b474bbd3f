"""Route table generation from assembled page data."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .config import SiteConfig
from .errors import RouteCollisionError
from .models import PageData
from .utils import dump_json, freeze, thaw

NOT_FOUND_PATH = "/:pathMatch(.*)*"
NOT_FOUND_COMPONENT = "@theme/NotFound.vue"


@dataclass(frozen=True)
class RouteEntry:
    """One client route pointing at a page component."""

    path: str
    component: str
    meta: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    relative_path: Optional[str] = None
    locale: Optional[str] = None
    is_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "component": self.component,
            "meta": thaw(self.meta),
        }


@dataclass(frozen=True)
class RouteDiff:
    """Paths added, removed or changed between two route tables."""

    added: Tuple[str, ...] = ()
    removed: Tuple[str, ...] = ()
    changed: Tuple[str, ...] = ()

    @property
    def empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


@dataclass(frozen=True)
class RouteTable:
    """Ordered, immutable list of routes with the fallback last."""

    entries: Tuple[RouteEntry, ...] = ()

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def paths(self) -> List[str]:
        return [entry.path for entry in self.entries]

    def page_entries(self) -> List[RouteEntry]:
        return [entry for entry in self.entries if not entry.is_fallback]

    def get(self, path: str) -> Optional[RouteEntry]:
        for entry in self.entries:
            if entry.path == path:
                return entry
        return None

    def fallback(self) -> Optional[RouteEntry]:
        for entry in self.entries:
            if entry.is_fallback:
                return entry
        return None

    def diff(self, previous: Optional["RouteTable"]) -> RouteDiff:
        old = {entry.path: entry for entry in (previous.entries if previous else ())}
        new = {entry.path: entry for entry in self.entries}
        added = tuple(path for path in new if path not in old)
        removed = tuple(path for path in old if path not in new)
        changed = tuple(
            path for path in new if path in old and old[path] is not new[path] and old[path] != new[path]
        )
        return RouteDiff(added=added, removed=removed, changed=changed)

    def to_list(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self.entries]

    def to_json(self) -> str:
        """Deterministic rendering; identical inputs give identical bytes."""
        return dump_json(self.to_list())


class RouteTableGenerator:
    """Derives route paths from page data and detects collisions."""

    def __init__(self, config: SiteConfig, not_found_component: str = NOT_FOUND_COMPONENT) -> None:
        self.config = config
        self.not_found_component = not_found_component

    def route_path(self, page: PageData) -> str:
        """Return the URL path for ``page``; ``index`` collapses to its directory."""
        relative = page.relative_path
        locale = self.config.locale(page.locale)
        prefix = "/"
        if locale is not None:
            prefix = locale.prefix
            if locale.dir and relative.startswith(locale.dir + "/"):
                relative = relative[len(locale.dir) + 1 :]
        posix = PurePosixPath(relative)
        stem = posix.with_suffix("").as_posix() if posix.suffix else posix.as_posix()
        if stem == "index":
            return prefix
        if stem.endswith("/index"):
            return prefix + stem[: -len("index")]
        return prefix + stem

    def generate(
        self, pages: Iterable[PageData], previous: Optional[RouteTable] = None
    ) -> RouteTable:
        """Build the full table; unchanged entries from ``previous`` are reused."""
        reusable = {entry.path: entry for entry in previous.entries} if previous else {}
        owners: Dict[str, PageData] = {}
        entries: List[RouteEntry] = []
        for page in sorted(pages, key=lambda item: item.relative_path):
            path = self.route_path(page)
            key = _collision_key(path)
            owner = owners.get(key)
            if owner is not None:
                raise RouteCollisionError(path, [owner.file_path, page.file_path])
            owners[key] = page
            entries.append(_reuse(reusable, self._page_entry(path, page)))
        entries.sort(key=lambda entry: entry.path)
        entries.append(_reuse(reusable, self._fallback_entry()))
        return RouteTable(entries=tuple(entries))

    def _page_entry(self, path: str, page: PageData) -> RouteEntry:
        meta = {
            "title": page.title,
            "description": page.description,
            "frontmatter": thaw(page.frontmatter),
            "headers": [header.to_dict() for header in page.headers],
            "relativePath": page.relative_path,
            "locale": page.locale,
            "lastUpdated": page.last_updated,
        }
        return RouteEntry(
            path=path,
            component=page.file_path,
            meta=freeze(meta),
            relative_path=page.relative_path,
            locale=page.locale,
        )

    def _fallback_entry(self) -> RouteEntry:
        return RouteEntry(
            path=NOT_FOUND_PATH,
            component=self.not_found_component,
            meta=freeze({}),
            is_fallback=True,
        )


def _collision_key(path: str) -> str:
    return path.rstrip("/") or "/"


def _reuse(reusable: Mapping[str, RouteEntry], entry: RouteEntry) -> RouteEntry:
    existing = reusable.get(entry.path)
    if existing is not None and existing == entry:
        return existing
    return entry


__all__ = [
    "NOT_FOUND_COMPONENT",
    "NOT_FOUND_PATH",
    "RouteDiff",
    "RouteEntry",
    "RouteTable",
    "RouteTableGenerator",
]

"""Core data models shared across docsite components."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import FrozenPageError
from .utils import freeze, thaw

DEFAULT_LOCALE = "root"


@dataclass(frozen=True)
class SourceFile:
    """One discoverable content file."""

    path: Path
    relative_path: str
    locale: str = DEFAULT_LOCALE
    mtime: float = 0.0
    root: Optional[Path] = None
    origin: str = "src"

    @property
    def key(self) -> Tuple[str, str]:
        return (self.relative_path, self.locale)


@dataclass(frozen=True)
class Header:
    """A heading captured from a compiled page."""

    level: int
    title: str
    slug: str
    children: Tuple["Header", ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "title": self.title,
            "slug": self.slug,
            "children": [child.to_dict() for child in self.children],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Header":
        children = payload.get("children") or []
        return cls(
            level=int(payload["level"]),
            title=str(payload["title"]),
            slug=str(payload["slug"]),
            children=tuple(cls.from_dict(child) for child in children),
        )


@dataclass
class PageData:
    """Central per-page record; mutable until :meth:`freeze` is called."""

    title: str
    description: str
    relative_path: str
    file_path: str
    locale: str = DEFAULT_LOCALE
    frontmatter: Dict[str, Any] = field(default_factory=dict)
    headers: Sequence[Header] = field(default_factory=list)
    last_updated: Optional[int] = None
    content: Optional[str] = None
    html: str = ""
    error: Optional[str] = None
    _frozen: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.frontmatter is None:
            self.frontmatter = {}

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            raise FrozenPageError(
                f"PageData for {self.relative_path} is frozen; cannot set '{name}'"
            )
        object.__setattr__(self, name, value)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> "PageData":
        """Make the record and its frontmatter read-only."""
        if self._frozen:
            return self
        self.frontmatter = freeze(self.frontmatter)
        self.headers = tuple(self.headers)
        object.__setattr__(self, "_frozen", True)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Return the client hydration payload for this page."""
        payload: Dict[str, Any] = {
            "title": self.title,
            "description": self.description,
            "frontmatter": thaw(self.frontmatter),
            "headers": [header.to_dict() for header in self.headers],
            "relativePath": self.relative_path,
            "filePath": self.file_path,
            "locale": self.locale,
            "lastUpdated": self.last_updated,
            "html": self.html,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


def flatten_headers(headers: Sequence[Header]) -> List[Header]:
    """Return headers in document order, depth first."""
    flat: List[Header] = []
    for header in headers:
        flat.append(header)
        flat.extend(flatten_headers(header.children))
    return flat


__all__ = ["DEFAULT_LOCALE", "Header", "PageData", "SourceFile", "flatten_headers"]

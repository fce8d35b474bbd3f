"""Markdown to HTML compilation with heading extraction."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from markdown_it import MarkdownIt
from markdown_it.token import Token

from ..errors import ConfigError, MarkdownCompileError
from ..logging import get_logger
from ..models import Header
from ..plugins import Hook, PluginContainer
from .frontmatter import split_frontmatter

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from ..config import MarkdownOptions, SiteConfig

_PUNCTUATION = re.compile(r"[^\w\s-]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")
_HYPHENS = re.compile(r"-{2,}")

_TITLE_TOKEN_TYPES = {"text", "code_inline", "image"}


def slugify(text: str) -> str:
    """Lower-case ``text``, drop punctuation and join words with hyphens."""
    slug = _PUNCTUATION.sub("", text.strip().lower())
    slug = _WHITESPACE.sub("-", slug.strip())
    slug = _HYPHENS.sub("-", slug).strip("-")
    return slug or "heading"


class SlugRegistry:
    """Hands out page-unique slugs, suffixing ``-1``, ``-2`` on repeats."""

    def __init__(self) -> None:
        self._taken: Set[str] = set()

    def claim(self, text: str) -> str:
        candidate = slugify(text)
        slug = candidate
        counter = 0
        while slug in self._taken:
            counter += 1
            slug = f"{candidate}-{counter}"
        self._taken.add(slug)
        return slug


@dataclass(frozen=True)
class CompiledPage:
    """Output of compiling one Markdown source."""

    html: str
    frontmatter: Dict[str, Any] = field(default_factory=dict)
    headers: Tuple[Header, ...] = ()
    body: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "html": self.html,
            "frontmatter": self.frontmatter,
            "headers": [header.to_dict() for header in self.headers],
            "body": self.body,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CompiledPage":
        return cls(
            html=str(payload.get("html", "")),
            frontmatter=dict(payload.get("frontmatter") or {}),
            headers=tuple(Header.from_dict(item) for item in payload.get("headers") or []),
            body=str(payload.get("body", "")),
        )


@dataclass
class _HeaderNode:
    level: int
    title: str
    slug: str
    children: List["_HeaderNode"] = field(default_factory=list)

    def freeze(self) -> Header:
        return Header(
            level=self.level,
            title=self.title,
            slug=self.slug,
            children=tuple(child.freeze() for child in self.children),
        )


class MarkdownCompiler:
    """Wraps one configured Markdown engine shared for the process lifetime.

    ``compile`` keeps no per-call state on the instance and may run on worker
    threads concurrently.
    """

    def __init__(
        self,
        md: MarkdownIt,
        options: "MarkdownOptions",
        extensions: Sequence[Mapping[str, Any]] = (),
    ) -> None:
        self.md = md
        self.options = options
        self.extensions = tuple(dict(item) for item in extensions)
        self.logger = get_logger("markdown")

    @classmethod
    async def create(
        cls, config: "SiteConfig", plugins: Optional[PluginContainer] = None
    ) -> "MarkdownCompiler":
        """Build the engine and let plugins extend it exactly once."""
        md = build_engine(config.markdown)
        extensions: List[Dict[str, Any]] = []
        if plugins is not None:
            await plugins.extend_markdown(md)
            extensions = [plugin.cache_key() for plugin in plugins.with_capability(Hook.EXTEND_MARKDOWN)]
        return cls(md, config.markdown, extensions)

    def signature(self) -> Dict[str, Any]:
        """Describe everything that influences compiled output.

        ``extensions`` holds the :meth:`Plugin.cache_key` of each plugin that
        extended the engine, in registration order.
        """
        return {"markdown": self.options.to_dict(), "extensions": [dict(item) for item in self.extensions]}

    def compile(self, text: str, *, file: Optional[str] = None) -> CompiledPage:
        frontmatter, body = split_frontmatter(text, file)
        env: Dict[str, Any] = {"frontmatter": frontmatter, "relative_path": file}
        try:
            tokens = self.md.parse(body, env)
            headers = _collect_headers(tokens)
            html = self.md.renderer.render(tokens, self.md.options, env)
        except MarkdownCompileError:
            raise
        except Exception as exc:
            raise MarkdownCompileError(file, str(exc) or exc.__class__.__name__) from exc
        return CompiledPage(html=html, frontmatter=frontmatter, headers=headers, body=body)

    def compile_bytes(self, data: bytes, *, file: Optional[str] = None) -> CompiledPage:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MarkdownCompileError(file, f"not valid UTF-8: {exc}") from exc
        return self.compile(text, file=file)


def build_engine(options: "MarkdownOptions") -> MarkdownIt:
    """Create a ``markdown-it-py`` engine from the configured options."""
    md = MarkdownIt(
        "commonmark",
        {
            "html": options.html,
            "typographer": options.typographer,
            "breaks": options.breaks,
        },
    )
    if options.enable:
        try:
            md.enable(list(options.enable))
        except ValueError as exc:
            raise ConfigError(f"Unknown markdown rule in markdown.enable: {exc}") from exc
    if options.typographer:
        md.enable(["replacements", "smartquotes"], ignoreInvalid=True)
    return md


def _collect_headers(tokens: Sequence[Token]) -> Tuple[Header, ...]:
    registry = SlugRegistry()
    roots: List[_HeaderNode] = []
    stack: List[_HeaderNode] = []
    for index, token in enumerate(tokens):
        if token.type != "heading_open":
            continue
        level = int(token.tag[1:])
        inline = tokens[index + 1] if index + 1 < len(tokens) else None
        title = _inline_text(inline).strip()
        slug = registry.claim(title)
        token.attrSet("id", slug)
        node = _HeaderNode(level=level, title=title, slug=slug)
        while stack and stack[-1].level >= level:
            stack.pop()
        if stack:
            stack[-1].children.append(node)
        else:
            roots.append(node)
        stack.append(node)
    return tuple(node.freeze() for node in roots)


def _inline_text(token: Optional[Token]) -> str:
    if token is None or token.type != "inline":
        return ""
    if not token.children:
        return token.content
    parts = []
    for child in token.children:
        if child.type in _TITLE_TOKEN_TYPES:
            parts.append(child.content)
        elif child.type == "softbreak":
            parts.append(" ")
    return "".join(parts)


__all__ = ["CompiledPage", "MarkdownCompiler", "SlugRegistry", "build_engine", "slugify"]

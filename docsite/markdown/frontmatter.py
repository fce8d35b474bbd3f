"""Extraction of the YAML frontmatter block at the top of a Markdown file."""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import yaml
from frontmatter.default_handlers import YAMLHandler

from ..errors import MarkdownCompileError
from ..utils import normalize_data


class _UniqueKeyLoader(yaml.SafeLoader):
    """Safe loader that refuses mappings with repeated keys."""


def _construct_unique_mapping(loader: _UniqueKeyLoader, node: yaml.MappingNode, deep: bool = False):
    loader.flatten_mapping(node)
    seen = set()
    for key_node, _ in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in seen:
            raise yaml.constructor.ConstructorError(
                "while constructing a mapping",
                node.start_mark,
                f"found duplicate key {key!r}",
                key_node.start_mark,
            )
        seen.add(key)
    return loader.construct_mapping(node, deep=deep)


_UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_unique_mapping
)

_HANDLER = YAMLHandler()


def split_frontmatter(text: str, file: Optional[str] = None) -> Tuple[Dict[str, Any], str]:
    """Return ``(frontmatter, body)``; a file without a block has ``{}``."""
    if text.startswith("\ufeff"):
        text = text[1:]
    if not _HANDLER.detect(text):
        return {}, text
    try:
        block, body = _HANDLER.split(text)
    except ValueError:
        return {}, text
    try:
        loaded = _HANDLER.load(block, Loader=_UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise MarkdownCompileError(file, f"invalid frontmatter: {exc}") from exc
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise MarkdownCompileError(file, "frontmatter must be a mapping")
    return normalize_data(loaded), _strip_line_break(body)


def _strip_line_break(body: str) -> str:
    for newline in ("\r\n", "\n"):
        if body.startswith(newline):
            return body[len(newline):]
    return body


__all__ = ["split_frontmatter"]

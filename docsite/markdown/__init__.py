"""Markdown compilation built on markdown-it-py."""

from .compiler import CompiledPage, MarkdownCompiler, SlugRegistry, build_engine, slugify
from .frontmatter import split_frontmatter

__all__ = [
    "CompiledPage",
    "MarkdownCompiler",
    "SlugRegistry",
    "build_engine",
    "slugify",
    "split_frontmatter",
]

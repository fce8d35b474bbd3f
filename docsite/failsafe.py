"""Fail-safe page content for sources that cannot be compiled."""

from __future__ import annotations

import html
from typing import Any, Dict

from .markdown.compiler import CompiledPage
from .models import SourceFile


def build_error_page(source: SourceFile, error: BaseException) -> CompiledPage:
    """Return a visible error notice standing in for a page that failed to compile."""
    reason = _format_reason(error)
    body = (
        '<div class="docsite-error" role="alert">\n'
        f"<p><strong>Failed to compile {html.escape(source.relative_path)}</strong></p>\n"
        f"<pre>{html.escape(reason)}</pre>\n"
        "</div>\n"
    )
    frontmatter: Dict[str, Any] = {"error": reason}
    return CompiledPage(html=body, frontmatter=frontmatter, headers=(), body="")


def _format_reason(error: BaseException) -> str:
    reason = getattr(error, "reason", None)
    if isinstance(reason, str) and reason.strip():
        return reason.strip()
    text = str(error).strip()
    return text or error.__class__.__name__


__all__ = ["build_error_page"]

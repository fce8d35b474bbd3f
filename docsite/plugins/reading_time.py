"""Builtin plugin estimating how long a page takes to read."""

from __future__ import annotations

import math
import re
from types import MappingProxyType
from typing import Dict, Sequence

from .base import Hook, PageContext, Plugin

_TAG_PATTERN = re.compile(r"<[^>]*>")
_CJK_PATTERN = re.compile(r"[\u4e00-\u9fff]")
_WORD_PATTERN = re.compile(r"[A-Za-z]+")


def estimate_reading_time(content: str, words_per_minute: int = 200) -> Dict[str, int]:
    """Count CJK characters and Latin words; never report less than one minute."""
    text = _TAG_PATTERN.sub("", content)
    words = len(_CJK_PATTERN.findall(text)) + len(_WORD_PATTERN.findall(text))
    minutes = max(1, math.ceil(words / words_per_minute))
    return {"minutes": minutes, "words": words}


class ReadingTimePlugin(Plugin):
    """Adds ``readingTime`` to each page's frontmatter."""

    name = "reading-time"
    hooks = frozenset({Hook.EXTEND_PAGE_DATA})
    needs_content = True
    global_components = MappingProxyType({"DocsiteReadingTime": "@docsite/components/ReadingTime.vue"})

    def __init__(
        self,
        words_per_minute: int = 200,
        exclude: Sequence[str] = (),
        position: str = "doc-top",
    ) -> None:
        if words_per_minute <= 0:
            raise ValueError("words_per_minute must be positive")
        self.words_per_minute = words_per_minute
        self.exclude = tuple(item.strip("/") for item in exclude)
        self.slots = {position: "DocsiteReadingTime"}

    def extend_page_data(self, page, ctx: PageContext) -> None:
        if self._excluded(page.relative_path):
            return
        estimate = estimate_reading_time(page.content or "", self.words_per_minute)
        minutes = estimate["minutes"]
        page.frontmatter["readingTime"] = {
            **estimate,
            "text": f"{minutes} min read",
        }

    def _excluded(self, relative_path: str) -> bool:
        return any(
            relative_path == prefix or relative_path.startswith(prefix + "/")
            for prefix in self.exclude
        )


__all__ = ["ReadingTimePlugin", "estimate_reading_time"]

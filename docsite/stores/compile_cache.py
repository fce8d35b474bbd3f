"""Persistent cache for compiled Markdown pages."""

from __future__ import annotations

from datetime import UTC, datetime
import hashlib
import json
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

from ..markdown.compiler import CompiledPage

_CACHE_VERSION = 1
CACHE_FILENAME = "compile-cache.json"


def fingerprint(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def signature_of(payload: Mapping[str, Any]) -> str:
    """Hash the compiler settings so a change in options invalidates entries."""
    encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class CompileCache:
    """Stores compiled pages keyed by relative path and content fingerprint.

    The cache is best effort: an unreadable or outdated file is treated as
    empty and can always be discarded.
    """

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._entries: Dict[str, Dict[str, object]] = {}
        self._dirty = False
        if self._path is not None:
            self._load(self._path)

    @classmethod
    def for_directory(cls, directory: Path | None) -> "CompileCache":
        return cls(directory / CACHE_FILENAME if directory is not None else None)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str, *, signature: str, fingerprint: str) -> Optional[CompiledPage]:
        entry = self._entries.get(key)
        if not entry:
            return None
        if entry.get("signature") != signature:
            return None
        if entry.get("fingerprint") != fingerprint:
            return None
        payload = entry.get("page")
        if not isinstance(payload, dict):
            return None
        try:
            return CompiledPage.from_dict(payload)
        except (KeyError, TypeError, ValueError):
            return None

    def store(
        self,
        key: str,
        *,
        signature: str,
        fingerprint: str,
        page: CompiledPage,
    ) -> None:
        self._entries[key] = {
            "signature": signature,
            "fingerprint": fingerprint,
            "page": page.to_dict(),
            "updated_at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        }
        self._dirty = True

    def discard(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            self._dirty = True

    def prune(self, keys_to_keep: Iterable[str]) -> None:
        keep = set(keys_to_keep)
        removed = [key for key in self._entries if key not in keep]
        if removed:
            for key in removed:
                self._entries.pop(key, None)
            self._dirty = True

    def persist(self) -> None:
        if not self._dirty or self._path is None:
            return
        payload = {
            "version": _CACHE_VERSION,
            "entries": self._entries,
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False), encoding="utf-8"
        )
        self._dirty = False

    def clear(self) -> None:
        self._entries.clear()
        self._dirty = True

    # ------------------------------------------------------------------
    # Internal helpers

    def _load(self, path: Path) -> None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            return
        if not isinstance(data, dict) or data.get("version") != _CACHE_VERSION:
            return
        entries = data.get("entries")
        if not isinstance(entries, dict):
            return
        valid_entries: Dict[str, Dict[str, object]] = {}
        for key, raw in entries.items():
            if not isinstance(key, str) or not isinstance(raw, dict):
                continue
            if "signature" not in raw or "fingerprint" not in raw or "page" not in raw:
                continue
            valid_entries[key] = raw
        self._entries = valid_entries
        self._dirty = False


__all__ = ["CACHE_FILENAME", "CompileCache", "fingerprint", "signature_of"]

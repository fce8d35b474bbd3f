"""Tests for the compile cache store."""

from __future__ import annotations

from pathlib import Path

from docsite.markdown import CompiledPage
from docsite.models import Header
from docsite.stores import CompileCache
from docsite.stores.compile_cache import fingerprint, signature_of


def _page(html: str = "<h1 id=\"home\">Home</h1>\n") -> CompiledPage:
    return CompiledPage(
        html=html,
        frontmatter={"title": "Home"},
        headers=(Header(level=1, title="Home", slug="home"),),
        body="# Home\n",
    )


def test_compile_cache_round_trip(tmp_path: Path) -> None:
    cache_path = tmp_path / "cache.json"
    cache = CompileCache(cache_path)
    page = _page()
    cache.store("index.md", signature="sig-1", fingerprint="fp-abc", page=page)
    cache.persist()

    loaded = CompileCache(cache_path)
    reuse = loaded.get("index.md", signature="sig-1", fingerprint="fp-abc")

    assert reuse == page


def test_compile_cache_invalidates_on_signature_or_content_change(tmp_path: Path) -> None:
    cache = CompileCache(tmp_path / "cache.json")
    cache.store("index.md", signature="sig-1", fingerprint="fp", page=_page())

    assert cache.get("index.md", signature="sig-1", fingerprint="fp") is not None
    assert cache.get("index.md", signature="sig-2", fingerprint="fp") is None
    assert cache.get("index.md", signature="sig-1", fingerprint="fp-changed") is None


def test_compile_cache_prune_and_discard(tmp_path: Path) -> None:
    cache = CompileCache(tmp_path / "cache.json")
    for key in ("a.md", "b.md", "c.md"):
        cache.store(key, signature="s", fingerprint="fp", page=_page())

    cache.prune(["a.md", "b.md"])
    cache.discard("b.md")
    cache.persist()

    reloaded = CompileCache(tmp_path / "cache.json")
    assert len(reloaded) == 1
    assert reloaded.get("a.md", signature="s", fingerprint="fp") is not None
    assert reloaded.get("c.md", signature="s", fingerprint="fp") is None


def test_corrupt_cache_file_is_treated_as_empty(tmp_path: Path) -> None:
    cache_path = tmp_path / "cache.json"
    cache_path.write_text("{not json", encoding="utf-8")

    cache = CompileCache(cache_path)

    assert len(cache) == 0


def test_cache_without_path_never_writes(tmp_path: Path) -> None:
    cache = CompileCache.for_directory(None)
    cache.store("index.md", signature="s", fingerprint="fp", page=_page())

    cache.persist()

    assert list(tmp_path.iterdir()) == []


def test_fingerprint_and_signature_are_stable() -> None:
    assert fingerprint("# Home\n") == fingerprint(b"# Home\n")
    assert fingerprint("# Home\n") != fingerprint("# Home!\n")
    assert signature_of({"b": 1, "a": [1, 2]}) == signature_of({"a": [1, 2], "b": 1})

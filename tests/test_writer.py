"""Tests for artifact writing."""

from __future__ import annotations

import json

from docsite.models import PageData
from docsite.routes import RouteTableGenerator
from docsite.writer import ArtifactWriter, page_artifact_name
from tests._fixtures.site_builder import SiteBuilder


def _pages() -> dict:
    pages = {}
    for relative in ("index.md", "guide/start.md"):
        pages[relative] = PageData(
            title=relative,
            description="",
            relative_path=relative,
            file_path=f"/site/{relative}",
            html="<p>x</p>",
        ).freeze()
    return pages


def test_write_emits_routes_site_data_and_pages(site_builder: SiteBuilder) -> None:
    config = site_builder.config({"title": "Handbook", "base": "/docs/"})
    pages = _pages()
    routes = RouteTableGenerator(config).generate(pages.values())
    writer = ArtifactWriter(config)

    written = writer.write(pages, routes, [{"name": "badge", "slots": {}}])

    out = config.out_dir
    assert out / "routes.json" in written
    assert json.loads((out / "routes.json").read_text(encoding="utf-8"))[0]["path"] == "/"
    site_data = json.loads((out / "site-data.json").read_text(encoding="utf-8"))
    assert site_data["title"] == "Handbook"
    assert site_data["base"] == "/docs/"
    assert site_data["plugins"] == [{"name": "badge", "slots": {}}]
    page = json.loads((out / "pages" / "guide" / "start.json").read_text(encoding="utf-8"))
    assert page["relativePath"] == "guide/start.md"
    assert page["html"] == "<p>x</p>"


def test_write_removes_stale_page_payloads(site_builder: SiteBuilder) -> None:
    config = site_builder.config()
    pages = _pages()
    generator = RouteTableGenerator(config)
    writer = ArtifactWriter(config)
    writer.write(pages, generator.generate(pages.values()))

    del pages["guide/start.md"]
    writer.write(pages, generator.generate(pages.values()))

    assert not (config.out_dir / "pages" / "guide" / "start.json").exists()
    assert (config.out_dir / "pages" / "index.json").exists()


def test_routes_module_uses_static_imports_for_builds(site_builder: SiteBuilder) -> None:
    config = site_builder.config()
    routes = RouteTableGenerator(config).generate(_pages().values())
    writer = ArtifactWriter(config)

    static = writer.render_routes_module(routes)
    lazy = writer.render_routes_module(routes, dynamic=True)

    assert 'import Page0 from "/site/index.md"' in static
    assert 'import NotFound from "@theme/NotFound.vue"' in static
    assert "component: Page1," in static
    assert 'component: () => import("/site/guide/start.md")' in lazy
    assert "import Page0" not in lazy


def test_page_artifact_name_swaps_suffix() -> None:
    assert page_artifact_name("guide/start.md") == "guide/start.json"
    assert page_artifact_name("index.md") == "index.json"

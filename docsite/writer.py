"""Writes build artifacts consumed by the client application."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Sequence

from jinja2 import Environment, FileSystemLoader

from .config import SiteConfig
from .logging import get_logger
from .models import PageData
from .routes import RouteTable
from .utils import dump_json

ROUTES_JSON = "routes.json"
ROUTES_MODULE = "routes.js"
SITE_DATA = "site-data.json"
PAGES_DIR = "pages"


class ArtifactWriter:
    """Renders the route table, site data and page payloads to disk."""

    def __init__(self, config: SiteConfig, templates_dir: Path | None = None) -> None:
        self.config = config
        self.logger = get_logger("writer")
        directories = []
        if templates_dir:
            directories.append(str(templates_dir))
        directories.append(str(Path(__file__).with_name("templates")))
        self._env = Environment(
            loader=FileSystemLoader(directories),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    @property
    def target_dir(self) -> Path:
        return self.config.output_dir

    def render_routes_module(self, routes: RouteTable, *, dynamic: bool | None = None) -> str:
        """Render ``routes.js``; development uses lazy imports, builds use static ones."""
        if dynamic is None:
            dynamic = not self.config.is_production
        context = []
        page_index = 0
        for entry in routes.entries:
            if entry.is_fallback:
                name = "NotFound"
            else:
                name = f"Page{page_index}"
                page_index += 1
            context.append({**entry.to_dict(), "name": name})
        template = self._env.get_template("routes.js.j2")
        return template.render(routes=context, dynamic=dynamic)

    def site_data(self, client_manifest: Sequence[Mapping[str, Any]] = ()) -> Dict[str, Any]:
        data = self.config.site_data()
        data["plugins"] = [dict(item) for item in client_manifest]
        return data

    def write(
        self,
        pages: Mapping[str, PageData],
        routes: RouteTable,
        client_manifest: Sequence[Mapping[str, Any]] = (),
    ) -> List[Path]:
        """Write every artifact and remove page payloads that no longer exist."""
        target = self.target_dir
        target.mkdir(parents=True, exist_ok=True)
        written = [
            _write(target / ROUTES_JSON, routes.to_json()),
            _write(target / ROUTES_MODULE, self.render_routes_module(routes)),
            _write(target / SITE_DATA, dump_json(self.site_data(client_manifest))),
        ]

        pages_dir = target / PAGES_DIR
        expected = set()
        for relative_path in sorted(pages):
            path = pages_dir / page_artifact_name(relative_path)
            expected.add(path)
            written.append(_write(path, dump_json(pages[relative_path].to_dict())))
        if pages_dir.exists():
            for stale in pages_dir.rglob("*.json"):
                if stale not in expected:
                    stale.unlink()
        self.logger.debug("Wrote %d artifacts to %s", len(written), target)
        return written


def page_artifact_name(relative_path: str) -> str:
    """Return the payload path for a page, e.g. ``guide/start.json``."""
    return PurePosixPath(relative_path).with_suffix(".json").as_posix()


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


__all__ = ["ArtifactWriter", "PAGES_DIR", "ROUTES_JSON", "ROUTES_MODULE", "SITE_DATA", "page_artifact_name"]

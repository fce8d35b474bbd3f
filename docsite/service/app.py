"""FastAPI application exposing the development snapshot."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..dev.controller import SiteSnapshot
from ..logging import get_logger
from ..utils import thaw


class HealthResponse(BaseModel):
    status: str
    version: int = 0


class RouteModel(BaseModel):
    path: str
    component: str
    meta: Dict[str, Any] = {}


class RoutesResponse(BaseModel):
    version: int
    routes: List[RouteModel]


class PageResponse(BaseModel):
    version: int
    page: Dict[str, Any]


class ErrorsResponse(BaseModel):
    version: int
    errors: Dict[str, str]


class BuildResponse(BaseModel):
    version: int
    routes: int
    errors: Dict[str, str]


SnapshotProvider = Callable[[], Optional[SiteSnapshot]]
ErrorsProvider = Callable[[], Mapping[str, str]]
RebuildTrigger = Callable[[], Awaitable[Optional[SiteSnapshot]]]


def create_app(
    snapshot_provider: SnapshotProvider,
    *,
    errors_provider: ErrorsProvider | None = None,
    rebuild: RebuildTrigger | None = None,
) -> FastAPI:
    """Create the FastAPI application serving routes and page data."""

    app = FastAPI(title="Docsite Dev Service", version="1.0.0")
    logger = get_logger("service")

    def _snapshot() -> SiteSnapshot:
        snapshot = snapshot_provider()
        if snapshot is None:
            raise HTTPException(status_code=503, detail="Site is still building")
        return snapshot

    def _errors(snapshot: SiteSnapshot) -> Dict[str, str]:
        errors = dict(snapshot.errors)
        if errors_provider is not None:
            errors.update(errors_provider())
        return errors

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        snapshot = snapshot_provider()
        return HealthResponse(status="ok", version=snapshot.version if snapshot else 0)

    @app.get("/routes", response_model=RoutesResponse)
    async def routes() -> RoutesResponse:
        snapshot = _snapshot()
        return RoutesResponse(
            version=snapshot.version,
            routes=[RouteModel(**entry.to_dict()) for entry in snapshot.routes.entries],
        )

    @app.get("/pages/{path:path}", response_model=PageResponse)
    async def page(path: str) -> PageResponse:
        snapshot = _snapshot()
        key = path.strip("/")
        record = snapshot.pages.get(key) or snapshot.pages.get(f"{key}.md")
        if record is None:
            raise FileNotFoundError(f"No page for {path}")
        return PageResponse(version=snapshot.version, page=thaw(record.to_dict()))

    @app.get("/errors", response_model=ErrorsResponse)
    async def errors() -> ErrorsResponse:
        snapshot = _snapshot()
        return ErrorsResponse(version=snapshot.version, errors=_errors(snapshot))

    @app.post("/build", response_model=BuildResponse)
    async def build() -> BuildResponse:
        if rebuild is None:
            raise RuntimeError("Rebuilds are not available in this service")
        snapshot = await rebuild()
        if snapshot is None:
            raise RuntimeError("Rebuild failed; the previous snapshot is still served")
        logger.info("Rebuilt snapshot v%d on request", snapshot.version)
        return BuildResponse(
            version=snapshot.version,
            routes=len(snapshot.routes),
            errors=_errors(snapshot),
        )

    @app.exception_handler(FileNotFoundError)
    async def file_not_found_handler(_: Any, exc: FileNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(RuntimeError)
    async def runtime_error_handler(_: Any, exc: RuntimeError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    return app


async def serve_app(app: FastAPI, host: str = "127.0.0.1", port: int = 5173) -> None:  # pragma: no cover - integration path
    """Serve ``app`` with uvicorn on the running event loop."""
    import uvicorn

    config = uvicorn.Config(app, host=host, port=port, log_level="info", log_config=None)
    server = uvicorn.Server(config)
    await server.serve()


__all__ = ["create_app", "serve_app"]

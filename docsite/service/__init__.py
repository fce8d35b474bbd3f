"""HTTP service exposing development snapshots."""

from .app import create_app, serve_app

__all__ = ["create_app", "serve_app"]

"""Uvicorn entrypoint for the mediacdn origin server."""

from __future__ import annotations

from .app import create_app

app = create_app()

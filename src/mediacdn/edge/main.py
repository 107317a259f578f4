"""Uvicorn entrypoint for the mediacdn edge node."""

from __future__ import annotations

from .app import create_app

app = create_app()

"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from pothole_detector.pipeline import Pipeline
from pothole_detector.web.routes import create_router
from pothole_detector.web.websocket import create_ws_router


def create_app(pipeline: Pipeline) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(title="Pothole Detector", version="0.1.0")

    app.include_router(create_router(pipeline))
    app.include_router(create_ws_router(pipeline))

    return app

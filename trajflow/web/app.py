"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from trajflow.session import AnalysisSession
from trajflow.web.routes import create_router
from trajflow.web.websocket import create_ws_router


def create_app(session: AnalysisSession) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(title="Trajectory Flow Analyzer", version="0.1.0")

    app.include_router(create_router(session))
    app.include_router(create_ws_router(session))

    return app

"""taskplan web interface: FastAPI app factory over one engine."""

from __future__ import annotations

from fastapi import FastAPI

from ..config import load_config
from ..engine import PlanningEngine


def create_app(engine: PlanningEngine | None = None) -> FastAPI:
    if engine is None:
        engine = PlanningEngine(config=load_config())

    app = FastAPI(title="taskplan")
    app.state.engine = engine

    from .routes import router

    app.include_router(router)

    return app

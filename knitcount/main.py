from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.errors import register_error_handlers
from .api.routes.counters import router as counters_router
from .api.routes.events import router as events_router
from .api.routes.history import router as history_router
from .api.routes.links import router as links_router
from .api.routes.projects import router as projects_router
from .core.config import get_settings
from .core.logging import configure_logging
from .db import init_db
from .telemetry import configure_tracing, setup_prometheus


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging()
    app = FastAPI(title=settings.project_name, version=__version__)

    allow_origins = settings.cors_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in allow_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    @app.on_event("startup")
    async def _startup() -> None:
        await init_db()

    @app.get("/healthz")
    def healthz() -> dict[str, str | bool]:
        return {"ok": True, "service": "counter-engine"}

    app.include_router(projects_router, prefix=settings.api_v1_prefix)
    app.include_router(counters_router, prefix=settings.api_v1_prefix)
    app.include_router(history_router, prefix=settings.api_v1_prefix)
    app.include_router(links_router, prefix=settings.api_v1_prefix)
    app.include_router(events_router, prefix=settings.api_v1_prefix)

    if settings.enable_prometheus_metrics:
        setup_prometheus(app)
    configure_tracing(app)

    return app


app = create_app()

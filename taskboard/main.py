from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pythonjsonlogger import jsonlogger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import settings
from .database import Base, engine
from .event_bus import TenantEventBus
from .metrics import build_metrics_registry
from .rate_limit import limiter
from .realtime.session import SessionRegistry
from .api import (
    routes_boards,
    routes_groups,
    routes_invites,
    routes_metrics,
    routes_roles,
    routes_search,
    routes_stream,
    routes_tasks,
    routes_tenants,
    routes_users,
)
from .auth.routes_auth import router as auth_router
from .auth.seed import seed_demo_tenant

# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------

def _configure_logging() -> None:
    """Configure structured JSON logging when log_format=json (default)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        ))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s"))
    root.addHandler(handler)

_configure_logging()

# Initialise database tables on startup
Base.metadata.create_all(bind=engine)

# Seed a demo tenant if the database is empty
seed_demo_tenant()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Process shutdown: every open stream enters Closing, then the bus goes away
    closed = app.state.stream_sessions.close_all("shutdown")
    app.state.event_bus.close()
    logging.getLogger("taskboard.stream").info("Shutdown closed %d stream(s)", closed)


def create_app(event_bus: Optional[TenantEventBus] = None) -> FastAPI:
    """Build the API. The event bus lives for as long as the app does."""
    app = FastAPI(
        title="Taskboard",
        version="1.0.0",
        description=(
            "Multi-tenant Kanban API: boards, tasks and subtasks scoped by "
            "organisation, with real-time change streaming over SSE."
        ),
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.event_bus = event_bus or TenantEventBus(
        max_subscribers_per_tenant=settings.max_subscribers_per_tenant
    )
    app.state.stream_sessions = SessionRegistry()
    app.state.metrics_registry = build_metrics_registry(app.state.event_bus)

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(routes_tenants.router)
    app.include_router(routes_users.router)
    app.include_router(routes_roles.router)
    app.include_router(routes_groups.router)
    app.include_router(routes_invites.router)
    app.include_router(routes_boards.router)
    app.include_router(routes_tasks.router)
    app.include_router(routes_search.router)
    app.include_router(routes_stream.router)
    app.include_router(routes_metrics.router)

    @app.get("/", tags=["meta"])
    def root() -> dict:
        return {"status": "ok", "service": "taskboard", "version": "1.0.0"}

    @app.get("/health", tags=["meta"])
    def health() -> dict:
        return {"status": "healthy"}

    return app


app = create_app()

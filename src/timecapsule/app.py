"""FastAPI application for the capsule server."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .capsule import CapsuleError
from .clock import Clock, SystemClock
from .config import Settings
from .db import get_db, init_db
from .routes import capsule_error_handler, create_router

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add standard security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage DB connection lifecycle."""
    settings: Settings = app.state.settings
    await init_db(settings.db_path)
    app.state.db = await get_db(settings.db_path)
    logger.info(f"[SERVER] Ready on {settings.host}:{settings.port} (claim policy: {settings.claim_policy})")
    yield
    await app.state.db.close()
    logger.info("[SERVER] Database connection closed")


def create_app(settings: Settings | None = None, clock: Clock | None = None) -> FastAPI:
    """Create the FastAPI capsule application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="Time Capsule",
        description="Time-locked, hash-gated release of encrypted messages",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )

    app.state.settings = settings
    app.state.clock = clock or SystemClock()

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_exception_handler(CapsuleError, capsule_error_handler)

    router = create_router()
    app.include_router(router)

    return app

"""Entry point for the FastAPI application.

This module constructs the FastAPI app, includes all routers and
sets up startup and shutdown events.  Run it with::

    uvicorn billsplit.api.main:app --reload --app-dir backend

Business routes live under ``settings.API_PREFIX``; the Stripe webhook
stays at the root so its URL does not change with the prefix.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from billsplit.api.error_handlers import register_exception_handlers
from billsplit.api.routes.analytics import router as analytics_router
from billsplit.api.routes.auth import router as auth_router
from billsplit.api.routes.bills import router as bills_router
from billsplit.api.routes.premium import router as premium_router
from billsplit.api.routes.stripe_webhooks import router as stripe_webhooks_router
from billsplit.api.routes.templates import router as templates_router
from billsplit.api.routes.upload import router as upload_router
from billsplit.core.config import settings
from billsplit.core.database import get_db_debug_info, init_db
from billsplit.core.observability import init_sentry, sentry_enabled, sentry_set_tags

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    logger.info("Starting up...")
    if init_sentry("api"):
        logger.info("Sentry SDK initialized (api)")
    await init_db()
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def sentry_context_middleware(request: Request, call_next):  # type: ignore
    if sentry_enabled():
        sentry_set_tags({"path": request.url.path, "method": request.method})
    return await call_next(request)


"""CORS configuration.

In development every origin is allowed.  Elsewhere the list starts from
BACKEND_CORS_ORIGINS and always includes the FRONTEND_BASE_URL origin.
"""
env_is_dev = (settings.ENVIRONMENT or "development").lower() == "development"
allow_origins = ["*"] if env_is_dev else list(settings.BACKEND_CORS_ORIGINS or [])

if not env_is_dev:
    parsed = urlparse(settings.FRONTEND_BASE_URL or "")
    if parsed.scheme and parsed.netloc:
        front_origin = f"{parsed.scheme}://{parsed.netloc}"
        if "*" not in allow_origins and front_origin not in allow_origins:
            allow_origins.append(front_origin)

# Deduplicate preserving order
seen = set()
allow_origins = [o for o in allow_origins if not (o in seen or seen.add(o))]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials="*" not in allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
for router in (auth_router, bills_router, templates_router, premium_router, analytics_router, upload_router):
    app.include_router(router, prefix=settings.API_PREFIX)
app.include_router(stripe_webhooks_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Welcome to the BillSplit API"}


@app.api_route("/health", methods=["GET", "HEAD"])
async def health_check():
    """Health check endpoint (supports GET & HEAD)."""
    return {"status": "healthy"}


@app.get("/debug/db")
async def db_debug():
    """Return non-sensitive DB diagnostics (for development)."""
    return get_db_debug_info()

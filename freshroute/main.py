"""FRESHROUTE — FastAPI Application Entry Point.

Freshness-aware analytics router: serves ad-platform aggregates from the
current-period cache, the historical store or the upstream API.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from freshroute.api.analytics_routes import router as analytics_router
from freshroute.api.meta_routes import router as meta_router
from freshroute.connectors.meta.provider import MetaProvider
from freshroute.core.logging import get_logger
from freshroute.database import _mask_url, db_url, engine, init_db, test_connection
from freshroute.models.enums import Platform
from freshroute.router.freshness_router import create_freshness_router
from freshroute.scheduler.jobs import start_scheduler, stop_scheduler
from freshroute.stores.sql_storage import SQLStorage

logger = get_logger("main")


IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("🚀 FRESHROUTE starting up...")
    logger.info(f"🌍 Environment: {'SERVERLESS' if IS_SERVERLESS else 'LOCAL'}")
    if test_connection():
        init_db()
    else:
        logger.error("❌ Database NOT connected — routed requests will fail")

    storage = SQLStorage(engine)
    providers = {Platform.META: MetaProvider(storage)}
    app.state.storage = storage
    app.state.providers = providers
    app.state.freshness_router = create_freshness_router(storage, providers)

    if not IS_SERVERLESS:
        start_scheduler(app.state.freshness_router, storage)
    yield
    if not IS_SERVERLESS:
        stop_scheduler()
    logger.info("FRESHROUTE shut down")


app = FastAPI(
    title="FRESHROUTE",
    description="Freshness Router — answer analytics requests from cache, historical store or upstream with provenance.",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(analytics_router)
app.include_router(meta_router)


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "freshroute",
        "version": "1.0.0",
    }


@app.get("/debug/db", tags=["System"])
async def debug_db():
    """Debug endpoint — check database connectivity."""
    connected = test_connection()
    backend = "postgresql" if db_url.startswith("postgresql") else "sqlite"
    return {
        "connected": connected,
        "backend": backend,
        "url": _mask_url(db_url),
        "environment": "serverless" if IS_SERVERLESS else "local",
    }

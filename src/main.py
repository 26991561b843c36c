"""FastAPI application entry point — wires everything together.

Usage:
    python -m src.main

Serves the marketplace webhook and runs deletion jobs in the background.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from src.channels.marketplace import marketplace_router
from src.config import settings
from src.db.engine import Database, db_lifespan
from src.deletion.services import build_services

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting deletion hook (env=%s)", settings.environment)

    if not settings.marketplace.ebay_verification_token:
        logger.warning("EBAY_VERIFICATION_TOKEN not set — notifications cannot be verified")
    if not settings.marketplace.ebay_endpoint_url:
        logger.warning("EBAY_ENDPOINT_URL not set — challenge handshake will fail")

    # 1. Database
    async with db_lifespan(Database(settings)) as database:
        # 2. Deletion services + background worker
        services = build_services(settings, database)
        app.state.services = services
        await services.worker.start()

        try:
            yield
        finally:
            logger.info("Shutting down deletion hook...")
            await services.worker.stop()

    logger.info("Deletion hook shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="Marketplace Deletion Hook",
    description="Marketplace account deletion notifications and personal data purge",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(marketplace_router)


@app.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "eBay Deletion Handler Service"


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )

"""
OpenForum API server.

Run with:
    uvicorn openforum.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from loguru import logger

from openforum.api.v1 import router as api_router
from openforum.core.cache import close_cache
from openforum.core.config import settings
from openforum.core.database import close_db, init_db
from openforum.core.exceptions import register_exception_handlers
from openforum.core.logging import setup_logging

API_DESCRIPTION = """
Community forum backend.

* **Forum** - categories, threads, replies, votes, reactions, tags
* **Accounts** - email and password sign-in, one-time email codes
* **Moderation** - reports, bans, roles, category moderators
* **Search** - hosted full-text search, database listing as fallback
* **Webhooks** - HMAC-signed event deliveries

Interactive docs live at `/docs` and `/redoc`.
"""


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    setup_logging()
    logger.info(f"{settings.app_name} {settings.app_version} starting")

    await init_db()
    logger.info("Database schema ready")

    if not settings.algolia_app_id:
        logger.warning("Algolia not configured - search falls back to the database")
    if not settings.resend_api_key:
        logger.warning("Resend not configured - one-time codes cannot be emailed")

    try:
        yield
    finally:
        await close_cache()
        await close_db()
        logger.info(f"{settings.app_name} stopped")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=API_DESCRIPTION,
    openapi_url=f"{settings.api_v1_prefix}/openapi.json",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

register_exception_handlers(app)
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health", tags=["System"])
async def health() -> dict:
    return {"status": "healthy", "version": settings.app_version}


@app.get("/", tags=["System"])
async def index() -> dict:
    """Service name and where to find the API."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "api_prefix": settings.api_v1_prefix,
        "openapi": f"{settings.api_v1_prefix}/openapi.json",
    }

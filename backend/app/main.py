"""FastAPI application entry point.

This module configures the FastAPI application with:
- CORS middleware for frontend communication
- API v1 router with all endpoints
- Redis/ARQ lifecycle management
- Health check endpoints
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import redis.asyncio as redis

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.database import close_db
from app.core.redis import init_redis, close_redis, redis_conn
from app.core.arq_config import get_arq_pool, close_arq_pool
from app.services.interaction_queue import InteractionQueue

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events.

    Handles:
    - Redis connection pool initialization
    - ARQ pool initialization
    - Graceful shutdown of Redis, ARQ and database connections
    """
    # Startup
    logger.info("Starting Legion API...")

    try:
        # Initialize Redis connection pool
        await init_redis()
        logger.info("Redis connection pool initialized")

        # Initialize ARQ pool for job enqueueing
        await get_arq_pool()
        logger.info("ARQ job queue pool initialized")

    except Exception as e:
        logger.error(f"Failed to initialize connections: {e}")
        # Continue startup even if Redis is unavailable; feeds fall back to
        # the database and rate limits fail open

    yield  # Application is running

    # Shutdown
    logger.info("Shutting down Legion API...")

    try:
        # Close ARQ pool
        await close_arq_pool()
        logger.info("ARQ pool closed")

        # Close Redis connection pool
        await close_redis()
        logger.info("Redis connection pool closed")

        # Dispose of pooled database connections
        await close_db()
        logger.info("Database engine disposed")

    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


app = FastAPI(
    title="Legion API",
    description="AI content generation and social feed platform with a credit ledger",
    version=settings.VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API v1 router
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/api/health")
async def health_check():
    """Health check endpoint.

    Returns basic health status. For detailed checks including
    Redis connectivity, use /api/v1/status.
    """
    return {"status": "ok", "service": "legion-backend"}


@app.get("/api/v1/status")
async def status_check():
    """API status endpoint with service health details.

    Returns status of the API, Redis and the like queue backlog.
    """
    redis_status = "disconnected"
    like_queue_pending = None
    if await redis_conn.ping():
        redis_status = "connected"
        try:
            client = await redis_conn.get_client()
            like_queue_pending = await InteractionQueue(client).pending_count()
        except redis.RedisError as e:
            redis_status = f"error: {str(e)}"

    return {
        "status": "running",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "services": {
            "redis": redis_status,
            "job_queue": "arq",
            "like_queue_pending": like_queue_pending,
        },
    }

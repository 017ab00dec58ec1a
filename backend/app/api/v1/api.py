"""API v1 router aggregation."""

from fastapi import APIRouter

from app.api.v1.routers import ai, credits, feed, identity, payments, posts

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(identity.router)  # Identity provider webhooks
api_router.include_router(credits.router)  # Credit balance and history
api_router.include_router(ai.router)  # AI generation (rate limited)
api_router.include_router(payments.router)  # WooCommerce checkout and webhooks
api_router.include_router(feed.router)  # Cached feeds
api_router.include_router(posts.router)  # Posts, likes and follows

"""Main application entry point."""
import logging
from contextlib import asynccontextmanager

import httpx
import redis
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

from config import API_VERSION, RATE_LIMIT_ENABLED, REDIS_URL
from database import engine, init_db
from errors import register_error_handlers
from logging_config import setup_logging
from monitoring import init_profiling
from redis_rate_limiter import RedisRateLimiter
from routers import (
    admin,
    auth as auth_router,
    cart,
    categories,
    coupons,
    customers,
    health,
    newsletter,
    orders,
    payment,
    products,
    reports,
    reviews,
    wishlist,
)
from services.email_service import build_email_sender

# Setup structured logging
setup_logging()
logger = logging.getLogger(__name__)

# Sync client shared by the rate limiter and the cart cache
redis_client = redis.from_url(REDIS_URL, decode_responses=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info("Starting application...")

    init_db()

    RedisInstrumentor().instrument(redis_client=redis_client)
    app.state.redis_client = redis_client
    logger.info("Redis client initialized")

    # One HTTP client for payment providers and the email API
    http_client = httpx.AsyncClient(timeout=30.0)
    HTTPXClientInstrumentor().instrument_client(http_client)
    app.state.http_client = http_client
    app.state.email_sender = build_email_sender(http_client)
    logger.info("HTTP client initialized")

    init_profiling()

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application...")
    await http_client.aclose()
    redis_client.close()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Storefront Service",
    version=API_VERSION,
    lifespan=lifespan
)

register_error_handlers(app)

if RATE_LIMIT_ENABLED:
    app.add_middleware(RedisRateLimiter, redis_client=redis_client)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Instrument FastAPI and SQLAlchemy
FastAPIInstrumentor.instrument_app(app)
SQLAlchemyInstrumentor().instrument(engine=engine)

app.include_router(health.router)
app.include_router(auth_router.router)
app.include_router(products.router)
app.include_router(categories.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(coupons.router)
app.include_router(payment.router)
app.include_router(wishlist.router)
app.include_router(reviews.router)
app.include_router(newsletter.router)
app.include_router(customers.router)
app.include_router(reports.router)
app.include_router(admin.router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)

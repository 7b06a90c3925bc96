"""
app/main.py

Purpose: Application entry point

- Wires the WhatsApp and Paystack webhooks into one FastAPI app
- Startup: settings check, MongoDB + indexes, Redis reachability
- Shutdown: drains the per-user message queue before closing clients
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import time

from app.core.config import settings, validate_settings
from app.core.errors import add_exception_handlers
from app.core.logging import setup_logging, get_logger
from app.db.mongo import connect_to_mongo, close_mongo_connection, check_database_health
from app.db.indexes import create_indexes
from app.flow.queue import close_message_queue
from app.services.ai_service import close_ai_service
from app.services.rate_limit_service import close_redis, check_redis_health
from app.api import webhook, payments

setup_logging()
logger = get_logger(__name__)

# Meta retries a delivery that is not acknowledged within a few seconds
SLOW_WEBHOOK_SECONDS = 5.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 Starting LedgerChat ({settings.ENVIRONMENT})...")

    try:
        validate_settings()
        await connect_to_mongo()
        await create_indexes()
        logger.info("✅ MongoDB connected and indexed")

        if await check_redis_health():
            logger.info("✅ Redis reachable")
        else:
            # The rate limiter fails open, so this is not fatal
            logger.warning("⚠️ Redis unreachable, rate limiting disabled until it recovers")

    except Exception as e:
        logger.critical(f"Failed to start LedgerChat: {e}", exc_info=True)
        raise

    yield

    logger.info("🛑 Shutting down LedgerChat...")
    try:
        # Queued messages still need Mongo and the AI client
        await close_message_queue()
        await close_ai_service()
        await close_redis()
        await close_mongo_connection()
        logger.info("👋 LedgerChat shut down")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}", exc_info=True)


app = FastAPI(
    title="LedgerChat - WhatsApp Bookkeeping Assistant",
    description="Conversational bookkeeping for small businesses over WhatsApp",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.DEBUG,
    docs_url="/docs" if settings.is_development else None,
    redoc_url=None,
)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    if process_time > SLOW_WEBHOOK_SECONDS:
        logger.warning(f"🐢 Slow webhook ack: {request.method} {request.url.path} took {process_time:.1f}s")

    return response


add_exception_handlers(app)

app.include_router(webhook.router, prefix=settings.API_PREFIX, tags=["Webhook"])
app.include_router(payments.router, prefix=settings.API_PREFIX, tags=["Payments"])


@app.get("/health", tags=["Health"])
async def health_check():
    """
    MongoDB down is unhealthy (503). Redis down only disables rate
    limiting, so it reports degraded with a 200.
    """
    checks = {}
    try:
        checks["database"] = "healthy" if await check_database_health() else "unhealthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = "unhealthy"
    checks["redis"] = "healthy" if await check_redis_health() else "unhealthy"

    if checks["database"] != "healthy":
        status = "unhealthy"
    elif checks["redis"] != "healthy":
        status = "degraded"
    else:
        status = "healthy"

    return JSONResponse(
        content={"status": status, "timestamp": time.time(), "checks": checks},
        status_code=503 if status == "unhealthy" else 200,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower()
    )

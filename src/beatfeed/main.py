"""Main FastAPI application module."""

from contextlib import asynccontextmanager
from dataclasses import dataclass

import redis.asyncio as redis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import router
from .config import Settings, get_settings
from .logging_config import get_logger, setup_logging
from .scheduler import (
    HistoryLedger,
    ImportScheduler,
    MemoryHistoryLedger,
    MemorySeenIndex,
    MemoryStateStore,
    RedisHistoryLedger,
    RedisSeenIndex,
    RedisStateStore,
    SchedulerHolder,
    SchedulerTicker,
    SeenIndex,
    StateStore,
    YtDlpDownloadExecutor,
)

# Load settings and configure logging
settings = get_settings()
setup_logging(settings.logging)
logger = get_logger(__name__)


@dataclass
class Backends:
    """Storage backends shared by the scheduler, executor and routes."""

    store: StateStore
    ledger: HistoryLedger
    seen_index: SeenIndex
    redis_client: redis.Redis | None = None


async def connect_backends(current_settings: Settings) -> Backends:
    """Build Redis-backed storage, or in-memory storage when no Redis URI is set."""
    redis_uri = current_settings.redis.redis_uri
    if not redis_uri:
        logger.info("Redis not configured, using in-memory scheduler storage")
        return Backends(MemoryStateStore(), MemoryHistoryLedger(), MemorySeenIndex())

    connection_pool = redis.ConnectionPool.from_url(
        redis_uri,
        max_connections=current_settings.redis.max_connections,
        retry_on_timeout=True,
        health_check_interval=30,
        decode_responses=True,
    )
    redis_client = redis.Redis(connection_pool=connection_pool)
    try:
        await redis_client.ping()
        logger.info(
            f"Connected to Redis (max_connections={current_settings.redis.max_connections})"
        )
    except (redis.RedisError, OSError) as e:
        # Stores raise StoreError per call until Redis is reachable
        logger.error(f"Redis is not reachable at startup: {e}")

    prefix = current_settings.redis.key_prefix
    return Backends(
        store=RedisStateStore(redis_client, prefix),
        ledger=RedisHistoryLedger(redis_client, prefix),
        seen_index=RedisSeenIndex(redis_client, prefix),
        redis_client=redis_client,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events - initialize and cleanup resources."""
    # Call get_settings() to support test env reloading
    current_settings = get_settings()
    app.state.settings = current_settings

    # Log configuration validation messages
    logger.info(f"Starting {current_settings.app_name} v{current_settings.app_version}")
    logger.info(f"Environment: {current_settings.environment}")
    for message in current_settings.validate_settings():
        if "WARNING" in message:
            logger.warning(message.replace("WARNING: ", ""))
        elif "ERROR" in message:
            logger.error(message.replace("ERROR: ", ""))
        else:
            logger.info(message.replace("INFO: ", ""))

    backends = await connect_backends(current_settings)
    executor = YtDlpDownloadExecutor(current_settings.executor, backends.seen_index)

    def scheduler_factory() -> ImportScheduler:
        return ImportScheduler(
            store=backends.store,
            ledger=backends.ledger,
            executor=executor,
            config=current_settings.scheduler,
        )

    holder = SchedulerHolder(scheduler_factory)
    app.state.backends = backends
    app.state.history_ledger = backends.ledger
    app.state.scheduler_holder = holder

    ticker = None
    if current_settings.scheduler.tick_enabled:
        ticker = SchedulerTicker(holder, current_settings.scheduler)
        await ticker.start()
    else:
        logger.info("Scheduler tick disabled; runs are triggered through /cron/scheduler")
    app.state.ticker = ticker

    yield

    # Shutdown - cleanup in reverse order
    logger.info("Shutting down services...")

    if ticker:
        await ticker.shutdown()

    await holder.shutdown()

    if backends.redis_client is not None:
        await backends.redis_client.aclose()

    logger.info("All services shut down successfully")


# Create FastAPI app
app = FastAPI(
    title="Beatfeed Scheduler",
    description="Scheduled acquisition of audio tracks from channels and playlists",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint reporting storage, tick and scheduler state."""
    app_settings = request.app.state.settings
    backends = request.app.state.backends
    holder = request.app.state.scheduler_holder
    ticker = getattr(request.app.state, "ticker", None)

    storage_status = {"backend": backends.store.backend}
    if backends.redis_client is not None:
        try:
            await backends.redis_client.ping()
            storage_status["status"] = "connected"
        except Exception as e:
            storage_status["status"] = "error"
            storage_status["error"] = str(e)
    else:
        storage_status["status"] = "ok"

    scheduler = holder.peek()
    return {
        "status": "healthy" if storage_status["status"] != "error" else "degraded",
        "version": __version__,
        "environment": app_settings.environment,
        "services": {
            "storage": storage_status,
            "ticker": ticker.get_status() if ticker else {"status": "disabled"},
            "scheduler": {
                "initialized": holder.initialized,
                "phase": scheduler.phase().value,
                "active": scheduler.state.active,
                "next_run": scheduler.state.next_run.isoformat() if scheduler.state.next_run else None,
                "sources": len(scheduler.state.sources),
                "background_tasks": holder.pending_tasks,
            },
        },
    }


# Include API router (must be after specific routes like /health)
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("beatfeed.main:app", host="0.0.0.0", port=8000, reload=True)

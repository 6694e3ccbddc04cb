"""FastAPI application entry point."""

import logging
import os
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from accuracy_engine.api.routes import router
from accuracy_engine.assessment.aggregator import WeightedAggregator
from accuracy_engine.cache.historical_context import HistoricalContextStore
from accuracy_engine.cache.realtime_cache import FastRealtimeCache
from accuracy_engine.config import Settings, get_settings
from accuracy_engine.coordinator.admission import AdmissionController
from accuracy_engine.coordinator.analyzers import Analyzer, AnalyzerSuite
from accuracy_engine.coordinator.idempotency import IdempotencyCache
from accuracy_engine.coordinator.jobs import JobQueue
from accuracy_engine.coordinator.service import RequestCoordinator
from accuracy_engine.storage.profile_store import JsonProfileStore, ProfileStore
from accuracy_engine.storage.redis_store import RedisJSONStore, create_redis_client

# Configure structlog based on environment
is_production = os.getenv("ENV", "development").lower() == "production"

if is_production:
    # Production: JSON format for machine parsing
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
else:
    # Development: console format for human readability
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

logger = structlog.get_logger()


def build_coordinator(
    settings: Settings,
    profile_store: ProfileStore,
    redis_store: RedisJSONStore,
    analyzers: dict[str, Analyzer] | None = None,
    job_queue: JobQueue | None = None,
) -> RequestCoordinator:
    """Wire the caches and pipeline stages into a coordinator."""
    cache = FastRealtimeCache(
        profile_store,
        redis_store,
        ttl_seconds=settings.realtime_cache_ttl_seconds,
        autosave_interval_seconds=settings.autosave_interval_seconds,
    )
    historical = HistoricalContextStore(
        redis_store,
        profile_store,
        ttl_seconds=settings.historical_context_ttl_seconds,
        persist_every=settings.historical_persist_every,
    )
    return RequestCoordinator(
        analyzers=AnalyzerSuite(analyzers),
        aggregator=WeightedAggregator(),
        historical=historical,
        cache=cache,
        idempotency=IdempotencyCache(redis_store, ttl_seconds=settings.idempotency_ttl_seconds),
        admission=AdmissionController(
            max_in_flight=settings.max_in_flight,
            retry_after_seconds=settings.retry_after_seconds,
        ),
        job_queue=job_queue,
    )


def create_app(
    settings: Settings | None = None,
    profile_store: ProfileStore | None = None,
    redis_store: RedisJSONStore | None = None,
    analyzers: dict[str, Analyzer] | None = None,
) -> FastAPI:
    """Create the application; services are built when the lifespan starts."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        redis = redis_store
        if redis is None:
            client = create_redis_client(settings.redis_url) if settings.redis_enabled else None
            redis = RedisJSONStore(client)
        store = profile_store or JsonProfileStore(settings.profiles_dir)

        coordinator = build_coordinator(settings, store, redis, analyzers)
        await coordinator.cache.init()
        app.state.coordinator = coordinator
        app.state.cache = coordinator.cache
        logger.info("accuracy_engine_started", redis=redis.enabled)
        try:
            yield
        finally:
            await coordinator.cache.shutdown()
            await redis.close()
            logger.info("accuracy_engine_stopped")

    app = FastAPI(title="English Accuracy Engine", version="1.0.0", lifespan=lifespan)
    _allowed_origins_env = os.getenv(
        "ALLOWED_ORIGINS", "http://localhost:8000,http://127.0.0.1:8000"
    )
    allowed_origins = [o.strip() for o in _allowed_origins_env.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    @app.middleware("http")
    async def auth_middleware(request: Request, call_next):
        """Optional APP_SECRET authentication middleware."""
        if not settings.app_secret or request.url.path == "/api/health":
            return await call_next(request)
        if request.headers.get("X-App-Secret", "") != settings.app_secret:
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        return await call_next(request)

    return app


app = create_app()


def main() -> None:
    """Run the application."""
    settings = get_settings()
    uvicorn.run(
        "accuracy_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()

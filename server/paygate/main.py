"""PayGate server — main entry point.

This is the only file that knows about concrete implementations.
It wires together the core, queue, storage, and API layers.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from paygate.api.devices import router as devices_router
from paygate.api.monitoring import router as monitoring_router
from paygate.api.payments import router as payments_router
from paygate.config import AppConfig, load_config
from paygate.core.authenticator import RequestAuthenticator
from paygate.core.errors import AuthError, RateLimited
from paygate.core.pipeline import AuthPipeline
from paygate.core.processor import PaymentProcessor
from paygate.core.ratelimit import SlidingWindowRateLimiter
from paygate.core.registry import DeviceRegistry
from paygate.core.stats import ServerStats
from paygate.queue.asyncio_queue import AsyncioPaymentQueue
from paygate.storage.device_store import FileDeviceStore, InMemoryDeviceStore
from paygate.storage.file_storage import FilePaymentStorage

log = structlog.get_logger()

# Module-level singletons (set during startup)
_config: AppConfig | None = None
_stats: ServerStats | None = None
_registry: DeviceRegistry | None = None
_limiter: SlidingWindowRateLimiter | None = None
_pipeline: AuthPipeline | None = None
_processor: PaymentProcessor | None = None
_storage: FilePaymentStorage | None = None


def get_config() -> AppConfig:
    assert _config is not None, "Server not initialized"
    return _config


def get_stats() -> ServerStats:
    assert _stats is not None, "Server not initialized"
    return _stats


def get_registry() -> DeviceRegistry:
    assert _registry is not None, "Server not initialized"
    return _registry


def get_limiter() -> SlidingWindowRateLimiter:
    assert _limiter is not None, "Server not initialized"
    return _limiter


def get_pipeline() -> AuthPipeline:
    assert _pipeline is not None, "Server not initialized"
    return _pipeline


def get_processor() -> PaymentProcessor:
    assert _processor is not None, "Server not initialized"
    return _processor


def get_storage() -> FilePaymentStorage:
    assert _storage is not None, "Server not initialized"
    return _storage


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
    )


def build_components(config: AppConfig) -> None:
    """Create every component from config and install them as singletons."""
    global _stats, _registry, _limiter, _pipeline, _processor, _storage, _config

    _config = config
    _stats = ServerStats(active_window_seconds=config.limits.active_window_seconds)

    if config.storage.device_backend == "memory":
        device_store = InMemoryDeviceStore()
    else:
        device_store = FileDeviceStore(config.storage.devices_path)
    _registry = DeviceRegistry(device_store, timeout_seconds=config.storage.store_timeout_seconds)

    _limiter = SlidingWindowRateLimiter(
        max_requests=config.limits.rate_max_requests,
        window_seconds=config.limits.rate_window_seconds,
        idle_eviction_seconds=config.limits.idle_eviction_seconds,
        shards=config.limits.rate_shards,
    )
    authenticator = RequestAuthenticator(
        _registry, tolerance_ms=config.auth.timestamp_tolerance_ms,
    )
    _pipeline = AuthPipeline(
        authenticator, _limiter, order=config.auth.pipeline_order, stats=_stats,
    )

    queue = AsyncioPaymentQueue(max_size=config.queue.max_size)
    _storage = FilePaymentStorage(base_dir=config.storage.payments_dir)
    _processor = PaymentProcessor(queue=queue, storage=_storage, stats=_stats)
    _processor.load_history()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    config = load_config()
    _setup_logging(config)
    build_components(config)

    log.info("server_starting",
             env=config.server.env,
             pipeline_order=config.auth.pipeline_order,
             device_backend=config.storage.device_backend,
             payments_dir=config.storage.payments_dir)

    # Background tasks: storage consumer and idle rate-limit eviction
    tasks = [
        asyncio.create_task(get_processor().run_storage_consumer()),
        asyncio.create_task(
            get_limiter().run_eviction(config.limits.eviction_interval_seconds)
        ),
    ]

    log.info("server_started",
             host=config.server.host,
             port=config.server.port)

    yield

    # Shutdown
    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
    log.info("server_stopped")


app = FastAPI(
    title="PayGate",
    description="Bank SMS payment ingestion from registered devices",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_body(),
        headers=headers,
    )


app.include_router(devices_router)
app.include_router(payments_router)
app.include_router(monitoring_router)

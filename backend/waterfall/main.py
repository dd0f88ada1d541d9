"""Waterfall Waitlist API — FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery — ExMA anti-pattern)
    - Global error handlers map WaitlistError → structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Store, dispatcher, service graph and sweeper built on startup via lifespan;
      shutdown stops the sweeper, lets started expiries finish, drains pending
      notifications and disposes the pool

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Sweeper runs in-process as a background task: one poll loop per API process.
      Concurrent sweepers are safe (SKIP LOCKED claims, idempotent expiry)
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from waterfall.api.error_handlers import register_error_handlers
from waterfall.api.routes import health, cycles, registrants
from waterfall.config import Settings, get_settings
from waterfall.core.repository_protocols import WaitlistStore
from waterfall.infrastructure import database
from waterfall.infrastructure.memory_store import InMemoryWaitlistStore
from waterfall.infrastructure.notifications import BackgroundDispatcher, build_sink
from waterfall.infrastructure.observability import setup_logging
from waterfall.infrastructure.sql_store import SqlWaitlistStore
from waterfall.services.waitlist_service import create_waitlist_service

logger = logging.getLogger(__name__)


def _build_store(settings: Settings) -> WaitlistStore:
    if settings.store_backend == "memory":
        logger.warning("Using in-memory store: state is lost on restart")
        return InMemoryWaitlistStore()
    db = database.init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    return SqlWaitlistStore(db)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    dispatcher = BackgroundDispatcher(build_sink(
        settings.notification_webhook_url,
        settings.notification_api_key,
        settings.notification_from_email,
        settings.notification_timeout_seconds,
    ))
    store = _build_store(settings)
    service = create_waitlist_service(store, dispatcher, settings)
    app.state.waitlist_service = service

    sweeper_task = None
    if settings.sweeper_enabled:
        sweeper_task = asyncio.create_task(
            service.sweeper.run_forever(settings.sweeper_interval_seconds),
        )
    logger.info("Waterfall Waitlist API started")
    yield
    logger.info("Waterfall Waitlist API shutting down")

    if sweeper_task is not None:
        service.sweeper.stop()
        sweeper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper_task
        await service.sweeper.drain(timeout=settings.sweeper_cycle_timeout_seconds)
    await dispatcher.drain()
    if hasattr(dispatcher.sink, "aclose"):
        await dispatcher.sink.aclose()
    if database.db_manager is not None:
        await database.db_manager.dispose()


app = FastAPI(
    title="Waterfall Waitlist API", version="1.0.0", lifespan=lifespan,
)

# CORS — configured from settings, not hardcoded
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes — explicit registration (ExMA: no convention-over-config)
app.include_router(health.router)
app.include_router(cycles.router)
app.include_router(registrants.router)

register_error_handlers(app)

"""Service test fixtures — stores (memory + SQLite), pinned clock, recording dispatcher, API client.

Invariants:
    - Every test gets a fresh in-memory SQLite database and a fresh memory store
    - `store` is parametrized: sequential scenarios run against both backends
    - Concurrency scenarios use the memory store only (the SQLite test engine
      shares one connection, so concurrent sessions would share a transaction)
    - The clock is pinned; tests move it explicitly

Design Decisions:
    - RecordingDispatcher publishes synchronously into a list: event assertions
      need no background tasks or sleeps
    - get_waitlist_service overridden on the app; lifespan never runs under ASGITransport
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncSession, create_async_engine, async_sessionmaker,
)
from httpx import ASGITransport, AsyncClient

from waterfall.api.dependencies import get_waitlist_service
from waterfall.config import Settings
from waterfall.core.domain_types import IdentityRef, PriorityClass
from waterfall.core.lifecycle_events import LifecycleEvent
from waterfall.db.base import Base
from waterfall.infrastructure.database import DatabaseSessionManager
from waterfall.infrastructure.memory_store import InMemoryWaitlistStore
from waterfall.infrastructure.sql_store import SqlWaitlistStore
from waterfall.main import app
from waterfall.services.waitlist_service import create_waitlist_service
import waterfall.models  # noqa: F401

UTC = timezone.utc
# 09:00 New York; registration closes 2026-03-03 05:00 UTC (local midnight)
WINDOW_OPENS = datetime(2026, 3, 2, 14, 0, tzinfo=UTC)
REGISTER_AT = WINDOW_OPENS + timedelta(hours=1)
ROLLOUT_AT = datetime(2026, 3, 3, 15, 0, tzinfo=UTC)
CUTOFF = datetime(2026, 3, 6, 17, 0, tzinfo=UTC)
EVENT_AT = datetime(2026, 3, 6, 23, 30, tzinfo=UTC)


class RecordingDispatcher:
    """NotificationDispatcher that keeps every published event."""

    def __init__(self):
        self.events: list[LifecycleEvent] = []

    def publish(self, event: LifecycleEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [e.kind.value for e in self.events]


class PinnedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
async def test_db_manager(test_engine, test_session_factory):
    return DatabaseSessionManager.from_session_factory(
        test_engine, test_session_factory,
    )


@pytest.fixture
def memory_store():
    return InMemoryWaitlistStore()


@pytest.fixture(params=["memory", "sql"])
def store(request, memory_store, test_db_manager):
    if request.param == "memory":
        return memory_store
    return SqlWaitlistStore(test_db_manager)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def clock():
    return PinnedClock(REGISTER_AT)


@pytest.fixture
def test_settings():
    return Settings(
        promotion_lock_timeout_ms=20,
        promotion_lock_max_retries=1,
        promotion_lock_base_delay_ms=5,
        promotion_lock_max_delay_ms=20,
        sweeper_cycle_timeout_seconds=2.0,
    )


@pytest.fixture
def service(store, dispatcher, test_settings, clock):
    return create_waitlist_service(store, dispatcher, test_settings, clock)


@pytest.fixture
def memory_service(memory_store, dispatcher, test_settings, clock):
    return create_waitlist_service(memory_store, dispatcher, test_settings, clock)


@pytest.fixture
def make_cycle():
    """Factory: create (and by default open) a cycle, then register N readers.

    Readers are named reader-<position>@example.com and registered in order,
    so identity i holds position i. `priority` lists positions enrolled in
    the priority class.
    """
    async def _make(
        svc,
        capacity: int = 3,
        registrants: int = 0,
        priority: tuple[int, ...] = (),
        open_registration: bool = True,
        timezone_name: str = "America/New_York",
    ):
        cycle = await svc.create_cycle(
            name="Thursday reading",
            event_at=EVENT_AT,
            window_opens_at=WINDOW_OPENS,
            cutoff_at=CUTOFF,
            capacity=capacity,
            timezone=timezone_name,
        )
        if open_registration:
            await svc.open_registration(cycle.id)
        for i in range(1, registrants + 1):
            await svc.register(
                cycle.id,
                IdentityRef(f"reader-{i}@example.com"),
                PriorityClass.PRIORITY if i in priority else PriorityClass.NORMAL,
                now=REGISTER_AT + timedelta(seconds=i),
            )
        return await svc.get_cycle(cycle.id)
    return _make


@pytest.fixture
async def client(memory_service):
    """FastAPI test client bound to a memory-store service."""
    app.dependency_overrides[get_waitlist_service] = lambda: memory_service

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()

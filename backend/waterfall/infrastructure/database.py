"""Waitlist Database — engine, per-operation sessions and error mapping for the SQL store.

Invariants:
    - One engine per process: init_db() runs in the FastAPI lifespan, dispose() on shutdown
    - Each store operation opens its own session, labelled with the operation name.
      Any exception rolls the session back, so a failed claim leaves every registrant
      in its prior status
    - SQLAlchemy and driver failures leave the session as DatabaseError naming the
      operation (503 at the API); WaitlistError raised inside passes through untouched
    - Stores catch IntegrityError themselves where a constraint is part of the algorithm
      (position allocation in enroll)

Design Decisions:
    - Serialization failures and deadlocks between concurrent SKIP LOCKED claims are
      logged as retryable at WARNING: the engine defers the backfill to the vacancy
      backlog and the next sweep retries it
    - SQLite URLs (local runs, tests) get no pool sizing: aiosqlite's in-memory pool
      rejects pool_size
    - expire_on_commit=False: rows become frozen entities after commit, no lazy loads
    - from_session_factory(): tests share one engine between the store and this manager
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker,
)

from waterfall.core.errors import DatabaseError

logger = logging.getLogger(__name__)

# PostgreSQL serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def engine_options(database_url: str, pool_size: int, max_overflow: int) -> dict[str, Any]:
    if make_url(database_url).get_backend_name() == "sqlite":
        return {}
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
    }


def describe_failure(error: SQLAlchemyError) -> tuple[str, bool]:
    """Short reason for a store failure and whether retrying it can succeed."""
    if isinstance(error, IntegrityError):
        return "integrity constraint violated", False
    if isinstance(error, DBAPIError):
        sqlstate = getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)
        if sqlstate in RETRYABLE_SQLSTATES:
            return f"concurrent claim conflict ({sqlstate})", True
        if error.connection_invalidated:
            return "connection lost", True
        return f"driver error ({type(error.orig).__name__})", False
    return f"{type(error).__name__}", False


class DatabaseSessionManager:
    """Hands the SQL store one rolled-back-on-error session per operation."""

    def __init__(
        self, database_url: str, pool_size: int = 20, max_overflow: int = 10,
    ):
        self.engine: AsyncEngine = create_async_engine(
            database_url, **engine_options(database_url, pool_size, max_overflow),
        )
        self._session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False,
        )

    @classmethod
    def from_session_factory(
        cls,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> "DatabaseSessionManager":
        manager = cls.__new__(cls)
        manager.engine = engine
        manager._session_factory = session_factory
        return manager

    @asynccontextmanager
    async def session(self, operation: str = "query") -> AsyncGenerator[AsyncSession, None]:
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            await session.rollback()
            reason, retryable = describe_failure(e)
            logger.log(
                logging.WARNING if retryable else logging.ERROR,
                f"Store {operation} failed: {reason}",
                extra={"operation": operation, "error_code": "DATABASE_ERROR"},
            )
            raise DatabaseError(reason, operation) from e
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def health_check(self) -> bool:
        """SELECT 1 through the pool; False on any failure (readiness route)."""
        try:
            async with self.session("health_check") as db:
                await db.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Database not ready: {e}", extra={"operation": "health_check"})
            return False
        return True

    async def dispose(self) -> None:
        await self.engine.dispose()


# Set by init_db() during startup
db_manager: DatabaseSessionManager | None = None


def init_db(database_url: str, **kwargs) -> DatabaseSessionManager:
    global db_manager
    db_manager = DatabaseSessionManager(database_url, **kwargs)
    return db_manager

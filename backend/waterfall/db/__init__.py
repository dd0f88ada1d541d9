"""Database Infrastructure — async session factory, SQLAlchemy Base and column types.

Invariants:
    - Single async engine per process (initialized via init_db)
    - All sessions are async (AsyncSession)
    - All timestamp columns use UTCDateTime (aware in, aware out)

Design Decisions:
    - asyncpg driver for PostgreSQL (ADR: native async, no thread pool overhead)
"""

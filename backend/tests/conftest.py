"""Root conftest — shared test configuration."""

import os

# Tests never reach a real database, webhook, or background sweeper
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///test.db",
)
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("SWEEPER_ENABLED", "false")
os.environ.setdefault("NOTIFICATION_WEBHOOK_URL", "")
os.environ.setdefault("LOG_FORMAT", "text")

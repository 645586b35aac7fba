"""Root conftest — shared test configuration."""

import os

# Tests never talk to a real Postgres or start the sweeper loop
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SWEEPER_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")

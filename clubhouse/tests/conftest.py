from __future__ import annotations

import os
from pathlib import Path
import tempfile

# Point settings at a throwaway SQLite database before any clubhouse module builds the engine.
_DB_DIR = Path(tempfile.mkdtemp(prefix="clubhouse-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR / 'clubhouse.db'}"
os.environ.setdefault("JWT_SECRET", "clubhouse-test-signing-secret-0123456789abcdef")
os.environ.setdefault("LOG_LEVEL", "INFO")

import pytest  # noqa: E402

from clubhouse.domain.models import Base  # noqa: E402
from clubhouse.persistence.db import engine  # noqa: E402


@pytest.fixture(autouse=True)
async def database_schema() -> None:
    # Recreate the schema per test so rows never leak between cases.
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()

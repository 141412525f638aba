from __future__ import annotations

import os
import tempfile

# Point the app at a throwaway SQLite file unless a real DATABASE_URL is supplied.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="paritymark-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB_DIR}/paritymark.db")

import pytest

from paritymark.core.config import get_settings
from paritymark.domain.models import Base
from paritymark.persistence.db import engine


@pytest.fixture(autouse=True)
async def create_schema() -> None:
    # create_all is idempotent; tests isolate themselves with unique codes.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture(autouse=True)
async def dispose_engine_between_tests() -> None:
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    yield
    await engine.dispose()


@pytest.fixture
def dev_admin_settings(monkeypatch: pytest.MonkeyPatch):
    # Flip the dev-admin bootstrap on for one test without rebuilding Settings.
    settings = get_settings()
    monkeypatch.setattr(settings, "dev_admin_seed_enabled", True)
    monkeypatch.setattr(settings, "dev_admin_external_id", "admin@pm")
    return settings

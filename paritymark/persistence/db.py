from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from paritymark.core.config import Settings, get_settings


def is_sqlite_url(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def engine_options(settings: Settings) -> dict[str, Any]:
    """Engine keyword arguments for the configured store.

    PostgreSQL gets a bounded asyncpg pool and an optional server-side
    statement timeout. SQLite has no pool sizing; concurrent writers queue on
    the database lock for up to ``sqlite_busy_timeout_s`` instead.
    """
    options: dict[str, Any] = {"pool_pre_ping": True}
    if is_sqlite_url(settings.database_url):
        options["connect_args"] = {"timeout": float(settings.sqlite_busy_timeout_s)}
        return options
    options.update(
        pool_size=max(1, int(settings.api_db_pool_size)),
        max_overflow=max(0, int(settings.api_db_max_overflow)),
        pool_timeout=30,
        pool_recycle=1800,
    )
    if settings.api_db_statement_timeout_ms > 0:
        options["connect_args"] = {
            "server_settings": {"statement_timeout": str(int(settings.api_db_statement_timeout_ms))}
        }
    return options


settings = get_settings()
engine = create_async_engine(settings.database_url, **engine_options(settings))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


def pool_stats() -> dict[str, int | None]:
    # Pool counters for the health probe; SQLite pools may not expose all of them.
    pool = engine.sync_engine.pool
    stats: dict[str, int | None] = {}
    for key, attr in (("size", "size"), ("checked_out", "checkedout"), ("checked_in", "checkedin"), ("overflow", "overflow")):
        counter = getattr(pool, attr, None)
        stats[key] = int(counter()) if callable(counter) else None
    return stats

"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import typing as typ

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from weir.storage import init_storage

if typ.TYPE_CHECKING:
    from pathlib import Path


async def _setup_sqlite(tmp_path: Path) -> AsyncEngine:
    """Create a SQLite engine with every Weir table."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'weir_test.db'}")
    try:
        await init_storage(engine)
    except Exception:
        await engine.dispose()
        raise
    return engine


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> typ.AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Yield a fresh async session factory backed by sqlite."""
    engine = await _setup_sqlite(tmp_path)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture(autouse=True)
def _clear_weir_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment variables out of configuration tests."""
    for name in (
        "WEIR_GITHUB_WEBHOOK_SECRET",
        "WEIR_GITHUB_WEBHOOK_SECRET_PREVIOUS",
        "WEIR_GITHUB_TOKEN",
        "WEIR_GITHUB_API_URL",
        "WEIR_GITHUB_TIMEOUT_S",
        "WEIR_EMBEDDER",
        "WEIR_OPENAI_API_KEY",
        "WEIR_OPENAI_ENDPOINT",
        "WEIR_OPENAI_EMBEDDING_MODEL",
        "WEIR_OPENAI_TIMEOUT_S",
        "WEIR_CACHE_MAX_SIZE",
        "WEIR_CACHE_TTL_SECONDS",
        "WEIR_BACKFILL_MAX_REPOS",
        "WEIR_BACKFILL_MIN_BUDGET",
        "WEIR_BACKFILL_LOOKBACK_DAYS",
        "WEIR_DATABASE_URL",
        "WEIR_WEBHOOK_DISPATCH",
        "WEIR_HOST",
        "WEIR_PORT",
        "WEIR_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

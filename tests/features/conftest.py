"""Shared fixtures for BDD feature tests.

Steps are synchronous and drive async services through ``run_async``, which
starts a fresh event loop per call. The engine therefore uses ``NullPool`` so
no connection outlives the loop that opened it.
"""

from __future__ import annotations

import typing as typ

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from tests.helpers import run_async
from weir.storage import init_storage

if typ.TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def bdd_session_factory(
    tmp_path: Path,
) -> typ.Iterator[async_sessionmaker[AsyncSession]]:
    """Yield a session factory over a fresh sqlite store."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'weir_bdd.db'}", poolclass=NullPool
    )
    run_async(lambda: init_storage(engine))
    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        run_async(engine.dispose)

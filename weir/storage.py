"""Schema bootstrap for every table Weir writes."""

from __future__ import annotations

import typing as typ

# Imported for their side effect of registering tables on ``Base.metadata``.
import weir.embeddings.storage  # noqa: F401
import weir.github.storage  # noqa: F401
import weir.jobs.storage  # noqa: F401
import weir.silver.storage  # noqa: F401
from weir.bronze.storage import Base

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

__all__ = ["Base", "init_storage"]


async def init_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

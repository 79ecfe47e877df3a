"""Database session dependency."""
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from digipay.infra.db import base


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield a session; anything left uncommitted is rolled back on close."""
    if base.AsyncSessionLocal is None:
        raise RuntimeError("Database engine not configured (running under pytest without override?)")
    async with base.AsyncSessionLocal() as session:
        yield session

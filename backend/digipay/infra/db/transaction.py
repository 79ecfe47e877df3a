"""Atomic unit-of-work helper for AsyncSession.

Services wrap every write path in ``async with atomic(session):``. Repositories
only flush; the outermost ``atomic`` block commits once, and any exception
rolls back everything done inside it. Nested blocks join the outer one.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_DEPTH_KEY = "digipay_atomic_depth"


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    depth = session.info.get(_DEPTH_KEY, 0)
    session.info[_DEPTH_KEY] = depth + 1
    try:
        yield session
        if depth == 0:
            await session.commit()
    except BaseException:
        if depth == 0:
            logger.debug("Rolling back atomic block")
            await session.rollback()
        raise
    finally:
        session.info[_DEPTH_KEY] = depth

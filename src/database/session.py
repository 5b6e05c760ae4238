import logging
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from src.database.engine import async_session

logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a database session.

    Commits when the request handler returns normally. Services that must
    publish events only after persistence commit explicitly before
    broadcasting; the final commit here is then a no-op.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            logger.warning("Rolling back database session: %s", type(exc).__name__)
            await session.rollback()
            raise

"""
Database session management with SQLAlchemy async
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from sqlalchemy.exc import SQLAlchemyError
from core.config import settings
from core.exceptions import InternalError
import logging

logger = logging.getLogger(__name__)

# Create async engine
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    poolclass=NullPool,  # For async, connection pooling handled differently
    future=True
)

# Create session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)


async def commit_or_raise(session: AsyncSession, operation: str) -> None:
    """Commit the session, rolling back and raising InternalError on storage failure"""
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Database commit failed during {operation}: {e}")
        raise InternalError(
            f"Storage failure during {operation}",
            context={"operation": operation},
            original_exception=e
        )

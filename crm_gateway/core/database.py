from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from crm_gateway.core.config import settings

logger = logging.getLogger(__name__)


def _async_url(url: str) -> str:
    return url.replace("postgresql://", "postgresql+asyncpg://")


def build_engine(pooled: bool = True) -> AsyncEngine:
    """
    Create an async engine.

    Celery tasks run each coroutine in a fresh event loop, so worker engines
    must not keep connections around between tasks (``pooled=False``).
    """
    if pooled:
        return create_async_engine(
            _async_url(settings.DATABASE_URL),
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_pre_ping=True,
            echo=settings.DEBUG,
        )
    return create_async_engine(_async_url(settings.DATABASE_URL), poolclass=NullPool, echo=settings.DEBUG)


engine = build_engine()

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

_worker_sessionmaker: Optional[async_sessionmaker] = None

Base = declarative_base()


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database session.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            logger.error(f"Database session error: {e}")
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def worker_session() -> AsyncIterator[AsyncSession]:
    """Session for code running outside a request (Celery tasks, beat jobs)."""
    global _worker_sessionmaker
    if _worker_sessionmaker is None:
        _worker_sessionmaker = async_sessionmaker(
            build_engine(pooled=False), class_=AsyncSession, expire_on_commit=False
        )

    async with _worker_sessionmaker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


class DatabaseManager:
    """
    Database manager for handling connections and transactions.
    """

    @staticmethod
    async def create_tables():
        """Create all tables."""
        import crm_gateway.models  # noqa: F401  registers tables on Base.metadata

        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Error creating database tables: {e}")
            raise

    @staticmethod
    async def ping() -> bool:
        from sqlalchemy import text

        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return True

    @staticmethod
    async def close_connections():
        """Close all database connections."""
        try:
            await engine.dispose()
            logger.info("Database connections closed")
        except Exception as e:
            logger.error(f"Error closing database connections: {e}")


db_manager = DatabaseManager()

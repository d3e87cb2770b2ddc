from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from dues.core.conf import settings


class Base(DeclarativeBase):
    """Declarative base for billing-owned tables"""


def create_async_engine_and_session(url: str) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(
        url,
        echo=settings.DATABASE_ECHO,
        future=True,
        pool_pre_ping=True,
    )
    db_session = async_sessionmaker(bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)
    return engine, db_session


async_engine, async_db_session_factory = create_async_engine_and_session(settings.DATABASE_URL)


@asynccontextmanager
async def async_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Transactional session scope: commit on success, roll back on error."""
    async with async_db_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables() -> None:
    """Create billing-owned tables (the ``users`` table belongs to the member directory)."""
    # Register models on the metadata
    from dues.src.billing.members import models  # noqa: F401

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


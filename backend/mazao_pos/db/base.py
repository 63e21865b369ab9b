"""Declarative base and async engine/session factory for the self-hosted backend."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def create_engine(database_url: str) -> AsyncEngine:
    engine_args: dict = {"echo": False, "pool_pre_ping": True}
    if "postgresql" in database_url:
        engine_args.update({"pool_size": 5, "max_overflow": 5, "pool_recycle": 300})
    return create_async_engine(database_url, **engine_args)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create the users/shops/auth_accounts tables if they do not exist."""
    import mazao_pos.models  # noqa: F401  registers the mapped tables

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.database.postgres import Base, get_async_session_factory

_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db(database_url: str) -> async_sessionmaker[AsyncSession]:
    global _session_factory
    _session_factory = get_async_session_factory(database_url, expire_on_commit=False)
    return _session_factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database not initialized")
    return _session_factory


async def create_all() -> None:
    """Create every table on the current engine (local dev / tests; prod uses Alembic)."""
    import issuance.models  # noqa: F401 - register with Base

    engine = get_session_factory().kw["bind"]
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db() -> None:
    global _session_factory
    if _session_factory is not None:
        await _session_factory.kw["bind"].dispose()
        _session_factory = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

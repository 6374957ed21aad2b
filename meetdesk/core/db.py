from collections.abc import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from meetdesk.core.config import settings

_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "postgresql+psycopg2": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def to_async_url(database_url: str) -> str:
    """Map sync driver URLs onto their async drivers.

    asyncpg does not accept psycopg params like sslmode/channel_binding, so those are
    stripped; SSL is enabled via connect_args instead.
    """
    url = make_url(database_url)
    url = url.set(drivername=_ASYNC_DRIVERS.get(url.drivername, url.drivername))
    url = url.difference_update_query(["sslmode", "channel_binding"])
    return url.render_as_string(hide_password=False)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    url = to_async_url(database_url)
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        connect_args={"ssl": True} if url.startswith("postgresql+asyncpg") else {},
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = build_engine(settings.database_url, echo=settings.env == "development")
async_session_maker = build_session_maker(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create tables if using create_all; prefer Alembic in production."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

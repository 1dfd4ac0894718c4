from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from mathsolver.constants import DATABASE_URL

_engine: AsyncEngine | None = None


def build_engine(url: str | None = None) -> AsyncEngine:
    url = url or DATABASE_URL
    kwargs: dict[str, Any] = {"echo": False}
    if url.startswith("sqlite"):
        # busy timeout (seconds) before sqlite reports "database is locked"
        kwargs["connect_args"] = {"timeout": 5}
    else:
        kwargs.update(pool_size=10, max_overflow=20, pool_pre_ping=True)
    return create_async_engine(url, **kwargs)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_db(engine: AsyncEngine | None = None) -> None:
    from mathsolver.db.models import Base

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

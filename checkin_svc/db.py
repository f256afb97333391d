from __future__ import annotations
from typing import Any, AsyncGenerator, Dict
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .core.config import get_settings
from .models import Base

settings = get_settings()

def engine_options(url: str) -> Dict[str, Any]:
    opts: Dict[str, Any] = {"echo": False, "future": True}
    if url.startswith("sqlite"):
        # concurrent redeems queue on the file lock instead of failing with "database is locked"
        opts["connect_args"] = {"timeout": 30}
    else:
        opts["pool_pre_ping"] = True
    return opts

engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def drop_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session

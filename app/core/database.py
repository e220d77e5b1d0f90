from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings


def async_url(url: str) -> str:
    """Point plain postgres URLs at the asyncpg driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def build_engine(url: str) -> AsyncEngine:
    return create_async_engine(async_url(url), echo=settings.SQL_ECHO, pool_pre_ping=True)


# Sessions stay usable after commit, we only read plain values back out of them
def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


# All the models are "stored" in the Base class will be processed by the Engine
class Base(DeclarativeBase):
    pass

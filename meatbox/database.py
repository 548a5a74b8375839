from functools import lru_cache
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from meatbox.config import settings


@lru_cache
def get_engine() -> AsyncEngine:
    # Движок создается лениво: импорт модуля не требует настроенной базы
    return create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), expire_on_commit=False)

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from favorqueue.core.config import get_settings

settings = get_settings()

connect_args = {"check_same_thread": False} if str(settings.DB_URL).startswith("sqlite") else {}
engine = create_async_engine(str(settings.DB_URL), connect_args=connect_args)

SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)


# Common DB dependency
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session

from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from video_interview.core.config import settings
from video_interview.db.base import Base, import_models


DATABASE_URL = settings.database_url
_is_sqlite = DATABASE_URL.startswith("sqlite")

# SQLite connections are bound to the loop that opened them; do not pool
engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    **({"poolclass": NullPool} if _is_sqlite else {"pool_pre_ping": True}),
)

if _is_sqlite:
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session_factory() as session:
        yield session


async def init_db() -> None:
    import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

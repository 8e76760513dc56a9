"""
Database engine and sessions.

PostgreSQL (asyncpg) in deployment. SQLite URLs are accepted for local runs;
they get no pool sizing since SQLAlchemy's SQLite pools do not take it.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from glassbox_backend.app.core.config import settings


def _engine_options(url: str) -> dict:
    options = {"echo": settings.db_echo, "future": True}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )
    return options


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# Objects stay readable after commit; settlement runs keep working on the batch row
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """FastAPI dependency: one session per request."""
    async with AsyncSessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    """
    FastAPI dependency for work that outlives the request (background
    settlement runs open their own sessions).
    """
    return AsyncSessionLocal

"""
SwiftBuyBack Database Session Management

One async engine per process. PostgreSQL gets a bounded connection pool;
SQLite (local dev, tests) takes no pool sizing arguments.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from core.config import get_settings

settings = get_settings()


def engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {}
    return {"pool_size": 10, "max_overflow": 5, "pool_pre_ping": True}


def make_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(database_url, echo=echo, **engine_options(database_url))


engine = make_engine(settings.database_url, echo=settings.database_echo)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass


async def create_tables(bind: AsyncEngine) -> None:
    """Create the orders tables if missing. Local SQLite databases have no migration step."""
    import db.models  # noqa: F401  (registers tables on Base.metadata)

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

# database.py
# Async engine, session factory and declarative base for the payout store.

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from payouts.config import settings

SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL


def _engine_options(url: str) -> dict:
    if url.startswith("postgresql+asyncpg"):
        # NullPool: no pooling, a new connection per session (safest for async)
        return {
            "poolclass": NullPool,
            "connect_args": {
                "timeout": 30,
                "server_settings": {"application_name": "payout_engine"},
            },
        }
    return {}


def build_engine(url: str = SQLALCHEMY_DATABASE_URL):
    return create_async_engine(url, echo=False, **_engine_options(url))


def build_session_factory(bind) -> async_sessionmaker:
    return async_sessionmaker(
        bind=bind,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


engine = build_engine()

SessionLocal = build_session_factory(engine)

Base = declarative_base()


async def create_db_and_tables(bind=None):
    """Creates all tables defined in payouts.models."""
    import payouts.models  # noqa: F401  registers the tables on Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


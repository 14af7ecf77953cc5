import logging
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from sqlalchemy import text
from .base import Base
from storybot.utils.config import Config

logger = logging.getLogger(__name__)

_engine = None
_sessionmaker = None


def _engine_options(url: str) -> dict:
    if url.startswith("postgresql"):
        return {
            # Managed Postgres hosts drop idle connections; open one per session
            "poolclass": NullPool,
            "connect_args": {
                "timeout": 10,
                "server_settings": {"application_name": "storybot"},
            },
        }
    return {}


async def init_db(url: str | None = None):
    global _engine, _sessionmaker
    url = url or Config.DATABASE_URL
    try:
        logger.info(f"Initializing database connection ({url.split('://')[0]})...")

        _engine = create_async_engine(url, echo=Config.DATABASE_ECHO, **_engine_options(url))

        # Verify connection
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("✅ SQLAlchemy connection verified")

        # Create tables
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Tables created successfully")

        _sessionmaker = async_sessionmaker(
            bind=_engine,
            expire_on_commit=False,
            class_=AsyncSession,
            autoflush=False  # Prevent premature flushes
        )

        return _engine
    except Exception as e:
        logger.critical(f"SQLAlchemy connection failed: {str(e)}")
        raise


def get_session_factory():
    if not _sessionmaker:
        raise RuntimeError("Call init_db() first")
    return _sessionmaker


async def close_db():
    global _engine, _sessionmaker
    if _engine:
        await _engine.dispose()
        _engine = None
        _sessionmaker = None
        logger.info("Database connection closed")

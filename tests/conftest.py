"""Shared fixtures: an in-memory database and a small published story."""
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from storybot.database import models  # noqa: F401  registers the tables
from storybot.database.base import Base
from storybot.database.models import User
from storybot.services.story_loader import StoryLoader
from tests.fixtures.story_fixtures import story_data


async def _create_schema(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await _create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession, autoflush=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def file_session_factory(tmp_path):
    """Sessions on a file database, each with its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storybot.db'}")
    await _create_schema(engine)
    yield async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession, autoflush=False)
    await engine.dispose()


@pytest.fixture
async def story(session):
    return await StoryLoader(session).load_story(story_data())


@pytest.fixture
def make_user(session):
    async def _make_user(user_id: int = 1001, balance: int = 0) -> int:
        session.add(User(id=user_id, first_name="Reader", balance=balance))
        await session.commit()
        return user_id

    return _make_user

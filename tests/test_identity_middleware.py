"""Tests for resolving the reader behind an update."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from aiogram.fsm.context import FSMContext
from aiogram.fsm.storage.base import StorageKey
from aiogram.fsm.storage.memory import MemoryStorage

from storybot.middlewares import GUEST_CACHE_KEY, ReaderIdentityMiddleware
from tests.fixtures.story_fixtures import STORY_ID

USER_ID = 1001


@pytest.fixture
def state() -> FSMContext:
    return FSMContext(storage=MemoryStorage(), key=StorageKey(bot_id=1, chat_id=USER_ID, user_id=USER_ID))


def _update(user_id: int = USER_ID) -> SimpleNamespace:
    return SimpleNamespace(message=SimpleNamespace(from_user=SimpleNamespace(id=user_id)), callback_query=None)


async def _save_position(event, data):
    data["identity"].guest_cache.save(STORY_ID, 3)
    return data["identity"]


class TestReaderIdentityMiddleware:
    async def test_unknown_user_is_a_guest(self, session, state) -> None:
        identity = await ReaderIdentityMiddleware()(_save_position, _update(), {"session": session, "state": state})

        assert identity.is_guest is True

    async def test_registered_user(self, session, state, make_user) -> None:
        await make_user(USER_ID)

        identity = await ReaderIdentityMiddleware()(_save_position, _update(), {"session": session, "state": state})

        assert identity.user_id == USER_ID

    async def test_guest_cache_persists_between_updates(self, session, state) -> None:
        middleware = ReaderIdentityMiddleware()
        await middleware(_save_position, _update(), {"session": session, "state": state})

        async def read_position(event, data):
            return data["identity"].guest_cache.get_position(STORY_ID)

        assert (await state.get_data())[GUEST_CACHE_KEY][STORY_ID]["position"] == 3
        assert await middleware(read_position, _update(), {"session": session, "state": state}) == 3

    async def test_without_session_the_handler_still_runs(self, state) -> None:
        async def handler(event, data):
            return "identity" in data

        assert await ReaderIdentityMiddleware()(handler, _update(), {"state": state}) is False

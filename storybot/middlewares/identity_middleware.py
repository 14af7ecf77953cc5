from __future__ import annotations

import logging
from typing import Any, Callable, Dict
from aiogram import BaseMiddleware
from aiogram.fsm.context import FSMContext
from aiogram.types import Update
from sqlalchemy.ext.asyncio import AsyncSession

from storybot.services.guest_cache import GuestCache
from storybot.services.progress_service import ReaderIdentity
from storybot.services.user_service import UserService

logger = logging.getLogger(__name__)

GUEST_CACHE_KEY = "guest_progress"


class ReaderIdentityMiddleware(BaseMiddleware):
    """Resolve who is reading: a registered user or a guest.

    Guests are never registered implicitly; their positions live in the
    chat's FSM data under ``guest_progress`` and are written back after
    every handler so the cache behaves like client-side storage.
    """

    async def __call__(
        self,
        handler: Callable[[Update, Dict[str, Any]], Any],
        event: Update,
        data: Dict[str, Any],
    ) -> Any:
        session: AsyncSession | None = data.get("session")
        state: FSMContext | None = data.get("state")
        if not session:
            return await handler(event, data)

        user_info = None
        if getattr(event, "message", None) and event.message.from_user:
            user_info = event.message.from_user
        elif getattr(event, "callback_query", None) and event.callback_query.from_user:
            user_info = event.callback_query.from_user
        elif getattr(event, "from_user", None):
            user_info = event.from_user

        cache_data = {}
        if state is not None:
            cache_data = (await state.get_data()).get(GUEST_CACHE_KEY, {})
        guest_cache = GuestCache(cache_data)

        user_id = None
        if user_info:
            user = await UserService(session).get_user(user_info.id)
            if user:
                user_id = user.id
        data["identity"] = ReaderIdentity(user_id=user_id, guest_cache=guest_cache)

        try:
            return await handler(event, data)
        finally:
            if state is not None:
                await state.update_data({GUEST_CACHE_KEY: guest_cache.to_dict()})

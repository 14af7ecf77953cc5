from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storybot.services.guest_cache import GuestCache
from storybot.services.progress_service import ProgressStore
from storybot.services.user_service import UserService

logger = logging.getLogger(__name__)


@dataclass
class SignInResult:
    user_id: int
    created: bool
    # story id -> position after bridging (None: nothing carried over)
    positions: Dict[str, Optional[int]] = field(default_factory=dict)


class GuestSessionBridge:
    """Turns a guest into a registered reader and carries their progress over."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.users = UserService(session)
        self.progress = ProgressStore(session)

    async def sign_in(
        self,
        telegram_id: int,
        guest_cache: GuestCache,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        username: str | None = None,
    ) -> SignInResult:
        user = await self.users.get_user(telegram_id)
        created = user is None
        if created:
            await self.users.create_user(
                telegram_id,
                first_name=first_name,
                last_name=last_name,
                username=username,
            )
        else:
            await self.users.update_user_info(
                user,
                first_name=first_name,
                last_name=last_name,
                username=username,
            )

        result = SignInResult(user_id=telegram_id, created=created)
        for story_id in guest_cache.story_ids():
            result.positions[story_id] = await self.progress.bridge_guest_to_user(
                guest_cache, telegram_id, story_id
            )
        logger.info(
            f"User {telegram_id} signed in (new={created}); bridged {len(result.positions)} guest stories"
        )
        return result

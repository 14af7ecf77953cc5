import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storybot.database.models import User
from storybot.utils.config import Config

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


async def is_admin(user_id: int, session: AsyncSession | None = None) -> bool:
    """Check the static ``ADMIN_IDS`` list first, then the user's stored role."""
    if user_id in Config.ADMIN_IDS:
        return True

    if session:
        result = await session.execute(select(User.role).where(User.id == user_id))
        return result.scalar_one_or_none() == ADMIN_ROLE

    return False

"""
Administrative commands: crediting balances and (re)loading story files.
"""
import logging

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message
from sqlalchemy.ext.asyncio import AsyncSession

from storybot.services.errors import NotFound
from storybot.services.ledger_service import BalanceLedger
from storybot.services.story_loader import StoryLoader
from storybot.utils.config import Config
from storybot.utils.message_safety import safe_answer
from storybot.utils.user_roles import is_admin

logger = logging.getLogger(__name__)
router = Router(name="admin_handler")

NOT_ALLOWED = "❌ Only administrators can use this command."


@router.message(Command("credit"))
async def credit_command(message: Message, command: CommandObject, session: AsyncSession):
    """/credit <user id> <amount>"""
    if not await is_admin(message.from_user.id, session):
        await safe_answer(message, NOT_ALLOWED)
        return

    args = (command.args or "").split()
    if len(args) != 2 or not args[0].isdigit() or not args[1].isdigit():
        await safe_answer(message, "Usage: /credit &lt;user id&gt; &lt;amount&gt;")
        return
    user_id, amount = int(args[0]), int(args[1])

    ledger = BalanceLedger(session)
    try:
        balance = await ledger.credit(user_id, amount)
    except NotFound:
        await safe_answer(message, f"❌ User {user_id} has not signed in yet.")
        return
    except ValueError:
        await safe_answer(message, "❌ The amount must be positive.")
        return

    logger.info(f"Admin {message.from_user.id} credited {amount} to {user_id}")
    await safe_answer(message, f"✅ Credited {amount} to {user_id}. New balance: {balance}")


@router.message(Command("load_stories"))
async def load_stories_command(message: Message, session: AsyncSession):
    """Load every story file in the stories directory."""
    if not await is_admin(message.from_user.id, session):
        await safe_answer(message, NOT_ALLOWED)
        return

    loaded = await StoryLoader(session).load_directory(Config.STORIES_DIR)
    if not loaded:
        await safe_answer(message, "📭 No stories were loaded. Check the log for details.")
        return
    await safe_answer(message, "✅ <b>Stories loaded</b>\n\n" + "\n".join(f"• {story_id}" for story_id in loaded))

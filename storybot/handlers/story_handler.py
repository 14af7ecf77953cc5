"""
Handlers for the story reader: opening stories, taking choices, restarting,
bookmarking and signing in.
"""
import html
import logging

from aiogram import F, Router
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.types import CallbackQuery, Message
from sqlalchemy.ext.asyncio import AsyncSession

from storybot.keyboards.story_kb import (
    get_page_keyboard,
    get_sign_in_keyboard,
    get_story_list_keyboard,
)
from storybot.services.errors import (
    AuthenticationRequired,
    InsufficientBalance,
    InvariantViolation,
    NotFound,
    StoryEngineError,
)
from storybot.services.ledger_service import BalanceLedger
from storybot.services.progress_service import ReaderIdentity
from storybot.services.reader_service import ReaderService
from storybot.services.session_bridge import GuestSessionBridge
from storybot.services.views import PageView
from storybot.utils.message_safety import safe_answer, safe_edit
from storybot.utils.text_utils import spice_label

logger = logging.getLogger(__name__)
router = Router(name="story_handler")


def format_page(view: PageView) -> str:
    page = view.page
    parts = []
    if page.title:
        parts.append(f"<b>{html.escape(page.title)}</b>")
    parts.append(html.escape(page.content))
    if view.purchase:
        if view.purchase["alreadyOwned"]:
            parts.append("🔓 <i>You already own this path.</i>")
        else:
            parts.append(f"💎 <i>Path unlocked for {view.purchase['cost']}.</i>")
    if view.is_ending:
        parts.append("✨ <b>THE END</b>")
    return "\n\n".join(parts)


def error_text(error: StoryEngineError) -> str:
    if isinstance(error, InsufficientBalance):
        return (
            "💎 <b>Not enough balance</b>\n\n"
            f"This path costs {error.required} and you have {error.available}."
        )
    if isinstance(error, AuthenticationRequired):
        return f"🔑 {html.escape(str(error))}. Use /signin and then pick the choice again."
    if isinstance(error, NotFound):
        return "📭 This content is not available right now."
    return "❌ <b>Temporary error</b>\n\nThis story can't be read right now. Try again later."


async def _show(message: Message, view: PageView, is_callback: bool = False):
    text = format_page(view)
    keyboard = get_page_keyboard(view)
    if is_callback:
        await safe_edit(message, text, reply_markup=keyboard)
    else:
        await safe_answer(message, text, reply_markup=keyboard)


async def _report(callback: CallbackQuery, error: StoryEngineError):
    if isinstance(error, InvariantViolation):
        logger.error(f"Broken story graph: {error} {error.problems}")
    keyboard = get_sign_in_keyboard() if isinstance(error, AuthenticationRequired) else None
    await callback.answer()
    await safe_answer(callback.message, error_text(error), reply_markup=keyboard)


@router.message(CommandStart())
@router.message(Command("stories"))
async def list_stories_command(message: Message, session: AsyncSession):
    stories = await ReaderService(session).list_stories()
    if not stories:
        await safe_answer(message, "📚 No stories have been published yet.")
        return
    lines = ["📚 <b>Stories</b>"]
    for story in stories:
        lines.append(
            f"{spice_label(story['spiceLevel'])} <b>{html.escape(story['title'])}</b> "
            f"({html.escape(story['category'])}, {story['wordCount']} words, {story['pathCount']} paths)"
        )
    await safe_answer(message, "\n".join(lines), reply_markup=get_story_list_keyboard(stories))


@router.callback_query(F.data == "story_list")
async def list_stories_callback(callback: CallbackQuery, session: AsyncSession):
    stories = await ReaderService(session).list_stories()
    await callback.answer()
    await safe_answer(
        callback.message,
        "📚 <b>Stories</b>" if stories else "📚 No stories have been published yet.",
        reply_markup=get_story_list_keyboard(stories),
    )


@router.message(Command("read"))
async def read_command(message: Message, command: CommandObject, session: AsyncSession, identity: ReaderIdentity):
    """Open a story at the reader's saved position (or its first page)."""
    story_id = (command.args or "").strip()
    if not story_id:
        await safe_answer(message, "Usage: /read &lt;story id&gt;")
        return
    try:
        view = await ReaderService(session).current_position(identity, story_id)
    except StoryEngineError as e:
        await safe_answer(message, error_text(e))
        return
    await _show(message, view)


@router.message(Command("preview"))
async def preview_command(message: Message, command: CommandObject, session: AsyncSession, identity: ReaderIdentity):
    """Show a story's first page without touching saved progress."""
    story_id = (command.args or "").strip()
    if not story_id:
        await safe_answer(message, "Usage: /preview &lt;story id&gt;")
        return
    try:
        view = await ReaderService(session).open_start(identity, story_id)
    except StoryEngineError as e:
        await safe_answer(message, error_text(e))
        return
    await _show(message, view)


@router.callback_query(F.data.startswith("story_open:"))
async def open_story(callback: CallbackQuery, session: AsyncSession, identity: ReaderIdentity):
    story_id = callback.data.split(":", 1)[1]
    try:
        view = await ReaderService(session).current_position(identity, story_id)
    except StoryEngineError as e:
        await _report(callback, e)
        return
    await callback.answer()
    await _show(callback.message, view)


@router.callback_query(F.data.startswith("story_choice:"))
async def handle_choice(callback: CallbackQuery, session: AsyncSession, identity: ReaderIdentity):
    parts = callback.data.split(":")
    if len(parts) != 3 or not parts[2].isdigit():
        await callback.answer("❌ Invalid choice", show_alert=True)
        return
    _, choice_id, position = parts

    try:
        view = await ReaderService(session).take_choice(identity, choice_id, int(position))
    except StoryEngineError as e:
        await _report(callback, e)
        return
    await callback.answer()
    await _show(callback.message, view, is_callback=True)


@router.callback_query(F.data.startswith("story_next:"))
async def handle_continue(callback: CallbackQuery, session: AsyncSession, identity: ReaderIdentity):
    parts = callback.data.split(":")
    if len(parts) != 3 or not parts[2].isdigit():
        await callback.answer("❌ Invalid request", show_alert=True)
        return
    _, story_id, position = parts

    try:
        view = await ReaderService(session).continue_reading(identity, story_id, int(position))
    except StoryEngineError as e:
        await _report(callback, e)
        return
    await callback.answer()
    await _show(callback.message, view, is_callback=True)


@router.callback_query(F.data.startswith("story_reset:"))
async def handle_reset(callback: CallbackQuery, session: AsyncSession, identity: ReaderIdentity):
    story_id = callback.data.split(":", 1)[1]
    try:
        view = await ReaderService(session).reset(identity, story_id)
    except StoryEngineError as e:
        await _report(callback, e)
        return
    await callback.answer("⏮ Back to the beginning")
    await _show(callback.message, view)


@router.callback_query(F.data.startswith("story_bookmark:"))
async def handle_bookmark(callback: CallbackQuery, session: AsyncSession, identity: ReaderIdentity):
    story_id = callback.data.split(":", 1)[1]
    try:
        bookmarked = await ReaderService(session).toggle_bookmark(identity, story_id)
    except StoryEngineError as e:
        await _report(callback, e)
        return
    await callback.answer("🔖 Bookmarked" if bookmarked else "Bookmark removed")


async def _sign_in(message: Message, from_user, session: AsyncSession, identity: ReaderIdentity):
    result = await GuestSessionBridge(session).sign_in(
        from_user.id,
        identity.guest_cache,
        first_name=from_user.first_name,
        last_name=from_user.last_name,
        username=from_user.username,
    )
    identity.user_id = result.user_id
    balance = await BalanceLedger(session).get_balance(result.user_id)
    carried = sum(1 for position in result.positions.values() if position is not None)

    text = "👋 <b>Welcome!</b>" if result.created else "👋 <b>Welcome back!</b>"
    text += f"\n\n💎 Balance: {balance}"
    if carried:
        text += f"\n📖 Progress kept for {carried} stor{'y' if carried == 1 else 'ies'}."
    await safe_answer(message, text)


@router.message(Command("signin"))
async def sign_in_command(message: Message, session: AsyncSession, identity: ReaderIdentity):
    await _sign_in(message, message.from_user, session, identity)


@router.callback_query(F.data == "story_signin")
async def sign_in_callback(callback: CallbackQuery, session: AsyncSession, identity: ReaderIdentity):
    await callback.answer()
    await _sign_in(callback.message, callback.from_user, session, identity)


@router.message(Command("balance"))
async def balance_command(message: Message, session: AsyncSession, identity: ReaderIdentity):
    if identity.is_guest:
        await safe_answer(message, "🔑 Sign in to get a balance.", reply_markup=get_sign_in_keyboard())
        return
    balance = await BalanceLedger(session).get_balance(identity.user_id)
    await safe_answer(message, f"💎 Balance: {balance}")


@router.message(Command("library"))
async def library_command(message: Message, session: AsyncSession, identity: ReaderIdentity):
    try:
        entries = await ReaderService(session).library(identity)
    except StoryEngineError as e:
        await safe_answer(message, error_text(e), reply_markup=get_sign_in_keyboard())
        return
    if not entries:
        await safe_answer(message, "📖 You haven't started any story yet. Try /stories")
        return
    lines = ["📖 <b>Your library</b>"]
    for entry in entries:
        marks = ("🔖" if entry["isBookmarked"] else "") + ("✅" if entry["isCompleted"] else "")
        title = html.escape(entry["title"] or entry["storyId"])
        lines.append(f"{marks} <b>{title}</b> · page {entry['position']} · /read {entry['storyId']}")
    await safe_answer(message, "\n".join(lines))


@router.message(Command("stats"))
async def stats_command(message: Message, session: AsyncSession, identity: ReaderIdentity):
    try:
        stats = await ReaderService(session).reading_stats(identity)
    except StoryEngineError as e:
        await safe_answer(message, error_text(e), reply_markup=get_sign_in_keyboard())
        return
    await safe_answer(
        message,
        f"""📊 <b>Your reading</b>

📚 Stories started: {stats['storiesStarted']}
✅ Completed: {stats['storiesCompleted']}
🔖 Bookmarked: {stats['storiesBookmarked']}
📄 Pages read: {stats['pagesRead']}
🎭 Choices made: {stats['choicesMade']}
🔓 Premium paths: {stats['premiumPathsOwned']}
💎 Balance: {stats['balance']}""",
    )

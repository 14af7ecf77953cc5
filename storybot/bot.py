import asyncio
import logging
import sys

from aiogram import Bot, Dispatcher, BaseMiddleware
from aiogram.enums.parse_mode import ParseMode
from aiogram.client.bot import DefaultBotProperties
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import ErrorEvent
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storybot.database.setup import init_db, get_session_factory, close_db
from storybot.handlers.admin_handler import router as admin_router
from storybot.handlers.story_handler import router as story_router
from storybot.middlewares import ReaderIdentityMiddleware
from storybot.services.story_loader import StoryLoader
from storybot.utils.config import Config, require_bot_token


def setup_logging():
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
        handlers=[
            logging.FileHandler(Config.LOG_FILE, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Library noise
    logging.getLogger('aiogram').setLevel(logging.WARNING)
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)


class DBSessionMiddleware(BaseMiddleware):
    """Opens one database session per update and hands it to handlers as ``session``."""

    def __init__(self, session_pool: async_sessionmaker[AsyncSession]):
        self.session_pool = session_pool

    async def __call__(self, handler, event, data):
        async with self.session_pool() as session:
            data["session"] = session
            return await handler(event, data)


async def global_error_handler(event: ErrorEvent) -> bool:
    logger = logging.getLogger(__name__)

    logger.error(
        f"Error in update {event.update.update_id if event.update else 'Unknown'}: "
        f"{type(event.exception).__name__}: {event.exception}",
        exc_info=True
    )

    if isinstance(event.exception, (ConnectionError, TimeoutError)):
        logger.critical("Connection error detected")

    return True


async def load_initial_stories(session_factory: async_sessionmaker[AsyncSession]) -> None:
    async with session_factory() as session:
        await StoryLoader(session).load_directory(Config.STORIES_DIR)


async def main() -> None:
    setup_logging()
    logger = logging.getLogger(__name__)
    bot = None

    try:
        token = require_bot_token()

        logger.info("Initializing database...")
        await init_db()
        session_factory = get_session_factory()

        logger.info(f"Loading stories from {Config.STORIES_DIR}...")
        await load_initial_stories(session_factory)

        bot = Bot(token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
        dp = Dispatcher(storage=MemoryStorage())

        dp.error.register(global_error_handler)

        # The session middleware must run before identity resolution
        dp.update.outer_middleware(DBSessionMiddleware(session_factory))
        dp.update.outer_middleware(ReaderIdentityMiddleware())

        for name, router in (("admin", admin_router), ("story", story_router)):
            dp.include_router(router)
            logger.info(f"Router {name} registered")

        logger.info("Bot started. Polling...")
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())

    except Exception as e:
        logger.critical(f"Critical error in main(): {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down...")
        if bot is not None:
            await bot.session.close()
        await close_db()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.info("Bot stopped by user")


if __name__ == "__main__":
    run()

import os
from typing import List
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Telegram bot token read from ``BOT_TOKEN``. It is only validated when the
# bot actually starts (see ``require_bot_token``) so that the services and
# the test-suite can import this module without a token configured.
BOT_TOKEN = os.environ.get("BOT_TOKEN", "YOUR_BOT_TOKEN")

# Telegram user IDs of admins provided as a semicolon separated list in
# the ``ADMIN_IDS`` environment variable. Admins may credit balances and
# (re)load story files.
ADMIN_IDS: List[int] = [
    int(uid) for uid in os.environ.get("ADMIN_IDS", "").split(";") if uid.strip()
]

# SQLAlchemy async URL. SQLite is used for local development; a
# ``postgresql+asyncpg://`` URL switches to PostgreSQL.
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///storybot.db")
DATABASE_ECHO = os.environ.get("DATABASE_ECHO", "false").lower() in ("1", "true", "yes")

# Guest progress lives in the chat's FSM storage; entries older than this
# are discarded and the reader starts again from the first page.
GUEST_CACHE_TTL_DAYS = int(os.environ.get("GUEST_CACHE_TTL_DAYS", "7"))

# Balance credited once when a guest signs in for the first time.
DEFAULT_STARTING_BALANCE = int(os.environ.get("DEFAULT_STARTING_BALANCE", "20"))

# Directory scanned by the story loader for authoring JSON files.
STORIES_DIR = os.environ.get("STORIES_DIR", "stories")

LOG_FILE = os.environ.get("LOG_FILE", "storybot.log")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


def require_bot_token() -> str:
    """Return the bot token, failing loudly when it was never configured."""
    if BOT_TOKEN == "YOUR_BOT_TOKEN" or not BOT_TOKEN:
        raise ValueError(
            "BOT_TOKEN environment variable is not set or contains the default placeholder."
        )
    return BOT_TOKEN


class Config:
    BOT_TOKEN = BOT_TOKEN
    ADMIN_IDS = ADMIN_IDS
    DATABASE_URL = DATABASE_URL
    DATABASE_ECHO = DATABASE_ECHO
    GUEST_CACHE_TTL_DAYS = GUEST_CACHE_TTL_DAYS
    DEFAULT_STARTING_BALANCE = DEFAULT_STARTING_BALANCE
    STORIES_DIR = STORIES_DIR
    LOG_FILE = LOG_FILE
    LOG_LEVEL = LOG_LEVEL

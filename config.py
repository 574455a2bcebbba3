# Import necessary modules
import os
import logging
from dotenv import load_dotenv

# Get a logger instance (sync_service.py configures logging before importing this module)
logger = logging.getLogger(__name__)
logger.info("config.py: Script execution started.")

# Load environment variables from .env file
dotenv_path = os.path.join(os.path.dirname(__file__), '.env')
if os.path.exists(dotenv_path):
    logger.info(f"config.py: .env file found at {dotenv_path}")
    # Handle potential BOM in .env file by explicitly specifying encoding
    load_dotenv(dotenv_path=dotenv_path, encoding='utf-8-sig')
else:
    logger.warning(f"config.py: .env file NOT found at {dotenv_path}. Environment variables should be set directly.")

APP_ENV = (os.getenv("APP_ENV") or "production").strip().lower()
IS_DEVELOPMENT = APP_ENV in ("development", "dev", "local")

# SQLite Database Configuration.
# Production requires HABITS_DB_PATH; the local file is a development-only fallback.
DEV_FALLBACK_DB_PATH = "data/habits.db"
HABITS_DB_PATH = os.getenv("HABITS_DB_PATH")
USING_DEV_DB_FALLBACK = False
if not HABITS_DB_PATH:
    if IS_DEVELOPMENT:
        HABITS_DB_PATH = DEV_FALLBACK_DB_PATH
        USING_DEV_DB_FALLBACK = True
        logger.warning(f"config.py: HABITS_DB_PATH not set, using development fallback: {HABITS_DB_PATH}")
    else:
        logger.warning("config.py: HABITS_DB_PATH not found in environment variables. Persistence is unavailable.")
else:
    logger.info(f"config.py: HABITS_DB_PATH found in environment variables: {HABITS_DB_PATH}")

# Timezone used when a caller does not supply one.
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Los_Angeles")

# Todoist
TODOIST_SYNC_API_URL = os.getenv("TODOIST_SYNC_API_URL", "https://api.todoist.com/sync/v9")
TODOIST_REST_API_URL = os.getenv("TODOIST_REST_API_URL", "https://api.todoist.com/rest/v2")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"config.py: {name}={raw!r} is not an integer, using default {default}.")
        return default


# The activity endpoint caps each call; we never request more than this.
TODOIST_ACTIVITY_PAGE_LIMIT = max(1, _int_env("TODOIST_ACTIVITY_PAGE_LIMIT", 100))
TODOIST_TIMEOUT_SECONDS = max(1, _int_env("TODOIST_TIMEOUT_SECONDS", 15))

logger.info("config.py: Finished loading configuration.")

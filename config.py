"""Configuration settings for ShiftLog."""

import logging
import os
import sys
from pathlib import Path
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def is_bundled() -> bool:
    """
    Check if the application is running from a PyInstaller bundle.

    Returns:
        True if running from a bundled executable, False otherwise.
    """
    return getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS')


def get_user_data_dir() -> Path:
    """
    Get the directory for user-writable data (time logs, caches, tokens).

    For development: BASE_DIR/data
    For bundled apps: a dedicated folder in the user's home directory
                      so data persists across updates.

    Returns:
        Path to the user data directory.
    """
    if is_bundled():
        if sys.platform == 'darwin':
            # macOS: ~/Library/Application Support/ShiftLog
            data_dir = Path.home() / "Library" / "Application Support" / "ShiftLog"
        elif sys.platform == 'win32':
            appdata = os.environ.get('APPDATA')
            if appdata:
                data_dir = Path(appdata) / "ShiftLog"
            else:
                data_dir = Path.home() / "AppData" / "Roaming" / "ShiftLog"
        else:
            # Linux: ~/.local/share/ShiftLog
            data_dir = Path.home() / ".local" / "share" / "ShiftLog"

        try:
            data_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            data_dir = Path.home() / ".shiftlog"
            data_dir.mkdir(parents=True, exist_ok=True)

        return data_dir
    else:
        return Path(__file__).parent / "data"


def _get_int_env(name: str, default: int) -> int:
    """
    Read a positive integer from the environment.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset or invalid.

    Returns:
        Parsed integer, or default.
    """
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not an integer, using {default}")
        return default
    if value <= 0:
        logger.warning(f"{name} must be positive, using {default}")
        return default
    return value


# Load environment variables from .env file (only in development)
if not is_bundled():
    _env_path = Path(__file__).parent / ".env"
    load_dotenv(_env_path)

# User data directory (time logs, caches, tokens)
USER_DATA_DIR = get_user_data_dir()

# Supabase Configuration (auth, tasks, screenshot counts, time log upload)
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")

# Screenshot capture interval used for the "estimated" count (default: 5 minutes)
SCREENSHOT_INTERVAL_MS = _get_int_env("SCREENSHOT_INTERVAL", 300000)
# Background sync interval (default: 1 minute)
SYNC_INTERVAL_MS = _get_int_env("SYNC_INTERVAL", 60000)

# Poll cadences (seconds)
STATUS_POLL_SECONDS = 1.0
DURATION_POLL_SECONDS = 5.0
LOCAL_COUNT_POLL_SECONDS = 3.0

# Session states reported by the session service
STATE_STOPPED = "stopped"
STATE_RUNNING = "running"
STATE_PAUSED = "paused"

# Title shown for a session that is not bound to a manual task
DEFAULT_TASK_TITLE = "General Work"

# Task statuses that can still be picked before starting a session
SELECTABLE_TASK_STATUSES = ("pending", "new")

# Daily progress target (8 hours)
DAILY_TARGET_MS = 8 * 60 * 60 * 1000

# Local data files
DAILY_STATS_FILE = USER_DATA_DIR / "daily_stats.json"
ACTIVE_TIME_LOG_FILE = USER_DATA_DIR / "active_time_log.json"
PENDING_TIME_LOGS_FILE = USER_DATA_DIR / "pending_time_logs.json"
SCREENSHOT_INDEX_FILE = USER_DATA_DIR / "screenshots.json"

try:
    USER_DATA_DIR.mkdir(parents=True, exist_ok=True)
except OSError as e:
    logger.error(f"Failed to create data directory {USER_DATA_DIR}: {e}")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")  # Can override in .env: DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

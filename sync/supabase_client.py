"""
ShiftLogSync - Supabase authentication and data synchronisation client.

Handles:
- Auth token storage
- Email/password login
- Today's screenshot count (server side)
- Task list fetch
- Settings fetch (with local caching for offline fallback)
- Time log upload after a session stops

All file paths use config.USER_DATA_DIR for cross-platform support.
The Supabase client is synchronous; async callers go through sync.services.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from supabase import create_client

import config
from tracking.storage import load_json, remove_file, save_json

logger = logging.getLogger(__name__)

_TASK_COLUMNS = "id, title, is_manual, duration, status"


class SyncError(Exception):
    """Supabase is unavailable, the user isn't logged in, or a request failed."""


def _local_day_bounds(now: datetime) -> Tuple[str, str]:
    """ISO bounds of the device's local calendar day, with UTC offset."""
    start = now.astimezone().replace(hour=0, minute=0, second=0, microsecond=0)
    return start.isoformat(), (start + timedelta(days=1)).isoformat()


class ShiftLogSync:
    """
    Supabase client wrapper for the ShiftLog desktop app.

    Works offline gracefully: settings fall back to a local cache, uploads
    report failure instead of raising. Reads the engine treats as advisory
    (screenshot count, tasks) raise SyncError so the caller decides the
    fallback.
    """

    def __init__(self, supabase_url: str = "", supabase_key: str = "",
                 data_dir: Optional[Path] = None) -> None:
        """
        Initialise the sync client.

        Args:
            supabase_url: Supabase project URL (falls back to config).
            supabase_key: Supabase anon/public key (falls back to config).
            data_dir: Where tokens and caches live (falls back to config.USER_DATA_DIR).
        """
        self._url = supabase_url or config.SUPABASE_URL
        self._key = supabase_key or config.SUPABASE_ANON_KEY

        self.data_dir: Path = data_dir or config.USER_DATA_DIR
        self.auth_file: Path = self.data_dir / "auth.json"
        self.settings_cache_file: Path = self.data_dir / "settings_cache.json"

        # Supabase client (only created when credentials exist)
        self._client = None
        self._init_client()

    # ------------------------------------------------------------------
    # Client initialisation
    # ------------------------------------------------------------------

    def _init_client(self) -> None:
        """Create the Supabase client if credentials are available."""
        if not self._url or not self._key:
            logger.info("Supabase credentials not configured - sync disabled")
            return
        try:
            self._client = create_client(self._url, self._key)
            self._load_stored_session()
            logger.info("Supabase client initialised")
        except Exception as e:
            logger.warning(f"Failed to initialise Supabase client: {e}")
            self._client = None

    # ------------------------------------------------------------------
    # Auth token persistence
    # ------------------------------------------------------------------

    def _load_stored_session(self) -> None:
        """Load stored auth tokens from disk if they exist."""
        data = load_json(self.auth_file, {})
        access_token = data.get("access_token", "")
        refresh_token = data.get("refresh_token", "")
        if not (self._client and access_token and refresh_token):
            return
        try:
            self._client.auth.set_session(access_token, refresh_token)
            logger.info(f"Loaded stored session for {data.get('email', 'unknown')}")
        except Exception as e:
            logger.warning(f"Failed to load stored session: {e}")

    def _save_session(self, session) -> None:
        """
        Save auth tokens to local storage.

        Args:
            session: Supabase auth session object.
        """
        try:
            save_json(self.auth_file, {
                "access_token": session.access_token,
                "refresh_token": session.refresh_token,
                "user_id": session.user.id,
                "email": session.user.email,
                "expires_at": session.expires_at,
            })
            logger.info(f"Auth session saved for {session.user.email}")
        except OSError as e:
            logger.warning(f"Failed to save auth session: {e}")

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        """Check if the sync client is configured and ready."""
        return self._client is not None

    def is_authenticated(self) -> bool:
        if not self._client:
            return False
        try:
            return self._client.auth.get_user() is not None
        except Exception:
            return False

    def get_stored_email(self) -> str:
        """Email from the locally stored auth file (no network call)."""
        return load_json(self.auth_file, {}).get("email", "")

    def login_with_email(self, email: str, password: str) -> Dict:
        """
        Login with email and password.

        Returns:
            {"success": bool, "error": str | None}
        """
        if not self._client:
            return {"success": False, "error": "Supabase not configured"}
        try:
            result = self._client.auth.sign_in_with_password({
                "email": email,
                "password": password,
            })
            self._save_session(result.session)
            return {"success": True, "error": None}
        except Exception as e:
            return {"success": False, "error": str(e)}

    def logout(self) -> None:
        """Sign out and clear stored tokens."""
        if self._client:
            try:
                self._client.auth.sign_out()
            except Exception as e:
                logger.debug(f"Sign out failed: {e}")
        remove_file(self.auth_file)
        logger.info("Logged out and cleared local tokens")

    def _require_user(self):
        """Current Supabase user, or SyncError if there is none."""
        if not self._client:
            raise SyncError("Supabase not configured")
        try:
            user = self._client.auth.get_user()
        except Exception as e:
            raise SyncError(f"Not authenticated: {e}") from e
        if not user:
            raise SyncError("Not authenticated. Please login first.")
        return user

    # ------------------------------------------------------------------
    # Screenshots and tasks
    # ------------------------------------------------------------------

    def get_today_screenshot_count(self) -> int:
        """
        Count screenshots the server holds for today (device-local day).

        Raises:
            SyncError: If not configured, not authenticated or the query fails.
        """
        user = self._require_user()
        day_start, day_end = _local_day_bounds(datetime.now())
        try:
            result = (
                self._client.table("screenshots")
                .select("id", count="exact")
                .eq("user_id", user.user.id)
                .gte("captured_at", day_start)
                .lt("captured_at", day_end)
                .execute()
            )
        except Exception as e:
            raise SyncError(f"Failed to count screenshots: {e}") from e
        return int(result.count or 0)

    def fetch_tasks(self) -> List[Dict[str, Any]]:
        """
        Fetch the user's tasks, newest first.

        Raises:
            SyncError: If not configured, not authenticated or the query fails.
        """
        user = self._require_user()
        try:
            result = (
                self._client.table("tasks")
                .select(_TASK_COLUMNS)
                .eq("user_id", user.user.id)
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as e:
            raise SyncError(f"Failed to load tasks: {e}") from e
        return result.data or []

    # ------------------------------------------------------------------
    # Settings sync
    # ------------------------------------------------------------------

    def fetch_config(self) -> Dict[str, Any]:
        """
        Fetch tracker settings from Supabase.

        Falls back to the local cache, then to config defaults, when offline.

        Returns:
            {"screenshot_interval_ms": int, "sync_interval_ms": int}
        """
        if not self._client:
            return self._load_cached_config()

        try:
            result = (
                self._client.table("user_settings")
                .select("screenshot_interval_ms, sync_interval_ms")
                .single()
                .execute()
            )
            settings = result.data or {}
            merged = {
                "screenshot_interval_ms": int(
                    settings.get("screenshot_interval_ms") or config.SCREENSHOT_INTERVAL_MS
                ),
                "sync_interval_ms": int(
                    settings.get("sync_interval_ms") or config.SYNC_INTERVAL_MS
                ),
            }
            self._cache_config(merged)
            return merged
        except Exception as e:
            logger.warning(f"Failed to fetch settings from cloud, using cache: {e}")
            return self._load_cached_config()

    def _cache_config(self, settings: Dict[str, Any]) -> None:
        try:
            save_json(self.settings_cache_file, settings)
        except OSError as e:
            logger.debug(f"Could not cache settings: {e}")

    def _load_cached_config(self) -> Dict[str, Any]:
        defaults = {
            "screenshot_interval_ms": config.SCREENSHOT_INTERVAL_MS,
            "sync_interval_ms": config.SYNC_INTERVAL_MS,
        }
        cached = load_json(self.settings_cache_file, {})
        if isinstance(cached, dict):
            defaults.update({k: v for k, v in cached.items() if k in defaults and v})
        return defaults

    # ------------------------------------------------------------------
    # Time log upload
    # ------------------------------------------------------------------

    def upload_time_log(self, log: Dict[str, Any]) -> bool:
        """
        Upload a completed time log to Supabase.

        Args:
            log: Completed log from TimeTrackerService.stop().

        Returns:
            True if upload succeeded, False otherwise.
        """
        if not self._client:
            logger.info("Supabase not configured - skipping time log upload")
            return False

        try:
            user = self._require_user()
        except SyncError as e:
            logger.warning(f"{e} - skipping time log upload")
            return False

        try:
            self._client.table("time_logs").insert({
                "user_id": user.user.id,
                "local_id": log.get("local_id"),
                "task_id": log.get("task_id"),
                "task_local_id": log.get("task_local_id"),
                "task_title": log.get("task_title"),
                "is_manual": bool(log.get("is_manual")),
                "start_time": log.get("start_time"),
                "end_time": log.get("end_time"),
                "duration_ms": log.get("duration_ms", 0),
                "paused_ms": log.get("paused_ms", 0),
            }).execute()
            logger.info(f"Time log uploaded to cloud: {log.get('local_id')}")
            return True
        except Exception as e:
            logger.error(f"Failed to upload time log: {e}")
            return False

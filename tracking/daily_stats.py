"""
Daily duration tracker for ShiftLog.

Keeps the total duration of sessions completed today. Automatically resets
when the local calendar date changes. Data is stored locally per device.

The live session is never stored here; it is added on top at display time
by tracking.time_format.total_today_ms().
"""

import logging
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import config
from tracking.storage import load_json, save_json

logger = logging.getLogger(__name__)


class DailyDurationTracker:
    """
    Tracks the cumulative duration of sessions completed today.

    Data is stored in a JSON file and resets automatically when the
    date changes (midnight reset).
    """

    def __init__(self, data_file: Optional[Path] = None,
                 today: Callable[[], date] = date.today):
        """
        Initialize the tracker and load existing data.

        Args:
            data_file: JSON file to persist to (defaults to config.DAILY_STATS_FILE).
            today: Returns the current local date (injectable for tests).
        """
        self.data_file: Path = data_file or config.DAILY_STATS_FILE
        self._today = today
        self.data = load_json(self.data_file, None) or self._create_empty_day_data()
        self._check_and_reset_if_new_day()

    def _create_empty_day_data(self) -> Dict[str, Any]:
        return {
            "date": self._today().isoformat(),
            "completed_ms": 0,
            "sessions": 0,
        }

    def _save_data(self) -> None:
        try:
            save_json(self.data_file, self.data)
            logger.debug(f"Saved daily stats: {self.data}")
        except OSError as e:
            logger.error(f"Failed to save daily stats: {e}")

    def _check_and_reset_if_new_day(self) -> None:
        """Check if the date has changed and reset totals if needed."""
        today = self._today().isoformat()
        stored_date = self.data.get("date", "")

        if stored_date != today:
            logger.info(f"New day detected ({stored_date} -> {today}). Resetting daily totals.")
            self.data = self._create_empty_day_data()
            self._save_data()

    def add_completed_session(self, duration_ms: int) -> None:
        """
        Add a completed session's active duration to today's total.

        Raises:
            ValueError: If duration_ms is negative.
        """
        if duration_ms < 0:
            raise ValueError("Session duration must be non-negative")

        self._check_and_reset_if_new_day()
        self.data["completed_ms"] = int(self.data.get("completed_ms", 0)) + int(duration_ms)
        self.data["sessions"] = int(self.data.get("sessions", 0)) + 1
        self._save_data()
        logger.info(f"Added completed session to daily total: {duration_ms}ms "
                    f"(today: {self.data['completed_ms']}ms)")

    def get_completed_today_ms(self) -> int:
        """Total duration of sessions completed today, in milliseconds."""
        self._check_and_reset_if_new_day()
        return int(self.data.get("completed_ms", 0))

    def get_session_count(self) -> int:
        """Number of sessions completed today."""
        self._check_and_reset_if_new_day()
        return int(self.data.get("sessions", 0))

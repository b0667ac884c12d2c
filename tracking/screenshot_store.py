"""Local index of captured screenshots, read by the screenshot count poller."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import config
from tracking.storage import load_json, save_json

logger = logging.getLogger(__name__)


class LocalScreenshotStore:
    """
    JSON-backed list of capture records.

    The capturer appends a record per screenshot; the engine only reads.
    Each record is {"captured_at": ISO timestamp, "time_log_id": str | None}.
    """

    def __init__(self, index_file: Optional[Path] = None):
        self.index_file: Path = index_file or config.SCREENSHOT_INDEX_FILE
        records = load_json(self.index_file, [])
        if not isinstance(records, list):
            logger.warning(f"Ignoring malformed screenshot index {self.index_file.name}")
            records = []
        self._records: List[Dict[str, Any]] = records

    async def get_all(self) -> List[Dict[str, Any]]:
        return list(self._records)

    def record_capture(self, captured_at: Optional[datetime] = None,
                       time_log_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Append a capture record and persist the index.

        Args:
            captured_at: Capture time (defaults to now, local time with offset).
            time_log_id: Local id of the time log the capture belongs to.
        """
        captured_at = captured_at or datetime.now().astimezone()
        record = {"captured_at": captured_at.isoformat(), "time_log_id": time_log_id}
        self._records.append(record)
        self._save()
        return record

    def clear(self) -> None:
        """Drop all records (e.g. after the captures were synced and deleted)."""
        self._records = []
        self._save()
        logger.info("Local screenshot index cleared")

    def _save(self) -> None:
        try:
            save_json(self.index_file, self._records)
        except OSError as e:
            logger.error(f"Failed to save screenshot index: {e}")

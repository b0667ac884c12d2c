"""
Screenshot count reconciliation.

The "screenshots today" figure combines two sources refreshed on their own
schedules:

- the server's count for today, fixed when a session starts
- the local capture count, re-sampled every few seconds

    display_total = server_count_at_start + max(0, local_count_now - local_baseline_at_start)

Both are advisory display values. Fetch failures are logged and replaced
with a safe default; they never interrupt tracking.

"Today" is the device's local calendar day. Capture timestamps carrying a
UTC offset are converted to local time before being compared.
"""

import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, Optional

from tracking.session import SessionStatus

logger = logging.getLogger(__name__)


def _capture_date(record: Dict[str, Any]) -> Optional[date]:
    """Local calendar date of a capture record, or None if unparseable."""
    raw = record.get("captured_at") or record.get("capturedAt")
    if raw is None:
        return None
    try:
        captured = raw if isinstance(raw, datetime) else datetime.fromisoformat(str(raw))
    except ValueError:
        logger.debug(f"Skipping capture record with bad timestamp: {raw!r}")
        return None
    if captured.tzinfo is not None:
        captured = captured.astimezone()
    return captured.date()


def count_for_day(records: Iterable[Dict[str, Any]], day: date) -> int:
    """Number of capture records taken on the given local day."""
    return sum(1 for record in records if _capture_date(record) == day)


class ScreenshotReconciler:
    """
    Holds the session's screenshot counters and produces the display total.

    Baselines are only committed by begin_session(), after the session
    service accepted the start, so a failed start leaves them untouched.
    """

    def __init__(self, local_store, remote_counts,
                 now: Callable[[], datetime] = datetime.now):
        """
        Args:
            local_store: Local screenshot store (get_all()).
            remote_counts: Remote count service (get_today_count()).
            now: Returns the current local time (injectable for tests).
        """
        self._local_store = local_store
        self._remote_counts = remote_counts
        self._now = now

        self.server_count_at_start: int = 0
        self.local_baseline_at_start: int = 0
        self.local_count_now: int = 0
        self._count_day: Optional[date] = None

    # ------------------------------------------------------------------
    # Remote count
    # ------------------------------------------------------------------

    async def fetch_server_count(self) -> int:
        """Today's server count, or 0 if it can't be fetched."""
        try:
            response = await self._remote_counts.get_today_count()
            return max(0, int(response.get("count") or 0))
        except Exception as e:
            logger.warning(f"Failed to load server screenshot count, using 0: {e}")
            return 0

    # ------------------------------------------------------------------
    # Local count
    # ------------------------------------------------------------------

    async def fetch_local_count(self) -> int:
        """Local captures taken today, or the last known count on failure."""
        try:
            records = await self._local_store.get_all()
        except Exception as e:
            logger.warning(f"Failed to read local screenshots, keeping last count: {e}")
            return self.local_count_now
        return count_for_day(records, self._now().date())

    async def refresh_local_count(self) -> bool:
        """Re-sample the local count. See record_local_count()."""
        return self.record_local_count(await self.fetch_local_count())

    def record_local_count(self, count: int) -> bool:
        """
        Store a local count sample.

        Returns:
            True if the local calendar day changed since the previous sample.
            The baseline is not corrected here; the next start re-fixes it.
        """
        today = self._now().date()
        rolled_over = self._count_day is not None and today != self._count_day
        if rolled_over:
            logger.info(f"Day rolled over ({self._count_day} -> {today}); local count restarts")
        self._count_day = today
        self.local_count_now = count
        return rolled_over

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def begin_session(self, server_count: int, local_count: int) -> None:
        """Fix the counters for a session that has just started."""
        self.server_count_at_start = max(0, server_count)
        self.local_baseline_at_start = max(0, local_count)
        self.local_count_now = self.local_baseline_at_start
        self._count_day = self._now().date()
        logger.debug(f"Screenshot baselines fixed: server={self.server_count_at_start}, "
                     f"local={self.local_baseline_at_start}")

    def reset(self) -> None:
        """Zero the local counters after a stop so the next session starts clean."""
        self.local_baseline_at_start = 0
        self.local_count_now = 0

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def session_capture_count(self) -> int:
        """Captures taken locally since the session started (never negative)."""
        return max(0, self.local_count_now - self.local_baseline_at_start)

    @property
    def display_total(self) -> int:
        return self.server_count_at_start + self.session_capture_count

    @staticmethod
    def estimate_from_interval(status: SessionStatus, interval_ms: int) -> int:
        """
        Screenshots expected so far at the configured capture interval.

        Shown next to the real count; never used in its place.
        """
        if not status.is_tracking or interval_ms <= 0:
            return 0
        return status.elapsed_ms // interval_ms

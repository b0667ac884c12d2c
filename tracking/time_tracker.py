"""
TimeTrackerService - the session service behind the engine.

Owns the active time log: start, pause, resume, stop and status. Elapsed
time is derived from timestamps, never from a ticking counter:

    running: elapsed = now - start - total_paused
    paused:  elapsed = frozen at the pause moment

The active log is persisted on every transition so a session survives an
app restart. Completed logs are added to the daily total and queued in a
pending file until the uploader (ShiftLogSync.upload_time_log) accepts
them. The queue is retried at startup and by the engine's sync loop, so a
log finished offline is uploaded once the connection is back.
"""

import asyncio
import logging
import threading
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import config
from tracking.daily_stats import DailyDurationTracker
from tracking.session import SessionState, SessionStatus, TaskBinding
from tracking.storage import load_json, remove_file, save_json

logger = logging.getLogger(__name__)


class TrackerError(Exception):
    """A session command the current session state doesn't allow."""


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).astimezone().isoformat()


class TimeTrackerService:
    """
    In-process session service.

    Implements SessionServiceProtocol and DailyDurationServiceProtocol.
    Rejects invalid transitions with TrackerError so callers get a message
    they can show verbatim.
    """

    def __init__(self, daily_tracker: Optional[DailyDurationTracker] = None,
                 uploader: Optional[Callable[[Dict[str, Any]], bool]] = None,
                 state_file: Optional[Path] = None,
                 pending_file: Optional[Path] = None,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            daily_tracker: Receives completed durations (default: a new tracker).
            uploader: Called with each completed time log; returns True on success.
            state_file: Where the active time log is persisted.
            pending_file: Completed logs not yet accepted by the uploader.
            clock: Returns the current epoch time in seconds (injectable for tests).
        """
        self.daily = daily_tracker or DailyDurationTracker()
        self._uploader = uploader
        self.state_file: Path = state_file or config.ACTIVE_TIME_LOG_FILE
        self.pending_file: Path = pending_file or config.PENDING_TIME_LOGS_FILE
        self._pending_lock = threading.Lock()
        # One upload pass at a time so a log is never sent twice
        self._upload_lock = threading.Lock()
        self._clock = clock

        self.current_log: Optional[Dict[str, Any]] = None
        self.start_ms: Optional[int] = None
        self.pause_ms: Optional[int] = None
        self.total_paused_ms: int = 0
        self.frozen_ms: int = 0

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ------------------------------------------------------------------
    # Restore after restart
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Restore an active time log and retry logs a previous run couldn't upload."""
        self._restore_active_log()
        if self._load_pending():
            self.upload_pending()

    def _restore_active_log(self) -> None:
        data = load_json(self.state_file, None)
        if not data:
            logger.info("No active session to restore")
            return

        status = data.get("status")
        try:
            if status not in (config.STATE_RUNNING, config.STATE_PAUSED):
                raise ValueError(f"invalid status {status!r}")
            self.current_log = data["log"]
            self.start_ms = int(data["start_ms"])
            self.total_paused_ms = int(data.get("total_paused_ms", 0))
            if status == config.STATE_PAUSED:
                self.pause_ms = int(data["pause_ms"])
                self.frozen_ms = int(data.get("frozen_ms", 0))
            else:
                self.pause_ms = None
                self.frozen_ms = 0
            self.current_log["status"] = status
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable active session: {e}")
            self._clear()
            remove_file(self.state_file)
            return

        logger.info(f"Restored {status} session {self.current_log.get('local_id')} "
                    f"(manual: {self.current_log.get('is_manual')})")

    def _persist(self) -> None:
        if self.current_log is None:
            remove_file(self.state_file)
            return
        try:
            save_json(self.state_file, {
                "status": self.current_log["status"],
                "log": self.current_log,
                "start_ms": self.start_ms,
                "pause_ms": self.pause_ms,
                "total_paused_ms": self.total_paused_ms,
                "frozen_ms": self.frozen_ms,
            })
        except OSError as e:
            logger.error(f"Failed to persist active session: {e}")

    def _clear(self) -> None:
        self.current_log = None
        self.start_ms = None
        self.pause_ms = None
        self.total_paused_ms = 0
        self.frozen_ms = 0

    # ------------------------------------------------------------------
    # Session commands
    # ------------------------------------------------------------------

    async def start(self, task_id: Optional[int] = None,
                    manual_title: Optional[str] = None) -> SessionStatus:
        """
        Start a new time log.

        A task_id marks the session as a manual task whose title is
        manual_title; without one the session is auto-tracked and gets its
        title at stop time.
        """
        if self.current_log is not None:
            raise TrackerError("Time tracking already active. Stop current session first.")

        now_ms = self._now_ms()
        is_manual = task_id is not None
        self.current_log = {
            "local_id": str(uuid.uuid4()),
            "task_id": task_id,
            "task_local_id": str(uuid.uuid4()),
            "task_title": (manual_title or "") if is_manual else "",
            "is_manual": is_manual,
            "status": config.STATE_RUNNING,
        }
        self.start_ms = now_ms
        self.pause_ms = None
        self.total_paused_ms = 0
        self.frozen_ms = 0
        self._persist()

        logger.info(f"Time tracking started (manual: {is_manual}, task_id: {task_id}, "
                    f"task_local_id: {self.current_log['task_local_id']})")
        return self._status()

    async def pause(self) -> SessionStatus:
        if self.current_log is None or self.current_log["status"] != config.STATE_RUNNING:
            raise TrackerError("No running time tracking session to pause")

        self.pause_ms = self._now_ms()
        self.frozen_ms = max(0, self.pause_ms - self.start_ms - self.total_paused_ms)
        self.current_log["status"] = config.STATE_PAUSED
        self._persist()

        logger.info(f"Time tracking paused at {self.frozen_ms}ms")
        return self._status()

    async def resume(self) -> SessionStatus:
        if self.current_log is None or self.current_log["status"] != config.STATE_PAUSED:
            raise TrackerError("No paused time tracking session to resume")

        self.total_paused_ms += max(0, self._now_ms() - self.pause_ms)
        self.pause_ms = None
        self.frozen_ms = 0
        self.current_log["status"] = config.STATE_RUNNING
        self._persist()

        logger.info("Time tracking resumed")
        return self._status()

    async def stop(self, title: str) -> SessionStatus:
        """
        End the active time log with its final title.

        Returns:
            Status of the session that just ended (STOPPED, final durations).
        """
        if self.current_log is None:
            raise TrackerError("No active time tracking session")

        now_ms = self._now_ms()
        if self.current_log["status"] == config.STATE_PAUSED:
            self.total_paused_ms += max(0, now_ms - self.pause_ms)
            duration_ms = self.frozen_ms
        else:
            duration_ms = max(0, now_ms - self.start_ms - self.total_paused_ms)

        log = dict(self.current_log)
        log.update({
            "status": config.STATE_STOPPED,
            "task_title": title or "",
            "start_time": _iso(self.start_ms),
            "end_time": _iso(now_ms),
            "duration_ms": duration_ms,
            "paused_ms": self.total_paused_ms,
        })
        final_status = SessionStatus(
            is_tracking=False,
            state=SessionState.STOPPED,
            elapsed_ms=duration_ms,
            paused_ms=self.total_paused_ms,
            binding=self._binding(log),
        )

        self._clear()
        self._persist()
        self.daily.add_completed_session(duration_ms)
        logger.info(f"Time tracking stopped (duration: {duration_ms}ms, title: {log['task_title']!r})")

        self._queue_for_upload(log)
        await self.sync_pending()
        return final_status

    async def get_status(self) -> SessionStatus:
        return self._status()

    async def get_today_total_duration(self) -> int:
        return self.daily.get_completed_today_ms()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _binding(log: Dict[str, Any]) -> TaskBinding:
        return TaskBinding(
            title=log.get("task_title") or "",
            is_manual=bool(log.get("is_manual")),
            task_id=log.get("task_id"),
            task_local_id=log.get("task_local_id"),
        )

    def _status(self) -> SessionStatus:
        if self.current_log is None:
            return SessionStatus.stopped()

        now_ms = self._now_ms()
        if self.current_log["status"] == config.STATE_PAUSED:
            elapsed_ms = self.frozen_ms
            paused_ms = self.total_paused_ms + max(0, now_ms - self.pause_ms)
            state = SessionState.PAUSED
        else:
            elapsed_ms = max(0, now_ms - self.start_ms - self.total_paused_ms)
            paused_ms = self.total_paused_ms
            state = SessionState.RUNNING

        return SessionStatus(
            is_tracking=True,
            state=state,
            elapsed_ms=elapsed_ms,
            paused_ms=paused_ms,
            binding=self._binding(self.current_log),
        )

    # ------------------------------------------------------------------
    # Upload queue
    # ------------------------------------------------------------------

    def _load_pending(self) -> List[Dict[str, Any]]:
        data = load_json(self.pending_file, [])
        if not isinstance(data, list):
            logger.warning(f"Ignoring malformed pending time logs in {self.pending_file}")
            return []
        return [log for log in data if isinstance(log, dict) and log.get("local_id")]

    def _queue_for_upload(self, log: Dict[str, Any]) -> None:
        if self._uploader is None:
            return
        with self._pending_lock:
            pending = self._load_pending()
            pending.append(log)
            try:
                save_json(self.pending_file, pending)
            except OSError as e:
                logger.error(f"Failed to queue time log {log['local_id']}: {e}")

    def upload_pending(self) -> int:
        """
        Try to upload every queued time log, oldest first.

        Logs the uploader accepts leave the queue; the rest stay for the
        next attempt. Blocking, so async callers go through sync_pending().

        Returns:
            Number of logs uploaded.
        """
        if self._uploader is None:
            return 0
        with self._upload_lock:
            return self._upload_pass()

    def _upload_pass(self) -> int:
        with self._pending_lock:
            pending = self._load_pending()
        if not pending:
            return 0

        uploaded_ids = set()
        for log in pending:
            try:
                accepted = self._uploader(log)
            except Exception as e:
                logger.error(f"Time log upload failed: {e}")
                break
            if accepted:
                uploaded_ids.add(log["local_id"])
            else:
                logger.warning(f"Time log {log['local_id']} not uploaded; will retry")

        if not uploaded_ids:
            return 0

        with self._pending_lock:
            # Logs queued while uploading are kept
            remaining = [log for log in self._load_pending()
                         if log["local_id"] not in uploaded_ids]
            try:
                if remaining:
                    save_json(self.pending_file, remaining)
                else:
                    remove_file(self.pending_file)
            except OSError as e:
                logger.error(f"Failed to update pending time logs: {e}")

        logger.info(f"Uploaded {len(uploaded_ids)} time log(s), {len(remaining)} pending")
        return len(uploaded_ids)

    async def sync_pending(self) -> int:
        """Upload queued time logs without blocking the event loop."""
        return await asyncio.to_thread(self.upload_pending)

    @property
    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._load_pending())

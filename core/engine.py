"""
SessionEngine - the session state machine behind the ShiftLog UI.

Owns the client side of one tracked work session: which commands are
allowed in which state, the task the session is bound to, the screenshot
counters and the "tracked today" total. The engine never mutates session
state optimistically. Every command goes to the session service and is
followed by a fresh status read; display state is always re-derived from
the last status that was applied.

This module has ZERO UI dependencies. A UI calls engine methods and
receives updates via callbacks.

Callbacks:
    on_status_change(status: str, text: str)
    on_error(error_type: str, message: str)

Known race: pollers and commands write the same status cell without
request ordering. A status read that started before a stop() can land
after it and briefly show the old state; the next 1 s poll corrects it.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import config
from core.poller import StatusPoller
from sync.contracts import (
    ConfigServiceProtocol,
    DailyDurationServiceProtocol,
    LocalScreenshotStoreProtocol,
    RemoteScreenshotCountProtocol,
    SessionServiceProtocol,
    TaskListServiceProtocol,
    TimeLogSyncProtocol,
)
from tracking.screenshots import ScreenshotReconciler
from tracking.session import SessionState, SessionStatus, TrackerPhase
from tracking.tasks import (
    Task,
    find_task,
    resolve_start_binding,
    restore_selection,
    selectable_tasks,
    start_arguments,
)
from tracking.time_format import (
    daily_progress,
    format_hms,
    format_hours_minutes,
    total_today_ms,
)

logger = logging.getLogger(__name__)

_STATUS_TEXT = {
    TrackerPhase.IDLE: "Ready to Track",
    TrackerPhase.RUNNING: "Tracking Active",
    TrackerPhase.PAUSED: "Paused",
    TrackerPhase.PAUSED_FOR_SAVE: "Saving Session",
}


def _ok() -> Dict:
    return {"success": True, "error": None, "error_type": None}


def _invalid(message: str) -> Dict:
    return {"success": False, "error": message, "error_type": "invalid_transition"}


class SessionEngine:
    """
    Client-side session state machine.

    Handles:
    - Transition guards (stopped -> running <-> paused -> stopped)
    - Start/pause/resume/stop against the session service
    - Task selection and binding
    - Screenshot count reconciliation
    - Today's total duration
    - Polling lifecycle (mount / teardown)

    Session commands return {"success": bool, "error": str | None,
    "error_type": str | None}. Commands that aren't valid in the current
    state are no-ops that never reach the session service.
    """

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def __init__(self, session_service: SessionServiceProtocol,
                 task_service: TaskListServiceProtocol,
                 local_store: LocalScreenshotStoreProtocol,
                 remote_counts: RemoteScreenshotCountProtocol,
                 duration_service: DailyDurationServiceProtocol,
                 config_service: ConfigServiceProtocol,
                 log_sync: Optional[TimeLogSyncProtocol] = None,
                 clock: Callable[[], datetime] = datetime.now) -> None:
        """
        Args:
            session_service: start/pause/resume/stop/get_status.
            task_service: get_all() -> list of Task.
            local_store: Local screenshot store, get_all().
            remote_counts: Remote screenshot count, get_today_count().
            duration_service: get_today_total_duration() in ms.
            config_service: get() -> settings dict, read at mount.
            log_sync: Uploads queued time logs, sync_pending() (optional).
            clock: Returns local "now" (injectable for tests).
        """
        self.session_service = session_service
        self.task_service = task_service
        self.duration_service = duration_service
        self.config_service = config_service
        self.log_sync = log_sync
        self._clock = clock
        self.reconciler = ScreenshotReconciler(local_store, remote_counts, now=clock)

        # Last applied status (authoritative for all display state)
        self.status: SessionStatus = SessionStatus.stopped()

        # Task selection
        self.tasks: List[Task] = []
        self.selected_task: Optional[Task] = None
        self.current_task_title: str = config.DEFAULT_TASK_TITLE

        # Advisory values
        self.completed_today_ms: int = 0
        self.app_config: Dict[str, Any] = {
            "screenshot_interval_ms": config.SCREENSHOT_INTERVAL_MS,
            "sync_interval_ms": config.SYNC_INTERVAL_MS,
        }

        # Paused while the stop-title prompt is open
        self.paused_for_save: bool = False

        # True while a command is in flight (disables the matching control)
        self.is_busy: bool = False

        # Cleared on teardown; late results are discarded instead of applied
        self.is_mounted: bool = True
        self.poller: Optional[StatusPoller] = None

        # ---- Callbacks (set by the UI) ----
        self.on_status_change: Optional[Callable[[str, str], None]] = None
        self.on_error: Optional[Callable[[str, str], None]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def mount(self) -> None:
        """Load initial state and start the pollers."""
        self.is_mounted = True
        await self.load_config()
        await self.load_status()
        await self.load_tasks()
        await self.refresh_server_count()
        await self.load_today_total_duration()
        await self.refresh_local_count()
        if not self.is_mounted:
            logger.debug("Torn down while mounting; pollers not started")
            return

        self.poller = StatusPoller(self, sync_interval=self.sync_interval_seconds)
        self.poller.start()
        logger.info("Session engine mounted")

    async def teardown(self) -> None:
        """Stop polling and stop applying results. Call before app quit."""
        self.is_mounted = False
        if self.poller is not None:
            await self.poller.stop()
            self.poller = None
        logger.info("Session engine torn down")

    # ------------------------------------------------------------------
    # Reads (advisory failures are logged, never surfaced)
    # ------------------------------------------------------------------

    async def load_status(self) -> Optional[SessionStatus]:
        """
        Read and apply the session status.

        Returns:
            The status read, or None if the read failed or arrived after teardown.
        """
        try:
            status = await self.session_service.get_status()
        except Exception as e:
            logger.warning(f"Error loading status: {e}")
            return None
        if not self.is_mounted:
            logger.debug("Discarding status read after teardown")
            return None
        self._apply_status(status)
        return status

    async def load_tasks(self) -> None:
        """Refresh the task list; keeps the last list on failure."""
        try:
            tasks = await self.task_service.get_all()
        except Exception as e:
            logger.warning(f"Error loading tasks: {e}")
            return
        if self.is_mounted:
            self.tasks = list(tasks)

    async def load_config(self) -> None:
        try:
            settings = await self.config_service.get()
        except Exception as e:
            logger.warning(f"Error loading config, using defaults: {e}")
            return
        if self.is_mounted and settings:
            self.app_config.update(settings)

    async def load_today_total_duration(self) -> None:
        """Refresh completed_today_ms; keeps the last known value on failure."""
        try:
            completed = await self.duration_service.get_today_total_duration()
        except Exception as e:
            logger.warning(f"Error loading today's total duration: {e}")
            return
        if self.is_mounted:
            self.completed_today_ms = max(0, int(completed))

    async def refresh_local_count(self) -> None:
        """
        Re-sample the local screenshot count.

        On a day rollover while idle, the server count is re-fixed too so
        the idle display shows the new day. Mid-session the baseline waits
        for the next start.
        """
        count = await self.reconciler.fetch_local_count()
        if not self.is_mounted:
            return
        rolled_over = self.reconciler.record_local_count(count)
        if rolled_over and not self.status.is_active:
            await self.refresh_server_count()

    async def refresh_server_count(self) -> None:
        """Re-fix today's server screenshot count (idle only)."""
        count = await self.reconciler.fetch_server_count()
        if self.is_mounted:
            self.reconciler.server_count_at_start = count

    async def sync_time_logs(self) -> int:
        """Upload time logs that couldn't be uploaded when they were stopped."""
        if self.log_sync is None:
            return 0
        try:
            uploaded = await self.log_sync.sync_pending()
        except Exception as e:
            logger.warning(f"Error syncing time logs: {e}")
            return 0
        if uploaded:
            logger.info(f"Synced {uploaded} pending time log(s)")
        return uploaded

    # ------------------------------------------------------------------
    # Task selection
    # ------------------------------------------------------------------

    def select_task(self, task_id: Optional[int]) -> Dict:
        """
        Choose the manual task the next session binds to (None clears it).

        Only allowed while stopped.
        """
        if self.status.is_active:
            return _invalid("Task can only be changed while stopped")
        if task_id is None:
            self.selected_task = None
            self.current_task_title = config.DEFAULT_TASK_TITLE
            return _ok()

        task = find_task(selectable_tasks(self.tasks), task_id)
        if task is None:
            return {"success": False, "error": f"Task {task_id} is not available",
                    "error_type": "unknown_task"}
        self.selected_task = task
        self.current_task_title = task.title
        return _ok()

    # ------------------------------------------------------------------
    # Session commands
    # ------------------------------------------------------------------

    async def start(self, task_id: Optional[int] = None) -> Dict:
        """
        Start a session bound to task_id, or to the current selection.

        Screenshot baselines are sampled before the remote start and only
        committed after it succeeds, so a failed start changes nothing.
        """
        if self.status.state != SessionState.STOPPED:
            return _invalid("Session already running")

        self.is_busy = True
        try:
            server_count = await self.reconciler.fetch_server_count()
            local_count = await self.reconciler.fetch_local_count()

            if task_id is None:
                task = self.selected_task
            else:
                task = find_task(selectable_tasks(self.tasks), task_id)
                if task is None:
                    logger.warning(f"Task {task_id} not available; starting auto-track session")
            binding = resolve_start_binding(task)
            remote_task_id, manual_title = start_arguments(binding)

            try:
                await self.session_service.start(remote_task_id, manual_title)
            except Exception as e:
                return self._operational_failure("start_failed", e, "Failed to start tracking")

            if not self.is_mounted:
                logger.debug("Discarding start result after teardown")
                return _ok()

            self.reconciler.begin_session(server_count, local_count)
            self.selected_task = task if binding.is_manual else None
            self.current_task_title = binding.title
            logger.info(f"Session started (manual: {binding.is_manual}, task: {binding.title!r})")

            await self.load_status()
            await self.load_tasks()
            return _ok()
        finally:
            self.is_busy = False

    async def pause(self, surface_errors: bool = True) -> Dict:
        """
        Pause a running session.

        Args:
            surface_errors: Report failures through on_error. The stop flow
                turns this off for its own pause-before-prompt step.
        """
        if self.status.state != SessionState.RUNNING:
            return _invalid("No running session to pause")

        self.is_busy = True
        try:
            try:
                await self.session_service.pause()
            except Exception as e:
                return self._operational_failure("pause_failed", e, "Failed to pause tracking",
                                                 surface=surface_errors)
            await self.load_status()
            return _ok()
        finally:
            self.is_busy = False

    async def resume(self) -> Dict:
        if self.status.state != SessionState.PAUSED:
            return _invalid("No paused session to resume")

        self.is_busy = True
        try:
            try:
                await self.session_service.resume()
            except Exception as e:
                return self._operational_failure("resume_failed", e, "Failed to resume tracking")
            await self.load_status()
            return _ok()
        finally:
            self.is_busy = False

    async def stop(self, title: str) -> Dict:
        """
        Stop the session with its final title.

        On success the session-scoped counters and the task selection are
        cleared so the next start begins clean. On failure nothing changes
        and the session stays running or paused.
        """
        if not self.status.is_active:
            return _invalid("No active session to stop")

        self.is_busy = True
        try:
            try:
                await self.session_service.stop(title)
            except Exception as e:
                return self._operational_failure("stop_failed", e, "Failed to stop tracking")

            if not self.is_mounted:
                logger.debug("Discarding stop result after teardown")
                return _ok()

            self.reconciler.reset()
            self.selected_task = None
            self.current_task_title = config.DEFAULT_TASK_TITLE
            logger.info(f"Session stopped: {title!r}")

            await self.load_status()
            await self.load_tasks()
            await self.load_today_total_duration()
            return _ok()
        finally:
            self.is_busy = False

    # ------------------------------------------------------------------
    # Save prompt sub-state
    # ------------------------------------------------------------------

    def enter_save_prompt(self) -> None:
        previous_phase = self.phase
        self.paused_for_save = True
        phase = self.phase
        if phase != previous_phase:
            self._notify_status_change(phase.value, _STATUS_TEXT[phase])

    def exit_save_prompt(self) -> None:
        previous_phase = self.phase
        self.paused_for_save = False
        phase = self.phase
        if phase != previous_phase:
            self._notify_status_change(phase.value, _STATUS_TEXT[phase])

    # ------------------------------------------------------------------
    # Derived display values
    # ------------------------------------------------------------------

    @property
    def phase(self) -> TrackerPhase:
        if not self.status.is_active:
            return TrackerPhase.IDLE
        if self.paused_for_save:
            return TrackerPhase.PAUSED_FOR_SAVE
        if self.status.state == SessionState.PAUSED:
            return TrackerPhase.PAUSED
        return TrackerPhase.RUNNING

    @property
    def total_today_ms(self) -> int:
        return total_today_ms(self.completed_today_ms, self.status)

    @property
    def screenshot_count(self) -> int:
        return self.reconciler.display_total

    @property
    def estimated_screenshots(self) -> int:
        interval = int(self.app_config.get("screenshot_interval_ms") or config.SCREENSHOT_INTERVAL_MS)
        return ScreenshotReconciler.estimate_from_interval(self.status, interval)

    @property
    def sync_interval_seconds(self) -> float:
        interval = int(self.app_config.get("sync_interval_ms") or config.SYNC_INTERVAL_MS)
        return max(1, interval) / 1000

    @property
    def available_tasks(self) -> List[Task]:
        return selectable_tasks(self.tasks)

    def get_display(self) -> Dict[str, Any]:
        """Everything the tracker card shows, already formatted."""
        phase = self.phase
        return {
            "phase": phase.value,
            "title": _STATUS_TEXT[phase],
            "task": self.current_task_title,
            "elapsed": format_hms(self.status.elapsed_ms),
            "paused": format_hms(self.status.paused_ms) if self.status.paused_ms > 0 else None,
            "today": format_hours_minutes(self.total_today_ms),
            "progress": round(daily_progress(self.total_today_ms), 1),
            "screenshots": self.screenshot_count,
            "estimated_screenshots": self.estimated_screenshots,
            "busy": self.is_busy,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply_status(self, status: SessionStatus) -> None:
        """Make status the authoritative one and re-derive selection from it."""
        previous_phase = self.phase
        self.status = status

        if status.is_active:
            restored = restore_selection(status, self.tasks)
            if restored is not None:
                if self.selected_task is None or self.selected_task.id != restored.id:
                    self.selected_task = restored
                self.current_task_title = restored.title
            elif status.binding is not None and not status.binding.is_manual and status.binding.title:
                self.current_task_title = status.binding.title

        phase = self.phase
        if phase != previous_phase:
            self._notify_status_change(phase.value, _STATUS_TEXT[phase])

    def _operational_failure(self, error_type: str, error: Exception, fallback: str,
                             surface: bool = True) -> Dict:
        message = str(error) or fallback
        if surface:
            logger.error(f"{fallback}: {message}")
            self._notify_error(error_type, message)
        else:
            logger.warning(f"{fallback}: {message}")
        return {"success": False, "error": message, "error_type": error_type}

    def _notify_status_change(self, status: str, text: str) -> None:
        if self.on_status_change:
            try:
                self.on_status_change(status, text)
            except Exception as e:
                logger.debug(f"on_status_change callback error: {e}")

    def _notify_error(self, error_type: str, message: str) -> None:
        if self.on_error:
            try:
                self.on_error(error_type, message)
            except Exception as e:
                logger.debug(f"on_error callback error: {e}")

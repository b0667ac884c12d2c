"""
Tests for core/engine.py: verifies the SessionEngine works
independently of any UI framework.
"""

import shutil
import sys
import tempfile
import unittest
import logging
from datetime import date, datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

import config
from core.engine import SessionEngine
from tracking.daily_stats import DailyDurationTracker
from tracking.session import SessionState, SessionStatus, TaskBinding, TrackerPhase
from tracking.tasks import Task
from tracking.time_tracker import TimeTrackerService, TrackerError

logger = logging.getLogger(__name__)

TODAY = datetime(2024, 3, 2, 10, 0)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeScreenshotStore:
    """Local store holding capture records in memory."""

    def __init__(self):
        self.records = []

    async def get_all(self):
        return list(self.records)

    def capture(self, count: int = 1):
        for _ in range(count):
            self.records.append({"captured_at": TODAY.isoformat()})


def _running(binding=None, elapsed_ms=1000):
    return SessionStatus(is_tracking=True, state=SessionState.RUNNING,
                         elapsed_ms=elapsed_ms, binding=binding)


class EngineTestCase(unittest.IsolatedAsyncioTestCase):
    """Engine wired to a real TimeTrackerService on a fake clock."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.clock = FakeClock()
        self.daily = DailyDurationTracker(data_file=self.temp_dir / "daily.json",
                                          today=lambda: TODAY.date())
        self.tracker = TimeTrackerService(daily_tracker=self.daily,
                                          state_file=self.temp_dir / "active.json",
                                          clock=self.clock)
        self.tasks = AsyncMock()
        self.tasks.get_all.return_value = [
            Task(7, "Fix login", is_manual=True, status="pending"),
            Task(8, "Old auto session", is_manual=False),
        ]
        self.screenshots = FakeScreenshotStore()
        self.remote_counts = AsyncMock()
        self.remote_counts.get_today_count.return_value = {"count": 7}
        self.config_service = AsyncMock()
        self.config_service.get.return_value = {"screenshot_interval_ms": 60000}

        self.engine = self._engine(self.tracker)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _engine(self, session_service) -> SessionEngine:
        engine = SessionEngine(
            session_service=session_service,
            task_service=self.tasks,
            local_store=self.screenshots,
            remote_counts=self.remote_counts,
            duration_service=self.tracker,
            config_service=self.config_service,
            clock=lambda: TODAY,
        )
        engine.on_status_change = MagicMock()
        engine.on_error = MagicMock()
        return engine

    def _mock_session(self, status: SessionStatus) -> AsyncMock:
        session = AsyncMock()
        session.get_status.return_value = status
        return session


class TestSessionEngineInit(EngineTestCase):
    """Test engine initialisation and default state."""

    def test_init_defaults(self):
        """Engine initialises idle with sane defaults."""
        engine = self._engine(self.tracker)
        self.assertEqual(engine.phase, TrackerPhase.IDLE)
        self.assertEqual(engine.status.state, SessionState.STOPPED)
        self.assertEqual(engine.current_task_title, config.DEFAULT_TASK_TITLE)
        self.assertIsNone(engine.selected_task)
        self.assertEqual(engine.screenshot_count, 0)
        self.assertEqual(engine.total_today_ms, 0)
        self.assertIsNone(engine.poller)

    def test_get_display_idle(self):
        display = self.engine.get_display()
        self.assertEqual(display["phase"], "idle")
        self.assertEqual(display["title"], "Ready to Track")
        self.assertEqual(display["elapsed"], "00:00:00")
        self.assertIsNone(display["paused"])
        self.assertEqual(display["today"], "0m")


class TestInvalidTransitions(EngineTestCase):
    """Commands in the wrong state never reach the session service."""

    async def test_pause_resume_stop_while_stopped(self):
        session = self._mock_session(SessionStatus.stopped())
        engine = self._engine(session)

        for result in (await engine.pause(), await engine.resume(), await engine.stop("x")):
            self.assertFalse(result["success"])
            self.assertEqual(result["error_type"], "invalid_transition")

        session.pause.assert_not_awaited()
        session.resume.assert_not_awaited()
        session.stop.assert_not_awaited()
        engine.on_error.assert_not_called()

    async def test_start_while_running(self):
        session = self._mock_session(_running())
        engine = self._engine(session)
        await engine.load_status()

        result = await engine.start()
        self.assertEqual(result["error_type"], "invalid_transition")
        session.start.assert_not_awaited()

    async def test_resume_while_running(self):
        session = self._mock_session(_running())
        engine = self._engine(session)
        await engine.load_status()

        result = await engine.resume()
        self.assertEqual(result["error_type"], "invalid_transition")
        session.resume.assert_not_awaited()


class TestStart(EngineTestCase):
    """Test start() binding and screenshot baselines."""

    async def test_start_auto_track(self):
        """Without a selection the session is auto-tracked as General Work."""
        self.screenshots.capture(2)
        result = await self.engine.start()

        self.assertTrue(result["success"])
        self.assertEqual(self.engine.phase, TrackerPhase.RUNNING)
        self.assertEqual(self.engine.current_task_title, config.DEFAULT_TASK_TITLE)
        self.assertIsNone(self.engine.selected_task)
        self.assertFalse(self.tracker.current_log["is_manual"])
        self.assertEqual(self.engine.reconciler.server_count_at_start, 7)
        self.assertEqual(self.engine.reconciler.local_baseline_at_start, 2)
        self.assertEqual(len(self.engine.tasks), 2)
        self.engine.on_status_change.assert_called_with("running", "Tracking Active")

    async def test_start_selected_manual_task(self):
        await self.engine.load_tasks()
        self.assertTrue(self.engine.select_task(7)["success"])

        result = await self.engine.start()
        self.assertTrue(result["success"])
        self.assertEqual(self.tracker.current_log["task_id"], 7)
        self.assertEqual(self.tracker.current_log["task_title"], "Fix login")
        self.assertEqual(self.engine.selected_task.id, 7)
        self.assertEqual(self.engine.current_task_title, "Fix login")

    async def test_start_with_task_id(self):
        await self.engine.load_tasks()
        await self.engine.start(task_id=7)
        self.assertTrue(self.tracker.current_log["is_manual"])

    async def test_start_with_unknown_task_auto_tracks(self):
        with self.assertLogs("core.engine", level="WARNING"):
            result = await self.engine.start(task_id=99)
        self.assertTrue(result["success"])
        self.assertFalse(self.tracker.current_log["is_manual"])

    async def test_start_with_finished_task_auto_tracks(self):
        """Only selectable tasks bind by id; a finished or auto task falls back to auto-track."""
        self.tasks.get_all.return_value = [
            Task(7, "Fix login", is_manual=True, status="pending"),
            Task(9, "Shipped feature", is_manual=True, status="done"),
        ]
        await self.engine.load_tasks()
        with self.assertLogs("core.engine", level="WARNING"):
            result = await self.engine.start(task_id=9)
        self.assertTrue(result["success"])
        self.assertFalse(self.tracker.current_log["is_manual"])
        self.assertIsNone(self.tracker.current_log["task_id"])
        self.assertIsNone(self.engine.selected_task)
        self.assertEqual(self.engine.current_task_title, config.DEFAULT_TASK_TITLE)

    async def test_start_failure_changes_nothing(self):
        """A rejected start surfaces the message and leaves baselines alone."""
        session = self._mock_session(SessionStatus.stopped())
        session.start.side_effect = TrackerError("Server unavailable")
        engine = self._engine(session)
        self.screenshots.capture(3)

        result = await engine.start()

        self.assertFalse(result["success"])
        self.assertEqual(result["error_type"], "start_failed")
        self.assertEqual(result["error"], "Server unavailable")
        engine.on_error.assert_called_once_with("start_failed", "Server unavailable")
        self.assertEqual(engine.reconciler.server_count_at_start, 0)
        self.assertEqual(engine.reconciler.local_baseline_at_start, 0)
        self.assertEqual(engine.phase, TrackerPhase.IDLE)
        self.assertFalse(engine.is_busy)

    async def test_remote_count_failure_does_not_block_start(self):
        self.remote_counts.get_today_count.side_effect = ConnectionError("offline")
        result = await self.engine.start()
        self.assertTrue(result["success"])
        self.assertEqual(self.engine.reconciler.server_count_at_start, 0)


class TestPauseResume(EngineTestCase):
    """Test pause() and resume()."""

    async def test_pause_and_resume(self):
        await self.engine.start()
        self.clock.advance(60)

        self.assertTrue((await self.engine.pause())["success"])
        self.assertEqual(self.engine.phase, TrackerPhase.PAUSED)
        self.engine.on_status_change.assert_called_with("paused", "Paused")

        self.clock.advance(30)
        await self.engine.load_status()
        self.assertEqual(self.engine.status.elapsed_ms, 60000)
        self.assertEqual(self.engine.get_display()["paused"], "00:00:30")

        self.assertTrue((await self.engine.resume())["success"])
        self.assertEqual(self.engine.phase, TrackerPhase.RUNNING)

    async def test_pause_failure_is_surfaced(self):
        session = self._mock_session(_running())
        session.pause.side_effect = TrackerError("Network down")
        engine = self._engine(session)
        await engine.load_status()

        result = await engine.pause()
        self.assertEqual(result["error_type"], "pause_failed")
        engine.on_error.assert_called_once_with("pause_failed", "Network down")
        self.assertEqual(engine.phase, TrackerPhase.RUNNING)

    async def test_pause_failure_can_be_quiet(self):
        """surface_errors=False logs instead of calling on_error."""
        session = self._mock_session(_running())
        session.pause.side_effect = TrackerError("Network down")
        engine = self._engine(session)
        await engine.load_status()

        with self.assertLogs("core.engine", level="WARNING"):
            result = await engine.pause(surface_errors=False)
        self.assertFalse(result["success"])
        engine.on_error.assert_not_called()

    async def test_resume_failure_is_surfaced(self):
        paused = SessionStatus(is_tracking=True, state=SessionState.PAUSED, elapsed_ms=5000)
        session = self._mock_session(paused)
        session.resume.side_effect = TrackerError("")
        engine = self._engine(session)
        await engine.load_status()

        result = await engine.resume()
        self.assertEqual(result["error"], "Failed to resume tracking")
        engine.on_error.assert_called_once_with("resume_failed", "Failed to resume tracking")


class TestStop(EngineTestCase):
    """Test stop() and the state it clears."""

    async def test_stop_resets_session_state(self):
        """Successful stop clears counters and selection, keeps today's total."""
        await self.engine.load_tasks()
        self.engine.select_task(7)
        await self.engine.start()
        self.screenshots.capture(3)
        await self.engine.refresh_local_count()
        self.assertEqual(self.engine.screenshot_count, 10)
        self.clock.advance(600)

        result = await self.engine.stop("Fix login")

        self.assertTrue(result["success"])
        self.assertEqual(self.engine.phase, TrackerPhase.IDLE)
        self.assertIsNone(self.engine.selected_task)
        self.assertEqual(self.engine.current_task_title, config.DEFAULT_TASK_TITLE)
        self.assertEqual(self.engine.reconciler.local_baseline_at_start, 0)
        self.assertEqual(self.engine.reconciler.local_count_now, 0)
        self.assertEqual(self.engine.completed_today_ms, 600000)
        self.assertEqual(self.engine.total_today_ms, 600000)
        self.engine.on_status_change.assert_called_with("idle", "Ready to Track")

    async def test_stop_failure_keeps_session(self):
        """A failed stop leaves the session running and the selection intact."""
        binding = TaskBinding(title="Fix login", is_manual=True, task_id=7)
        session = self._mock_session(_running(binding))
        session.stop.side_effect = TrackerError("Network down")
        engine = self._engine(session)
        await engine.load_status()

        result = await engine.stop("Fix login")

        self.assertEqual(result["error_type"], "stop_failed")
        engine.on_error.assert_called_once_with("stop_failed", "Network down")
        self.assertEqual(engine.phase, TrackerPhase.RUNNING)
        self.assertEqual(engine.selected_task.id, 7)


class TestSelection(EngineTestCase):
    """Test select_task() and status-driven restoration."""

    async def test_select_only_while_stopped(self):
        await self.engine.load_tasks()
        await self.engine.start()
        result = self.engine.select_task(7)
        self.assertEqual(result["error_type"], "invalid_transition")

    async def test_select_unknown_or_auto_task(self):
        """Only selectable manual tasks can be chosen."""
        await self.engine.load_tasks()
        self.assertEqual(self.engine.select_task(8)["error_type"], "unknown_task")
        self.assertEqual(self.engine.select_task(42)["error_type"], "unknown_task")

    async def test_clear_selection(self):
        await self.engine.load_tasks()
        self.engine.select_task(7)
        self.assertTrue(self.engine.select_task(None)["success"])
        self.assertIsNone(self.engine.selected_task)
        self.assertEqual(self.engine.current_task_title, config.DEFAULT_TASK_TITLE)

    async def test_restore_manual_session_from_status(self):
        """A manual session started elsewhere is picked up by the next poll."""
        await self.tracker.start(task_id=12, manual_title="Write docs")
        await self.engine.load_status()
        self.assertEqual(self.engine.selected_task.id, 12)
        self.assertEqual(self.engine.current_task_title, "Write docs")
        self.assertEqual(self.engine.phase, TrackerPhase.RUNNING)


class TestAdvisoryReads(EngineTestCase):
    """Advisory read failures are logged and never surfaced."""

    async def test_task_list_failure_keeps_last_list(self):
        await self.engine.load_tasks()
        self.tasks.get_all.side_effect = ConnectionError("offline")
        with self.assertLogs("core.engine", level="WARNING"):
            await self.engine.load_tasks()
        self.assertEqual(len(self.engine.tasks), 2)
        self.engine.on_error.assert_not_called()

    async def test_duration_failure_keeps_last_value(self):
        duration = AsyncMock()
        duration.get_today_total_duration.side_effect = [5400000, ConnectionError("offline")]
        self.engine.duration_service = duration
        await self.engine.load_today_total_duration()
        await self.engine.load_today_total_duration()
        self.assertEqual(self.engine.completed_today_ms, 5400000)

    async def test_status_failure_keeps_last_status(self):
        session = self._mock_session(_running())
        engine = self._engine(session)
        await engine.load_status()
        session.get_status.side_effect = ConnectionError("offline")
        self.assertIsNone(await engine.load_status())
        self.assertEqual(engine.phase, TrackerPhase.RUNNING)

    async def test_total_today_includes_live_session(self):
        self.daily.add_completed_session(5400000)
        await self.engine.load_today_total_duration()
        await self.engine.start()
        self.clock.advance(600)
        await self.engine.load_status()
        self.assertEqual(self.engine.total_today_ms, 6000000)
        self.assertEqual(self.engine.get_display()["today"], "1h 40m")

    async def test_estimated_screenshots_use_config(self):
        await self.engine.load_config()
        await self.engine.start()
        self.clock.advance(300)
        await self.engine.load_status()
        self.assertEqual(self.engine.estimated_screenshots, 5)

    async def test_config_failure_keeps_defaults(self):
        self.config_service.get.side_effect = ConnectionError("offline")
        await self.engine.load_config()
        self.assertEqual(self.engine.app_config["screenshot_interval_ms"],
                         config.SCREENSHOT_INTERVAL_MS)

    async def test_callback_errors_are_swallowed(self):
        self.engine.on_status_change = MagicMock(side_effect=RuntimeError("UI gone"))
        result = await self.engine.start()
        self.assertTrue(result["success"])


class TestLifecycle(EngineTestCase):
    """Test mount() and teardown()."""

    async def test_mount_loads_and_starts_polling(self):
        self.screenshots.capture(2)
        await self.engine.mount()
        try:
            self.assertTrue(self.engine.poller.is_running)
            self.assertEqual(self.engine.app_config["screenshot_interval_ms"], 60000)
            self.assertEqual(len(self.engine.tasks), 2)
            self.assertEqual(self.engine.reconciler.server_count_at_start, 7)
            self.assertEqual(self.engine.reconciler.local_count_now, 2)
        finally:
            await self.engine.teardown()
        self.assertIsNone(self.engine.poller)
        self.assertFalse(self.engine.is_mounted)

    async def test_results_after_teardown_are_discarded(self):
        """Reads that resolve after teardown don't touch engine state."""
        await self.engine.teardown()
        await self.tracker.start()
        self.assertIsNone(await self.engine.load_status())
        self.assertEqual(self.engine.phase, TrackerPhase.IDLE)

    async def test_start_result_after_teardown_is_discarded(self):
        """A start that completes after teardown leaves baselines and selection alone."""
        session = self._mock_session(_running())
        engine = self._engine(session)
        self.screenshots.capture(2)

        async def start_then_quit(*args):
            await engine.teardown()
            return _running()

        session.start.side_effect = start_then_quit
        result = await engine.start()

        self.assertTrue(result["success"])
        self.assertEqual(engine.reconciler.server_count_at_start, 0)
        self.assertEqual(engine.reconciler.local_baseline_at_start, 0)
        self.assertEqual(engine.phase, TrackerPhase.IDLE)
        session.get_status.assert_not_awaited()
        self.assertFalse(engine.is_busy)

    async def test_stop_result_after_teardown_is_discarded(self):
        session = self._mock_session(_running())
        engine = self._engine(session)
        await engine.load_status()
        engine.reconciler.begin_session(5, 1)

        async def stop_then_quit(*args):
            await engine.teardown()
            return SessionStatus.stopped()

        session.stop.side_effect = stop_then_quit
        result = await engine.stop("Late")

        self.assertTrue(result["success"])
        self.assertEqual(engine.reconciler.local_baseline_at_start, 1)
        self.assertEqual(engine.phase, TrackerPhase.RUNNING)

    async def test_teardown_during_mount_skips_server_count_and_pollers(self):
        """mount() stops writing once teardown has run."""
        engine = self.engine

        async def count_then_quit():
            await engine.teardown()
            return {"count": 7}

        self.remote_counts.get_today_count.side_effect = count_then_quit
        await engine.mount()

        self.assertEqual(engine.reconciler.server_count_at_start, 0)
        self.assertIsNone(engine.poller)
        self.assertFalse(engine.is_mounted)

    async def test_mount_uses_configured_sync_interval(self):
        self.config_service.get.return_value = {"sync_interval_ms": 30000}
        await self.engine.mount()
        try:
            self.assertEqual(self.engine.poller.sync_interval, 30)
        finally:
            await self.engine.teardown()

    async def test_idle_day_rollover_refreshes_server_count(self):
        clock = {"now": datetime(2024, 3, 2, 23, 59)}
        engine = SessionEngine(self.tracker, self.tasks, self.screenshots, self.remote_counts,
                               self.tracker, self.config_service, clock=lambda: clock["now"])
        await engine.refresh_local_count()
        self.remote_counts.get_today_count.return_value = {"count": 0}

        clock["now"] = datetime(2024, 3, 3, 0, 0, 3)
        await engine.refresh_local_count()
        self.assertEqual(engine.reconciler.server_count_at_start, 0)
        self.remote_counts.get_today_count.assert_awaited_once()


class TestTimeLogSync(EngineTestCase):
    """Test the periodic upload of queued time logs."""

    def _engine_with_sync(self, log_sync, session_service=None) -> SessionEngine:
        return SessionEngine(session_service or self.tracker, self.tasks, self.screenshots,
                             self.remote_counts, self.tracker, self.config_service,
                             log_sync=log_sync,
                             clock=lambda: TODAY)

    async def test_sync_delegates_to_log_sync(self):
        log_sync = AsyncMock()
        log_sync.sync_pending.return_value = 2
        engine = self._engine_with_sync(log_sync)
        self.assertEqual(await engine.sync_time_logs(), 2)
        log_sync.sync_pending.assert_awaited_once()

    async def test_sync_without_log_sync_is_noop(self):
        self.assertEqual(await self.engine.sync_time_logs(), 0)

    async def test_sync_failure_is_logged_not_raised(self):
        log_sync = AsyncMock()
        log_sync.sync_pending.side_effect = ConnectionError("offline")
        engine = self._engine_with_sync(log_sync)
        with self.assertLogs("core.engine", level="WARNING"):
            self.assertEqual(await engine.sync_time_logs(), 0)

    async def test_offline_log_is_uploaded_by_sync(self):
        """A log stopped while offline is uploaded by the next sync tick."""
        uploader = MagicMock(side_effect=[False, True])
        tracker = TimeTrackerService(daily_tracker=self.daily, uploader=uploader,
                                     state_file=self.temp_dir / "active.json",
                                     pending_file=self.temp_dir / "pending.json",
                                     clock=self.clock)
        engine = self._engine_with_sync(tracker, session_service=tracker)

        await engine.start()
        self.clock.advance(60)
        await engine.stop("Offline work")
        self.assertEqual(tracker.pending_count, 1)

        self.assertEqual(await engine.sync_time_logs(), 1)
        self.assertEqual(tracker.pending_count, 0)
        self.assertEqual(uploader.call_count, 2)


if __name__ == "__main__":
    unittest.main()

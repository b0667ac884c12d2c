"""
Interfaces of the services the session engine talks to.

All calls are coroutines. Any of them may raise; the engine decides
whether a failure is surfaced to the user (session commands) or logged
and replaced by a safe default (counts, durations, task list, config).
"""

from typing import Any, Dict, List, Optional, Protocol

from tracking.session import SessionStatus
from tracking.tasks import Task


class SessionServiceProtocol(Protocol):
    """Owns the session record. Implemented by TimeTrackerService."""

    async def start(self, task_id: Optional[int] = None,
                    manual_title: Optional[str] = None) -> SessionStatus:
        ...

    async def pause(self) -> SessionStatus:
        ...

    async def resume(self) -> SessionStatus:
        ...

    async def stop(self, title: str) -> SessionStatus:
        ...

    async def get_status(self) -> SessionStatus:
        ...


class TaskListServiceProtocol(Protocol):
    async def get_all(self) -> List[Task]:
        ...


class LocalScreenshotStoreProtocol(Protocol):
    async def get_all(self) -> List[Dict[str, Any]]:
        """Capture records, each with a "captured_at" ISO timestamp."""
        ...


class RemoteScreenshotCountProtocol(Protocol):
    async def get_today_count(self) -> Dict[str, int]:
        """Returns {"count": n} for screenshots the server holds for today."""
        ...


class DailyDurationServiceProtocol(Protocol):
    async def get_today_total_duration(self) -> int:
        """Milliseconds tracked in sessions completed earlier today."""
        ...


class ConfigServiceProtocol(Protocol):
    async def get(self) -> Dict[str, Any]:
        """Settings such as {"screenshot_interval_ms": 300000}."""
        ...


class TimeLogSyncProtocol(Protocol):
    async def sync_pending(self) -> int:
        """Upload queued time logs; returns how many were uploaded."""
        ...

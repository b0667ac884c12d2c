"""Session status value objects shared by the engine and the session service."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import config


class SessionState(Enum):
    """Lifecycle state of a time log as reported by the session service."""
    STOPPED = config.STATE_STOPPED
    RUNNING = config.STATE_RUNNING
    PAUSED = config.STATE_PAUSED


class TrackerPhase(Enum):
    """What the engine is showing the user."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    PAUSED_FOR_SAVE = "paused_for_save"  # Paused while the stop-title prompt is open


@dataclass(frozen=True)
class TaskBinding:
    """
    Task identity of a tracked session.

    Manual bindings point at a pre-created task and keep its title.
    Auto-track bindings have no server id until the session is synced,
    only a task_local_id.
    """

    title: str
    is_manual: bool = False
    task_id: Optional[int] = None
    task_local_id: Optional[str] = None


@dataclass(frozen=True)
class SessionStatus:
    """
    Snapshot of the current session as reported by get_status().

    When state is STOPPED, elapsed_ms and paused_ms describe the session
    that just ended; the next start resets them to 0.
    """

    is_tracking: bool = False
    state: SessionState = SessionState.STOPPED
    elapsed_ms: int = 0
    paused_ms: int = 0
    binding: Optional[TaskBinding] = None

    def __post_init__(self):
        if self.elapsed_ms < 0 or self.paused_ms < 0:
            raise ValueError(
                f"Session durations must be non-negative "
                f"(elapsed={self.elapsed_ms}, paused={self.paused_ms})"
            )

    @property
    def is_active(self) -> bool:
        """True while a session is running or paused."""
        return self.is_tracking and self.state != SessionState.STOPPED

    @classmethod
    def stopped(cls) -> "SessionStatus":
        """The zeroed status reported when no session exists."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Serialise for logging and the console UI."""
        return {
            "is_tracking": self.is_tracking,
            "state": self.state.value,
            "elapsed_ms": self.elapsed_ms,
            "paused_ms": self.paused_ms,
            "task_title": self.binding.title if self.binding else None,
            "is_manual": self.binding.is_manual if self.binding else False,
        }

"""
Core business logic package for ShiftLog.

Contains the headless SessionEngine, its background pollers and the
stop flow. Zero UI dependencies.
"""

from core.engine import SessionEngine
from core.poller import StatusPoller
from core.stop_flow import StopFlow

__all__ = ["SessionEngine", "StatusPoller", "StopFlow"]

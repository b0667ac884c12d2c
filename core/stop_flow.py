"""
Stop flow - turns the user's "stop" into a titled, saved session.

Manual-task sessions already have a title and stop immediately. Auto-track
sessions are paused while the user is asked for a title, then either
stopped with it (blank input gets a generated title) or, if the prompt is
cancelled, resumed. A session is never left paused because of the prompt.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from tracking.session import SessionState
from tracking.tasks import resolve_final_title, stop_binding

logger = logging.getLogger(__name__)

# Receives the suggested title, returns the user's input or None on cancel
TitlePrompt = Callable[[str], Awaitable[Optional[str]]]


class StopFlow:
    """Runs one stop request against a SessionEngine."""

    def __init__(self, engine, prompt: TitlePrompt,
                 clock: Callable[[], datetime] = datetime.now):
        self.engine = engine
        self._prompt = prompt
        self._clock = clock

    async def run(self) -> Dict:
        """
        Execute the stop flow.

        Returns:
            {"success": bool, "outcome": "stopped" | "cancelled" | "failed" | "noop",
             "title": str | None, "error": str | None}
        """
        engine = self.engine
        if not engine.status.is_active:
            return self._result(False, "noop", error="No active session to stop")

        is_manual, title = stop_binding(engine.selected_task, engine.status)
        if is_manual and title:
            result = await engine.stop(title)
            return self._stop_result(result, title)

        if engine.status.state == SessionState.RUNNING:
            paused = await engine.pause(surface_errors=False)
            if not paused["success"]:
                logger.warning(f"Could not pause before title prompt: {paused['error']}")

        engine.enter_save_prompt()
        try:
            user_input = await self._ask(engine.current_task_title)
            if user_input is None:
                await self._resume_after_cancel()
                return self._result(False, "cancelled")

            final_title = resolve_final_title(user_input, self._clock())
            result = await engine.stop(final_title)
            return self._stop_result(result, final_title)
        finally:
            engine.exit_save_prompt()

    async def _ask(self, suggested: str) -> Optional[str]:
        try:
            return await self._prompt(suggested)
        except Exception as e:
            logger.warning(f"Title prompt failed, treating as cancel: {e}")
            return None

    async def _resume_after_cancel(self) -> None:
        """Resume if the session is paused; the prompt is the only reason it would be."""
        engine = self.engine
        status = await engine.load_status() or engine.status
        if status.state != SessionState.PAUSED:
            return
        resumed = await engine.resume()
        if not resumed["success"]:
            logger.error(f"Failed to resume after cancelled stop: {resumed['error']}")

    def _stop_result(self, result: Dict, title: str) -> Dict:
        if result["success"]:
            return self._result(True, "stopped", title=title)
        # The engine already reported the failure; the session keeps going
        return self._result(False, "failed", title=title, error=result["error"])

    @staticmethod
    def _result(success: bool, outcome: str, title: Optional[str] = None,
                error: Optional[str] = None) -> Dict:
        return {"success": success, "outcome": outcome, "title": title, "error": error}

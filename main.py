#!/usr/bin/env python3
"""
ShiftLog - Main Entry Point

A desktop time tracker: start, pause, resume and stop work sessions bound
to manual tasks or auto-tracked, with today's total and screenshot counts
kept in sync with Supabase.

Usage:
    python main.py          # Interactive console
    python main.py --debug  # Same, with debug logging
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

import config
from core.engine import SessionEngine
from core.stop_flow import StopFlow
from sync.services import (
    SupabaseConfigService,
    SupabaseScreenshotCountService,
    SupabaseTaskListService,
)
from sync.supabase_client import ShiftLogSync
from tracking.daily_stats import DailyDurationTracker
from tracking.screenshot_store import LocalScreenshotStore
from tracking.time_tracker import TimeTrackerService

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)

# Suppress noisy third-party library logs (HTTP requests, etc.)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)

HELP_TEXT = """
Commands:
  start [task_id]     Start tracking (optionally bound to a manual task)
  pause               Pause the running session
  resume              Resume a paused session
  stop                Stop and save the session
  tasks               List tasks you can start
  select <id|none>    Choose the task for the next session
  status              Show the tracker card
  snap                Record a local screenshot capture
  login <email> <pw>  Sign in to sync with the cloud
  logout              Sign out
  help                Show this help
  quit                Exit (an active session is kept for next launch)
"""


async def _read_line(prompt: str) -> Optional[str]:
    """Read a line without blocking the event loop; None on EOF."""
    try:
        return await asyncio.to_thread(input, prompt)
    except EOFError:
        return None


async def ask_title(suggested: str) -> Optional[str]:
    """Stop-title prompt. An empty line uses a generated title, '-' cancels."""
    print(f"\nSession title (Enter for default, '-' to cancel) [{suggested}]")
    answer = await _read_line("title> ")
    if answer is None or answer.strip() == "-":
        return None
    return answer


class ShiftLogConsole:
    """
    Console front end for the session engine.
    """

    def __init__(self):
        self.sync = ShiftLogSync()
        self.screenshots = LocalScreenshotStore()
        self.tracker = TimeTrackerService(
            daily_tracker=DailyDurationTracker(),
            uploader=self.sync.upload_time_log,
        )
        self.engine = SessionEngine(
            session_service=self.tracker,
            task_service=SupabaseTaskListService(self.sync),
            local_store=self.screenshots,
            remote_counts=SupabaseScreenshotCountService(self.sync),
            duration_service=self.tracker,
            config_service=SupabaseConfigService(self.sync),
            log_sync=self.tracker,
        )
        self.engine.on_status_change = self._on_status_change
        self.engine.on_error = self._on_error
        self.running = False

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------

    def _on_status_change(self, status: str, text: str) -> None:
        print(f"\n[{text}]")

    def _on_error(self, error_type: str, message: str) -> None:
        print(f"\nError: {message}")

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def display_welcome(self) -> None:
        print("\n" + "=" * 60)
        print("ShiftLog - Time Tracker")
        print("=" * 60)
        if not self.sync.is_available():
            print("\nCloud sync disabled (set SUPABASE_URL and SUPABASE_ANON_KEY in .env)")
        elif self.sync.get_stored_email():
            print(f"\nSigned in as {self.sync.get_stored_email()}")
        print(HELP_TEXT)

    def display_status(self) -> None:
        card = self.engine.get_display()
        print("\n" + "-" * 40)
        print(f"  {card['title']}  -  {card['task']}")
        print(f"  Elapsed:      {card['elapsed']}")
        if card["paused"]:
            print(f"  Paused:       {card['paused']}")
        print(f"  Today:        {card['today']} ({card['progress']}% of daily target)")
        print(f"  Screenshots:  {card['screenshots']} (estimated {card['estimated_screenshots']})")
        print("-" * 40)

    def display_tasks(self) -> None:
        tasks = self.engine.available_tasks
        if not tasks:
            print("\nNo manual tasks available; sessions will be auto-tracked.")
            return
        selected = self.engine.selected_task
        print("\nTasks:")
        for task in tasks:
            marker = "*" if selected and selected.id == task.id else " "
            print(f"  {marker} {task.id:>5}  {task.title}")

    # ------------------------------------------------------------------
    # Command loop
    # ------------------------------------------------------------------

    async def handle(self, line: str) -> None:
        parts = line.split()
        if not parts:
            return
        command, args = parts[0].lower(), parts[1:]

        if command == "start":
            task_id = self._parse_task_id(args[0]) if args else None
            if args and task_id is None:
                return
            result = await self.engine.start(task_id)
        elif command == "pause":
            result = await self.engine.pause()
        elif command == "resume":
            result = await self.engine.resume()
        elif command == "stop":
            outcome = await StopFlow(self.engine, ask_title).run()
            if outcome["outcome"] == "stopped":
                print(f"\nSaved: {outcome['title']}")
            elif outcome["outcome"] == "cancelled":
                print("\nStop cancelled")
            elif outcome["outcome"] == "noop":
                print(f"\n{outcome['error']}")
            return
        elif command == "tasks":
            await self.engine.load_tasks()
            self.display_tasks()
            return
        elif command == "select":
            if not args:
                print("\nUsage: select <id|none>")
                return
            task_id = None if args[0].lower() == "none" else self._parse_task_id(args[0])
            if task_id is None and args[0].lower() != "none":
                return
            result = self.engine.select_task(task_id)
            if result["success"]:
                print(f"\nNext session: {self.engine.current_task_title}")
        elif command == "status":
            self.display_status()
            return
        elif command == "snap":
            record = self.screenshots.record_capture(
                time_log_id=(self.tracker.current_log or {}).get("local_id")
            )
            print(f"\nCapture recorded at {record['captured_at']}")
            return
        elif command == "login":
            if len(args) != 2:
                print("\nUsage: login <email> <password>")
                return
            login = await asyncio.to_thread(self.sync.login_with_email, args[0], args[1])
            print("\nSigned in" if login["success"] else f"\nLogin failed: {login['error']}")
            if login["success"]:
                await self.engine.load_tasks()
            return
        elif command == "logout":
            await asyncio.to_thread(self.sync.logout)
            print("\nSigned out")
            return
        elif command == "help":
            print(HELP_TEXT)
            return
        elif command in ("quit", "exit", "q"):
            self.running = False
            return
        else:
            print(f"\nUnknown command: {command} (type 'help')")
            return

        # Operational errors are already printed by on_error
        if not result["success"] and result["error_type"] in ("invalid_transition", "unknown_task"):
            print(f"\n{result['error']}")

    @staticmethod
    def _parse_task_id(raw: str) -> Optional[int]:
        try:
            return int(raw)
        except ValueError:
            print(f"\nNot a task id: {raw}")
            return None

    async def run(self) -> None:
        self.tracker.initialize()
        self.display_welcome()
        await self.engine.mount()
        self.running = True
        try:
            while self.running:
                line = await _read_line("shiftlog> ")
                if line is None:
                    break
                await self.handle(line)
        finally:
            await self.engine.teardown()
            print("\nGoodbye!")


def main():
    """
    Main entry point - parses arguments and runs the console.
    """
    parser = argparse.ArgumentParser(
        description="ShiftLog - Time Tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py           Interactive console
  python main.py --debug   Interactive console with debug logging
        """
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        asyncio.run(ShiftLogConsole().run())
    except KeyboardInterrupt:
        print("\n\nGoodbye!")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        print(f"\nFatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

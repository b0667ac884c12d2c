"""Task selection and task-title resolution for tracked sessions."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import config
from tracking.session import SessionStatus, TaskBinding

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Task:
    """A task as returned by the task list service."""

    id: int
    title: str
    is_manual: bool = False
    duration: Optional[int] = None  # Tracked seconds, if the server reports it
    status: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Build a Task from a task list row."""
        return cls(
            id=int(data["id"]),
            title=str(data.get("title") or ""),
            is_manual=bool(data.get("is_manual", False)),
            duration=data.get("duration"),
            status=data.get("status"),
        )


def selectable_tasks(tasks: Iterable[Task]) -> List[Task]:
    """
    Tasks the user may bind a new session to.

    Only manual tasks that haven't been started or finished are offered;
    auto-created tasks are the output of earlier sessions, not inputs.
    """
    return [
        task for task in tasks
        if task.is_manual and (task.status is None or task.status in config.SELECTABLE_TASK_STATUSES)
    ]


def find_task(tasks: Iterable[Task], task_id: Optional[int]) -> Optional[Task]:
    """Look up a task by id."""
    if task_id is None:
        return None
    for task in tasks:
        if task.id == task_id:
            return task
    return None


def resolve_start_binding(selected: Optional[Task]) -> TaskBinding:
    """
    Decide what a new session is bound to.

    A selected manual task binds by id and keeps its stored title. Anything
    else becomes an auto-track session titled "General Work" until the
    title is finalised at stop time.
    """
    if selected is not None and selected.is_manual:
        return TaskBinding(title=selected.title, is_manual=True, task_id=selected.id)

    if selected is not None:
        logger.warning(f"Task {selected.id} is not a manual task; starting an auto-track session")
    return TaskBinding(title=config.DEFAULT_TASK_TITLE, is_manual=False)


def start_arguments(binding: TaskBinding) -> Tuple[Optional[int], Optional[str]]:
    """Arguments for SessionService.start(task_id, manual_title)."""
    if binding.is_manual:
        return binding.task_id, binding.title
    return None, None


def stop_binding(selected: Optional[Task], status: SessionStatus) -> Tuple[bool, Optional[str]]:
    """
    Work out whether the running session is a manual task and its title.

    The local selection wins; the session service's binding covers sessions
    restored after a restart when nothing is selected locally.

    Returns:
        (is_manual, title) where title may be None if unknown.
    """
    binding = status.binding
    is_manual = bool(
        (selected is not None and selected.is_manual)
        or (binding is not None and binding.is_manual)
    )
    title = (selected.title if selected else None) or (binding.title if binding else None)
    return is_manual, title or None


def generate_default_title(now: datetime) -> str:
    """
    Title for an auto-track session saved without a name.

    Uses the stop moment, e.g. "Work Session - Mar 2, 2024 at 09:05 AM".
    """
    return f"Work Session - {now.strftime('%b')} {now.day}, {now.year} at {now.strftime('%I:%M %p')}"


def resolve_final_title(user_input: Optional[str], now: datetime) -> str:
    """Trimmed user input, or the generated default when it's blank."""
    title = (user_input or "").strip()
    return title or generate_default_title(now)


def restore_selection(status: SessionStatus, tasks: Iterable[Task]) -> Optional[Task]:
    """
    Recover the selected task for an active manual session.

    Used after a restart or when another control path started the session.
    Falls back to a placeholder built from the status binding when the task
    is no longer in the list.

    Returns:
        The task to select, or None if the session isn't a manual one.
    """
    binding = status.binding
    if not status.is_active or binding is None or not binding.is_manual or binding.task_id is None:
        return None

    task = find_task(tasks, binding.task_id)
    if task is not None:
        return task
    if binding.title:
        return Task(id=binding.task_id, title=binding.title, is_manual=True)
    return None

"""
Duration formatting and daily totals.

All durations are integer milliseconds as reported by the session service.
Nothing here recomputes elapsed time; these helpers only turn the reported
values into display strings and the "tracked today" total.

Negative durations are a programmer error and raise ValueError instead of
being clamped to zero.
"""

import re
from typing import Optional

import config
from tracking.session import SessionStatus

_MS_PER_SECOND = 1000
_MS_PER_MINUTE = 60 * _MS_PER_SECOND
_MS_PER_HOUR = 60 * _MS_PER_MINUTE

_UNIT_LABELS = {
    # style -> (hour singular, hour plural, min singular, min plural, sec singular, sec plural)
    "short": ("hr", "hrs", "min", "min", "sec", "sec"),
    "full": ("hour", "hours", "minute", "minutes", "second", "seconds"),
    "minimal": ("h", "h", "m", "m", "s", "s"),
}

_DURATION_PATTERN = re.compile(
    r"(\d+)\s*(hours|hour|hrs|hr|h|minutes|minute|mins|min|m|seconds|second|secs|sec|s)",
    re.IGNORECASE,
)


def _check_non_negative(ms: int) -> int:
    if ms < 0:
        raise ValueError(f"Duration must be non-negative, got {ms} ms")
    return int(ms)


def _split(ms: int):
    """Split milliseconds into whole (hours, minutes, seconds)."""
    total_seconds = _check_non_negative(ms) // _MS_PER_SECOND
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60
    return hours, minutes, seconds


def format_hms(ms: int) -> str:
    """
    Format milliseconds as a zero-padded HH:MM:SS timer.

    Examples:
        >>> format_hms(3665000)
        '01:01:05'
        >>> format_hms(65000)
        '00:01:05'
    """
    hours, minutes, seconds = _split(ms)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_hours_minutes(ms: int) -> str:
    """
    Format milliseconds as "Xh Ym", or "Ym" when under an hour.

    Examples:
        >>> format_hours_minutes(6000000)
        '1h 40m'
        >>> format_hours_minutes(600000)
        '10m'
    """
    hours, minutes, _ = _split(ms)
    return f"{hours}h {minutes}m" if hours > 0 else f"{minutes}m"


def format_compact(ms: int) -> str:
    """Format as H:MM when an hour or more has passed, otherwise M:SS."""
    hours, minutes, seconds = _split(ms)
    if hours > 0:
        return f"{hours}:{minutes:02d}"
    return f"{minutes}:{seconds:02d}"


def format_duration(ms: int, style: str = "short", max_units: int = 1) -> str:
    """
    Format milliseconds as a human-readable duration.

    Args:
        ms: Duration in milliseconds.
        style: "short" ("5 min"), "full" ("5 minutes") or "minimal" ("5m").
        max_units: Maximum number of non-zero units to show, largest first.

    Returns:
        Formatted string such as "1 hr 1 min" or "0 sec" for zero.

    Raises:
        ValueError: If ms is negative or style is unknown.
    """
    if style not in _UNIT_LABELS:
        raise ValueError(f"Unknown duration style: {style}")

    labels = _UNIT_LABELS[style]
    hours, minutes, seconds = _split(ms)
    separator = "" if style == "minimal" else " "

    parts = []
    for index, value in enumerate((hours, minutes, seconds)):
        if value <= 0:
            continue
        label = labels[index * 2] if value == 1 else labels[index * 2 + 1]
        parts.append(f"{value}{separator}{label}")
        if len(parts) >= max_units:
            break

    if not parts:
        return f"0{separator}{labels[5]}"
    return " ".join(parts)


def parse_duration(text: str) -> int:
    """
    Parse a duration string such as "1h30m", "45 sec" or "5 minutes".

    Returns:
        Duration in milliseconds (0 if nothing recognisable is found).
    """
    total_ms = 0
    for value, unit in _DURATION_PATTERN.findall(text or ""):
        unit = unit.lower()
        if unit.startswith("h"):
            total_ms += int(value) * _MS_PER_HOUR
        elif unit.startswith("m"):
            total_ms += int(value) * _MS_PER_MINUTE
        else:
            total_ms += int(value) * _MS_PER_SECOND
    return total_ms


def total_today_ms(completed_today_ms: int, status: Optional[SessionStatus]) -> int:
    """
    Time tracked today: completed sessions plus the live session, if any.

    The live session contributes only while it is running or paused, so a
    session that just stopped (and is already part of completed_today_ms)
    is not counted twice.
    """
    total = _check_non_negative(completed_today_ms)
    if status is not None and status.is_active:
        total += _check_non_negative(status.elapsed_ms)
    return total


def daily_progress(elapsed_ms: int, target_ms: int = config.DAILY_TARGET_MS) -> float:
    """Percentage of the daily target reached, capped at 100."""
    elapsed_ms = _check_non_negative(elapsed_ms)
    if target_ms <= 0:
        raise ValueError("Daily target must be positive")
    return min(elapsed_ms / target_ms * 100.0, 100.0)

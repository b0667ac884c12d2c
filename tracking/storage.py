"""Small JSON files under USER_DATA_DIR, written atomically."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def load_json(path: Path, default: Any) -> Any:
    """
    Load a JSON file, returning default if it is missing or unreadable.

    Args:
        path: File to read.
        default: Value returned when the file can't be used.
    """
    if not path.exists():
        return default
    try:
        with open(path, 'r') as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Failed to load {path.name}: {e}. Starting fresh.")
        return default


def save_json(path: Path, data: Any) -> None:
    """
    Save data as JSON atomically.

    Writes to a temp file in the same directory, then renames it over the
    target so a crash mid-write never leaves a truncated file.

    Raises:
        OSError: If the file could not be written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_fd, temp_path = tempfile.mkstemp(
        suffix='.tmp',
        prefix=f'{path.stem}_',
        dir=path.parent
    )
    try:
        with os.fdopen(temp_fd, 'w') as f:
            json.dump(data, f, indent=2)
        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def remove_file(path: Path) -> None:
    """Delete a file if it exists."""
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove {path.name}: {e}")

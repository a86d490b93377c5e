"""Atomic file I/O operations."""

import json
import logging
import os
from pathlib import Path
from typing import Any

from ..errors import MalformedState

logger = logging.getLogger(__name__)


def atomic_write_text(file_path: Path, content: str, max_retries: int = 3) -> None:
    """
    Atomically write content to a file using temp file + rename.

    The file is either fully written or left untouched, so a crash mid-write
    never leaves a truncated store behind.

    Args:
        file_path: Target file path
        content: Content to write
        max_retries: Maximum number of retry attempts on failure

    Raises:
        OSError: If write fails after all retries
    """
    # Use PID to avoid temp file collisions between processes
    tmp_file = file_path.with_suffix(f"{file_path.suffix}.tmp.{os.getpid()}")

    last_error = None
    for attempt in range(max_retries):
        try:
            tmp_file.write_text(content)
            tmp_file.replace(file_path)
            return
        except OSError as e:
            last_error = e
            if attempt < max_retries - 1:
                logger.warning(
                    f"Failed to write {file_path} (attempt {attempt + 1}/{max_retries}): {e}"
                )
            continue
        finally:
            if tmp_file.exists():
                try:
                    tmp_file.unlink()
                except OSError:
                    pass

    logger.error(f"Failed to write {file_path} after {max_retries} attempts: {last_error}")
    raise last_error


def atomic_write_json(file_path: Path, data: Any, indent: int = 2) -> None:
    """Serialize ``data`` as JSON and write it atomically."""
    atomic_write_text(file_path, json.dumps(data, indent=indent, default=str))


def read_json(file_path: Path, expected_type: type) -> Any:
    """
    Read a whole JSON document.

    Returns an empty ``expected_type`` when the file does not exist.

    Raises:
        MalformedState: unreadable file, invalid JSON, or wrong top-level type
    """
    if not file_path.exists():
        return expected_type()

    try:
        content = file_path.read_text()
    except OSError as e:
        raise MalformedState(file_path, f"unreadable: {e}") from e

    if not content.strip():
        return expected_type()

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise MalformedState(file_path, f"invalid JSON: {e}") from e

    if not isinstance(data, expected_type):
        raise MalformedState(
            file_path,
            f"expected a JSON {expected_type.__name__}, got {type(data).__name__}",
        )
    return data

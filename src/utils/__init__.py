"""Utility Functions Module

Small filesystem helpers shared by the subtitle post-process engine and its
command-line entry point.
"""

import logging
import re
from pathlib import Path

# Constants for file handling
MAX_FILENAME_LENGTH = 200  # Maximum safe filename length

logger = logging.getLogger(__name__)


def ensure_dirs_exist(path: Path) -> None:
    """Ensure that the parent directories for the given path exist.
    If path is a directory, ensure the path itself exists.
    Logs an error but does not re-raise exceptions during directory creation.
    """
    try:
        if path.suffix:  # If path includes a filename, make parent dirs
            path.parent.mkdir(parents=True, exist_ok=True)
        else:  # If path is a directory path, make the path itself
            path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Failed to create directories for {path}: {e}")


def write_text_atomic(path: Path, text: str) -> None:
    """Write text through a temporary sibling file and rename it into place.

    Readers never observe a partially written file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_suffix(path.suffix + ".tmp")
    with open(temp_file, "w", encoding="utf-8") as f:
        f.write(text)
        f.flush()
    temp_file.replace(path)


def sanitize_filename(filename: str) -> str:
    """Make a string safe for use as a filename component.

    Args:
    ----
        filename: The input string, e.g. a language tag or asset id

    Returns:
    -------
        A sanitized string suitable for filesystem use

    """
    if not filename or not filename.strip():
        return "file"

    name = re.sub(r'[<>:"/\\|?*]', "_", filename.strip())
    name = re.sub(r"\s+", "_", name)
    name = re.sub(r"_{2,}", "_", name)
    name = name.strip("._ ")

    if not name:
        return "file"
    return name[:MAX_FILENAME_LENGTH]

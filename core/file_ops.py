# core/file_ops.py
"""Trash operations for image files."""
import logging
import os
import shutil

from .errors import ImageDeleteError

logger = logging.getLogger(__name__)


def _get_send2trash():
    from send2trash import send2trash
    return send2trash


def trash_file(path: str) -> None:
    """Move *path* to the system trash.

    Falls back to ``~/.Trash`` on macOS volumes without a trash directory.
    Raises ImageDeleteError when the file is missing or cannot be trashed.
    """
    if not os.path.exists(path):
        raise ImageDeleteError(f"Image does not exist: {path}")
    if not os.path.isfile(path):
        raise ImageDeleteError(f"Path is not a file: {path}")

    _send2trash = _get_send2trash()
    try:
        _send2trash(path)
    except OSError as e:
        if "Directory not found" not in str(e):
            logger.warning(f"Failed to trash {path}: {e}")
            raise ImageDeleteError(f"Failed to delete image: {e}") from e
        home_trash = os.path.expanduser("~/.Trash")
        try:
            os.makedirs(home_trash, exist_ok=True)
            shutil.move(path, home_trash)
        except (OSError, shutil.Error) as fallback_e:
            logger.warning(f"Home trash fallback also failed for {path}: {fallback_e}")
            raise ImageDeleteError(f"Failed to delete image: {fallback_e}") from fallback_e
    except Exception as e:  # why: send2trash raises platform-specific exceptions beyond OSError
        logger.warning(f"Failed to trash {path}: {e}")
        raise ImageDeleteError(f"Failed to delete image: {e}") from e

    logger.info(f"Trashed {path}")

import os
import logging
import fnmatch
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Set

from core.models import Image


@dataclass
class ScanResult:
    """Images directly inside a directory, plus its subdirectories for browsing."""
    directory: str
    images: List[Image] = field(default_factory=list)
    subdirectories: List[str] = field(default_factory=list)


class DirectoryScanner:
    """Handles scanning directories for supported image files."""

    def __init__(self, config_manager=None):
        self.config_manager = config_manager
        self.min_file_size = config_manager.get("scanner.min_file_size", 15360) if config_manager else 15360
        self.ignore_patterns = config_manager.get("scanner.ignore_patterns", ["._*"]) if config_manager else ["._*"]
        extensions = (
            config_manager.get("scanner.image_extensions") if config_manager else None
        ) or ["jpg", "jpeg", "png", "gif", "bmp", "webp", "svg", "ico"]
        self._supported_extensions: Set[str] = {f".{ext.lower().lstrip('.')}" for ext in extensions}

    def is_image_name(self, file_path: str) -> bool:
        """Check the name alone: ignore patterns and extension."""
        filename = os.path.basename(file_path)
        for pattern in self.ignore_patterns:
            if fnmatch.fnmatch(filename, pattern):
                logging.debug(f"Skipping file {file_path}: matches ignore pattern '{pattern}'")
                return False
        _, ext = os.path.splitext(filename)
        return ext.lower() in self._supported_extensions

    def is_supported_file(self, file_path: str) -> bool:
        if not self.is_image_name(file_path):
            return False
        # Tiny files are icons and thumbnails, not photos worth categorizing.
        try:
            if os.path.getsize(file_path) < self.min_file_size:
                logging.debug(f"File too small, skipping: {file_path}")
                return False
        except OSError:
            return False
        return True

    def scan(self, directory_path: str) -> ScanResult:
        """List the images directly inside *directory_path*, sorted by path.

        Raises FileNotFoundError or NotADirectoryError for a bad path.
        """
        if not os.path.exists(directory_path):
            raise FileNotFoundError(f"Directory does not exist: {directory_path}")
        if not os.path.isdir(directory_path):
            raise NotADirectoryError(f"Not a directory: {directory_path}")

        result = ScanResult(directory=directory_path)
        with os.scandir(directory_path) as entries:
            for entry in entries:
                try:
                    if entry.is_dir():
                        if not entry.name.startswith("."):
                            result.subdirectories.append(entry.path)
                        continue
                    if not entry.is_file() or not self.is_supported_file(entry.path):
                        continue
                    stat = entry.stat()
                except OSError as e:
                    logging.debug(f"Skipping {entry.path}: {e}")
                    continue
                result.images.append(Image(
                    path=entry.path,
                    size=stat.st_size,
                    created_at=_created_at(stat),
                ))

        result.images.sort(key=lambda img: img.path)
        result.subdirectories.sort()
        logging.info(f"Scanned {directory_path}: {len(result.images)} image(s), "
                     f"{len(result.subdirectories)} subdirectories")
        return result


def _created_at(stat: os.stat_result) -> str:
    # st_birthtime only exists on macOS and BSD.
    created = getattr(stat, "st_birthtime", None) or stat.st_ctime
    moment = datetime.fromtimestamp(created, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"

# core/persistence.py
"""The single choke point between the engine and durable storage.

Every method is a coroutine; callers treat each ``await`` as a point where
other user actions may have run, and re-check identity after resuming.
"""
import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Optional

from . import file_ops, image_loader
from .errors import ConfigNotFoundError, PersistenceError, TransportUnavailableError
from .image_loader import ImageData
from .models import ConfigData

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = ".hito.json"


class PersistenceGateway(ABC):

    @abstractmethod
    async def load_config(self, directory: str, filename: Optional[str] = None) -> ConfigData:
        """Raise ConfigNotFoundError when the file is absent, PersistenceError otherwise."""

    @abstractmethod
    async def save_config(self, directory: str, filename: Optional[str], data: ConfigData) -> None:
        """Raise TransportUnavailableError or PersistenceError on failure."""

    @abstractmethod
    async def delete_image_file(self, path: str) -> None:
        """Move the file to the trash. Raise ImageDeleteError on failure."""

    @abstractmethod
    async def load_image_data(self, path: str) -> ImageData:
        """Raise ImageLoadError on failure."""


class LocalGateway(PersistenceGateway):
    """Reads and writes ``.hito.json`` next to the images on the local disk."""

    def __init__(self, default_filename: str = DEFAULT_CONFIG_FILENAME):
        self.default_filename = default_filename

    def config_path(self, directory: str, filename: Optional[str] = None) -> str:
        if not directory:
            raise TransportUnavailableError("No directory is open")
        return os.path.join(directory, filename or self.default_filename)

    async def load_config(self, directory: str, filename: Optional[str] = None) -> ConfigData:
        path = self.config_path(directory, filename)
        return await asyncio.to_thread(self._read, path)

    def _read(self, path: str) -> ConfigData:
        try:
            with open(path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except FileNotFoundError as e:
            raise ConfigNotFoundError(f"No config file at {path}") from e
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Malformed config at {path}: {e}") from e
        except OSError as e:
            raise PersistenceError(f"Failed to read {path}: {e}") from e
        logger.info(f"Loaded config from {path}")
        return ConfigData.from_dict(payload)

    async def save_config(self, directory: str, filename: Optional[str], data: ConfigData) -> None:
        path = self.config_path(directory, filename)
        if not os.path.isdir(directory):
            raise TransportUnavailableError(f"Directory does not exist: {directory}")
        await asyncio.to_thread(self._write, path, data)

    def _write(self, path: str, data: ConfigData) -> None:
        directory = os.path.dirname(path) or "."
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".hito-", suffix=".tmp", dir=directory)
        except OSError as e:
            raise PersistenceError(f"Failed to write {path}: {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise PersistenceError(f"Failed to write {path}: {e}") from e
        logger.info(f"Saved config to {path}")

    async def delete_image_file(self, path: str) -> None:
        await asyncio.to_thread(file_ops.trash_file, path)

    async def load_image_data(self, path: str) -> ImageData:
        return await asyncio.to_thread(image_loader.load_image_data, path)

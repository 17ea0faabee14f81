"""
Shared pytest fixtures for Hito tests.
"""
import asyncio
import itertools
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from core.errors import ConfigNotFoundError, ImageDeleteError, ImageLoadError
from core.event_system import EventSystem, EventType
from core.image_loader import ImageData
from core.models import ConfigData, Image
from core.persistence import PersistenceGateway
from core.session import HitoSession


def run(coro):
    """Drive a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


class MockConfigManager:
    """Minimal ConfigManager substitute that accepts a plain dict."""

    def __init__(self, overrides: dict | None = None):
        self._cfg: dict = {
            "config_filename": ".hito.json",
            "scanner": {"min_file_size": 0, "ignore_patterns": []},
        }
        if overrides:
            self._cfg.update(overrides)

    def get(self, key: str, default=None):
        keys = key.split(".")
        val = self._cfg
        for k in keys:
            if isinstance(val, dict):
                val = val.get(k)
            else:
                return default
        return val if val is not None else default

    @property
    def config_filename(self) -> str:
        return self.get("config_filename", ".hito.json")


class FakeGateway(PersistenceGateway):
    """In-memory gateway that records every call and fails on request.

    ``config`` of None means no config file exists yet. Set ``save_error`` to an
    exception instance to make the next saves raise it, or ``fail_next_save`` to
    fail only the next one. A set ``save_gate`` holds the next save until the
    event fires. ``gates`` maps a path to an asyncio.Event that its image load
    waits on.
    """

    def __init__(self, config: Optional[ConfigData] = None):
        self.config = config
        self.load_error: Optional[Exception] = None
        self.save_error: Optional[Exception] = None
        self.fail_next_save: Optional[Exception] = None
        self.save_gate: Optional[asyncio.Event] = None
        self.saves: List[ConfigData] = []
        self.save_targets: List[tuple] = []
        self.deleted: List[str] = []
        self.delete_errors: Dict[str, str] = {}
        self.image_errors: Dict[str, str] = {}
        self.loaded: List[str] = []
        self.gates: Dict[str, asyncio.Event] = {}

    async def load_config(self, directory, filename=None):
        if self.load_error is not None:
            raise self.load_error
        if self.config is None:
            raise ConfigNotFoundError(f"No config in {directory}")
        return self.config

    async def save_config(self, directory, filename, data):
        self.save_targets.append((directory, filename))
        gate, self.save_gate = self.save_gate, None
        if gate is not None:
            await gate.wait()
        error, self.fail_next_save = self.fail_next_save, None
        error = error or self.save_error
        if error is not None:
            raise error
        self.saves.append(data)
        self.config = data

    async def delete_image_file(self, path):
        await asyncio.sleep(0)
        if path in self.delete_errors:
            raise ImageDeleteError(self.delete_errors[path])
        self.deleted.append(path)

    async def load_image_data(self, path):
        gate = self.gates.get(path)
        if gate is not None:
            await gate.wait()
        if path in self.image_errors:
            raise ImageLoadError(self.image_errors[path])
        self.loaded.append(path)
        return ImageData(path=path, mime_type="image/png", data=b"\x89PNG")


class StepClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self._ticks = itertools.count()
        self._start = start

    def __call__(self) -> str:
        moment = self._start + timedelta(seconds=next(self._ticks))
        return moment.strftime("%Y-%m-%dT%H:%M:%S.000Z")


class EventRecorder:
    """Collects published events by type."""

    def __init__(self, events: EventSystem):
        self.received: List = []
        for event_type in EventType:
            events.subscribe(event_type, self.received.append)

    def of(self, event_type: EventType) -> List:
        return [e for e in self.received if e.event_type is event_type]

    def messages(self, event_type: EventType) -> List[str]:
        return [e.message for e in self.of(event_type)]


def make_images(*names: str, directory: str = "/photos") -> List[Image]:
    return [Image(path=f"{directory}/{name}", size=(i + 1) * 1024, created_at=f"2024-01-0{i % 9 + 1}T00:00:00Z")
            for i, name in enumerate(names)]


@pytest.fixture()
def gateway():
    return FakeGateway(ConfigData())


@pytest.fixture()
def events():
    return EventSystem()


@pytest.fixture()
def recorder(events):
    return EventRecorder(events)


@pytest.fixture()
def session(gateway, events):
    """A session over /photos with a.jpg .. e.jpg and an empty config file."""
    s = HitoSession(gateway, events, MockConfigManager(), clock=StepClock())
    run(s.open_directory("/photos", make_images("a.jpg", "b.jpg", "c.jpg", "d.jpg", "e.jpg")))
    gateway.saves.clear()
    return s


@pytest.fixture()
def sample_images(tmp_path):
    """Creates a few real image files and returns their paths."""
    from PIL import Image as PILImage

    img_dir = tmp_path / "images"
    img_dir.mkdir()
    paths: list[str] = []
    for i in range(3):
        path = img_dir / f"image_{i:04d}.jpg"
        color = (i * 60 % 255, i * 7 % 255, i * 3 % 255)
        PILImage.new("RGB", (64, 48), color=color).save(str(path), "JPEG")
        paths.append(str(path))
    return paths

# core/navigation.py
"""Viewer cursor: which image is open, and how next/previous/delete move it.

The cursor is a path, never an index. Every transition recomputes the view and
resolves the current image by identity, because the order may have changed
since the last render.
"""
import logging
from enum import Enum
from typing import List, Optional

from .collection import ImageCollection
from .errors import ImageDeleteError, ImageLoadError
from .event_system import (
    ErrorEventData,
    EventSystem,
    EventType,
    ImageLoadedEventData,
    NotificationEventData,
    ViewerEventData,
    make_event,
)
from .persistence import PersistenceGateway

logger = logging.getLogger(__name__)

NO_MORE_IMAGES = "Image deleted. No more images in this directory."
IMAGE_DELETED = "Image deleted"


class ViewerState(Enum):
    CLOSED = "closed"
    OPEN = "open"


class LatestRequest:
    """Last-request-wins token for asynchronous image loads."""

    def __init__(self):
        self._token = 0
        self.path: Optional[str] = None

    def begin(self, path: str) -> int:
        self._token += 1
        self.path = path
        return self._token

    def is_current(self, token: int) -> bool:
        return token == self._token

    def cancel(self) -> None:
        self._token += 1
        self.path = None


class InFlightGuard:
    """Rejects a second entry while the first is still running."""

    def __init__(self):
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def try_acquire(self) -> bool:
        if self._busy:
            return False
        self._busy = True
        return True

    def release(self) -> None:
        self._busy = False


def _index_of(paths: List[str], path: str) -> int:
    try:
        return paths.index(path)
    except ValueError:
        return -1


class ViewerNavigator:
    """State machine over ``closed`` and ``open(path)``."""

    SOURCE = "viewer_navigator"

    def __init__(self, collection: ImageCollection, gateway: PersistenceGateway, events: EventSystem):
        self.collection = collection
        self.gateway = gateway
        self.events = events
        self.current_path = ""
        self._requests = LatestRequest()
        self._delete_guard = InFlightGuard()

    @property
    def state(self) -> ViewerState:
        return ViewerState.OPEN if self.current_path else ViewerState.CLOSED

    @property
    def is_open(self) -> bool:
        return bool(self.current_path)

    @property
    def is_deleting(self) -> bool:
        return self._delete_guard.busy

    def current_index(self) -> int:
        return _index_of(self.collection.view_paths(), self.current_path) if self.current_path else -1

    # ------------------------------------------------------------------
    # open / close
    # ------------------------------------------------------------------

    async def open(self, path: str) -> bool:
        """Open *path* if it is in the current view and load its pixels.

        Returns True when the loaded image is the one on screen. A load that
        resolves after a newer request was made is dropped and returns False.
        """
        if path not in self.collection.view_paths():
            logger.debug(f"Refusing to open {path}: not in the current view")
            return False

        self.current_path = path
        token = self._requests.begin(path)
        self.events.publish(make_event(EventType.VIEWER_OPENED, self.SOURCE, ViewerEventData, image_path=path))

        data = self.collection.cached_image(path)
        if data is None:
            try:
                data = await self.gateway.load_image_data(path)
            except ImageLoadError as e:
                if not self._requests.is_current(token):
                    return False
                logger.error(f"Error loading image {path}: {e}")
                self.close()
                self._publish_error(f"Error loading image: {e}")
                return False
            self.collection.cache_image(path, data)

        if not self._requests.is_current(token):
            logger.debug(f"Dropping stale image load for {path}")
            return False

        self.events.publish(make_event(
            EventType.IMAGE_LOADED, self.SOURCE, ImageLoadedEventData, image_path=path, data=data,
        ))
        return True

    def close(self) -> None:
        was_open = self.is_open
        self.current_path = ""
        self._requests.cancel()
        self.collection.refilter.clear()
        if was_open:
            self.events.publish(make_event(EventType.VIEWER_CLOSED, self.SOURCE, ViewerEventData))
            logger.debug("Viewer closed")

    # ------------------------------------------------------------------
    # next / previous
    # ------------------------------------------------------------------

    async def next_image(self) -> bool:
        return await self._step(1)

    async def previous_image(self) -> bool:
        return await self._step(-1)

    def _resolve_step(self, step: int) -> Optional[str]:
        """Pick the navigation target, clearing suppression on the way."""
        current = self.current_path

        stale = self.collection.view_paths()
        old_index = _index_of(stale, current)
        remembered = None
        if old_index >= 0 and 0 <= old_index + step < len(stale):
            remembered = stale[old_index + step]

        had_suppress = self.collection.refilter.clear()
        live = self.collection.view_paths()
        if not live:
            return None

        if had_suppress:
            if remembered is not None and remembered in live:
                return remembered
            if current not in live:
                return live[0] if step > 0 else live[-1]
            fallback = old_index if step > 0 else old_index - 1
            return live[max(0, min(fallback, len(live) - 1))]

        index = _index_of(live, current)
        if index < 0 or not 0 <= index + step < len(live):
            return None
        return live[index + step]

    async def _step(self, step: int) -> bool:
        if not self.current_path:
            return False
        target = self._resolve_step(step)
        if target is None:
            return False
        return await self.open(target)

    async def reresolve(self, old_index: int) -> bool:
        """Re-seat the cursor after the open image may have left the live view."""
        if not self.current_path:
            return False
        live = self.collection.view_paths()
        if self.current_path in live:
            return False
        if not live:
            self.close()
            return True
        return await self.open(live[max(0, min(old_index, len(live) - 1))])

    # ------------------------------------------------------------------
    # delete
    # ------------------------------------------------------------------

    async def delete_current_and_advance(self) -> bool:
        """Trash the open image and move to its neighbour. Returns True if deleted."""
        if not self._delete_guard.try_acquire():
            logger.debug("Delete already in progress, ignoring")
            return False
        try:
            path = self.current_path
            if not path:
                return False

            view = self.collection.view_paths()
            deleted_index = _index_of(view, path)
            is_last = deleted_index == len(view) - 1
            is_only = len(view) == 1

            try:
                await self.gateway.delete_image_file(path)
            except ImageDeleteError as e:
                logger.error(f"Failed to delete {path}: {e}")
                self._publish_error(f"Failed to delete image: {e}")
                return False

            self.collection.remove_image(path)
            self.events.publish(make_event(EventType.IMAGE_DELETED, self.SOURCE, ViewerEventData, image_path=path))

            if self.current_path != path:
                # The user moved on while the delete was in flight.
                self._notify(IMAGE_DELETED)
                return True

            updated = self.collection.view_paths()
            if is_only or not updated:
                self.close()
                self._notify(NO_MORE_IMAGES)
                return True

            if is_last or deleted_index < 0 or deleted_index >= len(updated):
                target = updated[-1]
            else:
                target = updated[deleted_index]
            await self.open(target)
            self._notify(IMAGE_DELETED)
            return True
        finally:
            self._delete_guard.release()

    # ------------------------------------------------------------------

    def _notify(self, message: str, level: str = "info") -> None:
        self.events.publish(make_event(
            EventType.NOTIFICATION, self.SOURCE, NotificationEventData, message=message, level=level,
        ))

    def _publish_error(self, message: str) -> None:
        self.events.publish(make_event(EventType.ERROR, self.SOURCE, ErrorEventData, message=message))

from PySide6.QtCore import QObject
from typing import Dict, List, Callable, Optional
from dataclasses import dataclass
from collections import deque
from enum import Enum
import logging
import time


class EventType(Enum):
    # Store changes
    CATEGORIES_CHANGED = "categories_changed"
    ASSIGNMENTS_CHANGED = "assignments_changed"
    HOTKEYS_CHANGED = "hotkeys_changed"

    # View changes
    VIEW_CHANGED = "view_changed"

    # Viewer
    VIEWER_OPENED = "viewer_opened"
    VIEWER_CLOSED = "viewer_closed"
    IMAGE_LOADED = "image_loaded"
    IMAGE_DELETED = "image_deleted"

    # User-facing messages
    NOTIFICATION = "notification"
    ERROR = "error"


@dataclass
class EventData:
    event_type: EventType
    source: str  # Component that published the event
    timestamp: float


@dataclass
class AssignmentsChangedEventData(EventData):
    paths: List[str]


@dataclass
class ViewerEventData(EventData):
    image_path: Optional[str] = None


@dataclass
class ImageLoadedEventData(EventData):
    image_path: str
    data: object = None


@dataclass
class NotificationEventData(EventData):
    message: str
    level: str = "info"


@dataclass
class ErrorEventData(EventData):
    message: str


def make_event(event_type: EventType, source: str, cls=EventData, **fields) -> EventData:
    return cls(event_type=event_type, source=source, timestamp=time.time(), **fields)


class EventSystem(QObject):
    """Synchronous publish/subscribe bus. Callbacks run on the publishing thread."""

    def __init__(self, history_size: int = 500):
        super().__init__()
        self._subscribers: Dict[EventType, List[Callable]] = {}
        self._event_history: deque[EventData] = deque(maxlen=history_size)

    def subscribe(self, event_type: EventType, callback: Callable[[EventData], None]):
        self._subscribers.setdefault(event_type, []).append(callback)
        logging.debug(f"Subscribed to {event_type.value}: {getattr(callback, '__name__', callback)}")

    def unsubscribe(self, event_type: EventType, callback: Callable[[EventData], None]):
        try:
            self._subscribers.get(event_type, []).remove(callback)
            logging.debug(f"Unsubscribed from {event_type.value}: {getattr(callback, '__name__', callback)}")
        except ValueError:
            logging.warning(f"Callback not found for {event_type.value}")

    def publish(self, event_data: EventData):
        event_type = event_data.event_type
        self._event_history.append(event_data)
        # Snapshot the subscriber list so callbacks can safely call subscribe/unsubscribe.
        callbacks = list(self._subscribers.get(event_type, []))

        for callback in callbacks:
            try:
                callback(event_data)
            except Exception as e:
                # why: isolate handler crashes so one broken subscriber can't block others
                logging.error(f"Error in event callback for {event_type.value}: {e}", exc_info=True)

        logging.debug("Published event: %s from %s", event_type.value, event_data.source)

    def get_event_history(self, event_type: Optional[EventType] = None) -> List[EventData]:
        if event_type:
            return [e for e in self._event_history if e.event_type == event_type]
        return list(self._event_history)

    def clear_history(self):
        self._event_history.clear()

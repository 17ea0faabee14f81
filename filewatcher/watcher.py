import asyncio
import inspect
import logging
import os
from typing import Callable, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from core.directory_scanner import DirectoryScanner


class DeletionWatcher(FileSystemEventHandler):
    """
    Watches the browsed directory and reports image files that disappear,
    either deleted or moved away, so they can be dropped from the session.
    """
    def __init__(self, on_removed: Callable[[str], object], scanner: Optional[DirectoryScanner] = None,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        super().__init__()
        self.on_removed = on_removed
        self.scanner = scanner or DirectoryScanner()
        # Coroutine callbacks are scheduled onto this loop from the observer thread.
        self.loop = loop
        self.observer = Observer()
        self.watch_path: Optional[str] = None

    def start(self, path: str):
        """Watch *path* (non-recursively), replacing any earlier watch."""
        self.stop()
        if not os.path.isdir(path):
            logging.warning(f"Watch path does not exist: {path}")
            return
        self.observer = Observer()
        self.observer.schedule(self, path=path, recursive=False)
        self.observer.start()
        self.watch_path = path
        logging.info(f"Watching {path} for deletions...")

    def stop(self):
        if self.observer.is_alive():
            self.observer.stop()
            self.observer.join(timeout=1.0)
            if self.observer.is_alive():
                logging.warning("Watchdog observer thread did not stop gracefully.")
            logging.info("Watchdog observer stopped.")
        self.watch_path = None

    def dispatch(self, event):
        """Forward deletions and moves of image files to the callback."""
        if event.is_directory:
            return
        if event.event_type not in ("deleted", "moved"):
            return

        path = os.fsdecode(event.src_path)
        if not self.scanner.is_image_name(path):
            return

        logging.debug(f"Watchdog: {event.event_type} {path}")
        try:
            self._notify(path)
        except Exception as e:
            # why: watchdog callbacks run on observer thread; a callback error must not crash the observer
            logging.error(f"Watchdog: Error handling removal of '{path}': {e}", exc_info=True)

    def _notify(self, path: str):
        if self.loop is not None and inspect.iscoroutinefunction(self.on_removed):
            asyncio.run_coroutine_threadsafe(self.on_removed(path), self.loop)
        elif self.loop is not None:
            self.loop.call_soon_threadsafe(self.on_removed, path)
        else:
            self.on_removed(path)

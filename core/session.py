# core/session.py
"""One browsing session over a directory: categories, hotkeys, view and viewer.

Every mutation is optimistic. The in-memory state changes first, then the
config file is saved; a PersistenceError rolls the change back and is raised
to the caller, while a missing transport only logs. Mutations are serialized
with their saves, so a rollback only ever undoes its own change. After each
``await`` the code re-checks which image the viewer shows before acting on it.
"""
import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from config.config_manager import DEFAULT_CONFIG
from config.hotkeys import HotkeyConfig, KeyEvent, generate_hotkey_id, normalize_key, toggle_action
from filewatcher.watcher import DeletionWatcher
from utils.colors import pick_category_color
from .categories import CategoryStore, StoreSnapshot, generate_category_id
from .collection import ImageCollection
from .directory_scanner import DirectoryScanner
from .errors import (
    CategoryValidationError,
    ConfigNotFoundError,
    HitoError,
    HotkeyValidationError,
    PersistenceError,
    TransportUnavailableError,
)
from .event_system import (
    AssignmentsChangedEventData,
    ErrorEventData,
    EventSystem,
    EventType,
    NotificationEventData,
    ViewerEventData,
    make_event,
)
from .filtering import filter_by_category
from .hotkey_registry import HotkeyDispatcher, HotkeyRegistry
from .models import (
    Category,
    ConfigData,
    FilterOptions,
    Image,
    SortDirection,
    SortOption,
    utc_now_iso,
)
from .navigation import ViewerNavigator
from .persistence import PersistenceGateway
from .refilter import RefilterController

logger = logging.getLogger(__name__)

# Keys the viewer handles itself, ahead of user bindings.
_VIEWER_KEYS = ("ArrowLeft", "ArrowRight", "Escape")


def split_config_path(config_file_path: str, directory: str) -> Tuple[str, Optional[str]]:
    """Directory and filename a custom config path points at.

    A path without a separator is a filename inside *directory*.
    """
    normalized = config_file_path.replace("\\", "/")
    index = normalized.rfind("/")
    if index < 0:
        return directory, config_file_path or None
    parent = config_file_path[:index] or "/"
    return parent, config_file_path[index + 1:] or None


class HitoSession:
    SOURCE = "session"

    def __init__(self, gateway: PersistenceGateway, events: Optional[EventSystem] = None,
                 settings=None, clock: Callable[[], str] = utc_now_iso):
        self.gateway = gateway
        self.events = events or EventSystem()
        self.settings = settings
        self.store = CategoryStore(clock)
        self.refilter = RefilterController()
        self.collection = ImageCollection(self.store, self.refilter)
        self.navigator = ViewerNavigator(self.collection, gateway, self.events)
        self.hotkeys = HotkeyRegistry()
        self.dispatcher = HotkeyDispatcher(self.hotkeys, self)
        self.directory = ""
        self.config_file_path: Optional[str] = None
        # Held from a mutation until its save settles, so a rollback never undoes a later change.
        self._mutation_lock = asyncio.Lock()

        try:
            self.collection.set_sort(
                SortOption(self._setting("view.sort_option")),
                SortDirection(self._setting("view.sort_direction")),
            )
        except ValueError as e:
            logger.warning(f"Ignoring invalid sort setting: {e}")

    def _setting(self, key: str) -> Any:
        if self.settings is not None:
            value = self.settings.get(key)
            if value is not None:
                return value
        node: Any = DEFAULT_CONFIG
        for part in key.split("."):
            node = node[part]
        return node

    # ------------------------------------------------------------------
    # Directory and config file
    # ------------------------------------------------------------------

    def config_location(self) -> Tuple[str, Optional[str]]:
        if self.config_file_path:
            return split_config_path(self.config_file_path, self.directory)
        return self.directory, None

    async def open_directory(self, directory: str, images: Iterable[Image]) -> None:
        """Switch to *directory*, replacing images, categories and hotkeys."""
        self.navigator.close()
        self.directory = directory
        self.collection.set_images(images)
        await self.load_config()
        self._publish(EventType.VIEW_CHANGED)

    async def load_config(self) -> None:
        directory, filename = self.config_location()
        try:
            data = await self.gateway.load_config(directory, filename)
        except ConfigNotFoundError:
            logger.info(f"No config file in {directory}, seeding default hotkeys")
            self.store.replace_all([], {})
            self.hotkeys.replace_all(self._default_hotkeys())
            self._publish_all_changed()
            await self._save_or_report("default hotkeys")
            return
        except TransportUnavailableError as e:
            logger.warning(f"Cannot load config: {e}")
            self.store.replace_all([], {})
            self.hotkeys.replace_all([])
            self._publish_all_changed()
            return
        except PersistenceError as e:
            logger.error(f"Failed to load config from {directory}: {e}")
            self._publish_error(f"Failed to load config: {e}")
            raise

        self.store.replace_all(data.categories, data.image_categories)
        self.hotkeys.replace_all(data.hotkeys)
        logger.info(f"Loaded {len(data.categories)} categories, {len(data.image_categories)} assigned images, "
                    f"{len(data.hotkeys)} hotkeys")
        self._publish_all_changed()

    def _default_hotkeys(self) -> List[HotkeyConfig]:
        defaults = []
        for raw in self._setting("hotkeys.defaults") or []:
            if isinstance(raw, dict):
                defaults.append(HotkeyConfig.from_config(raw))
        return defaults

    def config_data(self) -> ConfigData:
        return ConfigData(
            categories=self.store.categories,
            image_categories=self.store.snapshot_assignments(),
            hotkeys=self.hotkeys.hotkeys,
        )

    async def save(self) -> bool:
        """Write the config file. False when there is nowhere to write it."""
        directory, filename = self.config_location()
        try:
            await self.gateway.save_config(directory, filename, self.config_data())
        except TransportUnavailableError as e:
            logger.warning(f"Config not saved: {e}")
            return False
        return True

    async def _commit(self, rollback: Callable[[], None], what: str) -> bool:
        try:
            return await self.save()
        except PersistenceError as e:
            logger.error(f"Failed to save {what}: {e}")
            rollback()
            self._publish_error(f"Failed to save {what}: {e}")
            raise

    async def _save_or_report(self, what: str) -> bool:
        """Save where the change must be kept even if the write fails."""
        try:
            return await self.save()
        except PersistenceError as e:
            logger.error(f"Failed to save {what}: {e}")
            self._notify(f"Failed to save {what}: {e}", level="warning")
            return False

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    def view(self) -> List[Image]:
        return self.collection.compute_view()

    def set_filters(self, filters: FilterOptions) -> None:
        self.collection.set_filters(filters)
        self._publish(EventType.VIEW_CHANGED)

    def set_sort(self, option: SortOption, direction: Optional[SortDirection] = None) -> None:
        self.collection.set_sort(option, direction)
        self._publish(EventType.VIEW_CHANGED)

    def category_counts(self) -> Dict[str, int]:
        return self.store.category_counts()

    async def forget_image(self, path: str) -> bool:
        """Drop an image that vanished from disk."""
        on_screen = self.navigator.current_path == path
        old_index = self.navigator.current_index() if on_screen else -1
        async with self._mutation_lock:
            had_assignments = bool(self.store.assignments_for(path))
            if not self.collection.remove_image(path):
                return False
            logger.info(f"Image removed externally: {path}")
            self._publish(EventType.IMAGE_DELETED, ViewerEventData, image_path=path)
            self._publish(EventType.VIEW_CHANGED)
            if had_assignments:
                self._publish_assignments([path])
                await self._save_or_report("category assignments")
        if on_screen and self.navigator.current_path == path:
            await self.navigator.reresolve(old_index)
        return True

    def watch(self, scanner: Optional[DirectoryScanner] = None) -> DeletionWatcher:
        """Start dropping images that are deleted from the directory behind our back.

        Must be called from the event loop the session runs on; the caller
        stops the returned watcher.
        """
        watcher = DeletionWatcher(self.forget_image, scanner or DirectoryScanner(self.settings),
                                  loop=asyncio.get_running_loop())
        watcher.start(self.directory)
        return watcher

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def create_category(self, name: str, color: Optional[str] = None,
                              mutually_exclusive_with: Sequence[str] = (),
                              auto_hotkey: bool = True) -> Category:
        color = color or pick_category_color([c.color for c in self.store.categories])
        self.store.validate_category(name, color, mutually_exclusive_with)
        category = Category(
            id=generate_category_id(),
            name=name.strip(),
            color=color,
            mutually_exclusive_with=frozenset(mutually_exclusive_with),
        )

        async with self._mutation_lock:
            checkpoint = self._store_checkpoint()
            self.store.add_category(category)
            self._publish(EventType.CATEGORIES_CHANGED)
            await self._commit(lambda: self._restore_store(checkpoint), "category")
        logger.info(f"Created category {category.name} ({category.id})")

        if auto_hotkey:
            free_key = self.hotkeys.find_free_key(self._setting("hotkeys.auto_assign_keys") or [])
            if free_key is not None and not await self.auto_assign_hotkey(category.id):
                self._notify(f'Category "{category.name}" was created, but its hotkey could not be saved.',
                             level="warning")
        return category

    async def update_category(self, category_id: str, name: Optional[str] = None, color: Optional[str] = None,
                              mutually_exclusive_with: Optional[Sequence[str]] = None) -> Category:
        async with self._mutation_lock:
            existing = self.store.get_category(category_id)
            if existing is None:
                raise CategoryValidationError(f"Unknown category '{category_id}'.")
            name = existing.name if name is None else name
            color = existing.color if color is None else color
            exclusive = existing.mutually_exclusive_with if mutually_exclusive_with is None else mutually_exclusive_with
            self.store.validate_category(name, color, exclusive, exclude_id=category_id)

            updated = replace(existing, name=name.strip(), color=color, mutually_exclusive_with=frozenset(exclusive))
            checkpoint = self._store_checkpoint()
            self.store.update_category(updated)
            self._publish(EventType.CATEGORIES_CHANGED)
            await self._commit(lambda: self._restore_store(checkpoint), "category")
        return updated

    async def delete_category(self, category_id: str) -> bool:
        async with self._mutation_lock:
            if self.store.get_category(category_id) is None:
                return False

            checkpoint = self._store_checkpoint()
            hotkey_snapshot = self.hotkeys.snapshot()
            filters = self.collection.filters

            touched = self.store.remove_category(category_id)
            cleared = self.hotkeys.clear_category_actions(category_id)
            if filters.category_id == category_id:
                self.collection.set_filters(replace(filters, category_id=""))
            self._publish_all_changed()

            def rollback():
                self._restore_store(checkpoint)
                self.hotkeys.restore(hotkey_snapshot)
                self.collection.set_filters(filters)
                self._publish_all_changed()

            await self._commit(rollback, "category deletion")
        logger.info(f"Deleted category {category_id}: {touched} image(s) unassigned, {cleared} hotkey(s) cleared")
        return True

    def _store_checkpoint(self) -> Tuple[StoreSnapshot, List[str]]:
        """Snapshot plus the snapshot's paths that are still in the collection."""
        snapshot = self.store.snapshot()
        present = {img.path for img in self.collection.images}
        return snapshot, [path for path in snapshot.assignments if path in present]

    def _restore_store(self, checkpoint: Tuple[StoreSnapshot, List[str]]) -> None:
        snapshot, tracked = checkpoint
        self.store.restore(snapshot)
        # Images deleted while the save was in flight stay gone.
        present = {img.path for img in self.collection.images}
        for path in tracked:
            if path not in present:
                self.store.remove_path(path)
        self._publish(EventType.CATEGORIES_CHANGED)
        self._publish(EventType.ASSIGNMENTS_CHANGED, AssignmentsChangedEventData, paths=[])

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    async def toggle_category(self, path: str, category_id: str, from_viewer: bool = False) -> bool:
        """Toggle *category_id* on *path*. Returns True if it is now assigned."""
        await self._mutate_assignment(path, category_id, from_viewer, self.store.toggle_assignment)
        return self.store.has_assignment(path, category_id)

    async def assign_category(self, path: str, category_id: str) -> bool:
        """Add-only. Returns True if the assignment was added."""
        return await self._mutate_assignment(path, category_id, False, self.store.assign_assignment)

    async def _mutate_assignment(self, path: str, category_id: str, from_viewer: bool,
                                 mutate: Callable[[str, str], bool]) -> bool:
        async with self._mutation_lock:
            if self.store.get_category(category_id) is None:
                raise CategoryValidationError(f"Unknown category '{category_id}'.")

            before = self.store.assignments_for(path)
            known = self.collection.contains(path)
            on_screen = self.navigator.current_path == path
            old_index = self.navigator.current_index() if on_screen else -1
            was_member = self._passes_category_filter(path)

            if from_viewer:
                self.refilter.begin(self.store.assignments)
            mutate(path, category_id)
            if self.store.assignments_for(path) == before:
                return False
            self._publish_assignments([path])

            def rollback():
                if known and not self.collection.contains(path):
                    return
                self.store.set_path_assignments(path, before)
                self._publish_assignments([path])

            await self._commit(rollback, "category assignment")

        # A sidebar edit may have taken the open image out of the filtered view.
        if (not self.refilter.suppressed and on_screen and self.navigator.current_path == path
                and was_member != self._passes_category_filter(path)):
            await self.navigator.reresolve(old_index)
        return True

    def _passes_category_filter(self, path: str) -> bool:
        category_id = self.collection.filters.category_id
        if not category_id:
            return True
        return bool(filter_by_category([Image(path=path)], category_id, self.store.assignments))

    async def toggle_category_for_current_image(self, category_id: str) -> bool:
        path = self.navigator.current_path
        if not path:
            return False
        if self.store.get_category(category_id) is None:
            logger.warning(f"Hotkey names unknown category {category_id}, ignoring")
            return False
        await self.toggle_category(path, category_id, from_viewer=True)
        return True

    # ------------------------------------------------------------------
    # Hotkeys
    # ------------------------------------------------------------------

    async def add_hotkey(self, key: str, modifiers: Sequence[str] = (), action: str = "") -> HotkeyConfig:
        hotkey = HotkeyConfig(id=generate_hotkey_id(), key=normalize_key(key), modifiers=tuple(modifiers),
                              action=action)
        async with self._mutation_lock:
            snapshot = self.hotkeys.snapshot()
            self.hotkeys.add(hotkey)
            self._publish(EventType.HOTKEYS_CHANGED)
            await self._commit(lambda: self._restore_hotkeys(snapshot), "hotkey")
        return hotkey

    async def update_hotkey(self, hotkey_id: str, key: str, modifiers: Sequence[str] = (),
                            action: str = "") -> HotkeyConfig:
        hotkey = HotkeyConfig(id=hotkey_id, key=normalize_key(key), modifiers=tuple(modifiers), action=action)
        async with self._mutation_lock:
            if self.hotkeys.get(hotkey_id) is None:
                raise HotkeyValidationError(f"Unknown hotkey '{hotkey_id}'.")
            snapshot = self.hotkeys.snapshot()
            self.hotkeys.update(hotkey)
            self._publish(EventType.HOTKEYS_CHANGED)
            await self._commit(lambda: self._restore_hotkeys(snapshot), "hotkey")
        return hotkey

    async def delete_hotkey(self, hotkey_id: str) -> bool:
        async with self._mutation_lock:
            snapshot = self.hotkeys.snapshot()
            if self.hotkeys.remove(hotkey_id) is None:
                return False
            self._publish(EventType.HOTKEYS_CHANGED)
            await self._commit(lambda: self._restore_hotkeys(snapshot), "hotkey")
        return True

    async def auto_assign_hotkey(self, category_id: str) -> bool:
        """Bind the first free digit key to toggle *category_id*.

        Returns whether a binding was made and saved; a failed save undoes it.
        """
        async with self._mutation_lock:
            key = self.hotkeys.find_free_key(self._setting("hotkeys.auto_assign_keys") or [])
            if key is None:
                logger.info(f"No free key to bind for category {category_id}")
                return False
            hotkey = HotkeyConfig(id=generate_hotkey_id(), key=key, action=toggle_action(category_id))
            self.hotkeys.add(hotkey)
            self._publish(EventType.HOTKEYS_CHANGED)

            try:
                saved = await self.save()
            except PersistenceError as e:
                logger.error(f"Failed to save hotkey for category {category_id}: {e}")
                saved = False
            if not saved:
                self.hotkeys.remove(hotkey.id)
                self._publish(EventType.HOTKEYS_CHANGED)
                return False
        logger.info(f"Bound {key} to category {category_id}")
        return True

    def _restore_hotkeys(self, snapshot) -> None:
        self.hotkeys.restore(snapshot)
        self._publish(EventType.HOTKEYS_CHANGED)

    async def handle_key_event(self, event: KeyEvent) -> bool:
        """Route a key press. Returns True when it was consumed."""
        try:
            if self.navigator.is_open and event.key in _VIEWER_KEYS and not event.has_modifiers:
                if event.key == "ArrowLeft":
                    await self.previous_image()
                elif event.key == "ArrowRight":
                    await self.next_image()
                else:
                    self.close_viewer()
                return True
            return await self.dispatcher.handle_key_event(event)
        except HitoError as e:
            # Already rolled back and published as an ERROR event.
            logger.warning(f"Hotkey action failed: {e}")
            return True

    # ------------------------------------------------------------------
    # Viewer
    # ------------------------------------------------------------------

    async def open_image(self, path: str) -> bool:
        return await self.navigator.open(path)

    def close_viewer(self) -> None:
        self.navigator.close()

    async def next_image(self) -> bool:
        return await self.navigator.next_image()

    async def previous_image(self) -> bool:
        return await self.navigator.previous_image()

    async def delete_current_image(self) -> bool:
        path = self.navigator.current_path
        had_assignments = bool(path) and bool(self.store.assignments_for(path))
        deleted = await self.navigator.delete_current_and_advance()
        if deleted and had_assignments:
            self._publish_assignments([path])
            async with self._mutation_lock:
                await self._save_or_report("category assignments")
        return deleted

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _publish(self, event_type: EventType, cls=None, **fields) -> None:
        if cls is None:
            self.events.publish(make_event(event_type, self.SOURCE))
        else:
            self.events.publish(make_event(event_type, self.SOURCE, cls, **fields))

    def _publish_assignments(self, paths: List[str]) -> None:
        self._publish(EventType.ASSIGNMENTS_CHANGED, AssignmentsChangedEventData, paths=paths)

    def _publish_all_changed(self) -> None:
        self._publish(EventType.CATEGORIES_CHANGED)
        self._publish_assignments([])
        self._publish(EventType.HOTKEYS_CHANGED)
        self._publish(EventType.VIEW_CHANGED)

    def _notify(self, message: str, level: str = "info") -> None:
        self._publish(EventType.NOTIFICATION, NotificationEventData, message=message, level=level)

    def _publish_error(self, message: str) -> None:
        self._publish(EventType.ERROR, ErrorEventData, message=message)

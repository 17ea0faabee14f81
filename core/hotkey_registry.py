# core/hotkey_registry.py
import logging
from dataclasses import replace
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from config.hotkeys import (
    ActionKind,
    Chord,
    HotkeyConfig,
    KeyEvent,
    action_references_category,
    format_chord,
    normalize_key,
    parse_action,
)
from .errors import HotkeyValidationError

logger = logging.getLogger(__name__)


def capture_chord(event: KeyEvent) -> Optional[Tuple[str, List[str]]]:
    """Turn a key press into ``(key, modifiers)`` for a new binding.

    Modifier-only presses return None: capture keeps waiting for a real key.
    """
    if event.is_modifier_only or not event.key:
        return None
    return normalize_key(event.key), event.modifiers()


class HotkeyRegistry:
    """The list of key bindings, with chord uniqueness enforced on every write."""

    def __init__(self):
        self._hotkeys: List[HotkeyConfig] = []

    @property
    def hotkeys(self) -> List[HotkeyConfig]:
        return list(self._hotkeys)

    def get(self, hotkey_id: str) -> Optional[HotkeyConfig]:
        for hotkey in self._hotkeys:
            if hotkey.id == hotkey_id:
                return hotkey
        return None

    def replace_all(self, hotkeys: Iterable[HotkeyConfig]) -> None:
        self._hotkeys = []
        for hotkey in hotkeys:
            if hotkey.key and self.is_duplicate(hotkey.key, hotkey.modifiers):
                logger.warning(f"Hotkey {hotkey.id} repeats chord {format_chord(hotkey.key, hotkey.modifiers)}; "
                               f"the earlier binding wins")
            self._hotkeys.append(hotkey)

    def snapshot(self) -> Tuple[HotkeyConfig, ...]:
        return tuple(self._hotkeys)

    def restore(self, snapshot: Sequence[HotkeyConfig]) -> None:
        self._hotkeys = list(snapshot)

    def is_duplicate(self, key: str, modifiers: Iterable[str], exclude_id: Optional[str] = None) -> bool:
        chord = Chord.of(key, modifiers)
        return any(h.chord == chord for h in self._hotkeys if not (exclude_id and h.id == exclude_id))

    def validate(self, key: str, modifiers: Sequence[str], exclude_id: Optional[str] = None) -> None:
        if not key or key in ("Control", "Meta", "Alt", "Shift"):
            raise HotkeyValidationError("Please capture a key combination before saving.")
        if self.is_duplicate(key, modifiers, exclude_id):
            raise HotkeyValidationError(
                f"This hotkey combination ({format_chord(normalize_key(key), modifiers)}) is already in use."
            )

    def add(self, hotkey: HotkeyConfig) -> None:
        self.validate(hotkey.key, hotkey.modifiers)
        self._hotkeys.append(hotkey)
        logger.debug(f"Added hotkey {hotkey.id}: {format_chord(hotkey.key, hotkey.modifiers)} -> {hotkey.action!r}")

    def update(self, hotkey: HotkeyConfig) -> None:
        self.validate(hotkey.key, hotkey.modifiers, exclude_id=hotkey.id)
        for index, existing in enumerate(self._hotkeys):
            if existing.id == hotkey.id:
                self._hotkeys[index] = hotkey
                return
        raise HotkeyValidationError(f"Unknown hotkey '{hotkey.id}'.")

    def remove(self, hotkey_id: str) -> Optional[HotkeyConfig]:
        for index, existing in enumerate(self._hotkeys):
            if existing.id == hotkey_id:
                return self._hotkeys.pop(index)
        return None

    def clear_category_actions(self, category_id: str) -> int:
        """Blank the action of every binding naming *category_id*; the bindings stay."""
        cleared = 0
        for index, hotkey in enumerate(self._hotkeys):
            if hotkey.action and action_references_category(hotkey.action, category_id):
                self._hotkeys[index] = replace(hotkey, action="")
                cleared += 1
        return cleared

    def find_free_key(self, candidates: Iterable[str]) -> Optional[str]:
        """First candidate with no modifier-less binding."""
        for key in candidates:
            if not self.is_duplicate(key, ()):
                return key
        return None

    def match(self, event: KeyEvent) -> Optional[HotkeyConfig]:
        if event.is_modifier_only or not event.key:
            return None
        chord = event.chord()
        for hotkey in self._hotkeys:
            if hotkey.chord == chord:
                return hotkey
        return None


class ActionTarget(Protocol):
    """What the dispatcher drives. The session implements this."""

    async def next_image(self) -> bool: ...

    async def previous_image(self) -> bool: ...

    async def delete_current_image(self) -> bool: ...

    async def toggle_category_for_current_image(self, category_id: str) -> bool: ...


class HotkeyDispatcher:
    """Routes a matched chord's action string to the session."""

    def __init__(self, registry: HotkeyRegistry, target: ActionTarget):
        self.registry = registry
        self.target = target

    async def handle_key_event(self, event: KeyEvent) -> bool:
        """Return True when a binding with an action matched, so the caller
        can suppress the key's default behaviour."""
        hotkey = self.registry.match(event)
        if hotkey is None or not hotkey.action:
            return False
        logger.debug(f"Hotkey {format_chord(hotkey.key, hotkey.modifiers)} -> {hotkey.action}")
        await self.dispatch(hotkey.action)
        return True

    async def dispatch(self, action: str) -> None:
        parsed = parse_action(action)
        if parsed.kind is ActionKind.NONE:
            return
        if parsed.kind is ActionKind.NEXT_IMAGE:
            await self.target.next_image()
        elif parsed.kind is ActionKind.PREVIOUS_IMAGE:
            await self.target.previous_image()
        elif parsed.kind is ActionKind.DELETE_IMAGE_AND_NEXT:
            await self.target.delete_current_image()
        elif parsed.kind in (ActionKind.TOGGLE_CATEGORY, ActionKind.TOGGLE_CATEGORY_NEXT):
            await self.target.toggle_category_for_current_image(parsed.category_id)
            if parsed.kind is ActionKind.TOGGLE_CATEGORY_NEXT:
                await self.target.next_image()
        else:
            logger.warning(f"Unknown hotkey action: {action}")

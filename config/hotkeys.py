# config/hotkeys.py

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

# Modifier-only key presses never form a chord on their own.
MODIFIER_KEY_NAMES = frozenset({"Control", "Meta", "Alt", "Shift"})

# Cmd plays the Ctrl role so hotkey files stay portable between platforms.
_MODIFIER_ALIASES = {
    "ctrl": "Ctrl",
    "control": "Ctrl",
    "cmd": "Ctrl",
    "command": "Ctrl",
    "meta": "Ctrl",
    "alt": "Alt",
    "option": "Alt",
    "shift": "Shift",
}

NEXT_IMAGE = "next_image"
PREVIOUS_IMAGE = "previous_image"
DELETE_IMAGE_AND_NEXT = "delete_image_and_next"
TOGGLE_CATEGORY_PREFIX = "toggle_category_"
TOGGLE_CATEGORY_NEXT_PREFIX = "toggle_category_next_"
ASSIGN_CATEGORY_PREFIX = "assign_category_"


def normalize_key(key: str) -> str:
    """Single printable characters are uppercased; named keys pass through."""
    return key.upper() if len(key) == 1 else key


def canonical_modifiers(modifiers: Iterable[str]) -> FrozenSet[str]:
    result = set()
    for modifier in modifiers:
        name = modifier.strip()
        if name:
            result.add(_MODIFIER_ALIASES.get(name.lower(), name))
    return frozenset(result)


def generate_hotkey_id() -> str:
    return f"hotkey_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class Chord:
    """A key plus an unordered set of canonical modifiers."""
    key: str
    modifiers: FrozenSet[str] = frozenset()

    @classmethod
    def of(cls, key: str, modifiers: Iterable[str] = ()) -> "Chord":
        return cls(key=normalize_key(key), modifiers=canonical_modifiers(modifiers))


@dataclass(frozen=True)
class KeyEvent:
    """A captured key press, independent of any GUI toolkit."""
    key: str
    ctrl: bool = False
    meta: bool = False
    alt: bool = False
    shift: bool = False

    @property
    def is_modifier_only(self) -> bool:
        return self.key in MODIFIER_KEY_NAMES

    @property
    def has_modifiers(self) -> bool:
        return self.ctrl or self.meta or self.alt or self.shift

    def modifiers(self) -> List[str]:
        """Modifier names as they are written into a new binding."""
        mods: List[str] = []
        if self.ctrl or self.meta:
            mods.append("Cmd" if self.meta else "Ctrl")
        if self.alt:
            mods.append("Alt")
        if self.shift:
            mods.append("Shift")
        return mods

    def chord(self) -> Chord:
        return Chord.of(self.key, self.modifiers())


def parse_chord(text: str) -> KeyEvent:
    """Build a KeyEvent from ``"Ctrl+Shift+K"`` or ``"Ctrl + K"`` notation."""
    parts = [p.strip() for p in text.replace(" + ", "+").split("+")]
    # A trailing empty part means the key itself was "+".
    if len(parts) > 1 and parts[-1] == "" and parts[-2] == "":
        parts = parts[:-2] + ["+"]
    *mods, key = parts
    flags = {"ctrl": False, "meta": False, "alt": False, "shift": False}
    for mod in mods:
        lowered = mod.lower()
        if lowered in ("cmd", "command", "meta"):
            flags["meta"] = True
        elif lowered in ("ctrl", "control"):
            flags["ctrl"] = True
        elif lowered in ("alt", "option"):
            flags["alt"] = True
        elif lowered == "shift":
            flags["shift"] = True
        else:
            raise ValueError(f"Unknown modifier '{mod}' in chord '{text}'")
    if not key:
        raise ValueError(f"Chord '{text}' has no key")
    return KeyEvent(key=key, **flags)


@dataclass(frozen=True)
class HotkeyConfig:
    """A persisted key binding."""
    id: str
    key: str
    modifiers: Tuple[str, ...] = ()
    action: str = ""

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "HotkeyConfig":
        """Create a HotkeyConfig from a loaded file entry, defaulting missing fields."""
        raw_mods = config.get("modifiers")
        modifiers = tuple(m for m in raw_mods if isinstance(m, str)) if isinstance(raw_mods, list) else ()
        key = config.get("key")
        action = config.get("action")
        return cls(
            id=str(config.get("id") or generate_hotkey_id()),
            key=normalize_key(key) if isinstance(key, str) else "",
            modifiers=modifiers,
            action=action if isinstance(action, str) else "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "key": self.key, "modifiers": list(self.modifiers), "action": self.action}

    @property
    def chord(self) -> Chord:
        return Chord.of(self.key, self.modifiers)


def format_chord(key: str, modifiers: Iterable[str] = ()) -> str:
    return " + ".join([*modifiers, key])


class ActionKind(Enum):
    NONE = "none"
    NEXT_IMAGE = "next_image"
    PREVIOUS_IMAGE = "previous_image"
    DELETE_IMAGE_AND_NEXT = "delete_image_and_next"
    TOGGLE_CATEGORY = "toggle_category"
    TOGGLE_CATEGORY_NEXT = "toggle_category_next"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class HotkeyAction:
    kind: ActionKind
    category_id: str = ""


_SIMPLE_ACTIONS = {
    NEXT_IMAGE: ActionKind.NEXT_IMAGE,
    PREVIOUS_IMAGE: ActionKind.PREVIOUS_IMAGE,
    DELETE_IMAGE_AND_NEXT: ActionKind.DELETE_IMAGE_AND_NEXT,
}


def parse_action(action: str) -> HotkeyAction:
    if not action:
        return HotkeyAction(ActionKind.NONE)
    if action in _SIMPLE_ACTIONS:
        return HotkeyAction(_SIMPLE_ACTIONS[action])
    # Longest prefix first: toggle_category_next_ also starts with toggle_category_.
    if action.startswith(TOGGLE_CATEGORY_NEXT_PREFIX):
        return HotkeyAction(ActionKind.TOGGLE_CATEGORY_NEXT, action[len(TOGGLE_CATEGORY_NEXT_PREFIX):])
    if action.startswith(TOGGLE_CATEGORY_PREFIX):
        return HotkeyAction(ActionKind.TOGGLE_CATEGORY, action[len(TOGGLE_CATEGORY_PREFIX):])
    if action.startswith(ASSIGN_CATEGORY_PREFIX):
        # Legacy assign bindings behave as toggles.
        return HotkeyAction(ActionKind.TOGGLE_CATEGORY, action[len(ASSIGN_CATEGORY_PREFIX):])
    return HotkeyAction(ActionKind.UNKNOWN)


def toggle_action(category_id: str, advance: bool = False) -> str:
    prefix = TOGGLE_CATEGORY_NEXT_PREFIX if advance else TOGGLE_CATEGORY_PREFIX
    return f"{prefix}{category_id}"


def action_references_category(action: str, category_id: str) -> bool:
    return (
        action == toggle_action(category_id)
        or action == toggle_action(category_id, advance=True)
        or action == f"{ASSIGN_CATEGORY_PREFIX}{category_id}"
    )


def describe_action(action: str, category_names: Mapping[str, str]) -> str:
    """Human readable label for an action string."""
    parsed = parse_action(action)
    if parsed.kind is ActionKind.NONE:
        return "No action"
    if parsed.kind is ActionKind.NEXT_IMAGE:
        return "Next Image"
    if parsed.kind is ActionKind.PREVIOUS_IMAGE:
        return "Previous Image"
    if parsed.kind is ActionKind.DELETE_IMAGE_AND_NEXT:
        return "Delete Image and move to next"
    name: Optional[str] = category_names.get(parsed.category_id)
    if parsed.kind is ActionKind.UNKNOWN or name is None:
        return f"{action} (category not found)"
    if parsed.kind is ActionKind.TOGGLE_CATEGORY_NEXT:
        return f"Toggle {name} and move to next"
    return f"Toggle {name}"

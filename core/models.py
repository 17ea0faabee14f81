# core/models.py
"""Value types for images, categories, assignments, filters and the persisted config file.

External data (the ``.hito.json`` payload, CLI arguments) enters through the
``from_dict`` constructors, which validate and default every field so the rest
of the engine never sees a partially populated record.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

from config.hotkeys import HotkeyConfig

logger = logging.getLogger(__name__)

UNCATEGORIZED = "uncategorized"

Timestamp = Union[str, int, float, None]


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Timestamp) -> float:
    """Return *value* as epoch milliseconds; missing or unparseable values are 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return 0.0
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp() * 1000.0


def file_name(path: str) -> str:
    """Final path segment, treating both separators alike."""
    return path.replace("\\", "/").rsplit("/", 1)[-1]


@dataclass(frozen=True)
class Image:
    """An image in the browsed directory. Identity is the path."""
    path: str
    size: Optional[int] = None
    created_at: Timestamp = None


@dataclass(frozen=True)
class CategoryAssignment:
    category_id: str
    assigned_at: str = ""

    @classmethod
    def from_config(cls, data: Any) -> Optional["CategoryAssignment"]:
        # Older files stored bare category ids.
        if isinstance(data, str):
            return cls(category_id=data) if data else None
        if isinstance(data, dict) and isinstance(data.get("category_id"), str) and data["category_id"]:
            assigned_at = data.get("assigned_at") or ""
            return cls(category_id=data["category_id"], assigned_at=str(assigned_at))
        return None

    def to_dict(self) -> Dict[str, str]:
        return {"category_id": self.category_id, "assigned_at": self.assigned_at}


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    color: str
    mutually_exclusive_with: FrozenSet[str] = frozenset()

    @classmethod
    def from_config(cls, data: Any) -> Optional["Category"]:
        if not isinstance(data, dict):
            return None
        cat_id, name = data.get("id"), data.get("name")
        if not isinstance(cat_id, str) or not cat_id or not isinstance(name, str):
            return None
        exclusive = data.get("mutuallyExclusiveWith") or []
        if not isinstance(exclusive, (list, tuple, set)):
            exclusive = []
        return cls(
            id=cat_id,
            name=name,
            color=str(data.get("color") or "#888888"),
            mutually_exclusive_with=frozenset(e for e in exclusive if isinstance(e, str) and e != cat_id),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id, "name": self.name, "color": self.color}
        if self.mutually_exclusive_with:
            result["mutuallyExclusiveWith"] = sorted(self.mutually_exclusive_with)
        return result


class NameOperator(str, Enum):
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    EXACT = "exact"


class SizeOperator(str, Enum):
    LARGER_THAN = "largerThan"
    LESS_THAN = "lessThan"
    BETWEEN = "between"


class SortOption(str, Enum):
    NAME = "name"
    DATE_CREATED = "dateCreated"
    LAST_CATEGORIZED = "lastCategorized"
    SIZE = "size"


class SortDirection(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


@dataclass(frozen=True)
class FilterOptions:
    """User-selected filter criteria. Every field is mandatory but may be empty."""
    category_id: str = ""
    name_pattern: str = ""
    name_operator: str = NameOperator.CONTAINS.value
    size_operator: str = SizeOperator.LARGER_THAN.value
    size_value: str = ""
    size_value2: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FilterOptions":
        def text(*keys: str, default: str = "") -> str:
            for key in keys:
                value = data.get(key)
                if value is not None:
                    return str(value)
            return default

        return cls(
            category_id=text("categoryId", "category_id"),
            name_pattern=text("namePattern", "name_pattern"),
            name_operator=text("nameOperator", "name_operator", default=NameOperator.CONTAINS.value),
            size_operator=text("sizeOperator", "size_operator", default=SizeOperator.LARGER_THAN.value),
            size_value=text("sizeValue", "size_value"),
            size_value2=text("sizeValue2", "size_value2"),
        )


AssignmentMap = Dict[str, List[CategoryAssignment]]


@dataclass
class ConfigData:
    """Typed contents of a ``.hito.json`` file."""
    categories: List[Category] = field(default_factory=list)
    image_categories: AssignmentMap = field(default_factory=dict)
    hotkeys: List[HotkeyConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "ConfigData":
        if not isinstance(data, dict):
            logger.warning("Config payload is not an object, ignoring it")
            return cls()

        categories: List[Category] = []
        seen_ids = set()
        for raw in data.get("categories") or []:
            category = Category.from_config(raw)
            if category is None or category.id in seen_ids:
                logger.warning(f"Skipping malformed category entry: {raw!r}")
                continue
            seen_ids.add(category.id)
            categories.append(category)

        image_categories: AssignmentMap = {}
        for row in _iter_assignment_rows(data.get("image_categories")):
            path, raw_list = row
            assignments: List[CategoryAssignment] = []
            for raw in raw_list:
                assignment = CategoryAssignment.from_config(raw)
                if assignment is None:
                    logger.warning(f"Skipping malformed assignment for {path}: {raw!r}")
                    continue
                if any(a.category_id == assignment.category_id for a in assignments):
                    continue
                assignments.append(assignment)
            if assignments:
                image_categories[path] = assignments

        hotkeys: List[HotkeyConfig] = []
        for raw in data.get("hotkeys") or []:
            if not isinstance(raw, dict):
                logger.warning(f"Skipping malformed hotkey entry: {raw!r}")
                continue
            hotkeys.append(HotkeyConfig.from_config(raw))

        return cls(categories=categories, image_categories=image_categories, hotkeys=hotkeys)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "categories": [c.to_dict() for c in self.categories],
            "image_categories": [
                [path, [a.to_dict() for a in assignments]]
                for path, assignments in self.image_categories.items()
                if assignments
            ],
            "hotkeys": [h.to_dict() for h in self.hotkeys],
        }


def _iter_assignment_rows(raw: Any) -> Iterable[tuple]:
    """Yield ``(path, list)`` pairs from either the pair-list or the object form."""
    if isinstance(raw, dict):
        items: Iterable[Any] = raw.items()
    elif isinstance(raw, list):
        items = raw
    else:
        return
    for item in items:
        if (isinstance(item, (list, tuple)) and len(item) == 2
                and isinstance(item[0], str) and isinstance(item[1], list)):
            yield item[0], item[1]
        else:
            logger.warning(f"Skipping malformed image_categories row: {item!r}")

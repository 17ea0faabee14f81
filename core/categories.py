# core/categories.py
"""Category definitions and the per-image assignment map.

The assignment map never holds an empty list: a path with no assignments has
no entry at all. Every mutation below keeps that true and replaces a path's
list in one step, so no caller can observe a half-applied exclusion.
"""
import logging
import re
import uuid
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional

from .errors import CategoryValidationError
from .models import AssignmentMap, Category, CategoryAssignment, utc_now_iso

logger = logging.getLogger(__name__)

_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


def generate_category_id() -> str:
    return f"category_{uuid.uuid4().hex[:12]}"


def copy_assignments(assignments: AssignmentMap) -> AssignmentMap:
    # Assignments are frozen, copying the lists is enough.
    return {path: list(items) for path, items in assignments.items()}


@dataclass(frozen=True)
class StoreSnapshot:
    categories: tuple
    assignments: AssignmentMap


class CategoryStore:
    """Owns the category list and the ``path -> [CategoryAssignment]`` map."""

    def __init__(self, clock: Callable[[], str] = utc_now_iso):
        self._categories: List[Category] = []
        self._assignments: AssignmentMap = {}
        self._clock = clock

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def categories(self) -> List[Category]:
        return list(self._categories)

    @property
    def assignments(self) -> AssignmentMap:
        """The live map. Treat as read-only; mutate through the store."""
        return self._assignments

    def get_category(self, category_id: str) -> Optional[Category]:
        for category in self._categories:
            if category.id == category_id:
                return category
        return None

    def category_names(self) -> Dict[str, str]:
        return {c.id: c.name for c in self._categories}

    def assignments_for(self, path: str) -> List[CategoryAssignment]:
        return list(self._assignments.get(path, ()))

    def assigned_ids(self, path: str) -> List[str]:
        return [a.category_id for a in self._assignments.get(path, ())]

    def has_assignment(self, path: str, category_id: str) -> bool:
        return any(a.category_id == category_id for a in self._assignments.get(path, ()))

    def category_counts(self) -> Dict[str, int]:
        counts = {c.id: 0 for c in self._categories}
        for assignments in self._assignments.values():
            for assignment in assignments:
                if assignment.category_id in counts:
                    counts[assignment.category_id] += 1
        return counts

    def is_name_taken(self, name: str, exclude_id: Optional[str] = None) -> bool:
        normalized = name.strip().lower()
        return any(
            c.name.lower() == normalized
            for c in self._categories
            if not (exclude_id and c.id == exclude_id)
        )

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(categories=tuple(self._categories), assignments=copy_assignments(self._assignments))

    def snapshot_assignments(self) -> AssignmentMap:
        return copy_assignments(self._assignments)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_category(self, name: str, color: str, exclusive_with: Iterable[str],
                          exclude_id: Optional[str] = None) -> None:
        """Raise CategoryValidationError for input that must not reach the store."""
        if not name.strip():
            raise CategoryValidationError("Please enter a category name.")
        if self.is_name_taken(name, exclude_id):
            raise CategoryValidationError(f'A category with the name "{name.strip()}" already exists.')
        if not _HEX_COLOR.match(color):
            raise CategoryValidationError(f"Invalid colour '{color}', expected #rrggbb.")
        for other_id in exclusive_with:
            if exclude_id and other_id == exclude_id:
                raise CategoryValidationError("A category cannot exclude itself.")
            if self.get_category(other_id) is None:
                raise CategoryValidationError(f"Unknown category '{other_id}' in exclusion list.")

    # ------------------------------------------------------------------
    # Category mutations
    # ------------------------------------------------------------------

    def replace_all(self, categories: Iterable[Category], assignments: AssignmentMap) -> None:
        self._categories = list(categories)
        self._assignments = {path: list(items) for path, items in assignments.items() if items}

    def restore(self, snapshot: StoreSnapshot) -> None:
        self._categories = list(snapshot.categories)
        self._assignments = copy_assignments(snapshot.assignments)

    def add_category(self, category: Category) -> None:
        if self.get_category(category.id) is not None:
            raise CategoryValidationError(f"Category id '{category.id}' already exists.")
        self._categories.append(category)
        logger.debug(f"Added category {category.id} ({category.name})")

    def update_category(self, category: Category) -> None:
        for index, existing in enumerate(self._categories):
            if existing.id == category.id:
                self._categories[index] = category
                logger.debug(f"Updated category {category.id}")
                return
        raise CategoryValidationError(f"Unknown category '{category.id}'.")

    def remove_category(self, category_id: str) -> int:
        """Remove a category and every assignment naming it. Returns images touched."""
        touched = 0
        for path in list(self._assignments):
            current = self._assignments[path]
            remaining = [a for a in current if a.category_id != category_id]
            if len(remaining) == len(current):
                continue
            touched += 1
            if remaining:
                self._assignments[path] = remaining
            else:
                del self._assignments[path]

        updated: List[Category] = []
        for category in self._categories:
            if category.id == category_id:
                continue
            if category_id in category.mutually_exclusive_with:
                category = replace(category, mutually_exclusive_with=category.mutually_exclusive_with - {category_id})
            updated.append(category)
        self._categories = updated
        logger.debug(f"Removed category {category_id}, {touched} image(s) lost the assignment")
        return touched

    # ------------------------------------------------------------------
    # Assignment mutations
    # ------------------------------------------------------------------

    def _require(self, category_id: str) -> Category:
        category = self.get_category(category_id)
        if category is None:
            raise CategoryValidationError(f"Unknown category '{category_id}'.")
        return category

    def _without_exclusive(self, current: List[CategoryAssignment], target: Category) -> List[CategoryAssignment]:
        kept = []
        for assignment in current:
            if assignment.category_id in target.mutually_exclusive_with:
                continue
            other = self.get_category(assignment.category_id)
            if other is not None and target.id in other.mutually_exclusive_with:
                continue
            kept.append(assignment)
        return kept

    def toggle_assignment(self, path: str, category_id: str) -> bool:
        """Toggle *category_id* on *path*. Returns True if it is now assigned."""
        target = self._require(category_id)
        current = self._assignments.get(path, [])
        if any(a.category_id == category_id for a in current):
            remaining = [a for a in current if a.category_id != category_id]
            self._write(path, remaining)
            return False
        kept = self._without_exclusive(current, target)
        self._write(path, kept + [CategoryAssignment(category_id=category_id, assigned_at=self._clock())])
        return True

    def assign_assignment(self, path: str, category_id: str) -> bool:
        """Add-only variant of toggle. Returns True if the map changed."""
        target = self._require(category_id)
        current = self._assignments.get(path, [])
        if any(a.category_id == category_id for a in current):
            return False
        kept = self._without_exclusive(current, target)
        self._write(path, kept + [CategoryAssignment(category_id=category_id, assigned_at=self._clock())])
        return True

    def set_path_assignments(self, path: str, assignments: List[CategoryAssignment]) -> None:
        """Put back a path's list exactly as captured, used for rollback."""
        self._write(path, list(assignments))

    def remove_path(self, path: str) -> List[CategoryAssignment]:
        return self._assignments.pop(path, [])

    def _write(self, path: str, assignments: List[CategoryAssignment]) -> None:
        if assignments:
            self._assignments[path] = assignments
        else:
            self._assignments.pop(path, None)

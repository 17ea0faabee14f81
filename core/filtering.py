# core/filtering.py
"""Filter and sort the image collection into the view shown to the user.

``compute_view`` is pure and total: malformed filter input switches the
affected filter off instead of raising or emptying the result.
"""
import functools
import locale
import re
from typing import Callable, Dict, List, Optional, Sequence

from .models import (
    UNCATEGORIZED,
    AssignmentMap,
    FilterOptions,
    Image,
    NameOperator,
    SizeOperator,
    SortDirection,
    SortOption,
    file_name,
    parse_timestamp,
)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_size_kb(value: Optional[str]) -> Optional[int]:
    """Parse a KB string into bytes. Empty, negative or non-numeric input gives None."""
    if value is None:
        return None
    match = _LEADING_INT.match(str(value))
    if not match:
        return None
    kb = int(match.group(1))
    if kb < 0:
        return None
    return kb * 1024


# ----------------------------------------------------------------------
# Filters
# ----------------------------------------------------------------------

def filter_by_category(images: List[Image], category_id: str, assignments: AssignmentMap) -> List[Image]:
    if not category_id:
        return images
    if category_id == UNCATEGORIZED:
        return [img for img in images if not assignments.get(img.path)]
    return [
        img for img in images
        if any(a.category_id == category_id for a in assignments.get(img.path, ()))
    ]


_NAME_MATCHERS: Dict[str, Callable[[str, str], bool]] = {
    NameOperator.CONTAINS.value: lambda name, pattern: pattern in name,
    NameOperator.STARTS_WITH.value: lambda name, pattern: name.startswith(pattern),
    NameOperator.ENDS_WITH.value: lambda name, pattern: name.endswith(pattern),
    NameOperator.EXACT.value: lambda name, pattern: name == pattern,
}


def filter_by_name(images: List[Image], pattern: str, operator: str) -> List[Image]:
    if not pattern:
        return images
    matcher = _NAME_MATCHERS.get(operator)
    if matcher is None:
        return images
    lowered = pattern.lower()
    return [img for img in images if matcher(file_name(img.path).lower(), lowered)]


def filter_by_size(images: List[Image], operator: str, value: str, value2: str) -> List[Image]:
    threshold = parse_size_kb(value)
    if threshold is None:
        return images

    if operator == SizeOperator.LESS_THAN.value:
        return [img for img in images if (img.size or 0) < threshold]
    if operator == SizeOperator.BETWEEN.value:
        other = parse_size_kb(value2)
        if other is None:
            return images
        low, high = min(threshold, other), max(threshold, other)
        return [img for img in images if low <= (img.size or 0) <= high]
    # largerThan, and the fallback for unknown operators
    return [img for img in images if (img.size or 0) > threshold]


def apply_filters(images: Sequence[Image], filters: FilterOptions, assignments: AssignmentMap) -> List[Image]:
    result = filter_by_category(list(images), filters.category_id, assignments)
    result = filter_by_name(result, filters.name_pattern, filters.name_operator)
    result = filter_by_size(result, filters.size_operator, filters.size_value, filters.size_value2)
    return result


# ----------------------------------------------------------------------
# Sorting
# ----------------------------------------------------------------------

def _compare(a, b) -> int:
    return (a > b) - (a < b)


def last_categorized(path: str, assignments: AssignmentMap) -> float:
    """Latest assigned_at across the path's assignments, 0 when none parse."""
    stamps = [parse_timestamp(a.assigned_at) for a in assignments.get(path, ())]
    stamps = [s for s in stamps if s]
    return max(stamps) if stamps else 0.0


def _comparator(sort: SortOption, assignments: AssignmentMap) -> Callable[[Image, Image], int]:
    if sort is SortOption.NAME:
        return lambda a, b: locale.strcoll(file_name(a.path).lower(), file_name(b.path).lower())
    if sort is SortOption.SIZE:
        return lambda a, b: _compare(a.size or 0, b.size or 0)
    if sort is SortOption.DATE_CREATED:
        return lambda a, b: _compare(parse_timestamp(a.created_at), parse_timestamp(b.created_at))
    if sort is SortOption.LAST_CATEGORIZED:
        keys = {}

        def latest(img: Image) -> float:
            if img.path not in keys:
                keys[img.path] = last_categorized(img.path, assignments)
            return keys[img.path]

        return lambda a, b: _compare(latest(a), latest(b))
    raise ValueError(f"Unknown sort option: {sort!r}")


def sort_images(images: List[Image], sort: SortOption, direction: SortDirection,
                assignments: AssignmentMap) -> List[Image]:
    compare = _comparator(sort, assignments)
    if direction is SortDirection.DESCENDING:
        base = compare
        compare = lambda a, b: -base(a, b)
    return sorted(images, key=functools.cmp_to_key(compare))


def compute_view(images: Sequence[Image], assignments: AssignmentMap, filters: FilterOptions,
                 sort: SortOption = SortOption.NAME,
                 direction: SortDirection = SortDirection.ASCENDING) -> List[Image]:
    """Return the filtered, ordered projection of *images*.

    *assignments* is whichever map the caller wants consulted for the category
    filter and the lastCategorized key; the collection passes the frozen
    snapshot while a deferred refilter is in effect.
    """
    filtered = apply_filters(images, filters, assignments)
    return sort_images(filtered, sort, direction, assignments)

# core/collection.py
import logging
from typing import Dict, Iterable, List, Optional

from .categories import CategoryStore
from .filtering import compute_view
from .models import FilterOptions, Image, SortDirection, SortOption
from .refilter import RefilterController

logger = logging.getLogger(__name__)


class ImageCollection:
    """The master image list plus the criteria that project it into a view."""

    def __init__(self, store: CategoryStore, refilter: Optional[RefilterController] = None):
        self.store = store
        self.refilter = refilter or RefilterController()
        self._images: List[Image] = []
        self._loaded: Dict[str, object] = {}
        self.filters = FilterOptions()
        self.sort_option = SortOption.NAME
        self.sort_direction = SortDirection.ASCENDING

    @property
    def images(self) -> List[Image]:
        return list(self._images)

    def set_images(self, images: Iterable[Image]) -> None:
        self._images = list(images)
        self._loaded.clear()
        logger.info(f"Collection holds {len(self._images)} image(s)")

    def contains(self, path: str) -> bool:
        return any(img.path == path for img in self._images)

    def remove_image(self, path: str) -> bool:
        """Drop *path* from every in-memory index. Returns False if it was unknown."""
        before = len(self._images)
        self._images = [img for img in self._images if img.path != path]
        self._loaded.pop(path, None)
        self.store.remove_path(path)
        removed = len(self._images) != before
        if removed:
            logger.debug(f"Removed {path} from collection")
        return removed

    # ------------------------------------------------------------------
    # Loaded image cache
    # ------------------------------------------------------------------

    def cached_image(self, path: str) -> Optional[object]:
        return self._loaded.get(path)

    def cache_image(self, path: str, data: object) -> None:
        self._loaded[path] = data

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    def compute_view(self) -> List[Image]:
        assignments = self.refilter.source(self.store.assignments)
        return compute_view(self._images, assignments, self.filters, self.sort_option, self.sort_direction)

    def view_paths(self) -> List[str]:
        return [img.path for img in self.compute_view()]

    def set_filters(self, filters: FilterOptions) -> None:
        self.filters = filters

    def set_sort(self, option: SortOption, direction: Optional[SortDirection] = None) -> None:
        self.sort_option = option
        if direction is not None:
            self.sort_direction = direction

"""
HierarchyExplorer

Lazy disclosure of the Site → Subject → Event → Procedure → Asset tree.

Owns one HierarchyNodeCache per level, the set of expanded paths and the
single drill-down selection. Collapsing a node or moving the selection
never touches a cache: re-expanding or re-selecting is a cache hit.

Usage:
    explorer = HierarchyExplorer(ApiHierarchyLoader(client))
    explorer.toggle_expand(HierarchyPath.of(42))        # starts subjects load
    await explorer.settle()
    explorer.children(HierarchyPath.of(42)).data        # [SubjectNode, ...]
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .hierarchy_cache import HierarchyNodeCache
from .hierarchy_models import (
    AssetNode,
    CacheEntry,
    EventNode,
    HierarchyLevel,
    HierarchyPath,
    Page,
    ProcedureNode,
    SubjectNode,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100

# Upper bound on pages walked for one listing
MAX_PAGES = 1000


class HierarchyLoader(ABC):
    """
    Per-level child listings.

    Implementations must reject ids that do not belong to the claimed
    parent with HierarchyPathNotFound.
    """

    @abstractmethod
    async def list_subjects(self, site_id: Any, page: int, limit: int) -> Page[SubjectNode]:
        ...

    @abstractmethod
    async def list_events(self, site_id: Any, subject_id: Any, page: int, limit: int) -> Page[EventNode]:
        ...

    @abstractmethod
    async def list_procedures(
        self, site_id: Any, subject_id: Any, event_id: Any, page: int, limit: int
    ) -> Page[ProcedureNode]:
        ...

    @abstractmethod
    async def list_assets(
        self, site_id: Any, subject_id: Any, event_id: Any, procedure_id: Any, page: int, limit: int
    ) -> Page[AssetNode]:
        ...


@dataclass(frozen=True)
class Breadcrumb:
    level: str                          # sites, site, subject, event, procedure
    label: str
    path: Optional[HierarchyPath] = None


_BREADCRUMB_LEVELS = ("site", "subject", "event", "procedure")


class HierarchyExplorer:
    """
    Expand/collapse tree and drill-down selection over four level caches.

    Methods that may start a load (toggle_expand, select) must be called
    from a running event loop.
    """

    def __init__(
        self,
        loader: HierarchyLoader,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            loader: Source of child listings.
            page_size: Items requested per page when walking a listing.
            timeout: Optional per-load timeout in seconds.
        """
        self.loader = loader
        self.page_size = page_size
        self.timeout = timeout
        self.caches: Dict[HierarchyLevel, HierarchyNodeCache] = {
            level: HierarchyNodeCache(name=level.label) for level in HierarchyLevel
        }
        # dict as an insertion-ordered set
        self._expanded: Dict[HierarchyPath, None] = {}
        self._selection: List[Tuple[HierarchyPath, str]] = []

    # =========================================================================
    # Caches
    # =========================================================================

    @property
    def subjects(self) -> HierarchyNodeCache[SubjectNode]:
        return self.caches[HierarchyLevel.SUBJECTS]

    @property
    def events(self) -> HierarchyNodeCache[EventNode]:
        return self.caches[HierarchyLevel.EVENTS]

    @property
    def procedures(self) -> HierarchyNodeCache[ProcedureNode]:
        return self.caches[HierarchyLevel.PROCEDURES]

    @property
    def assets(self) -> HierarchyNodeCache[AssetNode]:
        return self.caches[HierarchyLevel.ASSETS]

    def cache_for(self, path: HierarchyPath) -> HierarchyNodeCache:
        return self.caches[HierarchyLevel.for_path(path)]

    def children(self, path: HierarchyPath) -> CacheEntry:
        """Current cache entry for the children of path."""
        return self.cache_for(path).peek(path)

    def load_children(self, path: HierarchyPath) -> CacheEntry:
        return self.cache_for(path).get_or_fetch(path, self._load_children, self.timeout)

    def invalidate(self, path: HierarchyPath) -> None:
        self.cache_for(path).invalidate(path)

    async def settle(self) -> None:
        """Wait until no level has a load in flight."""
        await asyncio.gather(*(cache.settle() for cache in self.caches.values()))

    async def _fetch_page(self, path: HierarchyPath, page: int) -> Page:
        level = HierarchyLevel.for_path(path)
        if level is HierarchyLevel.SUBJECTS:
            return await self.loader.list_subjects(path.site_id, page, self.page_size)
        if level is HierarchyLevel.EVENTS:
            return await self.loader.list_events(path.site_id, path.subject_id, page, self.page_size)
        if level is HierarchyLevel.PROCEDURES:
            return await self.loader.list_procedures(
                path.site_id, path.subject_id, path.event_id, page, self.page_size
            )
        return await self.loader.list_assets(
            path.site_id, path.subject_id, path.event_id, path.procedure_id, page, self.page_size
        )

    async def _load_children(self, path: HierarchyPath) -> List[Any]:
        """Walk every page of the child listing for path."""
        items: List[Any] = []
        page = 1
        while True:
            result = await self._fetch_page(path, page)
            items.extend(result.data)
            if not result.data or not result.has_next or page >= MAX_PAGES:
                break
            page += 1
        logger.debug(f"Loaded {len(items)} {HierarchyLevel.for_path(path).label} for {path} in {page} page(s)")
        return items

    # =========================================================================
    # Expand / collapse
    # =========================================================================

    def is_expanded(self, path: HierarchyPath) -> bool:
        return path in self._expanded

    def toggle_expand(self, path: HierarchyPath) -> bool:
        """
        Collapse path if expanded, otherwise expand it and load its children.

        Collapsing only removes path itself from the expanded set; the
        expansion bits and cache entries below it stay put.

        Returns:
            True if path is expanded after the call.
        """
        if path in self._expanded:
            del self._expanded[path]
            return False
        self._expanded[path] = None
        self.load_children(path)
        return True

    def is_visible(self, path: HierarchyPath) -> bool:
        """True when path and all of its ancestors are expanded, so its children are on screen."""
        return all(prefix in self._expanded for prefix in path.prefixes())

    def visible_paths(self) -> List[HierarchyPath]:
        return [path for path in self._expanded if self.is_visible(path)]

    # =========================================================================
    # Drill-down selection
    # =========================================================================

    @property
    def selected_path(self) -> Optional[HierarchyPath]:
        return self._selection[-1][0] if self._selection else None

    @property
    def selected_ids(self) -> List[Any]:
        path = self.selected_path
        return list(path.ids) if path else []

    def select(self, path: HierarchyPath, label: Optional[str] = None) -> Optional[CacheEntry]:
        """
        Drill into path, one selected node per level.

        Selecting the node already selected at its level deselects it along
        with every deeper selection. Otherwise the selection becomes path
        (labels of unchanged ancestors are kept) and its children are loaded.

        Returns:
            Children entry of the new selection, or None after a deselect.
        """
        depth = path.depth
        if len(self._selection) >= depth and self._selection[depth - 1][0] == path:
            del self._selection[depth - 1:]
            return None

        selection = []
        for index, prefix in enumerate(path.prefixes()):
            if index == depth - 1:
                prefix_label = label if label is not None else str(prefix.ids[-1])
            elif index < len(self._selection) and self._selection[index][0] == prefix:
                prefix_label = self._selection[index][1]
            else:
                prefix_label = str(prefix.ids[-1])
            selection.append((prefix, prefix_label))
        self._selection = selection
        return self.load_children(path)

    def navigate_breadcrumb(self, level_index: int) -> None:
        """Keep the first level_index selections; 0 returns to the site list."""
        if level_index < 0:
            raise ValueError(f"Breadcrumb index must be >= 0, got {level_index}")
        del self._selection[level_index:]

    def breadcrumbs(self) -> List[Breadcrumb]:
        crumbs = [Breadcrumb(level="sites", label="Sites")]
        for index, (path, label) in enumerate(self._selection):
            level = _BREADCRUMB_LEVELS[index]
            text = f"Subject {label}" if level == "subject" else label
            crumbs.append(Breadcrumb(level=level, label=text, path=path))
        return crumbs

    # =========================================================================
    # Session
    # =========================================================================

    def reset(self) -> None:
        """Forget every cache entry, expansion and selection."""
        for cache in self.caches.values():
            cache.clear()
        self._expanded.clear()
        self._selection.clear()

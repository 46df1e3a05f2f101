"""
Data models for the Site → Subject → Event → Procedure → Asset hierarchy.

This module defines:
- HierarchyPath: structural cache key (tuple of ancestor ids)
- HierarchyLevel: which child collection a path addresses
- Node dataclasses returned by the hierarchy endpoints
- Page: one page of nodes plus pagination meta
- CacheStatus / CacheEntry: per-key cache state
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from .data_models import CamelCaseRecord, PaginationMeta

T = TypeVar("T")

MAX_DEPTH = 4


# =============================================================================
# Paths
# =============================================================================

@dataclass(frozen=True)
class HierarchyPath:
    """
    Ordered ancestor ids identifying one node: (site,), (site, subject),
    (site, subject, event) or (site, subject, event, procedure).

    Compared and hashed structurally, so ids containing any separator
    character never collide. Ids are compared as given: 42 and "42" are
    different keys.
    """
    ids: Tuple[Any, ...]

    def __post_init__(self):
        ids = tuple(self.ids)
        if not 1 <= len(ids) <= MAX_DEPTH:
            raise ValueError(f"Hierarchy path must hold 1-{MAX_DEPTH} ids, got {len(ids)}")
        if any(node_id is None for node_id in ids):
            raise ValueError("Hierarchy path ids cannot be None")
        object.__setattr__(self, "ids", ids)

    @classmethod
    def of(cls, *ids: Any) -> "HierarchyPath":
        return cls(ids)

    @property
    def depth(self) -> int:
        return len(self.ids)

    def _at(self, index: int) -> Optional[Any]:
        return self.ids[index] if index < len(self.ids) else None

    @property
    def site_id(self) -> Any:
        return self.ids[0]

    @property
    def subject_id(self) -> Optional[Any]:
        return self._at(1)

    @property
    def event_id(self) -> Optional[Any]:
        return self._at(2)

    @property
    def procedure_id(self) -> Optional[Any]:
        return self._at(3)

    @property
    def parent(self) -> Optional["HierarchyPath"]:
        if self.depth == 1:
            return None
        return HierarchyPath(self.ids[:-1])

    def child(self, node_id: Any) -> "HierarchyPath":
        return HierarchyPath(self.ids + (node_id,))

    def prefixes(self) -> List["HierarchyPath"]:
        """Every ancestor path from the site down, ending with this path."""
        return [HierarchyPath(self.ids[:n]) for n in range(1, self.depth + 1)]

    def is_ancestor_of(self, other: "HierarchyPath") -> bool:
        return self.depth < other.depth and other.ids[: self.depth] == self.ids

    def __str__(self) -> str:
        return "/".join(str(node_id) for node_id in self.ids)


class HierarchyLevel(Enum):
    """Child collection addressed by a path of the given depth."""
    SUBJECTS = 1        # subjects of a site
    EVENTS = 2          # events of a subject
    PROCEDURES = 3      # procedures of an event
    ASSETS = 4          # assets of a procedure

    @classmethod
    def for_path(cls, path: HierarchyPath) -> "HierarchyLevel":
        return cls(path.depth)

    @property
    def label(self) -> str:
        return self.name.lower()


# =============================================================================
# Nodes
# =============================================================================

@dataclass
class SiteNode(CamelCaseRecord):
    id: Any
    name: str = ""
    identifier: Optional[str] = None
    country: str = "Unknown"
    country_code: Optional[str] = None
    trial_id: Optional[Any] = None
    trial_name: Optional[str] = None
    subject_count: int = 0
    asset_count: int = 0


@dataclass
class SubjectNode(CamelCaseRecord):
    id: Any
    number: str = ""
    active: Optional[bool] = None
    arm_id: Optional[Any] = None
    arm_name: Optional[str] = None
    created_at: Optional[str] = None
    event_count: int = 0
    procedure_count: int = 0


@dataclass
class EventNode(CamelCaseRecord):
    id: Any
    identifier: Optional[str] = None
    name: Optional[str] = None
    date: Optional[str] = None
    status: Optional[str] = None
    procedure_count: int = 0
    asset_count: int = 0


@dataclass
class ProcedureNode(CamelCaseRecord):
    id: Any
    identifier: Optional[str] = None
    name: Optional[str] = None
    date: Optional[str] = None
    status: Optional[str] = None
    locked: Optional[bool] = None
    evaluator: Optional[str] = None
    asset_count: int = 0


@dataclass
class AssetNode(CamelCaseRecord):
    id: Any
    filename: str = ""
    filesize: int = 0
    filesize_formatted: Optional[str] = None
    duration: Optional[str] = None
    url: Optional[str] = None
    processed: bool = False
    created_at: Optional[str] = None
    reviewed: bool = False
    review_date: Optional[str] = None
    reviewer: Optional[str] = None


NODE_TYPES = {
    HierarchyLevel.SUBJECTS: SubjectNode,
    HierarchyLevel.EVENTS: EventNode,
    HierarchyLevel.PROCEDURES: ProcedureNode,
    HierarchyLevel.ASSETS: AssetNode,
}


@dataclass
class Page(Generic[T]):
    """One page of hierarchy nodes."""
    data: List[T] = field(default_factory=list)
    meta: Optional[PaginationMeta] = None

    @property
    def has_next(self) -> bool:
        if self.meta is None:
            return False
        return self.meta.page < self.meta.total_pages

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [item.to_dict() if hasattr(item, "to_dict") else item for item in self.data],
            "meta": self.meta.to_dict() if self.meta else None,
        }


# =============================================================================
# Cache state
# =============================================================================

class CacheStatus(Enum):
    EMPTY = "empty"
    LOADING = "loading"
    LOADED = "loaded"
    ERRORED = "errored"


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """
    Snapshot of one cache key.

    data survives a failed retry: an ERRORED entry keeps whatever a previous
    successful load stored.
    """
    status: CacheStatus = CacheStatus.EMPTY
    data: Optional[List[T]] = None
    error: Optional[BaseException] = None

    @property
    def is_loading(self) -> bool:
        return self.status is CacheStatus.LOADING

    @property
    def is_loaded(self) -> bool:
        return self.status is CacheStatus.LOADED

    @property
    def is_errored(self) -> bool:
        return self.status is CacheStatus.ERRORED

    def transition(self, status: CacheStatus, **changes: Any) -> "CacheEntry[T]":
        return replace(self, status=status, **changes)


EMPTY_ENTRY: CacheEntry = CacheEntry()

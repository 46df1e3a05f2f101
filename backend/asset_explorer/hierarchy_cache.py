"""
HierarchyNodeCache

Keyed cache with a per-key lifecycle and fetch de-duplication, reused once
per hierarchy level.

State machine per key:
    EMPTY --get_or_fetch--> LOADING --success--> LOADED
                                    --failure--> ERRORED
    LOADED / ERRORED are terminal until invalidate() puts the key back to
    EMPTY (keeping its data).

All transitions happen on the event loop thread. The status check in
get_or_fetch is what guarantees a single loader call per key while it is
loading; no locks are involved.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, Iterable, List, Optional, Set, TypeVar

from .hierarchy_models import EMPTY_ENTRY, CacheEntry, CacheStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

Loader = Callable[[Any], Awaitable[Iterable[T]]]
Listener = Callable[[Hashable, CacheEntry], None]


class HierarchyNodeCache(Generic[T]):
    """
    Memoizes the children of hierarchy nodes.

    Usage:
        cache = HierarchyNodeCache[SubjectNode]("subjects")
        entry = cache.get_or_fetch(path, load_subjects)   # LOADING
        entry = await cache.wait(path)                    # LOADED / ERRORED
    """

    def __init__(self, name: str = "cache"):
        self.name = name
        self._entries: Dict[Hashable, CacheEntry[T]] = {}
        self._tokens: Dict[Hashable, object] = {}
        self._tasks: Dict[Hashable, asyncio.Task] = {}
        self._detached: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    # =========================================================================
    # Reads
    # =========================================================================

    def peek(self, key: Hashable) -> CacheEntry[T]:
        """Current entry without side effects."""
        return self._entries.get(key, EMPTY_ENTRY)

    def status(self, key: Hashable) -> CacheStatus:
        return self.peek(key).status

    def loading_keys(self) -> List[Hashable]:
        return [key for key, entry in self._entries.items() if entry.is_loading]

    # =========================================================================
    # Fetching
    # =========================================================================

    def get_or_fetch(self, key: Hashable, loader: Loader, timeout: Optional[float] = None) -> CacheEntry[T]:
        """
        Return the current entry, starting a load if the key is EMPTY.

        Must be called with a running event loop. The loader is scheduled as
        a task and invoked with the key; LOADING, LOADED and ERRORED entries
        are returned without calling it.

        Args:
            key: Cache key (a HierarchyPath in the explorer).
            loader: Async callable returning the children for the key.
            timeout: Optional seconds before the load settles as ERRORED.
        """
        entry = self.peek(key)
        if entry.status is not CacheStatus.EMPTY:
            return entry

        loop = asyncio.get_running_loop()
        token = object()
        entry = entry.transition(CacheStatus.LOADING, error=None)
        self._tokens[key] = token
        self._set(key, entry)
        task = loop.create_task(self._load(key, loader, timeout, token))
        task.add_done_callback(self._task_done)
        self._tasks[key] = task
        return entry

    async def fetch(self, key: Hashable, loader: Loader, timeout: Optional[float] = None) -> CacheEntry[T]:
        """get_or_fetch, then wait for any in-flight load to settle."""
        self.get_or_fetch(key, loader, timeout)
        return await self.wait(key)

    async def wait(self, key: Hashable) -> CacheEntry[T]:
        """Wait for the in-flight load of key, if any, and return the entry."""
        task = self._tasks.get(key)
        if task is not None:
            await asyncio.wait({task})
        return self.peek(key)

    async def settle(self) -> None:
        """Wait for every in-flight load."""
        while self._tasks:
            await asyncio.wait(set(self._tasks.values()))

    async def _load(self, key: Hashable, loader: Loader, timeout: Optional[float], token: object) -> None:
        try:
            if timeout is not None:
                result = await asyncio.wait_for(loader(key), timeout)
            else:
                result = await loader(key)
            data = list(result or [])
        except asyncio.CancelledError as e:
            self._settle(key, token, CacheStatus.ERRORED, error=e)
            raise
        except asyncio.TimeoutError as e:
            logger.warning(f"[{self.name}] Load of {key} timed out after {timeout}s")
            self._settle(key, token, CacheStatus.ERRORED, error=e)
        except Exception as e:
            logger.warning(f"[{self.name}] Load of {key} failed: {e}")
            self._settle(key, token, CacheStatus.ERRORED, error=e)
        else:
            self._settle(key, token, CacheStatus.LOADED, data=data)

    def _settle(self, key: Hashable, token: object, status: CacheStatus, **changes: Any) -> None:
        if self._tokens.get(key) is not token:
            logger.debug(f"[{self.name}] Ignoring stale {status.value} result for {key}")
            return
        del self._tokens[key]
        self._tasks.pop(key, None)
        # A failed load leaves previously loaded data in place
        self._set(key, self.peek(key).transition(status, **{"error": None, **changes}))

    # =========================================================================
    # Invalidation
    # =========================================================================

    def invalidate(self, key: Hashable) -> None:
        """
        Return key to EMPTY so the next get_or_fetch reloads it.

        Previous data is kept. A load already in flight for the key is
        detached: its result is discarded when it arrives.
        """
        entry = self._entries.get(key)
        if entry is None:
            return
        self._tokens.pop(key, None)
        self._detach(self._tasks.pop(key, None))
        self._set(key, entry.transition(CacheStatus.EMPTY, error=None))

    def clear(self) -> None:
        """Drop every entry; in-flight loads resolve as no-ops."""
        logger.debug(f"[{self.name}] Clearing {len(self._entries)} entries")
        self._entries.clear()
        self._tokens.clear()
        for task in self._tasks.values():
            self._detach(task)
        self._tasks.clear()

    def _detach(self, task: Optional[asyncio.Task]) -> None:
        # The event loop only keeps weak references to tasks
        if task is not None and not task.done():
            self._detached.add(task)

    def _task_done(self, task: asyncio.Task) -> None:
        self._detached.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[{self.name}] Load task failed: {task.exception()!r}")

    # =========================================================================
    # Observers
    # =========================================================================

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set(self, key: Hashable, entry: CacheEntry[T]) -> None:
        self._entries[key] = entry
        logger.debug(f"[{self.name}] {key} -> {entry.status.value}")
        for listener in list(self._listeners):
            listener(key, entry)

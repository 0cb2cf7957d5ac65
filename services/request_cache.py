"""RequestCache — TTL cache with in-flight coalescing for slow remote calls.

Per key: MISS -> FETCHING -> FRESH -> (ttl elapses) -> STALE -> FETCHING.
Concurrent callers of the same key share one fetch; the fetcher runs at
most once per TTL window. An optional persistent store (SqlCacheStore)
warm-starts the in-memory cache across sessions, trusted only when fresh
and owned by the same session identity.

Usage:
    cache = RequestCache(ttl_seconds=300)
    status = await cache.get_or_fetch("status:gmail:u1", fetch_status)
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import db.repositories.cache_entries as cache_repo
from db.connection import get_db

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    stored_at: float


class SqlCacheStore:
    """Cross-session persistence for RequestCache entries.

    Stored as {cache_key, value, stored_at, owner_id}; values must be JSON
    serializable.
    """

    def __init__(self, db: Callable = get_db):
        self._db = db

    async def load(self, key: str) -> Optional[Dict[str, Any]]:
        async with self._db() as session:
            entry = await cache_repo.get_entry(session, key)
            if entry is None:
                return None
            return {
                "value": entry.value,
                "stored_at": entry.stored_at,
                "owner_id": entry.owner_id,
            }

    async def save(self, key: str, value: Any, stored_at: float, owner_id: Optional[str]) -> None:
        async with self._db() as session:
            await cache_repo.put_entry(session, key, value, stored_at, owner_id)

    async def delete(self, key: str) -> None:
        async with self._db() as session:
            await cache_repo.delete_entry(session, key)

    async def clear(self, owner_id: str) -> None:
        async with self._db() as session:
            await cache_repo.delete_for_owner(session, owner_id)


class RequestCache:
    """In-memory TTL cache with request coalescing.

    Args:
        ttl_seconds: Maximum age of a served value.
        clock: Returns the current time in seconds (injectable for tests).
        store: Optional persistent store consulted before running a fetcher.
        owner_id: Session identity persisted entries must match.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.time,
        store: Optional[SqlCacheStore] = None,
        owner_id: Optional[str] = None,
    ):
        self.ttl = ttl_seconds
        self._clock = clock
        self._store = store
        self.owner_id = owner_id
        self._entries: Dict[str, CacheEntry] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._generations: Dict[str, int] = {}
        self._persisted_keys: set = set()

    def _is_fresh(self, stored_at: float) -> bool:
        return self._clock() - stored_at < self.ttl

    def peek(self, key: str) -> Optional[Any]:
        """Return the fresh cached value for key without fetching, or None."""
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry.stored_at):
            return entry.value
        return None

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def get_or_fetch(self, key: str, fetcher: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for key, fetching it at most once per TTL.

        Fetcher errors propagate to every waiting caller and are not cached.
        """
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry.stored_at):
            logger.debug("Cache hit for %s", key)
            return entry.value

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load(key, fetcher, self._generations.get(key, 0)))
            self._in_flight[key] = task
            task.add_done_callback(lambda done, key=key: self._settle(key, done))
        else:
            logger.debug("Joining in-flight fetch for %s", key)

        # One caller giving up must not cancel the fetch the others wait on.
        return await asyncio.shield(task)

    def _settle(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Fetch for %s failed: %s", key, task.exception())

    async def _load(self, key: str, fetcher: Callable[[], Awaitable[Any]], generation: int) -> Any:
        warm = await self._load_persisted(key)
        if warm is not None:
            self._remember(key, warm.value, warm.stored_at, generation)
            return warm.value

        value = await fetcher()
        stored_at = self._clock()
        if self._remember(key, value, stored_at, generation):
            await self._persist(key, value, stored_at)
        return value

    def _remember(self, key: str, value: Any, stored_at: float, generation: int) -> bool:
        if self._generations.get(key, 0) != generation:
            logger.debug("Discarding result for %s: invalidated while in flight", key)
            return False
        self._entries[key] = CacheEntry(value=value, stored_at=stored_at)
        return True

    async def _load_persisted(self, key: str) -> Optional[CacheEntry]:
        if self._store is None:
            return None
        try:
            record = await self._store.load(key)
        except Exception as exc:
            logger.warning("Could not read persisted cache entry %s: %s", key, exc)
            return None
        if record is None:
            return None
        if record.get("owner_id") != self.owner_id:
            logger.debug("Ignoring persisted entry %s owned by another session", key)
            return None
        stored_at = record.get("stored_at")
        if not isinstance(stored_at, (int, float)) or not self._is_fresh(stored_at):
            return None
        return CacheEntry(value=record.get("value"), stored_at=float(stored_at))

    async def _persist(self, key: str, value: Any, stored_at: float) -> None:
        if self._store is None:
            return
        try:
            await self._store.save(key, value, stored_at, self.owner_id)
        except Exception as exc:
            logger.warning("Could not persist cache entry %s: %s", key, exc)
        else:
            self._persisted_keys.add(key)

    async def invalidate(self, key: str) -> None:
        """Drop key so the next call refetches (persisted copy included).

        A fetch already in flight still resolves for its current awaiters
        but no longer populates the cache.
        """
        self._entries.pop(key, None)
        self._in_flight.pop(key, None)
        self._generations[key] = self._generations.get(key, 0) + 1
        self._persisted_keys.discard(key)
        if self._store is not None:
            try:
                await self._store.delete(key)
            except Exception as exc:
                logger.warning("Could not delete persisted cache entry %s: %s", key, exc)

    async def clear(self) -> None:
        """Empty the cache and forget in-flight fetches.

        Persisted entries of this owner are deleted too; without an owner
        only the keys this cache persisted itself are removed.
        """
        for key in set(self._entries) | set(self._in_flight):
            self._generations[key] = self._generations.get(key, 0) + 1
        self._entries.clear()
        self._in_flight.clear()
        persisted, self._persisted_keys = self._persisted_keys, set()
        if self._store is None:
            return
        try:
            if self.owner_id is not None:
                await self._store.clear(self.owner_id)
            else:
                for key in persisted:
                    await self._store.delete(key)
        except Exception as exc:
            logger.warning("Could not clear persisted cache entries: %s", exc)

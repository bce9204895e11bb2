"""
Cache Store

A TTL key/value cache for derived financial reads, with an optional
persistent backing store and a stale-while-revalidate accessor.

DESIGN DECISION: One CacheStore is constructed per session and passed
to every consumer. There is no module-level cache; two stores never
share entries, which keeps tests deterministic and lets a host run
several independent sessions side by side.

Freshness of an entry of age `age` (seconds since it was written):
- age <= stale_threshold          fresh: served as is
- stale_threshold < age <= ttl    stale: served, refreshed in background
- age > ttl                       expired: evicted on read
"""

import asyncio
import functools
import json
import math
from typing import Any, Awaitable, Callable, Optional, Pattern, TypeVar, Union

import structlog
from pydantic import ValidationError
from pydantic_core import PydanticSerializationError, to_jsonable_python

from fintrack_core.audit import AuditLogger
from fintrack_core.clock import Clock, SystemClock
from fintrack_core.config import get_settings
from fintrack_core.exceptions import ConfigurationError, TransientFetchError
from fintrack_core.models.cache import CacheEntry
from fintrack_core.services.storage.interface import KeyValueStorage, StorageError


logger = structlog.get_logger(__name__)

T = TypeVar("T")

KeyPattern = Union[str, Pattern[str]]


def generate_key(name: str, params: Optional[dict[str, Any]] = None) -> str:
    """
    Canonical cache key for a named read and its parameters.

    `name` alone when there are no parameters, otherwise
    `name:{JSON with keys sorted}`. Property insertion order never
    changes the key.
    """
    if not params:
        return name
    encoded = json.dumps(
        params,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=to_jsonable_python,
    )
    return f"{name}:{encoded}"


def key_matches(key: str, pattern: KeyPattern) -> bool:
    """
    String patterns match the exact key and keys prefixed `pattern:`.
    Compiled regexes match anywhere in the key.
    """
    if isinstance(pattern, str):
        return key == pattern or key.startswith(pattern + ":")
    return pattern.search(key) is not None


class CacheStore:
    """
    TTL cache with lazy eviction and background refresh.

    Within one store, operations on a key observe last-write-wins in
    call order: a background refresh that finishes after the key was
    invalidated or cleared is discarded instead of resurrecting data.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        clock: Optional[Clock] = None,
        namespace: str = "",
        default_ttl: Optional[float] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """
        Initialize the store.

        Args:
            storage: Persistent backing store. If None, memory only.
            clock: Time source (SystemClock by default).
            namespace: Scopes persisted keys, e.g. "user_42_".
            default_ttl: Seconds; falls back to settings.
            audit_logger: Receives background refresh failures.
        """
        self._settings = get_settings().cache
        self._storage = storage
        self._clock = clock or SystemClock()
        self._namespace = namespace
        self._default_ttl = self._settings.default_ttl_seconds
        if default_ttl is not None:
            self.default_ttl = default_ttl
        self._audit_logger = audit_logger

        self._entries: dict[str, CacheEntry] = {}
        self._versions: dict[str, int] = {}
        self._epoch = 0
        self._refreshing: dict[str, asyncio.Task] = {}
        self._fetching: dict[str, int] = {}
        self._closed = False

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    @default_ttl.setter
    def default_ttl(self, ttl: float) -> None:
        if ttl <= 0:
            raise ValueError("TTL must be positive")
        self._default_ttl = ttl

    @property
    def namespace(self) -> str:
        return self._namespace

    generate_key = staticmethod(generate_key)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _storage_key(self, key: str) -> str:
        return f"{self._settings.storage_prefix}{self._namespace}{key}"

    def _key_from_storage(self, storage_key: str) -> Optional[str]:
        prefix = self._storage_key("")
        if not storage_key.startswith(prefix):
            return None
        return storage_key[len(prefix):]

    def _decode(self, storage_key: str, raw: str) -> CacheEntry:
        try:
            return CacheEntry.model_validate_json(raw)
        except ValidationError as e:
            raise ConfigurationError(storage_key, f"Malformed cache entry: {e.error_count()} errors")

    async def _read_persisted(self, key: str) -> Optional[CacheEntry]:
        if self._storage is None:
            return None

        storage_key = self._storage_key(key)
        try:
            raw = await self._storage.get_item(storage_key)
        except StorageError as e:
            logger.warning("cache_storage_read_failed", key=key[:50], error=str(e))
            return None
        if raw is None:
            return None

        try:
            return self._decode(storage_key, raw)
        except ConfigurationError as e:
            logger.warning("cache_entry_discarded", storage_key=e.storage_key, error=str(e))
            await self._remove_persisted(key)
            return None

    async def _persist(self, key: str, entry: CacheEntry) -> None:
        if self._storage is None:
            return
        try:
            payload = entry.model_dump_json()
        except PydanticSerializationError as e:
            logger.warning("cache_entry_not_serializable", key=key[:50], error=str(e))
            return
        try:
            await self._storage.set_item(self._storage_key(key), payload)
            return
        except StorageError as e:
            logger.warning("cache_storage_write_failed", key=key[:50], error=str(e))

        # Storage may be full: make room once and retry
        await self._cleanup_old_entries(keep=key)
        try:
            await self._storage.set_item(self._storage_key(key), payload)
        except StorageError as e:
            logger.warning("cache_storage_write_failed_after_cleanup", key=key[:50], error=str(e))

    async def _cleanup_old_entries(self, keep: Optional[str] = None) -> list[str]:
        """
        Free space after a failed write.

        Removes every expired entry, then the older half of the entries
        past half their TTL.

        Returns:
            The keys that were removed
        """
        now = self._clock.timestamp()
        expired = []
        aging = []
        for k, entry in self._entries.items():
            if k == keep:
                continue
            if entry.is_expired(now):
                expired.append(k)
            elif entry.age(now) > entry.ttl * 0.5:
                aging.append(k)

        aging.sort(key=lambda k: self._entries[k].timestamp)
        removed = expired + aging[:math.ceil(len(aging) / 2)]
        for k in removed:
            await self._evict(k)

        logger.info("cache_cleanup", removed=len(removed), remaining=len(self._entries))
        return removed

    async def _remove_persisted(self, key: str) -> None:
        if self._storage is None:
            return
        try:
            await self._storage.remove_item(self._storage_key(key))
        except StorageError as e:
            logger.warning("cache_storage_remove_failed", key=key[:50], error=str(e))

    async def _persisted_keys(self) -> list[str]:
        if self._storage is None:
            return []
        try:
            storage_keys = await self._storage.keys()
        except StorageError as e:
            logger.warning("cache_storage_list_failed", error=str(e))
            return []
        keys = []
        for storage_key in storage_keys:
            key = self._key_from_storage(storage_key)
            if key is not None:
                keys.append(key)
        return keys

    async def load_from_storage(self) -> int:
        """
        Restore live persisted entries into memory; drop expired ones.

        Call once after the session's user is known.

        Returns:
            Number of entries restored
        """
        now = self._clock.timestamp()
        restored = 0
        for key in await self._persisted_keys():
            entry = await self._read_persisted(key)
            if entry is None:
                continue
            if entry.is_expired(now):
                await self._remove_persisted(key)
                continue
            self._entries[key] = entry
            restored += 1
        return restored

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            entry = await self._read_persisted(key)
            if entry is None:
                return None

        if entry.is_expired(self._clock.timestamp()):
            await self._evict(key)
            return None

        self._entries[key] = entry
        return entry

    def _bump(self, key: str) -> None:
        self._versions[key] = self._versions.get(key, 0) + 1

    def _write_token(self, key: str) -> tuple[int, int]:
        """Changes whenever the key is written, evicted or the store is cleared."""
        return self._epoch, self._versions.get(key, 0)

    async def _evict(self, key: str) -> None:
        self._entries.pop(key, None)
        self._bump(key)
        await self._remove_persisted(key)

    async def get(self, key: str) -> Optional[Any]:
        """
        Cached value if it has not outlived its TTL, else None.

        Expired entries are evicted as a side effect.
        """
        entry = await self._live_entry(key)
        return entry.data if entry is not None else None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store value under key with a fresh timestamp."""
        entry = CacheEntry(
            data=value,
            timestamp=self._clock.timestamp(),
            ttl=ttl if ttl is not None else self._default_ttl,
        )
        self._entries[key] = entry
        self._bump(key)
        await self._persist(key, entry)

    async def invalidate(self, pattern: KeyPattern) -> list[str]:
        """
        Remove matching entries from memory and persistent storage.

        Args:
            pattern: A string removes the exact key and every key
                     prefixed `pattern:`. A compiled regex removes every
                     key it matches.

        Returns:
            The keys that were removed
        """
        keys = {k for k in self._entries if key_matches(k, pattern)}
        keys.update(k for k in await self._persisted_keys() if key_matches(k, pattern))

        for key in keys:
            await self._evict(key)

        # Keys still being fetched must not be stored when their fetch returns
        in_flight = {k for k in (*self._fetching, *self._refreshing) if key_matches(k, pattern)}
        for key in in_flight - keys:
            self._bump(key)

        if keys:
            logger.debug("cache_invalidated", pattern=_pattern_repr(pattern), count=len(keys))
        return sorted(keys)

    async def clear(self) -> None:
        """Drop every entry of this store (other namespaces are untouched)."""
        self._entries.clear()
        self._epoch += 1
        for key in await self._persisted_keys():
            await self._remove_persisted(key)

    def age(self, key: str) -> Optional[float]:
        """Seconds since the in-memory entry was written, if any."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return entry.age(self._clock.timestamp())

    def is_stale(self, key: str, stale_threshold: Optional[float] = None) -> bool:
        """
        True if the entry is older than stale_threshold but not expired.

        stale_threshold defaults to half the entry's TTL.
        """
        entry = self._entries.get(key)
        if entry is None:
            return False

        age = entry.age(self._clock.timestamp())
        if age > entry.ttl:
            return False

        threshold = stale_threshold if stale_threshold is not None else entry.ttl * 0.5
        return age > threshold

    # ------------------------------------------------------------------
    # Stale-while-revalidate
    # ------------------------------------------------------------------

    async def cache_first_with_refresh(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
        stale_threshold: Optional[float] = None,
    ) -> T:
        """
        Serve from cache, refreshing stale entries in the background.

        Fresh entries are returned as is. Stale entries are returned
        immediately while a detached task refetches and repopulates the
        key. Missing or expired entries are fetched inline.

        Raises:
            Whatever fetch_fn raises on the inline path. Background
            refresh failures are logged and never raised.
        """
        entry = await self._live_entry(key)

        if entry is not None:
            logger.debug("cache_hit", key=key[:50])
            if self.is_stale(key, stale_threshold):
                self._schedule_refresh(key, fetch_fn, ttl)
            return entry.data

        logger.debug("cache_miss", key=key[:50])
        token = self._write_token(key)
        self._fetching[key] = self._fetching.get(key, 0) + 1
        try:
            fresh = await fetch_fn()
        finally:
            self._fetch_done(key)
        if token != self._write_token(key):
            # Invalidated, cleared or rewritten while fetching
            logger.debug("cache_fetch_not_stored", key=key[:50])
            return fresh
        await self.set(key, fresh, ttl)
        return fresh

    def _fetch_done(self, key: str) -> None:
        remaining = self._fetching.get(key, 0) - 1
        if remaining > 0:
            self._fetching[key] = remaining
        else:
            self._fetching.pop(key, None)

    def _schedule_refresh(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
        ttl: Optional[float],
    ) -> Optional[asyncio.Task]:
        if self._closed:
            return None
        running = self._refreshing.get(key)
        if running is not None and not running.done():
            return running

        task = asyncio.create_task(
            self._refresh(key, fetch_fn, ttl, self._write_token(key)),
            name=f"cache-refresh:{key[:50]}",
        )
        self._refreshing[key] = task
        task.add_done_callback(functools.partial(self._refresh_done, key))
        return task

    def _refresh_done(self, key: str, task: asyncio.Task) -> None:
        if self._refreshing.get(key) is task:
            del self._refreshing[key]

    async def _refresh(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
        ttl: Optional[float],
        token: tuple[int, int],
    ) -> None:
        try:
            fresh = await fetch_fn()
        except Exception as e:
            error = TransientFetchError(key, e)
            logger.warning("cache_refresh_failed", key=key[:50], error=str(error.cause))
            if self._audit_logger:
                await self._audit_logger.log_cache_refresh_failed(key, str(error))
            return

        if token != self._write_token(key):
            logger.debug("cache_refresh_discarded", key=key[:50])
            return
        await self.set(key, fresh, ttl)

    @property
    def pending_refreshes(self) -> int:
        return len(self._refreshing)

    async def drain(self) -> None:
        """Wait until every background refresh has finished."""
        while self._refreshing:
            await asyncio.gather(*list(self._refreshing.values()), return_exceptions=True)

    async def close(self) -> None:
        """Stop scheduling refreshes and wait for running ones."""
        self._closed = True
        await self.drain()


def _pattern_repr(pattern: KeyPattern) -> str:
    return pattern if isinstance(pattern, str) else f"/{pattern.pattern}/"


def cached(
    cache: CacheStore,
    name: Optional[str] = None,
    ttl: Optional[float] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Memoise an async function in a CacheStore.

    Positional arguments become params arg0, arg1, ...; keyword
    arguments keep their names; None arguments are left out of the key.
    A cached None is indistinguishable from a miss and is refetched.
    """
    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        fn_name = name or fn.__name__

        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            params = {f"arg{i}": arg for i, arg in enumerate(args) if arg is not None}
            params.update({k: v for k, v in kwargs.items() if v is not None})
            key = generate_key(fn_name, params)

            hit = await cache.get(key)
            if hit is not None:
                return hit

            result = await fn(*args, **kwargs)
            await cache.set(key, result, ttl)
            return result

        return wrapper

    return decorator


__all__ = [
    "CacheStore",
    "KeyPattern",
    "cached",
    "generate_key",
    "key_matches",
]

"""
Cross-Tab Sync

Keeps the caches of several tabs of one session roughly coherent by
broadcasting cache hints after local mutations.

DESIGN DECISION: Broadcasts are fire-and-forget. Each call attempts one
delivery, nothing is queued or retried, and no order is promised between
tabs. Every event only tells the receiver to drop data and refetch, so
duplicated or reordered delivery leaves caches correct.

Transport selection:
1. A BroadcastChannel opened on the hub, when one is given and opens
2. Otherwise the StorageArea fallback: each message is written under a
   unique transient key, observed by the other tabs as a storage event,
   and removed shortly after
3. Otherwise broadcasting is disabled and only logged
"""

import asyncio
import inspect
import json
import re
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union
from uuid import uuid4

import structlog
from pydantic import ValidationError

from fintrack_core.clock import Clock, SystemClock
from fintrack_core.config import get_settings
from fintrack_core.models.cache import CacheSyncEvent, SyncEventType
from fintrack_core.sync.transport import (
    BroadcastChannel,
    LocalBroadcastHub,
    StorageArea,
    StorageConnection,
    StorageEvent,
)

if TYPE_CHECKING:
    from fintrack_core.cache.store import CacheStore, KeyPattern


logger = structlog.get_logger(__name__)

SyncListener = Callable[[CacheSyncEvent], Union[None, Awaitable[None]]]


class CrossTabSync:
    """
    Broadcasts cache hints to, and receives them from, the other tabs.

    Listeners may be plain functions or coroutine functions. Coroutine
    listeners run as tracked tasks; drain() waits for them.
    """

    def __init__(
        self,
        hub: Optional[LocalBroadcastHub] = None,
        storage_area: Optional[StorageArea] = None,
        clock: Optional[Clock] = None,
        channel_name: Optional[str] = None,
    ):
        settings = get_settings().sync
        self._channel_name = channel_name or settings.channel_name
        self._key_prefix = settings.storage_key_prefix
        self._cleanup_delay = settings.cleanup_delay_seconds
        self._clock = clock or SystemClock()

        self._channel: Optional[BroadcastChannel] = None
        self._storage: Optional[StorageConnection] = None
        self._listeners: list[SyncListener] = []
        self._tasks: set[asyncio.Task] = set()
        self._pending_cleanup: dict[str, asyncio.TimerHandle] = {}
        self._detach_cache: Optional[Callable[[], None]] = None

        self._open_transport(hub, storage_area)

    def _open_transport(
        self,
        hub: Optional[LocalBroadcastHub],
        storage_area: Optional[StorageArea],
    ) -> None:
        if hub is not None:
            try:
                channel = hub.open(self._channel_name)
                channel.add_listener(self._on_channel_message)
                self._channel = channel
                return
            except Exception as e:
                logger.warning(
                    "broadcast_channel_unavailable",
                    channel=self._channel_name,
                    error=str(e),
                )

        if storage_area is not None:
            self._storage = storage_area.connect(self._on_storage_event)
            logger.info("cross_tab_sync_storage_fallback", channel=self._channel_name)
        else:
            logger.warning("cross_tab_sync_disabled", channel=self._channel_name)

    @property
    def transport(self) -> str:
        if self._channel is not None:
            return "broadcast_channel"
        if self._storage is not None:
            return "storage"
        return "none"

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def broadcast_invalidate(self, pattern: "KeyPattern") -> None:
        """Tell the other tabs to drop keys matching pattern."""
        if isinstance(pattern, str):
            event = CacheSyncEvent(type=SyncEventType.CACHE_INVALIDATE, pattern=pattern)
        else:
            event = CacheSyncEvent(
                type=SyncEventType.CACHE_INVALIDATE,
                pattern=pattern.pattern,
                is_regex=True,
            )
        self._broadcast(event)

    def broadcast_clear(self) -> None:
        self._broadcast(CacheSyncEvent(type=SyncEventType.CACHE_CLEAR))

    def broadcast_set(self, key: str) -> None:
        self._broadcast(CacheSyncEvent(type=SyncEventType.CACHE_SET, key=key))

    def broadcast_refresh(self, key: str) -> None:
        self._broadcast(CacheSyncEvent(type=SyncEventType.CACHE_REFRESH, key=key))

    def _broadcast(self, event: CacheSyncEvent) -> None:
        message = event.model_dump(mode="json", exclude_none=True)

        if self._channel is not None:
            try:
                self._channel.post_message(message)
            except Exception as e:
                logger.warning("cross_tab_broadcast_failed", type=event.type.value, error=str(e))
            return

        if self._storage is not None:
            self._broadcast_via_storage(message)

    def _broadcast_via_storage(self, message: dict[str, Any]) -> None:
        key = f"{self._key_prefix}{int(self._clock.timestamp() * 1000)}_{uuid4().hex}"
        try:
            self._storage.set_item(key, json.dumps(message))
        except Exception as e:
            logger.warning("cross_tab_broadcast_failed", type=message.get("type"), error=str(e))
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._remove_message_key(key)
            return
        self._pending_cleanup[key] = loop.call_later(
            self._cleanup_delay, self._remove_message_key, key
        )

    def _remove_message_key(self, key: str) -> None:
        self._pending_cleanup.pop(key, None)
        if self._storage is None:
            return
        try:
            self._storage.remove_item(key)
        except Exception as e:
            logger.warning("cross_tab_cleanup_failed", key=key, error=str(e))

    # ------------------------------------------------------------------
    # Receiving
    # ------------------------------------------------------------------

    def subscribe(self, listener: SyncListener) -> Callable[[], None]:
        """
        Register a listener for events from the other tabs.

        Returns:
            A callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _on_channel_message(self, message: dict[str, Any]) -> None:
        self._dispatch(message)

    def _on_storage_event(self, event: StorageEvent) -> None:
        if not event.key.startswith(self._key_prefix) or event.new_value is None:
            return
        try:
            message = json.loads(event.new_value)
        except json.JSONDecodeError as e:
            logger.warning("cross_tab_message_unreadable", key=event.key, error=str(e))
            return
        self._dispatch(message)

    def _dispatch(self, message: Any) -> None:
        try:
            event = CacheSyncEvent.model_validate(message)
        except ValidationError as e:
            logger.warning("cross_tab_message_invalid", errors=e.error_count())
            return

        for listener in list(self._listeners):
            try:
                result = listener(event)
            except Exception as e:
                logger.error("cross_tab_listener_failed", type=event.type.value, error=str(e))
                continue
            if inspect.isawaitable(result):
                self._track(result, event)

    def _track(self, awaitable: Awaitable[None], event: CacheSyncEvent) -> None:
        try:
            task = asyncio.ensure_future(self._run_listener(awaitable, event))
        except RuntimeError:
            logger.warning("cross_tab_listener_dropped", type=event.type.value)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_listener(self, awaitable: Awaitable[None], event: CacheSyncEvent) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.error("cross_tab_listener_failed", type=event.type.value, error=str(e))

    # ------------------------------------------------------------------
    # Cache wiring
    # ------------------------------------------------------------------

    def attach_cache(self, cache: "CacheStore") -> Callable[[], None]:
        """
        Apply events from the other tabs to a local cache.

        INVALIDATE drops matching keys, CLEAR empties the cache, SET and
        REFRESH drop the named key so the next read refetches.
        """
        async def apply(event: CacheSyncEvent) -> None:
            if event.type == SyncEventType.CACHE_INVALIDATE:
                pattern = re.compile(event.pattern) if event.is_regex else event.pattern
                await cache.invalidate(pattern)
            elif event.type == SyncEventType.CACHE_CLEAR:
                await cache.clear()
            else:
                await cache.invalidate(event.key)

        if self._detach_cache is not None:
            self._detach_cache()
        self._detach_cache = self.subscribe(apply)
        return self._detach_cache

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for running coroutine listeners."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Detach listeners and release the transport."""
        self._listeners.clear()
        self._detach_cache = None

        for key, handle in list(self._pending_cleanup.items()):
            handle.cancel()
            self._remove_message_key(key)

        if self._channel is not None:
            self._channel.close()
            self._channel = None
        if self._storage is not None:
            self._storage.close()
            self._storage = None

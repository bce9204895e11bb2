"""Tests for the TTL cache store and its stale-while-revalidate reads."""

import asyncio
import re
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from fintrack_core.audit import AuditLogger
from fintrack_core.cache import CacheStore, cached, generate_key, key_matches
from fintrack_core.models.audit import AuditEventType
from fintrack_core.services.storage import (
    InMemoryAuditStorage,
    InMemoryKeyValueStorage,
    StorageError,
)


class LimitedStorage(InMemoryKeyValueStorage):
    """Refuses to add keys beyond max_items, like a full local storage."""

    def __init__(self, max_items: int):
        super().__init__()
        self.max_items = max_items

    async def set_item(self, key: str, value: str) -> None:
        if key not in self._items and len(self._items) >= self.max_items:
            raise StorageError("quota exceeded")
        await super().set_item(key, value)


class TestGenerateKey:
    """Tests for canonical cache keys."""

    def test_name_only_without_params(self):
        """Test that empty or missing params give the bare name."""
        assert generate_key("budgets") == "budgets"
        assert generate_key("budgets", {}) == "budgets"
        assert generate_key("budgets", None) == "budgets"

    def test_independent_of_insertion_order(self):
        """Test that the same params in any order give the same key."""
        first = generate_key("budgets", {"is_active": True, "category_id": "food"})
        second = generate_key("budgets", {"category_id": "food", "is_active": True})
        assert first == second
        assert first == 'budgets:{"category_id":"food","is_active":true}'

    def test_serialises_dates_and_decimals(self):
        """Test that non-JSON values are written in their JSON form."""
        key = generate_key("transactions", {"start": date(2025, 1, 1), "min": Decimal("10.5")})
        assert key == 'transactions:{"min":"10.5","start":"2025-01-01"}'

    def test_key_matches_prefix_and_regex(self):
        """Test string patterns match the key and its children only."""
        assert key_matches("budgets", "budgets")
        assert key_matches('budgets:{"a":1}', "budgets")
        assert not key_matches("budgets_archive", "budgets")
        assert key_matches("user_budgets", re.compile("budgets"))
        assert not key_matches("transactions", re.compile("^budgets"))


class TestCacheStoreBasics:
    """Tests for get/set/invalidate/clear and freshness."""

    @pytest.mark.asyncio
    async def test_set_then_get(self, clock):
        """Test a value is returned within its TTL."""
        cache = CacheStore(clock=clock)
        await cache.set("budgets", [1, 2, 3], ttl=60)
        assert await cache.get("budgets") == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_expired_entry_is_evicted(self, clock):
        """Test an entry older than its TTL reads as absent."""
        cache = CacheStore(clock=clock)
        await cache.set("budgets", "value", ttl=60)

        clock.advance(seconds=60)
        assert await cache.get("budgets") == "value"

        clock.advance(seconds=1)
        assert await cache.get("budgets") is None
        assert cache.age("budgets") is None

    @pytest.mark.asyncio
    async def test_default_ttl_from_settings(self, clock):
        """Test the default TTL is five minutes."""
        cache = CacheStore(clock=clock)
        assert cache.default_ttl == 300
        await cache.set("k", "v")
        clock.advance(seconds=301)
        assert await cache.get("k") is None

    def test_default_ttl_must_be_positive(self):
        """Test that a non-positive default TTL is rejected."""
        cache = CacheStore()
        with pytest.raises(ValueError):
            cache.default_ttl = 0
        with pytest.raises(ValueError):
            CacheStore(default_ttl=0)

    @pytest.mark.asyncio
    async def test_zero_ttl_is_not_replaced_by_default(self, clock):
        """Test an explicit zero TTL is refused instead of falling back."""
        cache = CacheStore(clock=clock)
        with pytest.raises(ValidationError):
            await cache.set("k", "v", ttl=0)
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_invalidate_string_pattern(self, clock):
        """Test a string removes the exact key and keys prefixed with it."""
        cache = CacheStore(clock=clock)
        await cache.set("budgets", 1)
        await cache.set('budgets:{"is_active":true}', 2)
        await cache.set("budgets_archive", 3)
        await cache.set("transactions", 4)

        removed = await cache.invalidate("budgets")

        assert removed == ["budgets", 'budgets:{"is_active":true}']
        assert await cache.get("budgets") is None
        assert await cache.get('budgets:{"is_active":true}') is None
        assert await cache.get("budgets_archive") == 3
        assert await cache.get("transactions") == 4

    @pytest.mark.asyncio
    async def test_invalidate_regex_pattern(self, clock):
        """Test a compiled regex removes every key it matches."""
        cache = CacheStore(clock=clock)
        await cache.set("budgets", 1)
        await cache.set("transactions:x", 2)
        await cache.set("categories", 3)

        await cache.invalidate(re.compile("^(budgets|transactions)"))

        assert await cache.get("budgets") is None
        assert await cache.get("transactions:x") is None
        assert await cache.get("categories") == 3

    @pytest.mark.asyncio
    async def test_clear(self, clock):
        """Test clear drops every entry."""
        cache = CacheStore(clock=clock)
        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.clear()
        assert await cache.get("a") is None
        assert await cache.get("b") is None

    @pytest.mark.asyncio
    async def test_is_stale_defaults_to_half_ttl(self, clock):
        """Test staleness starts after half the TTL and ends at expiry."""
        cache = CacheStore(clock=clock)
        await cache.set("k", "v", ttl=100)

        clock.advance(seconds=50)
        assert not cache.is_stale("k")
        clock.advance(seconds=1)
        assert cache.is_stale("k")
        assert not cache.is_stale("k", stale_threshold=80)

        clock.advance(seconds=50)
        assert not cache.is_stale("k")

    def test_is_stale_for_missing_key(self):
        """Test a missing key is never stale."""
        assert not CacheStore().is_stale("nothing")


class TestCacheFirstWithRefresh:
    """Tests for stale-while-revalidate reads."""

    @pytest.mark.asyncio
    async def test_miss_fetches_inline_and_stores(self, clock):
        """Test a miss awaits the fetch and caches the result."""
        cache = CacheStore(clock=clock)
        calls = []

        async def fetch():
            calls.append(1)
            return "fresh"

        assert await cache.cache_first_with_refresh("k", fetch, ttl=100) == "fresh"
        assert await cache.get("k") == "fresh"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_fresh_hit_does_not_refetch(self, clock):
        """Test two calls in a row fetch only once."""
        cache = CacheStore(clock=clock)
        calls = []

        async def fetch():
            calls.append(1)
            return len(calls)

        first = await cache.cache_first_with_refresh("k", fetch, ttl=100, stale_threshold=10)
        second = await cache.cache_first_with_refresh("k", fetch, ttl=100, stale_threshold=10)

        assert first == second == 1
        assert len(calls) == 1
        assert cache.pending_refreshes == 0

    @pytest.mark.asyncio
    async def test_stale_hit_returns_old_value_and_refreshes(self, clock):
        """Test a stale entry is served immediately and replaced in the background."""
        cache = CacheStore(clock=clock)
        await cache.set("k", "old", ttl=100)
        clock.advance(seconds=20)

        async def fetch():
            return "new"

        assert await cache.cache_first_with_refresh("k", fetch, ttl=100, stale_threshold=10) == "old"
        await cache.drain()
        assert await cache.get("k") == "new"
        assert cache.age("k") == 0

    @pytest.mark.asyncio
    async def test_expired_entry_fetches_inline(self, clock):
        """Test an expired entry is not served."""
        cache = CacheStore(clock=clock)
        await cache.set("k", "old", ttl=10)
        clock.advance(seconds=11)

        async def fetch():
            return "new"

        assert await cache.cache_first_with_refresh("k", fetch, ttl=10) == "new"

    @pytest.mark.asyncio
    async def test_one_refresh_in_flight_per_key(self, clock):
        """Test repeated stale reads share one background refresh."""
        cache = CacheStore(clock=clock)
        await cache.set("k", "old", ttl=100)
        clock.advance(seconds=60)

        gate = asyncio.Event()
        calls = []

        async def slow_fetch():
            calls.append(1)
            await gate.wait()
            return "new"

        assert await cache.cache_first_with_refresh("k", slow_fetch) == "old"
        assert await cache.cache_first_with_refresh("k", slow_fetch) == "old"
        assert cache.pending_refreshes == 1

        gate.set()
        await cache.drain()

        assert len(calls) == 1
        assert cache.pending_refreshes == 0
        assert await cache.get("k") == "new"

    @pytest.mark.asyncio
    async def test_background_failure_is_logged_not_raised(self, clock):
        """Test a failed refresh keeps the stale value and is audited."""
        audit_storage = InMemoryAuditStorage()
        cache = CacheStore(clock=clock, audit_logger=AuditLogger(audit_storage))
        await cache.set("k", "old", ttl=100)
        clock.advance(seconds=60)

        async def failing_fetch():
            raise RuntimeError("backend down")

        assert await cache.cache_first_with_refresh("k", failing_fetch) == "old"
        await cache.drain()

        assert await cache.get("k") == "old"
        events = await audit_storage.get_recent_events()
        assert [e.event_type for e in events] == [AuditEventType.CACHE_REFRESH_FAILED]
        assert "backend down" in events[0].error_message

    @pytest.mark.asyncio
    async def test_inline_failure_propagates(self, clock):
        """Test a failing fetch on a miss reaches the caller."""
        cache = CacheStore(clock=clock)

        async def failing_fetch():
            raise RuntimeError("backend down")

        with pytest.raises(RuntimeError, match="backend down"):
            await cache.cache_first_with_refresh("k", failing_fetch)
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_refresh_after_invalidate_is_discarded(self, clock):
        """Test a refresh finishing after an invalidation does not restore data."""
        cache = CacheStore(clock=clock)
        await cache.set("budgets", "old", ttl=100)
        clock.advance(seconds=60)

        gate = asyncio.Event()

        async def slow_fetch():
            await gate.wait()
            return "outdated"

        await cache.cache_first_with_refresh("budgets", slow_fetch)
        await cache.invalidate("budgets")
        gate.set()
        await cache.drain()

        assert await cache.get("budgets") is None

    @pytest.mark.asyncio
    async def test_refresh_does_not_overwrite_newer_set(self, clock):
        """Test a value written while a refresh is in flight wins."""
        cache = CacheStore(clock=clock)
        await cache.set("k", "v1", ttl=100)
        clock.advance(seconds=60)

        gate = asyncio.Event()

        async def slow_fetch():
            await gate.wait()
            return "refetched-old"

        assert await cache.cache_first_with_refresh("k", slow_fetch) == "v1"
        await cache.set("k", "v2")
        gate.set()
        await cache.drain()

        assert await cache.get("k") == "v2"

    @pytest.mark.asyncio
    async def test_inline_fetch_after_invalidate_is_not_stored(self, clock):
        """Test a miss whose fetch outlives an invalidation is returned but not cached."""
        cache = CacheStore(clock=clock)
        gate = asyncio.Event()

        async def slow_fetch():
            await gate.wait()
            return "pre-mutation"

        read = asyncio.create_task(cache.cache_first_with_refresh("budgets", slow_fetch))
        await asyncio.sleep(0)
        await cache.invalidate("budgets")
        gate.set()

        assert await read == "pre-mutation"
        assert await cache.get("budgets") is None

    @pytest.mark.asyncio
    async def test_inline_fetch_after_clear_is_not_stored(self, clock):
        cache = CacheStore(clock=clock)
        gate = asyncio.Event()

        async def slow_fetch():
            await gate.wait()
            return "pre-clear"

        read = asyncio.create_task(cache.cache_first_with_refresh("k", slow_fetch))
        await asyncio.sleep(0)
        await cache.clear()
        gate.set()
        await read

        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_closed_store_schedules_no_refresh(self, clock):
        """Test stale reads after close() serve the value without refreshing."""
        cache = CacheStore(clock=clock)
        await cache.set("k", "old", ttl=100)
        clock.advance(seconds=60)
        await cache.close()

        async def fetch():
            return "new"

        assert await cache.cache_first_with_refresh("k", fetch) == "old"
        assert cache.pending_refreshes == 0


class TestCachePersistence:
    """Tests for the persistent backing store."""

    @pytest.mark.asyncio
    async def test_entries_are_persisted_under_namespace(self, clock, storage):
        """Test set writes the entry under prefix + namespace + key."""
        cache = CacheStore(storage=storage, clock=clock, namespace="user_42_")
        await cache.set("budgets", ["a"], ttl=100)

        assert await storage.keys() == ["bofin_cache_user_42_budgets"]

    @pytest.mark.asyncio
    async def test_load_from_storage_restores_live_entries(self, clock, storage):
        """Test a new store picks up live entries and drops expired ones."""
        writer = CacheStore(storage=storage, clock=clock, namespace="user_42_")
        await writer.set("live", "v1", ttl=1000)
        await writer.set("dying", "v2", ttl=10)
        clock.advance(seconds=30)

        reader = CacheStore(storage=storage, clock=clock, namespace="user_42_")
        restored = await reader.load_from_storage()

        assert restored == 1
        assert await reader.get("live") == "v1"
        assert await storage.get_item("bofin_cache_user_42_dying") is None

    @pytest.mark.asyncio
    async def test_get_falls_back_to_storage(self, clock, storage):
        """Test an in-memory miss reads the persisted entry."""
        writer = CacheStore(storage=storage, clock=clock)
        await writer.set("k", {"x": 1}, ttl=100)

        reader = CacheStore(storage=storage, clock=clock)
        assert await reader.get("k") == {"x": 1}

    @pytest.mark.asyncio
    async def test_malformed_entry_is_discarded(self, clock, storage):
        """Test unreadable persisted JSON is treated as absent and removed."""
        await storage.set_item("bofin_cache_user_42_budgets", "{not json")
        cache = CacheStore(storage=storage, clock=clock, namespace="user_42_")

        assert await cache.load_from_storage() == 0
        assert await cache.get("budgets") is None
        assert await storage.keys() == []

    @pytest.mark.asyncio
    async def test_namespaces_are_isolated(self, clock, storage):
        """Test clearing one user's cache leaves another's alone."""
        alice = CacheStore(storage=storage, clock=clock, namespace="user_1_")
        bob = CacheStore(storage=storage, clock=clock, namespace="user_2_")
        await alice.set("budgets", "alice")
        await bob.set("budgets", "bob")

        await alice.clear()

        assert await storage.keys() == ["bofin_cache_user_2_budgets"]
        assert await bob.get("budgets") == "bob"

    @pytest.mark.asyncio
    async def test_invalidate_removes_persisted_entries(self, clock, storage):
        """Test invalidation reaches entries only present in storage."""
        writer = CacheStore(storage=storage, clock=clock)
        await writer.set('budgets:{"is_active":true}', [1])

        other = CacheStore(storage=storage, clock=clock)
        removed = await other.invalidate("budgets")

        assert removed == ['budgets:{"is_active":true}']
        assert await storage.keys() == []

    @pytest.mark.asyncio
    async def test_full_storage_drops_older_half_of_aging_entries(self, clock):
        """Test a refused write frees the oldest aging entries and retries once."""
        storage = LimitedStorage(max_items=3)
        cache = CacheStore(storage=storage, clock=clock)
        await cache.set("a", "a", ttl=100)
        clock.advance(seconds=10)
        await cache.set("b", "b", ttl=100)
        clock.advance(seconds=10)
        await cache.set("c", "c", ttl=100)
        clock.advance(seconds=50)

        # Ages: a=70, b=60, c=50; only a and b are past half their TTL
        await cache.set("d", "d", ttl=100)

        assert await cache.get("a") is None
        assert await cache.get("b") == "b"
        assert await cache.get("d") == "d"
        assert sorted(await storage.keys()) == [
            "bofin_cache_b",
            "bofin_cache_c",
            "bofin_cache_d",
        ]

    @pytest.mark.asyncio
    async def test_cleanup_removes_expired_entries(self, clock):
        """Test expired entries still held in memory are dropped first."""
        storage = LimitedStorage(max_items=2)
        cache = CacheStore(storage=storage, clock=clock)
        await cache.set("short", "s", ttl=10)
        await cache.set("long", "l", ttl=1000)
        clock.advance(seconds=20)

        await cache.set("new", "n", ttl=100)

        assert cache.age("short") is None
        assert await cache.get("long") == "l"
        assert sorted(await storage.keys()) == ["bofin_cache_long", "bofin_cache_new"]

    @pytest.mark.asyncio
    async def test_write_still_failing_after_cleanup_keeps_memory(self, clock):
        """Test a store that refuses every write degrades to memory only."""
        cache = CacheStore(storage=LimitedStorage(max_items=0), clock=clock)

        await cache.set("k", "v", ttl=100)

        assert await cache.get("k") == "v"


class TestCachedDecorator:
    """Tests for the cached() decorator."""

    @pytest.mark.asyncio
    async def test_memoises_by_arguments(self, clock):
        """Test calls with the same arguments hit the cache."""
        cache = CacheStore(clock=clock)
        calls = []

        @cached(cache, "wallet_balance", ttl=60)
        async def wallet_balance(wallet_id, currency=None):
            calls.append(wallet_id)
            return Decimal("100")

        assert await wallet_balance("w1") == Decimal("100")
        assert await wallet_balance("w1") == Decimal("100")
        assert await wallet_balance("w2", currency="VND") == Decimal("100")

        assert calls == ["w1", "w2"]
        assert await cache.get('wallet_balance:{"arg0":"w1"}') == Decimal("100")
        assert await cache.get('wallet_balance:{"arg0":"w2","currency":"VND"}') == Decimal("100")

    @pytest.mark.asyncio
    async def test_refetches_after_ttl(self, clock):
        """Test memoised results expire with the TTL."""
        cache = CacheStore(clock=clock)
        calls = []

        @cached(cache, ttl=10)
        async def load():
            calls.append(1)
            return "data"

        await load()
        clock.advance(seconds=11)
        await load()
        assert len(calls) == 2

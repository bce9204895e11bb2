"""Tests for the bundled storage implementations."""

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from fintrack_core.cache import CacheStore
from fintrack_core.models.budget import BudgetFilters, BudgetUpdate, TransactionFilter, TransactionType
from fintrack_core.services.storage import (
    InMemoryBudgetRepository,
    InMemoryTransactionRepository,
    JsonFileKeyValueStorage,
    NotFoundError,
    StorageError,
)


class TestJsonFileKeyValueStorage:
    """Tests for the file-backed key/value store."""

    @pytest.mark.asyncio
    async def test_values_survive_reopen(self, tmp_path):
        path = tmp_path / "state" / "storage.json"
        storage = JsonFileKeyValueStorage(path)
        await storage.set_item("a", "1")
        await storage.set_item("b", "2")
        await storage.remove_item("a")

        reopened = JsonFileKeyValueStorage(path)
        assert await reopened.get_item("b") == "2"
        assert await reopened.get_item("a") is None
        assert await reopened.keys() == ["b"]
        assert json.loads(path.read_text(encoding="utf-8")) == {"b": "2"}

    @pytest.mark.asyncio
    async def test_unreadable_file_starts_empty(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text("{broken", encoding="utf-8")

        storage = JsonFileKeyValueStorage(path)
        assert await storage.keys() == []

        await storage.set_item("k", "v")
        assert json.loads(path.read_text(encoding="utf-8")) == {"k": "v"}

    @pytest.mark.asyncio
    async def test_non_string_values_are_dropped(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text(json.dumps({"ok": "x", "bad": 3}), encoding="utf-8")

        assert await JsonFileKeyValueStorage(path).keys() == ["ok"]

    @pytest.mark.asyncio
    async def test_failed_write_leaves_state_unchanged(self, tmp_path):
        """Test a write that cannot reach disk is not kept in memory either."""
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory", encoding="utf-8")
        storage = JsonFileKeyValueStorage(blocker / "storage.json")

        with pytest.raises(StorageError):
            await storage.set_item("k", "v")

        assert await storage.get_item("k") is None
        assert await storage.keys() == []

    @pytest.mark.asyncio
    async def test_failed_remove_keeps_item(self, tmp_path, monkeypatch):
        path = tmp_path / "storage.json"
        storage = JsonFileKeyValueStorage(path)
        await storage.set_item("k", "v")

        def refuse(*args, **kwargs):
            raise OSError("read-only file system")

        monkeypatch.setattr(Path, "write_text", refuse)
        with pytest.raises(StorageError):
            await storage.remove_item("k")

        assert await storage.get_item("k") == "v"

    @pytest.mark.asyncio
    async def test_backs_a_cache_across_sessions(self, tmp_path, clock):
        """Test a cache entry written in one session is restored in the next."""
        path = tmp_path / "storage.json"
        first = CacheStore(storage=JsonFileKeyValueStorage(path), clock=clock, namespace="user_1_")
        await first.set("budgets", [{"id": "b1"}], ttl=60)

        second = CacheStore(storage=JsonFileKeyValueStorage(path), clock=clock, namespace="user_1_")
        assert await second.load_from_storage() == 1
        assert await second.get("budgets") == [{"id": "b1"}]

        other_user = CacheStore(storage=JsonFileKeyValueStorage(path), clock=clock, namespace="user_2_")
        assert await other_user.load_from_storage() == 0


class TestInMemoryRepositories:
    """Tests for the in-memory repositories used by hosts and tests."""

    @pytest.mark.asyncio
    async def test_transaction_filter_uses_calendar_dates(self, make_tx):
        repo = InMemoryTransactionRepository([
            make_tx(1, date=date(2025, 1, 1)),
            make_tx(2, date=datetime(2024, 12, 31, 18, 0, tzinfo=timezone.utc)),
            make_tx(4, date=date(2024, 12, 31)),
            make_tx(8, type=TransactionType.INCOME),
        ])

        found = await repo.list_by_filter(TransactionFilter(
            type=TransactionType.EXPENSE,
            start_date=date(2025, 1, 1),
            end_date=date(2025, 1, 31),
        ))

        assert sorted(tx.amount for tx in found) == [Decimal("1"), Decimal("2")]

    @pytest.mark.asyncio
    async def test_budget_listing_newest_period_first(self, make_rule):
        december = make_rule(period_start=date(2024, 12, 1), period_end=date(2024, 12, 31))
        january = make_rule()
        inactive = make_rule(is_active=False)
        repo = InMemoryBudgetRepository([december, january, inactive])

        active = await repo.list_active()
        assert [r.id for r in active] == [january.id, december.id]
        assert len(await repo.list_all(BudgetFilters(year=2024))) == 1

    @pytest.mark.asyncio
    async def test_budget_update_and_delete(self, make_rule):
        rule = make_rule()
        repo = InMemoryBudgetRepository([rule])

        updated = await repo.update(rule.id, BudgetUpdate(amount=Decimal("5")))
        assert updated.amount == Decimal("5")
        assert updated.category_id == rule.category_id

        assert await repo.delete(rule.id)
        assert not await repo.delete(rule.id)
        with pytest.raises(NotFoundError):
            await repo.update(rule.id, BudgetUpdate(amount=Decimal("1")))

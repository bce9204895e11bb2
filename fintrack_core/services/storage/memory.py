"""
In-Memory Storage Implementations

Used by tests and by hosts that keep everything in one process.
They follow the same contracts as a remote store: callers always get
copies, never references into the store.
"""

from datetime import datetime, timezone
from typing import Optional

from fintrack_core.civil_time import to_calendar_date
from fintrack_core.models.audit import AuditEvent
from fintrack_core.models.budget import (
    BudgetDraft,
    BudgetFilters,
    BudgetRule,
    BudgetUpdate,
    Category,
    TransactionFilter,
    TransactionRecord,
)
from fintrack_core.services.storage.interface import (
    AuditStorageInterface,
    BudgetRepository,
    CategoryRepository,
    KeyValueStorage,
    NotFoundError,
    TransactionRepository,
)


class InMemoryKeyValueStorage(KeyValueStorage):
    """A dict behind the KeyValueStorage interface."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._items: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._items)


class InMemoryTransactionRepository(TransactionRepository):
    """Transactions held in a list; filters applied in Python."""

    def __init__(self, transactions: Optional[list[TransactionRecord]] = None):
        self._transactions: list[TransactionRecord] = list(transactions or [])
        self.calls = 0

    def add(self, transaction: TransactionRecord) -> None:
        self._transactions.append(transaction)

    async def list_by_filter(self, filter: TransactionFilter) -> list[TransactionRecord]:
        self.calls += 1
        results = []
        for tx in self._transactions:
            if filter.category_id is not None and tx.category_id != filter.category_id:
                continue
            if filter.wallet_id is not None and tx.wallet_id != filter.wallet_id:
                continue
            if filter.type is not None and tx.type != filter.type:
                continue
            tx_day = to_calendar_date(tx.date)
            if filter.start_date is not None and tx_day < filter.start_date:
                continue
            if filter.end_date is not None and tx_day > filter.end_date:
                continue
            results.append(tx.model_copy())
        return results


class InMemoryBudgetRepository(BudgetRepository):
    """Budget rules keyed by id."""

    def __init__(self, budgets: Optional[list[BudgetRule]] = None):
        self._budgets: dict[str, BudgetRule] = {b.id: b for b in budgets or []}
        self.list_calls = 0

    def _sorted(self, rules: list[BudgetRule]) -> list[BudgetRule]:
        return sorted(
            rules,
            key=lambda b: (b.period_start, b.created_at),
            reverse=True,
        )

    async def list_all(self, filter: Optional[BudgetFilters] = None) -> list[BudgetRule]:
        self.list_calls += 1
        filter = filter or BudgetFilters()
        matching = [b.model_copy() for b in self._budgets.values() if filter.matches(b)]
        return self._sorted(matching)

    async def list_active(self, filter: Optional[BudgetFilters] = None) -> list[BudgetRule]:
        filter = (filter or BudgetFilters()).model_copy(update={"is_active": True})
        return await self.list_all(filter)

    async def get_by_id(self, budget_id: str) -> Optional[BudgetRule]:
        budget = self._budgets.get(budget_id)
        return budget.model_copy() if budget else None

    async def create(self, draft: BudgetDraft) -> BudgetRule:
        rule = BudgetRule(**draft.model_dump())
        self._budgets[rule.id] = rule
        return rule.model_copy()

    async def update(self, budget_id: str, changes: BudgetUpdate) -> BudgetRule:
        current = self._budgets.get(budget_id)
        if current is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        data = current.model_dump()
        data.update(changes.changes())
        data["updated_at"] = datetime.now(timezone.utc)
        updated = BudgetRule(**data)
        self._budgets[budget_id] = updated
        return updated.model_copy()

    async def delete(self, budget_id: str) -> bool:
        return self._budgets.pop(budget_id, None) is not None


class InMemoryCategoryRepository(CategoryRepository):

    def __init__(self, categories: Optional[list[Category]] = None):
        self._categories = list(categories or [])

    async def list_categories(self) -> list[Category]:
        return [c.model_copy() for c in self._categories]


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        return [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]

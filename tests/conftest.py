"""
Shared fixtures.

Test strategy:
1. Unit tests for pure components (periods, spending, limits)
2. Component tests for stores with a FrozenClock and in-memory storage
3. Service tests wired with in-memory repositories, never real backends
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from fintrack_core.clock import FrozenClock
from fintrack_core.models.budget import (
    BudgetRule,
    Category,
    CategoryType,
    LimitType,
    PeriodType,
    ProspectiveTransaction,
    TransactionRecord,
    TransactionType,
)
from fintrack_core.services.session import SessionUser, StaticSessionProvider
from fintrack_core.services.storage import (
    InMemoryCategoryRepository,
    InMemoryKeyValueStorage,
)


@pytest.fixture
def clock():
    """10:00 on 2025-01-15 in the budget calendar (UTC+7)."""
    return FrozenClock(datetime(2025, 1, 15, 3, 0, tzinfo=timezone.utc))


@pytest.fixture
def storage():
    return InMemoryKeyValueStorage()


@pytest.fixture
def user():
    return SessionUser(id="42", email="lan@example.com")


@pytest.fixture
def session(user):
    return StaticSessionProvider(user)


@pytest.fixture
def categories():
    return InMemoryCategoryRepository([
        Category(id="food", name="Food", type=CategoryType.EXPENSE),
        Category(id="transport", name="Transport", type=CategoryType.EXPENSE),
        Category(id="salary", name="Salary", type=CategoryType.INCOME),
    ])


@pytest.fixture
def make_rule():
    """Factory for January 2025 monthly budgets on "food"."""
    def factory(**overrides) -> BudgetRule:
        data = {
            "category_id": "food",
            "amount": Decimal("1000000"),
            "period_type": PeriodType.MONTHLY,
            "period_start": date(2025, 1, 1),
            "period_end": date(2025, 1, 31),
            "limit_type": LimitType.HARD,
        }
        data.update(overrides)
        return BudgetRule(**data)
    return factory


@pytest.fixture
def make_tx():
    """Factory for stored "food" expenses in wallet w1."""
    def factory(amount, **overrides) -> TransactionRecord:
        data = {
            "wallet_id": "w1",
            "category_id": "food",
            "type": TransactionType.EXPENSE,
            "amount": Decimal(str(amount)),
            "date": date(2025, 1, 10),
        }
        data.update(overrides)
        return TransactionRecord(**data)
    return factory


@pytest.fixture
def make_prospective():
    """Factory for a "food" expense about to be written from wallet w1."""
    def factory(amount, **overrides) -> ProspectiveTransaction:
        data = {
            "category_id": "food",
            "wallet_id": "w1",
            "amount": Decimal(str(amount)),
            "date": date(2025, 1, 15),
        }
        data.update(overrides)
        return ProspectiveTransaction(**data)
    return factory

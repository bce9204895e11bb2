"""
Core Data Models for FinTrack Core

These models define the schemas of everything the budget core reads,
evaluates and returns. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for caching and logging

DESIGN DECISION: Amounts are Decimal everywhere.
Usage percentages are rounded to two places and compared against fixed
thresholds; binary floats would make the 80/100/120 boundaries flaky.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class PeriodType(str, Enum):
    """Length of a budget period."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class LimitType(str, Enum):
    """
    What happens when a transaction would exceed the budget.

    HARD rejects the transaction, SOFT lets it through with a warning.
    """
    HARD = "hard"
    SOFT = "soft"


class TransactionType(str, Enum):
    """Direction of money movement."""
    INCOME = "income"
    EXPENSE = "expense"


class CategoryType(str, Enum):
    """Kind of category. Budgets only exist for expense categories."""
    INCOME = "income"
    EXPENSE = "expense"


class BudgetStatus(str, Enum):
    """
    Severity of budget usage.

    Boundaries: <80 safe, [80,100) warning, [100,120) danger, >=120 critical.
    """
    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"
    CRITICAL = "critical"


# =============================================================================
# REFERENCE DATA
# =============================================================================

class Category(BaseModel):
    """A transaction category."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    name: str = Field(..., min_length=1, max_length=200)
    type: CategoryType


# =============================================================================
# BUDGET RULES
# =============================================================================

class BudgetRule(BaseModel):
    """
    A user-defined spending limit for a category over a fixed period.

    A rule with wallet_id set only counts spending from that wallet;
    a rule without one counts spending from every wallet.
    Period boundaries are civil dates in the fixed budget calendar,
    both inclusive.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=_new_id)
    category_id: str = Field(..., min_length=1)
    wallet_id: Optional[str] = None
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Spending limit for the period"
    )
    period_type: PeriodType
    period_start: date
    period_end: date
    is_active: bool = True
    limit_type: Optional[LimitType] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode='after')
    def validate_period(self) -> 'BudgetRule':
        """Period end cannot come before its start."""
        if self.period_end < self.period_start:
            raise ValueError("Budget period end cannot be before start")
        return self

    @property
    def is_wallet_specific(self) -> bool:
        return self.wallet_id is not None

    def overlaps(self, start: date, end: date) -> bool:
        """Check if [start, end] shares at least one day with this rule's period."""
        return start <= self.period_end and end >= self.period_start


class BudgetDraft(BaseModel):
    """
    Payload for creating a budget.

    Validated again by the budget service against existing rules
    (overlap) and categories (expense only) before anything is written.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    category_id: str = Field(..., min_length=1)
    wallet_id: Optional[str] = None
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Budget amount must be greater than zero"
    )
    period_type: PeriodType
    period_start: date
    period_end: date
    limit_type: Optional[LimitType] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode='after')
    def validate_period(self) -> 'BudgetDraft':
        if self.period_end < self.period_start:
            raise ValueError("Budget period end cannot be before start")
        return self


class BudgetUpdate(BaseModel):
    """Partial update of a budget. The category cannot change."""

    wallet_id: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    period_type: Optional[PeriodType] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    limit_type: Optional[LimitType] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    is_active: Optional[bool] = None

    def changes(self) -> dict[str, Any]:
        """Only the fields the caller actually set."""
        return self.model_dump(exclude_unset=True)


class BudgetFilters(BaseModel):
    """Filters for listing budgets."""

    category_id: Optional[str] = None
    wallet_id: Optional[str] = None
    period_type: Optional[PeriodType] = None
    year: Optional[int] = Field(default=None, ge=1970, le=9999)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    is_active: Optional[bool] = None

    def to_params(self) -> dict[str, Any]:
        """Set filters only, JSON-ready, for cache key generation."""
        return self.model_dump(mode="json", exclude_none=True)

    def matches(self, rule: BudgetRule) -> bool:
        if self.category_id is not None and rule.category_id != self.category_id:
            return False
        if self.wallet_id is not None and rule.wallet_id != self.wallet_id:
            return False
        if self.period_type is not None and rule.period_type != self.period_type:
            return False
        if self.is_active is not None and rule.is_active != self.is_active:
            return False
        if self.year is not None:
            if rule.period_start < date(self.year, 1, 1):
                return False
            if rule.period_end > date(self.year, 12, 31):
                return False
            if self.month is not None:
                if (rule.period_start.year, rule.period_start.month) < (self.year, self.month):
                    return False
                if (rule.period_end.year, rule.period_end.month) > (self.year, self.month):
                    return False
        return True


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionRecord(BaseModel):
    """
    A stored transaction. Read-only for the budget core.

    date may be a civil date or an instant; naive datetimes are read
    as wall-clock time in the budget calendar.
    """

    id: str = Field(default_factory=_new_id)
    wallet_id: str
    category_id: str
    type: TransactionType
    amount: Decimal = Field(..., ge=0)
    date: Union[datetime, date]
    exclude_from_reports: bool = False


class ProspectiveTransaction(BaseModel):
    """A transaction about to be written, checked against budget limits."""

    category_id: str
    wallet_id: Optional[str] = None
    amount: Decimal = Field(..., ge=0)
    date: Union[datetime, date]
    type: TransactionType = TransactionType.EXPENSE
    exclude_from_reports: bool = False


class TransactionFilter(BaseModel):
    """Filter passed to TransactionRepository.list_by_filter."""

    category_id: Optional[str] = None
    wallet_id: Optional[str] = None
    type: Optional[TransactionType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def to_params(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# =============================================================================
# DERIVED RESULTS (never persisted)
# =============================================================================

class BudgetEvaluation(BaseModel):
    """A budget rule together with its spending in the rule's period."""

    budget: BudgetRule
    spent_amount: Decimal
    usage_percentage: Decimal
    remaining_amount: Decimal = Field(
        ...,
        description="amount - spent; negative once the budget is exceeded"
    )
    status: BudgetStatus


class LimitCheckResult(BaseModel):
    """
    Decision for a prospective transaction.

    allowed=False only for hard limits. A soft-limit warning comes back
    with allowed=True and a non-empty message.
    """

    allowed: bool
    rule: Optional[BudgetRule] = None
    message: str = ""
    evaluation: Optional[BudgetEvaluation] = None

    @property
    def is_warning(self) -> bool:
        return self.allowed and bool(self.message)


class BudgetAlert(BaseModel):
    """A threshold-crossing alert that was dispatched."""

    budget_id: str
    category_id: str
    category_name: str
    threshold: int
    usage_percentage: Decimal
    spent_amount: Decimal
    budget_amount: Decimal
    remaining_amount: Decimal
    status: BudgetStatus

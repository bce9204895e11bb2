"""
Spend Aggregator

Pure functions turning a budget rule and a list of transactions into the
rule's spent amount, usage and status. No I/O happens here; callers fetch
the transactions first.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from fintrack_core.civil_time import to_calendar_date
from fintrack_core.models.budget import (
    BudgetEvaluation,
    BudgetRule,
    BudgetStatus,
    TransactionRecord,
    TransactionType,
)


TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0")


def counts_towards(rule: BudgetRule, transaction: TransactionRecord) -> bool:
    """Whether a transaction is spending under this rule."""
    if transaction.type != TransactionType.EXPENSE:
        return False
    if transaction.category_id != rule.category_id:
        return False
    if rule.wallet_id is not None and transaction.wallet_id != rule.wallet_id:
        return False
    day = to_calendar_date(transaction.date)
    return rule.period_start <= day <= rule.period_end


def calculate_spent(rule: BudgetRule, transactions: Iterable[TransactionRecord]) -> Decimal:
    """Sum of expenses in the rule's category, wallet scope and period."""
    return sum(
        (t.amount for t in transactions if counts_towards(rule, t)),
        ZERO,
    )


def calculate_usage_percentage(spent: Decimal, amount: Decimal) -> Decimal:
    """spent / amount * 100, rounded half-up to two places; 0 for non-positive amounts."""
    if amount <= 0:
        return ZERO.quantize(TWO_PLACES)
    return (Decimal(spent) / Decimal(amount) * 100).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def get_budget_status(percentage: Decimal) -> BudgetStatus:
    if percentage < 80:
        return BudgetStatus.SAFE
    if percentage < 100:
        return BudgetStatus.WARNING
    if percentage < 120:
        return BudgetStatus.DANGER
    return BudgetStatus.CRITICAL


def build_evaluation(rule: BudgetRule, spent: Decimal) -> BudgetEvaluation:
    """Evaluation of a rule for an already known spent amount."""
    percentage = calculate_usage_percentage(spent, rule.amount)
    return BudgetEvaluation(
        budget=rule,
        spent_amount=spent,
        usage_percentage=percentage,
        remaining_amount=rule.amount - spent,
        status=get_budget_status(percentage),
    )


def evaluate_budget(rule: BudgetRule, transactions: Iterable[TransactionRecord]) -> BudgetEvaluation:
    return build_evaluation(rule, calculate_spent(rule, transactions))

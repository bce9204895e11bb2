"""Budget periods, spending, limit checks and the budget service."""

from fintrack_core.budgets.formatting import (
    format_currency,
    format_percentage,
    get_budget_color,
)
from fintrack_core.budgets.limits import (
    BudgetLimitEvaluator,
    build_limit_message,
    is_checked,
    matching_rules,
    sort_rules,
)
from fintrack_core.budgets.periods import (
    calculate_period,
    get_current_period,
    monthly_period,
    now_in_calendar,
    period_contains,
    weekly_period,
    yearly_period,
)
from fintrack_core.budgets.service import BudgetService
from fintrack_core.budgets.spending import (
    build_evaluation,
    calculate_spent,
    calculate_usage_percentage,
    counts_towards,
    evaluate_budget,
    get_budget_status,
)

__all__ = [
    # Periods
    "calculate_period",
    "get_current_period",
    "monthly_period",
    "now_in_calendar",
    "period_contains",
    "weekly_period",
    "yearly_period",
    # Spending
    "build_evaluation",
    "calculate_spent",
    "calculate_usage_percentage",
    "counts_towards",
    "evaluate_budget",
    "get_budget_status",
    # Limits
    "BudgetLimitEvaluator",
    "build_limit_message",
    "is_checked",
    "matching_rules",
    "sort_rules",
    # Display
    "format_currency",
    "format_percentage",
    "get_budget_color",
    # Service
    "BudgetService",
]

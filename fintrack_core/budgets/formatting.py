"""Display helpers for budget amounts and statuses."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from fintrack_core.config import get_settings
from fintrack_core.models.budget import BudgetStatus


STATUS_COLORS = {
    BudgetStatus.SAFE: "emerald",
    BudgetStatus.WARNING: "amber",
    BudgetStatus.DANGER: "red",
    BudgetStatus.CRITICAL: "rose",
}


def format_currency(value: Union[Decimal, int, float], symbol: Optional[str] = None) -> str:
    """
    Whole đồng with dot thousands separators, e.g. 1050000 -> "1.050.000 ₫".
    """
    symbol = symbol or get_settings().calendar.currency_symbol
    rounded = Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    sign = "-" if rounded < 0 else ""
    digits = f"{abs(int(rounded)):,}".replace(",", ".")
    return f"{sign}{digits} {symbol}"


def format_percentage(value: Decimal) -> str:
    return f"{Decimal(value).quantize(Decimal('0.1'), rounding=ROUND_HALF_UP)}%"


def get_budget_color(status: BudgetStatus) -> str:
    """Colour hint for rendering a budget of this status."""
    return STATUS_COLORS[BudgetStatus(status)]

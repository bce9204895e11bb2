"""Budget threshold alerts."""

from fintrack_core.alerts.dedup import AlertDeduplicator
from fintrack_core.alerts.service import (
    BudgetAlertService,
    build_alert_message,
    build_alert_title,
)

__all__ = [
    "AlertDeduplicator",
    "BudgetAlertService",
    "build_alert_message",
    "build_alert_title",
]

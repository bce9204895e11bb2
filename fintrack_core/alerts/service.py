"""
Budget Alert Service

Sweeps active budgets, and for each one whose usage has reached a new
threshold sends one notification through the host's dispatcher.

DESIGN DECISION: One failing budget never stops the sweep. Evaluation
or dispatch errors are logged (and audited) per budget, and the alert is
only recorded as sent after the dispatcher accepted it, so a failed
delivery is retried on the next sweep.
"""

from typing import Any, Optional
from uuid import UUID

import structlog

from fintrack_core.alerts.dedup import AlertDeduplicator
from fintrack_core.audit import AuditLogger, create_correlation_id
from fintrack_core.budgets.formatting import format_currency, format_percentage
from fintrack_core.budgets.service import BudgetService
from fintrack_core.models.budget import (
    BudgetAlert,
    BudgetEvaluation,
    BudgetFilters,
)
from fintrack_core.services.notifications import NotificationDispatcher
from fintrack_core.services.session import SessionProvider


logger = structlog.get_logger(__name__)

UNKNOWN_CATEGORY = "Unknown category"
ALERT_USAGE_FLOOR = 80


def build_alert_title(category_name: str, threshold: int) -> str:
    if threshold >= 110:
        return f"Budget \"{category_name}\" is far over its limit"
    if threshold >= 100:
        return f"Budget \"{category_name}\" is over its limit"
    if threshold >= 90:
        return f"Warning: budget \"{category_name}\" reached 90%"
    if threshold >= 80:
        return f"Budget \"{category_name}\" reached 80%"
    return f"Budget alert for \"{category_name}\""


def build_alert_message(evaluation: BudgetEvaluation, category_name: str, threshold: int) -> str:
    usage = format_percentage(evaluation.usage_percentage)
    spent = format_currency(evaluation.spent_amount)
    limit = format_currency(evaluation.budget.amount)

    if threshold >= 110:
        over = format_currency(abs(evaluation.remaining_amount))
        return (
            f"🚨🚨 Budget \"{category_name}\" is at {usage}! "
            f"Spent {spent}/{limit}. Over by {over}."
        )
    if threshold >= 100:
        return f"🚨 Budget \"{category_name}\" is over its limit! Spent {spent}/{limit} ({usage})."

    remaining = format_currency(evaluation.remaining_amount)
    if threshold >= 90:
        return (
            f"⚠️ Warning: budget \"{category_name}\" has used {usage} "
            f"({spent}/{limit}). {remaining} left."
        )
    return f"Budget \"{category_name}\" has used {usage} ({spent}/{limit}). {remaining} left."


def alert_metadata(evaluation: BudgetEvaluation, threshold: int) -> dict[str, Any]:
    return {
        "type": "budget",
        "related_id": evaluation.budget.id,
        "budget_id": evaluation.budget.id,
        "category_id": evaluation.budget.category_id,
        "threshold": threshold,
        "usage_percentage": str(evaluation.usage_percentage),
        "spent_amount": str(evaluation.spent_amount),
        "budget_amount": str(evaluation.budget.amount),
        "remaining_amount": str(evaluation.remaining_amount),
        "status": evaluation.status.value,
    }


class BudgetAlertService:
    """Threshold alerts for the signed-in user's budgets."""

    def __init__(
        self,
        budget_service: BudgetService,
        dedup: AlertDeduplicator,
        dispatcher: NotificationDispatcher,
        session: SessionProvider,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._budgets = budget_service
        self._dedup = dedup
        self._dispatcher = dispatcher
        self._session = session
        self._audit_logger = audit_logger

    async def check_and_send_budget_alerts(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> list[BudgetAlert]:
        """
        Check every active budget and dispatch alerts for new thresholds.

        Returns:
            The alerts dispatched by this sweep (empty when signed out)
        """
        if await self._session.get_current_user() is None:
            logger.warning("budget_alerts_skipped", reason="not_signed_in")
            return []

        correlation_id = correlation_id or create_correlation_id()
        rules = await self._budgets.fetch_budgets(BudgetFilters(is_active=True))
        if not rules:
            return []
        names = await self._budgets.category_names()

        alerts = []
        for rule in rules:
            try:
                evaluation = await self._budgets.evaluate(rule)
                threshold = await self._dedup.should_alert(evaluation)
            except Exception as e:
                logger.error("budget_alert_check_failed", budget_id=rule.id, error=str(e))
                continue
            if threshold is None:
                continue

            category_name = names.get(rule.category_id, UNKNOWN_CATEGORY)
            alert = await self._dispatch(evaluation, category_name, threshold, correlation_id)
            if alert is not None:
                alerts.append(alert)

        return alerts

    async def _dispatch(
        self,
        evaluation: BudgetEvaluation,
        category_name: str,
        threshold: int,
        correlation_id: UUID,
    ) -> Optional[BudgetAlert]:
        budget = evaluation.budget
        try:
            await self._dispatcher.send(
                build_alert_title(category_name, threshold),
                build_alert_message(evaluation, category_name, threshold),
                alert_metadata(evaluation, threshold),
            )
            await self._dedup.record_alert(budget.id, threshold)
        except Exception as e:
            logger.error(
                "budget_alert_dispatch_failed",
                budget_id=budget.id,
                threshold=threshold,
                error=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log_alert_dispatch_failed(
                    budget_id=budget.id,
                    threshold=threshold,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return None

        logger.info(
            "budget_alert_dispatched",
            budget_id=budget.id,
            threshold=threshold,
            usage_percentage=str(evaluation.usage_percentage),
        )
        if self._audit_logger:
            await self._audit_logger.log_alert_dispatched(
                budget_id=budget.id,
                threshold=threshold,
                usage_percentage=evaluation.usage_percentage,
                correlation_id=correlation_id,
            )

        return BudgetAlert(
            budget_id=budget.id,
            category_id=budget.category_id,
            category_name=category_name,
            threshold=threshold,
            usage_percentage=evaluation.usage_percentage,
            spent_amount=evaluation.spent_amount,
            budget_amount=budget.amount,
            remaining_amount=evaluation.remaining_amount,
            status=evaluation.status,
        )

    async def get_budgets_with_alerts(self) -> list[BudgetEvaluation]:
        """Active budgets at or above 80% usage, highest first."""
        rules = await self._budgets.fetch_budgets(BudgetFilters(is_active=True))
        evaluations = [await self._budgets.evaluate(rule) for rule in rules]
        flagged = [e for e in evaluations if e.usage_percentage >= ALERT_USAGE_FLOOR]
        return sorted(flagged, key=lambda e: e.usage_percentage, reverse=True)

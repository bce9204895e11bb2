"""
Limit Evaluator

Decides whether a prospective expense is allowed, allowed with a
warning, or rejected, given every active budget rule that covers it.

DESIGN DECISION: Every matching rule is evaluated, not just the first.
Hard limits win over soft limits regardless of sort order; among soft
limits the first exceeded rule in sort order is the one cited. Sort order
puts wallet-specific rules before general ones and, among equals, the
rule with the most recent period start first.

A rule whose limit_type is unset never produces a warning or rejection.
"""

from typing import Awaitable, Callable, Iterable, Mapping, Optional
from uuid import UUID

import structlog

from fintrack_core.audit import AuditLogger
from fintrack_core.budgets.formatting import format_currency
from fintrack_core.civil_time import to_calendar_date
from fintrack_core.models.budget import (
    BudgetEvaluation,
    BudgetRule,
    LimitCheckResult,
    LimitType,
    ProspectiveTransaction,
    TransactionType,
)


logger = structlog.get_logger(__name__)

RuleEvaluator = Callable[[BudgetRule], Awaitable[BudgetEvaluation]]

UNKNOWN_CATEGORY = "this category"


def is_checked(transaction: ProspectiveTransaction) -> bool:
    """Only reportable expenses are checked against budgets."""
    return transaction.type == TransactionType.EXPENSE and not transaction.exclude_from_reports


def matching_rules(
    transaction: ProspectiveTransaction,
    rules: Iterable[BudgetRule],
) -> list[BudgetRule]:
    """Active rules of the transaction's category, wallet scope and date."""
    day = to_calendar_date(transaction.date)
    matches = []
    for rule in rules:
        if not rule.is_active:
            continue
        if rule.category_id != transaction.category_id:
            continue
        if rule.wallet_id is not None and rule.wallet_id != transaction.wallet_id:
            continue
        if not rule.period_start <= day <= rule.period_end:
            continue
        matches.append(rule)
    return matches


def sort_rules(
    transaction: ProspectiveTransaction,
    rules: Iterable[BudgetRule],
) -> list[BudgetRule]:
    """Wallet-specific rules first, then most recent period start first."""
    def sort_key(rule: BudgetRule):
        specific = rule.wallet_id is not None and rule.wallet_id == transaction.wallet_id
        return (0 if specific else 1, -rule.period_start.toordinal())

    return sorted(rules, key=sort_key)


def build_limit_message(
    evaluation: BudgetEvaluation,
    category_name: str,
    hard: bool,
) -> str:
    """Message citing spent, limit and the headroom left before this transaction."""
    figures = (
        f"Spent: {format_currency(evaluation.spent_amount)}"
        f"/{format_currency(evaluation.budget.amount)}. "
        f"Remaining: {format_currency(evaluation.remaining_amount)}."
    )
    if hard:
        return (
            f"This transaction would exceed the hard budget limit for "
            f"\"{category_name}\". {figures}"
        )
    return (
        f"⚠️ Warning: this transaction would exceed the budget for "
        f"\"{category_name}\". {figures}"
    )


class BudgetLimitEvaluator:
    """
    Resolves the most restrictive applicable rule for a transaction.

    evaluate() is pure and works on evaluations already in hand;
    check() fetches them first.
    """

    def __init__(self, audit_logger: Optional[AuditLogger] = None):
        self._audit_logger = audit_logger

    def evaluate(
        self,
        transaction: ProspectiveTransaction,
        rules: Iterable[BudgetRule],
        evaluations: Mapping[str, BudgetEvaluation],
        category_names: Optional[Mapping[str, str]] = None,
    ) -> LimitCheckResult:
        """
        Decide on a transaction.

        Args:
            transaction: The expense about to be written
            rules: Candidate rules (non-matching ones are ignored)
            evaluations: Current evaluation per rule id, for every
                         matching rule
            category_names: Category id -> display name, for messages

        Returns:
            LimitCheckResult; allowed=False only for an exceeded hard limit

        Raises:
            KeyError: If a matching rule has no evaluation
        """
        if not is_checked(transaction):
            return LimitCheckResult(allowed=True)

        candidates = sort_rules(transaction, matching_rules(transaction, rules))
        if not candidates:
            return LimitCheckResult(allowed=True)

        first_soft: Optional[BudgetEvaluation] = None
        for rule in candidates:
            evaluation = evaluations[rule.id]
            projected = evaluation.spent_amount + transaction.amount
            if projected <= rule.amount:
                continue

            if rule.limit_type == LimitType.HARD:
                return LimitCheckResult(
                    allowed=False,
                    rule=rule,
                    message=build_limit_message(
                        evaluation, self._category_name(rule, category_names), hard=True
                    ),
                    evaluation=evaluation,
                )
            if rule.limit_type == LimitType.SOFT and first_soft is None:
                first_soft = evaluation

        if first_soft is not None:
            rule = first_soft.budget
            return LimitCheckResult(
                allowed=True,
                rule=rule,
                message=build_limit_message(
                    first_soft, self._category_name(rule, category_names), hard=False
                ),
                evaluation=first_soft,
            )

        return LimitCheckResult(allowed=True)

    @staticmethod
    def _category_name(rule: BudgetRule, category_names: Optional[Mapping[str, str]]) -> str:
        if category_names:
            return category_names.get(rule.category_id, UNKNOWN_CATEGORY)
        return UNKNOWN_CATEGORY

    async def check(
        self,
        transaction: ProspectiveTransaction,
        rules: Iterable[BudgetRule],
        evaluate_rule: RuleEvaluator,
        category_names: Optional[Mapping[str, str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LimitCheckResult:
        """
        Evaluate every matching rule through evaluate_rule, then decide.

        Rejections and warnings are written to the audit log.
        """
        if not is_checked(transaction):
            return LimitCheckResult(allowed=True)

        candidates = matching_rules(transaction, rules)
        evaluations = {}
        for rule in candidates:
            evaluations[rule.id] = await evaluate_rule(rule)

        result = self.evaluate(transaction, candidates, evaluations, category_names)

        if result.rule is not None:
            logger.info(
                "budget_limit_decision",
                budget_id=result.rule.id,
                allowed=result.allowed,
                limit_type=result.rule.limit_type.value,
            )
            if self._audit_logger:
                await self._audit_logger.log_limit_decision(
                    budget_id=result.rule.id,
                    rejected=not result.allowed,
                    spent=result.evaluation.spent_amount,
                    limit=result.rule.amount,
                    attempted=transaction.amount,
                    correlation_id=correlation_id,
                )
        return result

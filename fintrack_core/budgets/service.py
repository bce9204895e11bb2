"""
Budget Service

Glues the budget repository, the transaction repository, the cache and
cross-tab sync together for one signed-in session.

DESIGN DECISION: Reads go through the cache; writes go straight to the
repository and then invalidate. Every create, update and delete drops
the local "budgets" keys and broadcasts the same invalidation to the
other tabs, so a rule change is visible everywhere on the next read.
Updates and deletes also forget the alerts already sent for the budget,
so a budget raised back under a threshold can alert again.

Cached reads are stored as plain JSON data and validated back into
models on the way out, which keeps in-memory and persisted entries
interchangeable.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Union
from uuid import UUID

import structlog

from fintrack_core.audit import AuditLogger
from fintrack_core.budgets.limits import BudgetLimitEvaluator, is_checked, matching_rules, sort_rules
from fintrack_core.budgets.periods import get_current_period
from fintrack_core.budgets.spending import build_evaluation, evaluate_budget
from fintrack_core.cache.store import CacheStore
from fintrack_core.clock import Clock, SystemClock
from fintrack_core.config import get_settings
from fintrack_core.exceptions import BudgetValidationError, NotAuthenticatedError
from fintrack_core.models.budget import (
    BudgetDraft,
    BudgetEvaluation,
    BudgetFilters,
    BudgetRule,
    BudgetUpdate,
    Category,
    CategoryType,
    LimitCheckResult,
    PeriodType,
    ProspectiveTransaction,
    TransactionFilter,
    TransactionRecord,
    TransactionType,
)
from fintrack_core.services.session import SessionProvider
from fintrack_core.services.storage.interface import (
    BudgetRepository,
    CategoryRepository,
    NotFoundError,
    TransactionRepository,
)
from fintrack_core.sync.cross_tab import CrossTabSync

if TYPE_CHECKING:
    from fintrack_core.alerts.dedup import AlertDeduplicator


logger = structlog.get_logger(__name__)

BUDGETS_KEY = "budgets"
TRANSACTIONS_KEY = "transactions"
CATEGORIES_KEY = "categories"


class BudgetService:
    """Budget reads, writes and limit checks for one session."""

    def __init__(
        self,
        budgets: BudgetRepository,
        transactions: TransactionRepository,
        categories: CategoryRepository,
        cache: CacheStore,
        session: SessionProvider,
        sync: Optional[CrossTabSync] = None,
        alert_dedup: Optional["AlertDeduplicator"] = None,
        clock: Optional[Clock] = None,
        audit_logger: Optional[AuditLogger] = None,
        limit_evaluator: Optional[BudgetLimitEvaluator] = None,
    ):
        self._budgets = budgets
        self._transactions = transactions
        self._categories = categories
        self._cache = cache
        self._session = session
        self._sync = sync
        self._alert_dedup = alert_dedup
        self._clock = clock or SystemClock()
        self._audit_logger = audit_logger
        self._evaluator = limit_evaluator or BudgetLimitEvaluator(audit_logger)
        self._settings = get_settings().cache

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_budgets(self, filters: Optional[BudgetFilters] = None) -> list[BudgetRule]:
        """
        Budgets matching filters, newest period first.

        Served from cache (24 h lifetime, refreshed in the background
        after 12 h).

        Raises:
            NotAuthenticatedError: If nobody is signed in
        """
        await self._session.require_user()
        key = self._cache.generate_key(BUDGETS_KEY, filters.to_params() if filters else None)

        async def fetch() -> list[dict]:
            rules = await self._budgets.list_all(filters)
            return [rule.model_dump(mode="json") for rule in rules]

        data = await self._cache.cache_first_with_refresh(
            key,
            fetch,
            ttl=self._settings.budgets_ttl_seconds,
            stale_threshold=self._settings.budgets_stale_seconds,
        )
        return [BudgetRule.model_validate(item) for item in data]

    async def get_budget_by_id(self, budget_id: str) -> Optional[BudgetRule]:
        await self._session.require_user()
        return await self._budgets.get_by_id(budget_id)

    async def fetch_categories(self) -> list[Category]:
        await self._session.require_user()

        async def fetch() -> list[dict]:
            categories = await self._categories.list_categories()
            return [c.model_dump(mode="json") for c in categories]

        data = await self._cache.cache_first_with_refresh(CATEGORIES_KEY, fetch)
        return [Category.model_validate(item) for item in data]

    async def category_names(self) -> dict[str, str]:
        return {c.id: c.name for c in await self.fetch_categories()}

    async def fetch_transactions(self, filter: TransactionFilter) -> list[TransactionRecord]:
        """Transactions matching filter, cached for a few minutes."""
        await self._session.require_user()
        key = self._cache.generate_key(TRANSACTIONS_KEY, filter.to_params())

        async def fetch() -> list[dict]:
            records = await self._transactions.list_by_filter(filter)
            return [r.model_dump(mode="json") for r in records]

        data = await self._cache.cache_first_with_refresh(
            key,
            fetch,
            ttl=self._settings.transactions_ttl_seconds,
        )
        return [TransactionRecord.model_validate(item) for item in data]

    async def evaluate(self, rule: BudgetRule) -> BudgetEvaluation:
        """
        Spending of a rule in its period.

        If the transactions cannot be fetched the rule is reported with
        zero spending rather than failing the caller.
        """
        filter = TransactionFilter(
            category_id=rule.category_id,
            wallet_id=rule.wallet_id,
            type=TransactionType.EXPENSE,
            start_date=rule.period_start,
            end_date=rule.period_end,
        )
        try:
            transactions = await self.fetch_transactions(filter)
        except NotAuthenticatedError:
            raise
        except Exception as e:
            logger.error("budget_spending_unavailable", budget_id=rule.id, error=str(e))
            return build_evaluation(rule, Decimal("0"))
        return evaluate_budget(rule, transactions)

    async def get_budget_with_spending(self, budget_id: str) -> BudgetEvaluation:
        """
        Raises:
            NotFoundError: If the budget does not exist
        """
        rule = await self.get_budget_by_id(budget_id)
        if rule is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        return await self.evaluate(rule)

    async def get_active_budgets_for_current_period(
        self,
        period_type: PeriodType = PeriodType.MONTHLY,
    ) -> list[BudgetEvaluation]:
        """Active budgets covering the whole current period, highest usage first."""
        period = get_current_period(period_type, self._clock)
        rules = await self.fetch_budgets(BudgetFilters(is_active=True, period_type=period_type))
        current = [
            r for r in rules
            if r.period_start <= period.start.date() and r.period_end >= period.end.date()
        ]
        evaluations = [await self.evaluate(r) for r in current]
        return sorted(evaluations, key=lambda e: e.usage_percentage, reverse=True)

    async def get_budget_for_category(
        self,
        category_id: str,
        wallet_id: Optional[str],
        on: Union[datetime, date],
    ) -> Optional[BudgetEvaluation]:
        """The budget that governs spending in a category and wallet on a day."""
        rules = await self.fetch_budgets(BudgetFilters(category_id=category_id, is_active=True))
        candidate_tx = ProspectiveTransaction(
            category_id=category_id,
            wallet_id=wallet_id,
            amount=0,
            date=on,
        )
        candidates = sort_rules(candidate_tx, matching_rules(candidate_tx, rules))
        if not candidates:
            return None
        return await self.evaluate(candidates[0])

    # ------------------------------------------------------------------
    # Limit checks
    # ------------------------------------------------------------------

    async def check_budget_limit(
        self,
        transaction: ProspectiveTransaction,
        recheck: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> LimitCheckResult:
        """
        Check a prospective transaction against every applicable budget.

        Args:
            transaction: The transaction about to be written
            recheck: Drop cached budgets and transactions first, so the
                     decision uses the repositories' current data. Use it
                     right before the write when the answer must be exact.
            correlation_id: Ties the audit entry to the caller's action

        Returns:
            LimitCheckResult (allowed=False for an exceeded hard limit)
        """
        if not is_checked(transaction):
            return LimitCheckResult(allowed=True)

        if recheck:
            await self._cache.invalidate(BUDGETS_KEY)
            await self._cache.invalidate(TRANSACTIONS_KEY)

        rules = await self.fetch_budgets(BudgetFilters(is_active=True))
        if not matching_rules(transaction, rules):
            return LimitCheckResult(allowed=True)

        return await self._evaluator.check(
            transaction,
            rules,
            self.evaluate,
            category_names=await self.category_names(),
            correlation_id=correlation_id,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _reject(
        self,
        draft: BudgetDraft,
        field: str,
        message: str,
        correlation_id: Optional[UUID],
    ) -> BudgetValidationError:
        if self._audit_logger:
            await self._audit_logger.log_budget_rejected(
                category_id=draft.category_id,
                field=field,
                reason=message,
                correlation_id=correlation_id,
            )
        return BudgetValidationError(field, message)

    async def create_budget(
        self,
        draft: BudgetDraft,
        correlation_id: Optional[UUID] = None,
    ) -> BudgetRule:
        """
        Create a budget for an expense category.

        Raises:
            NotAuthenticatedError: If nobody is signed in
            BudgetValidationError: If the category is unknown or not an
                expense category, or an active budget for the same
                category and wallet overlaps the period
        """
        await self._session.require_user()

        categories = {c.id: c for c in await self._categories.list_categories()}
        category = categories.get(draft.category_id)
        if category is None or category.type != CategoryType.EXPENSE:
            raise await self._reject(
                draft,
                "category_id",
                "Budgets can only be set for expense categories.",
                correlation_id,
            )

        existing = await self._budgets.list_active(BudgetFilters(category_id=draft.category_id))
        for rule in existing:
            if rule.wallet_id == draft.wallet_id and rule.overlaps(draft.period_start, draft.period_end):
                raise await self._reject(
                    draft,
                    "period",
                    "An active budget already exists for this category in this period.",
                    correlation_id,
                )

        rule = await self._budgets.create(draft)
        await self._after_mutation()

        logger.info("budget_created", budget_id=rule.id, category_id=rule.category_id)
        if self._audit_logger:
            await self._audit_logger.log_budget_created(
                budget_id=rule.id,
                category_id=rule.category_id,
                amount=rule.amount,
                correlation_id=correlation_id,
            )
        return rule

    async def update_budget(
        self,
        budget_id: str,
        changes: BudgetUpdate,
        correlation_id: Optional[UUID] = None,
    ) -> BudgetRule:
        """
        Raises:
            NotAuthenticatedError: If nobody is signed in
            NotFoundError: If the budget does not exist
        """
        await self._session.require_user()

        rule = await self._budgets.update(budget_id, changes)
        await self._after_mutation()
        if self._alert_dedup:
            await self._alert_dedup.clear_budget_alerts(budget_id)

        changed_fields = sorted(changes.changes())
        logger.info("budget_updated", budget_id=budget_id, changed_fields=changed_fields)
        if self._audit_logger:
            await self._audit_logger.log_budget_updated(
                budget_id=budget_id,
                changed_fields=changed_fields,
                correlation_id=correlation_id,
            )
        return rule

    async def delete_budget(
        self,
        budget_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Raises:
            NotAuthenticatedError: If nobody is signed in
            NotFoundError: If the budget does not exist
        """
        await self._session.require_user()

        if not await self._budgets.delete(budget_id):
            raise NotFoundError(f"Budget not found: {budget_id}")
        await self._after_mutation()
        if self._alert_dedup:
            await self._alert_dedup.clear_budget_alerts(budget_id)

        logger.info("budget_deleted", budget_id=budget_id)
        if self._audit_logger:
            await self._audit_logger.log_budget_deleted(
                budget_id=budget_id,
                correlation_id=correlation_id,
            )

    async def _after_mutation(self) -> None:
        await self._cache.invalidate(BUDGETS_KEY)
        if self._sync:
            self._sync.broadcast_invalidate(BUDGETS_KEY)

    async def invalidate_transactions(self) -> None:
        """Call after writing a transaction so spending is refetched everywhere."""
        await self._cache.invalidate(TRANSACTIONS_KEY)
        if self._sync:
            self._sync.broadcast_invalidate(TRANSACTIONS_KEY)

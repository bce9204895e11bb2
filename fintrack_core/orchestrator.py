"""
Session Wiring for FinTrack Core

Builds, once per signed-in session, every component the budget core
needs and hands the same instances to every consumer:

1. Cache store scoped to the user, restored from persistent storage
2. Cross-tab sync attached to that cache
3. Alert deduplicator
4. Budget service and budget alert service

DESIGN DECISION: Nothing here is a module-level singleton. Two sessions
built in one process (two tabs, two tests) never share a cache, a sent-
alert list or a background task. close() is the end of the session's
lifecycle: it drains background refreshes and detaches from the other
tabs.
"""

from typing import Optional

import structlog

from fintrack_core.alerts import AlertDeduplicator, BudgetAlertService
from fintrack_core.audit import AuditLogger
from fintrack_core.budgets import BudgetLimitEvaluator, BudgetService
from fintrack_core.cache import CacheStore
from fintrack_core.clock import Clock, SystemClock
from fintrack_core.services.notifications import NotificationDispatcher
from fintrack_core.services.session import SessionProvider, SessionUser
from fintrack_core.services.storage import (
    AuditStorageInterface,
    BudgetRepository,
    CategoryRepository,
    InMemoryKeyValueStorage,
    KeyValueStorage,
    TransactionRepository,
)
from fintrack_core.sync import CrossTabSync, LocalBroadcastHub, StorageArea


logger = structlog.get_logger(__name__)


class BudgetSession:
    """The components of one signed-in session."""

    def __init__(
        self,
        user: SessionUser,
        cache: CacheStore,
        sync: CrossTabSync,
        alert_dedup: AlertDeduplicator,
        budget_service: BudgetService,
        alert_service: BudgetAlertService,
        audit_logger: AuditLogger,
    ):
        self.user = user
        self.cache = cache
        self.sync = sync
        self.alert_dedup = alert_dedup
        self.budget_service = budget_service
        self.alert_service = alert_service
        self.audit_logger = audit_logger

    async def close(self) -> None:
        """Detach from the other tabs and wait for background refreshes."""
        self.sync.close()
        await self.sync.drain()
        await self.cache.close()
        logger.info("budget_session_closed", user_id=self.user.id)


async def create_session_components(
    session: SessionProvider,
    budgets: BudgetRepository,
    transactions: TransactionRepository,
    categories: CategoryRepository,
    dispatcher: NotificationDispatcher,
    storage: Optional[KeyValueStorage] = None,
    hub: Optional[LocalBroadcastHub] = None,
    storage_area: Optional[StorageArea] = None,
    clock: Optional[Clock] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> BudgetSession:
    """
    Factory function to create all session components.

    Args:
        session: Who is signed in
        budgets: Budget rule store
        transactions: Transaction store (read-only here)
        categories: Category store
        dispatcher: Delivers alert notifications
        storage: Persistent key/value storage for the cache and the
                 sent-alert list. In-memory when None.
        hub: Broadcast hub shared with the other tabs
        storage_area: Storage shared with the other tabs, used when the
                      hub is missing or cannot open a channel
        clock: Time source (SystemClock by default)
        audit_storage: Where audit events are kept. Local log only when None.

    Returns:
        BudgetSession

    Raises:
        NotAuthenticatedError: If nobody is signed in
    """
    user = await session.require_user()
    clock = clock or SystemClock()
    storage = storage or InMemoryKeyValueStorage()
    audit_logger = AuditLogger(audit_storage)

    cache = CacheStore(
        storage=storage,
        clock=clock,
        namespace=user.cache_namespace,
        audit_logger=audit_logger,
    )
    restored = await cache.load_from_storage()

    sync = CrossTabSync(hub=hub, storage_area=storage_area, clock=clock)
    sync.attach_cache(cache)

    alert_dedup = AlertDeduplicator(storage, clock=clock)

    budget_service = BudgetService(
        budgets=budgets,
        transactions=transactions,
        categories=categories,
        cache=cache,
        session=session,
        sync=sync,
        alert_dedup=alert_dedup,
        clock=clock,
        audit_logger=audit_logger,
        limit_evaluator=BudgetLimitEvaluator(audit_logger),
    )
    alert_service = BudgetAlertService(
        budget_service=budget_service,
        dedup=alert_dedup,
        dispatcher=dispatcher,
        session=session,
        audit_logger=audit_logger,
    )

    logger.info(
        "budget_session_started",
        user_id=user.id,
        restored_cache_entries=restored,
        sync_transport=sync.transport,
    )
    return BudgetSession(
        user=user,
        cache=cache,
        sync=sync,
        alert_dedup=alert_dedup,
        budget_service=budget_service,
        alert_service=alert_service,
        audit_logger=audit_logger,
    )

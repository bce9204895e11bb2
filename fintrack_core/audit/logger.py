"""
Audit Logger

DESIGN DECISION: Every budget decision made on the user's behalf is logged.
This provides:
1. Traceability of rejected and warned transactions
2. Debugging capability for alert deduplication
3. Visibility into background refreshes that failed silently

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from fintrack_core.config import get_settings
from fintrack_core.models.audit import AuditEvent, AuditEventBuilder
from fintrack_core.services.storage.interface import AuditStorageInterface


def configure_logging(level: Optional[str] = None) -> None:
    """Configure structlog (JSON lines through the stdlib root logger)."""
    level = level or get_settings().app.log_level
    logging.basicConfig(format="%(message)s", level=getattr(logging, level, logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("fintrack_core.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value == "error":
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_budget_created(
        self,
        budget_id: str,
        category_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_created(
            budget_id=budget_id,
            category_id=category_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_budget_updated(
        self,
        budget_id: str,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_updated(
            budget_id=budget_id,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        ))

    async def log_budget_deleted(
        self,
        budget_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_deleted(
            budget_id=budget_id,
            correlation_id=correlation_id,
        ))

    async def log_budget_rejected(
        self,
        category_id: str,
        field: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_rejected(
            category_id=category_id,
            field=field,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_limit_decision(
        self,
        budget_id: str,
        rejected: bool,
        spent: Decimal,
        limit: Decimal,
        attempted: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a hard-limit rejection or a soft-limit warning."""
        builder = AuditEventBuilder.limit_rejected if rejected else AuditEventBuilder.limit_warned
        await self.log(builder(
            budget_id=budget_id,
            spent=spent,
            limit=limit,
            attempted=attempted,
            correlation_id=correlation_id,
        ))

    async def log_alert_dispatched(
        self,
        budget_id: str,
        threshold: int,
        usage_percentage: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.alert_dispatched(
            budget_id=budget_id,
            threshold=threshold,
            usage_percentage=usage_percentage,
            correlation_id=correlation_id,
        ))

    async def log_alert_dispatch_failed(
        self,
        budget_id: str,
        threshold: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.alert_dispatch_failed(
            budget_id=budget_id,
            threshold=threshold,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_cache_refresh_failed(self, key: str, error_message: str) -> None:
        await self.log(AuditEventBuilder.cache_refresh_failed(
            key=key,
            error_message=error_message,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., an alert sweep).
    Pass it through all subsequent operations.
    """
    return uuid4()

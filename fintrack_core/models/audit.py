"""
Audit Models for FinTrack Core

Every budget decision the core makes on the user's behalf is logged:
1. Budgets created, changed or deleted
2. Transactions rejected or warned by a limit
3. Alerts dispatched (or failing to dispatch)
4. Background refreshes that failed silently

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Budget lifecycle
    BUDGET_CREATED = "budget_created"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_DELETED = "budget_deleted"
    BUDGET_REJECTED = "budget_rejected"

    # Limit decisions
    LIMIT_REJECTED = "limit_rejected"
    LIMIT_WARNED = "limit_warned"

    # Alerts
    ALERT_DISPATCHED = "alert_dispatched"
    ALERT_DISPATCH_FAILED = "alert_dispatch_failed"

    # Cache
    CACHE_REFRESH_FAILED = "cache_refresh_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'budget', 'cache_key')"
    )
    entity_id: Optional[str] = None

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one alert sweep)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None
    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


def _money(value: Decimal) -> str:
    return str(value)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.budget_created(budget_id, category_id, amount)
        event = AuditEventBuilder.limit_rejected(budget_id, spent, limit, attempted)
    """

    @staticmethod
    def budget_created(
        budget_id: str,
        category_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_CREATED,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Budget created for category {category_id}",
            details={"category_id": category_id, "amount": _money(amount)},
            is_user_action=True,
        )

    @staticmethod
    def budget_updated(
        budget_id: str,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_UPDATED,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Budget updated: {', '.join(changed_fields) or 'no fields'}",
            details={"changed_fields": changed_fields},
            is_user_action=True,
        )

    @staticmethod
    def budget_deleted(
        budget_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_DELETED,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description="Budget deleted",
            is_user_action=True,
        )

    @staticmethod
    def budget_rejected(
        category_id: str,
        field: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="category",
            entity_id=category_id,
            correlation_id=correlation_id,
            description=f"Budget refused: {reason}"[:500],
            details={"field": field},
            is_user_action=True,
        )

    @staticmethod
    def limit_rejected(
        budget_id: str,
        spent: Decimal,
        limit: Decimal,
        attempted: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LIMIT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description="Transaction rejected by hard budget limit",
            details={
                "spent_amount": _money(spent),
                "budget_amount": _money(limit),
                "attempted_amount": _money(attempted),
            },
        )

    @staticmethod
    def limit_warned(
        budget_id: str,
        spent: Decimal,
        limit: Decimal,
        attempted: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LIMIT_WARNED,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description="Transaction allowed over soft budget limit",
            details={
                "spent_amount": _money(spent),
                "budget_amount": _money(limit),
                "attempted_amount": _money(attempted),
            },
        )

    @staticmethod
    def alert_dispatched(
        budget_id: str,
        threshold: int,
        usage_percentage: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALERT_DISPATCHED,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Budget alert sent for {threshold}% threshold",
            details={
                "threshold": threshold,
                "usage_percentage": _money(usage_percentage),
            },
        )

    @staticmethod
    def alert_dispatch_failed(
        budget_id: str,
        threshold: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALERT_DISPATCH_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Budget alert for {threshold}% threshold could not be sent",
            details={"threshold": threshold},
            error_message=error_message,
        )

    @staticmethod
    def cache_refresh_failed(
        key: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CACHE_REFRESH_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="cache_key",
            entity_id=key[:200],
            description="Background cache refresh failed; stale value kept",
            error_message=error_message,
        )

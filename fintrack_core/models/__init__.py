"""
Data Models Package

This package contains all Pydantic models used by the budget core.
All data flowing through the system must conform to these schemas.
"""

from fintrack_core.models.budget import (
    BudgetAlert,
    BudgetDraft,
    BudgetEvaluation,
    BudgetFilters,
    BudgetRule,
    BudgetStatus,
    BudgetUpdate,
    Category,
    CategoryType,
    LimitCheckResult,
    LimitType,
    PeriodType,
    ProspectiveTransaction,
    TransactionFilter,
    TransactionRecord,
    TransactionType,
)
from fintrack_core.models.cache import (
    CacheEntry,
    CacheSyncEvent,
    Period,
    SentAlert,
    SyncEventType,
)
from fintrack_core.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Budget models
    "BudgetAlert",
    "BudgetDraft",
    "BudgetEvaluation",
    "BudgetFilters",
    "BudgetRule",
    "BudgetStatus",
    "BudgetUpdate",
    "Category",
    "CategoryType",
    "LimitCheckResult",
    "LimitType",
    "PeriodType",
    "ProspectiveTransaction",
    "TransactionFilter",
    "TransactionRecord",
    "TransactionType",
    # Cache models
    "CacheEntry",
    "CacheSyncEvent",
    "Period",
    "SentAlert",
    "SyncEventType",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]

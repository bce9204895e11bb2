"""
Abstract Storage Interface

DESIGN DECISION: We define abstract interfaces for every store the
budget core touches. This allows us to:
1. Keep the managed data API behind a swappable boundary
2. Use in-memory storage for testing
3. Put the Cache Store in front of repositories transparently
4. Persist cache and alert bookkeeping wherever the host allows

The interfaces are intentionally small - only the operations the
budget core needs. Every method is a suspension point.
"""

from abc import ABC, abstractmethod
from typing import Optional

from fintrack_core.models.audit import AuditEvent
from fintrack_core.models.budget import (
    BudgetDraft,
    BudgetFilters,
    BudgetRule,
    BudgetUpdate,
    Category,
    TransactionFilter,
    TransactionRecord,
)


class KeyValueStorage(ABC):
    """
    Persistent string key/value storage local to the client.

    Holds serialized cache entries and the sent-alert list.
    Values are opaque strings (JSON written by the caller).
    """

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        """Return the stored string, or None if the key is absent."""
        pass

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Store a string under key, replacing any previous value."""
        pass

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove key. Removing an absent key is not an error."""
        pass

    @abstractmethod
    async def keys(self) -> list[str]:
        """All keys currently stored."""
        pass


class TransactionRepository(ABC):
    """Read access to the user's transactions."""

    @abstractmethod
    async def list_by_filter(self, filter: TransactionFilter) -> list[TransactionRecord]:
        """
        List transactions matching a filter.

        Args:
            filter: Category, wallet, type and inclusive date range.
                    Unset fields do not filter.

        Returns:
            Matching transactions (any order)
        """
        pass


class BudgetRepository(ABC):
    """
    Access to stored budget rules.

    Callers that mutate budgets must go through BudgetService so the
    cache is invalidated and the other tabs are told.
    """

    @abstractmethod
    async def list_active(self, filter: Optional[BudgetFilters] = None) -> list[BudgetRule]:
        """List active rules, newest period first."""
        pass

    @abstractmethod
    async def list_all(self, filter: Optional[BudgetFilters] = None) -> list[BudgetRule]:
        """List rules regardless of state, newest period first."""
        pass

    @abstractmethod
    async def get_by_id(self, budget_id: str) -> Optional[BudgetRule]:
        """
        Retrieve a rule by its ID.

        Returns:
            The rule if found, None otherwise
        """
        pass

    @abstractmethod
    async def create(self, draft: BudgetDraft) -> BudgetRule:
        """
        Store a new rule.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update(self, budget_id: str, changes: BudgetUpdate) -> BudgetRule:
        """
        Apply a partial update.

        Raises:
            NotFoundError: If the rule doesn't exist
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, budget_id: str) -> bool:
        """
        Delete a rule by ID.

        Returns:
            True if a rule was deleted
        """
        pass


class CategoryRepository(ABC):
    """Read access to categories."""

    @abstractmethod
    async def list_categories(self) -> list[Category]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """All events for one entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class StorageConnectionError(StorageError):
    """Could not reach the storage backend."""
    pass

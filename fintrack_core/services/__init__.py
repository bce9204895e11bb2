"""Services package."""

from fintrack_core.services.notifications import (
    DispatchedNotification,
    InMemoryNotificationDispatcher,
    NotificationDispatcher,
)
from fintrack_core.services.session import (
    AuthClient,
    CachedSessionProvider,
    SessionProvider,
    SessionUser,
    StaticSessionProvider,
)
from fintrack_core.services.storage import (
    AuditStorageInterface,
    BudgetRepository,
    CategoryRepository,
    InMemoryAuditStorage,
    InMemoryBudgetRepository,
    InMemoryCategoryRepository,
    InMemoryKeyValueStorage,
    InMemoryTransactionRepository,
    JsonFileKeyValueStorage,
    KeyValueStorage,
    NotFoundError,
    StorageConnectionError,
    StorageError,
    TransactionRepository,
)

__all__ = [
    # Notifications
    "DispatchedNotification",
    "InMemoryNotificationDispatcher",
    "NotificationDispatcher",
    # Session
    "AuthClient",
    "CachedSessionProvider",
    "SessionProvider",
    "SessionUser",
    "StaticSessionProvider",
    # Storage
    "AuditStorageInterface",
    "BudgetRepository",
    "CategoryRepository",
    "InMemoryAuditStorage",
    "InMemoryBudgetRepository",
    "InMemoryCategoryRepository",
    "InMemoryKeyValueStorage",
    "InMemoryTransactionRepository",
    "JsonFileKeyValueStorage",
    "KeyValueStorage",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    "TransactionRepository",
]

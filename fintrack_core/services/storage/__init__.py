"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the
stores the budget core reads and writes. Remote repositories are
supplied by the host; in-memory and JSON-file implementations ship here.
"""

from fintrack_core.services.storage.interface import (
    AuditStorageInterface,
    BudgetRepository,
    CategoryRepository,
    KeyValueStorage,
    NotFoundError,
    StorageConnectionError,
    StorageError,
    TransactionRepository,
)
from fintrack_core.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryBudgetRepository,
    InMemoryCategoryRepository,
    InMemoryKeyValueStorage,
    InMemoryTransactionRepository,
)
from fintrack_core.services.storage.json_file import JsonFileKeyValueStorage

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BudgetRepository",
    "CategoryRepository",
    "KeyValueStorage",
    "TransactionRepository",
    # Exceptions
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    # Implementations
    "InMemoryAuditStorage",
    "InMemoryBudgetRepository",
    "InMemoryCategoryRepository",
    "InMemoryKeyValueStorage",
    "InMemoryTransactionRepository",
    "JsonFileKeyValueStorage",
]

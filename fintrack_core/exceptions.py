"""
Error Taxonomy

Validation and authentication errors always reach the immediate caller.
Transient background-refresh errors never do: they are logged and the
caller keeps the stale cached value. Malformed persisted state is
discarded and treated as empty.
"""


class FinTrackError(Exception):
    """Base exception for the budget core."""
    pass


class NotAuthenticatedError(FinTrackError):
    """No signed-in user for the current session."""
    pass


class BudgetValidationError(FinTrackError):
    """A budget write was refused before reaching the store."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class TransientFetchError(FinTrackError):
    """A background refresh failed; the stale value stays in place."""

    def __init__(self, key: str, cause: BaseException):
        self.key = key
        self.cause = cause
        super().__init__(f"Background refresh failed for {key}: {cause}")


class ConfigurationError(FinTrackError):
    """Persisted cache or alert state could not be decoded."""

    def __init__(self, storage_key: str, message: str):
        self.storage_key = storage_key
        super().__init__(message)

"""
Session Lookup

Authentication itself is external. The budget core only needs to know
who is signed in: to refuse reads and writes without a session and to
scope persisted cache keys to the user.

DESIGN DECISION: The signed-in user is remembered for a few minutes and
lookups are retried with a short incrementing wait, because every budget
read asks for it and the auth backend is occasionally slow to answer
right after sign-in.
"""

from abc import ABC, abstractmethod
from typing import Optional

import structlog
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from fintrack_core.clock import Clock, SystemClock
from fintrack_core.config import get_settings
from fintrack_core.exceptions import NotAuthenticatedError
from fintrack_core.services.storage.interface import StorageConnectionError


logger = structlog.get_logger(__name__)


class SessionUser(BaseModel):
    """The signed-in user."""

    id: str
    email: Optional[str] = None

    @property
    def cache_namespace(self) -> str:
        """Prefix that scopes persisted cache keys to this user."""
        return f"user_{self.id}_"


class AuthClient(ABC):
    """The external authentication backend."""

    @abstractmethod
    async def get_user(self) -> Optional[SessionUser]:
        """
        Current user, or None when signed out.

        Raises:
            StorageConnectionError: If the backend could not be reached
        """
        pass


class SessionProvider(ABC):
    """Answers "who is signed in?" for the budget core."""

    @abstractmethod
    async def get_current_user(self) -> Optional[SessionUser]:
        pass

    async def require_user(self) -> SessionUser:
        """
        The signed-in user.

        Raises:
            NotAuthenticatedError: If nobody is signed in
        """
        user = await self.get_current_user()
        if user is None:
            raise NotAuthenticatedError("You need to sign in to manage budgets.")
        return user


class StaticSessionProvider(SessionProvider):
    """A fixed user (or none). For tests and single-user hosts."""

    def __init__(self, user: Optional[SessionUser] = None):
        self.user = user

    async def get_current_user(self) -> Optional[SessionUser]:
        return self.user


class CachedSessionProvider(SessionProvider):
    """
    Remembers the signed-in user and retries failed lookups.

    A lookup that still fails after the retries is treated as signed out.
    """

    def __init__(
        self,
        auth_client: AuthClient,
        clock: Optional[Clock] = None,
    ):
        self._auth = auth_client
        self._clock = clock or SystemClock()
        self._settings = get_settings().session
        self._cached: Optional[SessionUser] = None
        self._cached_at: Optional[float] = None

    def _is_fresh(self) -> bool:
        if self._cached is None or self._cached_at is None:
            return False
        age = self._clock.timestamp() - self._cached_at
        return age < self._settings.user_cache_ttl_seconds

    async def _fetch_with_retry(self) -> Optional[SessionUser]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.max_retries + 1),
            wait=wait_incrementing(
                start=self._settings.retry_delay_seconds,
                increment=self._settings.retry_delay_seconds,
            ),
            retry=retry_if_exception_type(StorageConnectionError),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._auth.get_user()
        except RetryError as e:
            logger.warning(
                "session_lookup_failed",
                attempts=e.last_attempt.attempt_number,
                error=str(e.last_attempt.exception()),
            )
        return None

    async def get_current_user(self) -> Optional[SessionUser]:
        if self._is_fresh():
            return self._cached

        user = await self._fetch_with_retry()
        if user is not None:
            self._cached = user
            self._cached_at = self._clock.timestamp()
        return user

    def clear(self) -> None:
        """Forget the remembered user (call on sign-out)."""
        self._cached = None
        self._cached_at = None

"""
Cache, Sync and Dedup Bookkeeping Models

None of these are business truth. They describe what the client
remembers about data it has already fetched or alerts it has already sent.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class CacheEntry(BaseModel):
    """
    A cached value with its write time and lifetime.

    timestamp is epoch seconds; ttl is seconds.
    """

    data: Any = None
    timestamp: float
    ttl: float = Field(..., gt=0)

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl


class SyncEventType(str, Enum):
    """Kinds of cache hints exchanged between tabs."""
    CACHE_INVALIDATE = "CACHE_INVALIDATE"
    CACHE_CLEAR = "CACHE_CLEAR"
    CACHE_SET = "CACHE_SET"
    CACHE_REFRESH = "CACHE_REFRESH"


class CacheSyncEvent(BaseModel):
    """
    A cross-tab cache hint.

    Always a "re-fetch" hint, never an authoritative delta: receiving the
    same event twice must leave the cache in the same state as receiving
    it once.

    pattern is a cache key prefix, or a regular expression source when
    is_regex is set.
    """

    type: SyncEventType
    pattern: Optional[str] = None
    is_regex: bool = False
    key: Optional[str] = None

    @model_validator(mode='after')
    def validate_payload(self) -> 'CacheSyncEvent':
        if self.type == SyncEventType.CACHE_INVALIDATE and self.pattern is None:
            raise ValueError("CACHE_INVALIDATE needs a pattern")
        if self.type in (SyncEventType.CACHE_SET, SyncEventType.CACHE_REFRESH) and self.key is None:
            raise ValueError(f"{self.type.value} needs a key")
        return self


class SentAlert(BaseModel):
    """Record of a dispatched alert. timestamp is epoch seconds."""

    budget_id: str
    threshold: int
    timestamp: float


class Period(BaseModel):
    """A closed interval in the budget calendar."""

    start: datetime
    end: datetime

    @model_validator(mode='after')
    def validate_bounds(self) -> 'Period':
        if self.end < self.start:
            raise ValueError("Period end cannot be before start")
        return self

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end

"""Cache package: TTL store with stale-while-revalidate reads."""

from fintrack_core.cache.store import (
    CacheStore,
    KeyPattern,
    cached,
    generate_key,
    key_matches,
)

__all__ = [
    "CacheStore",
    "KeyPattern",
    "cached",
    "generate_key",
    "key_matches",
]

"""Read-through cache package."""

from moneymoo.cache.ttl_cache import (
    DEBTS_NAMESPACE,
    MISS,
    SUMMARY_NAMESPACE,
    TRANSACTIONS_NAMESPACE,
    TTLCache,
    cache_key,
    owner_tag,
)

__all__ = [
    "DEBTS_NAMESPACE",
    "MISS",
    "SUMMARY_NAMESPACE",
    "TRANSACTIONS_NAMESPACE",
    "TTLCache",
    "cache_key",
    "owner_tag",
]

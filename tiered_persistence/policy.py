"""
Tier selection policy.

The policy is chosen once, when the resolver is constructed, and decides
which tiers a read consults and in which order.
"""

from enum import Enum


class TierPolicy(Enum):
    """Policy for choosing storage tiers.

    PREFER_DURABLE: Durable store, then remote fallback, then local cache (default)
    FALLBACK_ONLY: Ignore durable adapters; remote fallback, then local cache
    LOCAL_FIRST: Local cache first, then durable store, then remote fallback
    LOCAL_ONLY: Never touch remote tiers
    """

    PREFER_DURABLE = "prefer_durable"
    FALLBACK_ONLY = "fallback_only"
    LOCAL_FIRST = "local_first"
    LOCAL_ONLY = "local_only"

    @property
    def uses_remote(self) -> bool:
        return self is not TierPolicy.LOCAL_ONLY

    @property
    def uses_durable(self) -> bool:
        return self in (TierPolicy.PREFER_DURABLE, TierPolicy.LOCAL_FIRST)

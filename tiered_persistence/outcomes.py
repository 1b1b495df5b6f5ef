"""
Tagged results for remote tier attempts.

Every remote call made by the resolver, the migration sweeper and the
status prober goes through :func:`attempt`, which bounds it with a
timeout and folds any failure into a :class:`TierOutcome`. Callers then
branch on ``outcome.kind`` instead of catching backend exceptions.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .exceptions import AuthenticationRequiredError, TransientNetworkError

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_TIMEOUT = 5.0  # seconds

# Tier names used in outcomes, logs and diagnostic reports
LOCAL_TIER = "local"
FALLBACK_TIER = "fallback"
DURABLE_TIER = "durable"


def durable_tier_name(key: str) -> str:
    return f"{DURABLE_TIER}:{key}"


class OutcomeKind(Enum):
    """Result of a single tier attempt."""

    OK = "ok"
    NOT_FOUND = "not_found"
    NETWORK_ERROR = "network_error"
    AUTH_REQUIRED = "auth_required"


@dataclass
class TierOutcome:
    """Outcome of one call against one tier."""

    tier: str
    kind: OutcomeKind
    value: Any = None
    error: str | None = None
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.OK

    @property
    def reachable(self) -> bool:
        """True when the tier answered, with or without data."""
        return self.kind in (OutcomeKind.OK, OutcomeKind.NOT_FOUND)

    @classmethod
    def skipped_unauthenticated(cls, tier: str) -> TierOutcome:
        return cls(tier=tier, kind=OutcomeKind.AUTH_REQUIRED, error="no authenticated scope")


async def attempt(
    tier: str,
    operation: Callable[[], Awaitable[Any]],
    timeout: float = DEFAULT_REMOTE_TIMEOUT,
    *,
    expect_value: bool = False,
) -> TierOutcome:
    """Run one remote tier call and classify the result.

    Args:
        tier: Tier name for the outcome
        operation: Zero-argument callable returning the awaitable to run
        timeout: Seconds before the tier is treated as unreachable
        expect_value: If True, a None result is reported as NOT_FOUND

    Returns:
        TierOutcome; this function never raises except on cancellation
    """
    started = time.perf_counter()

    def _elapsed() -> float:
        return (time.perf_counter() - started) * 1000.0

    try:
        value = await asyncio.wait_for(operation(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{tier} timed out after {timeout}s", extra={"tier": tier})
        return TierOutcome(
            tier=tier,
            kind=OutcomeKind.NETWORK_ERROR,
            error=f"timed out after {timeout}s",
            latency_ms=_elapsed(),
        )
    except AuthenticationRequiredError as e:
        logger.debug(f"{tier} requires authentication: {e}", extra={"tier": tier})
        return TierOutcome(
            tier=tier, kind=OutcomeKind.AUTH_REQUIRED, error=str(e), latency_ms=_elapsed()
        )
    except (TransientNetworkError, ConnectionError, OSError) as e:
        logger.warning(f"{tier} unreachable: {e}", extra={"tier": tier})
        return TierOutcome(
            tier=tier, kind=OutcomeKind.NETWORK_ERROR, error=str(e), latency_ms=_elapsed()
        )
    except Exception as e:
        logger.warning(
            f"{tier} failed with unexpected {type(e).__name__}: {e}",
            extra={"tier": tier},
            exc_info=True,
        )
        return TierOutcome(
            tier=tier,
            kind=OutcomeKind.NETWORK_ERROR,
            error=f"{type(e).__name__}: {e}",
            latency_ms=_elapsed(),
        )

    if expect_value and value is None:
        return TierOutcome(tier=tier, kind=OutcomeKind.NOT_FOUND, latency_ms=_elapsed())
    return TierOutcome(tier=tier, kind=OutcomeKind.OK, value=value, latency_ms=_elapsed())

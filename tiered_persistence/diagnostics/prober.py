"""
Status prober.

Round-trips a disposable probe record through every tier and reports
reachability, correctness and latency. Only operator tooling calls this;
the resolver never probes on its own.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable, Iterable, Mapping
from functools import partial
from typing import Any

from ..identity import IdentityProvider
from ..keys import DEFAULT_APP_PREFIX, native_key
from ..logging_utils import get_persistence_logger
from ..outcomes import (
    DEFAULT_REMOTE_TIMEOUT,
    FALLBACK_TIER,
    LOCAL_TIER,
    OutcomeKind,
    TierOutcome,
    attempt,
    durable_tier_name,
)
from ..serialization import canonical_json, now_ms
from ..storage.base import DurableStoreAdapter, LocalCache, RemoteFallbackStore
from .types import DiagnosticReport, TierResult

logger = get_persistence_logger("diagnostics")

PROBE_PREFIX = "__probe__"


def probe_name() -> str:
    """Unique name used as both the probe key and the probe scope."""
    return f"{PROBE_PREFIX}-{uuid.uuid4().hex[:12]}"


class StatusProber:
    """Round-trip tester for the local cache and every remote tier."""

    def __init__(
        self,
        local: LocalCache,
        fallback: RemoteFallbackStore | None = None,
        adapters: Mapping[str, DurableStoreAdapter] | Iterable[DurableStoreAdapter] | None = None,
        identity: IdentityProvider | None = None,
        timeout: float = DEFAULT_REMOTE_TIMEOUT,
        app_prefix: str = DEFAULT_APP_PREFIX,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.local = local
        self.fallback = fallback
        if adapters is None:
            self.adapters: dict[str, DurableStoreAdapter] = {}
        elif isinstance(adapters, Mapping):
            self.adapters = dict(adapters)
        else:
            self.adapters = {adapter.key: adapter for adapter in adapters}
        self.identity = identity
        self.timeout = timeout
        self.app_prefix = app_prefix
        self._clock = clock
        self._cached: tuple[float, DiagnosticReport] | None = None

    def invalidate(self) -> None:
        """Drop the cached report."""
        self._cached = None

    async def probe(self, max_age: float | None = None) -> DiagnosticReport:
        """Probe every tier.

        Args:
            max_age: Return the cached report if it is younger than this
                many seconds; None always probes

        Returns:
            DiagnosticReport with one TierResult per tier
        """
        if max_age is not None and self._cached is not None:
            probed_at, cached = self._cached
            if self._clock() - probed_at < max_age:
                return cached

        name = probe_name()
        record = [{"id": name, "checked_at": now_ms(), "payload": {"text": "probe", "n": 1.5}}]

        checks = [self._probe_local(name, record)]
        if self.fallback is not None:
            checks.append(self._probe_fallback(self.fallback, name, record))
        for key, adapter in self.adapters.items():
            checks.append(self._probe_adapter(key, adapter, name, record))
        tier_results = list(await asyncio.gather(*checks))

        user_id = await self.identity.current_user_id() if self.identity is not None else None
        report = DiagnosticReport(
            tier_results=tier_results,
            current_user_id=user_id or None,
            recommendations=self._recommend(tier_results, user_id),
        )
        self._cached = (self._clock(), report)

        failing = [r.name for r in tier_results if not r.reachable]
        if failing:
            logger.warning(f"Probe failed on {', '.join(failing)}")
        else:
            logger.info(f"Probe passed on {len(tier_results)} tiers")
        return report

    async def _round_trip(
        self,
        tier: str,
        write: Callable[[], Any],
        read: Callable[[], Any],
        delete: Callable[[], Any],
        expected: str,
        decode: Callable[[Any], str],
    ) -> TierResult:
        started = time.perf_counter()
        try:
            written = await attempt(tier, write, self.timeout)
            if not written.ok:
                return self._failed(tier, started, "write", written)

            read_back = await attempt(tier, read, self.timeout, expect_value=True)
            if not read_back.ok:
                return self._failed(tier, started, "read-back", read_back)

            if decode(read_back.value) != expected:
                return TierResult(
                    name=tier,
                    reachable=False,
                    latency_ms=(time.perf_counter() - started) * 1000.0,
                    error="read-back mismatch",
                )
            return TierResult(
                name=tier, reachable=True, latency_ms=(time.perf_counter() - started) * 1000.0
            )
        finally:
            cleanup = await attempt(tier, delete, self.timeout)
            if not cleanup.ok:
                logger.warning(
                    f"Probe cleanup failed on {tier}: {cleanup.error}", extra={"tier": tier}
                )

    @staticmethod
    def _failed(tier: str, started: float, step: str, outcome: TierOutcome) -> TierResult:
        detail = outcome.error or outcome.kind.value
        if outcome.kind == OutcomeKind.AUTH_REQUIRED:
            detail = f"authentication required ({detail})"
        return TierResult(
            name=tier,
            reachable=False,
            latency_ms=(time.perf_counter() - started) * 1000.0,
            error=f"{step} failed: {detail}",
        )

    async def _probe_local(self, name: str, record: Any) -> TierResult:
        key = native_key(self.app_prefix, name, name)
        text = canonical_json(record)
        return await self._round_trip(
            LOCAL_TIER,
            partial(self.local.set, key, text),
            partial(self.local.get, key),
            partial(self.local.remove, key),
            text,
            str,
        )

    async def _probe_fallback(
        self, fallback: RemoteFallbackStore, name: str, record: Any
    ) -> TierResult:
        return await self._round_trip(
            FALLBACK_TIER,
            partial(fallback.put, name, name, record),
            partial(fallback.get, name, name),
            partial(fallback.delete, name, name),
            canonical_json(record),
            canonical_json,
        )

    async def _probe_adapter(
        self, key: str, adapter: DurableStoreAdapter, name: str, record: Any
    ) -> TierResult:
        return await self._round_trip(
            durable_tier_name(key),
            partial(adapter.write, name, record),
            partial(adapter.read, name),
            partial(adapter.delete, name),
            canonical_json(record),
            canonical_json,
        )

    def _recommend(self, results: list[TierResult], user_id: str | None) -> list[str]:
        recommendations = []
        for result in results:
            if result.reachable:
                continue
            auth = bool(result.error and "authentication required" in result.error)
            if result.name == LOCAL_TIER:
                recommendations.append(
                    "local cache unavailable: check disk space and permissions"
                )
            elif result.name == FALLBACK_TIER:
                recommendations.append(
                    "remote fallback store rejected credentials: check database access"
                    if auth
                    else "remote fallback store unreachable: check connectivity"
                )
            else:
                key = result.name.split(":", 1)[-1]
                recommendations.append(
                    f"remote durable store '{key}' rejected credentials: check database access"
                    if auth
                    else f"remote durable store '{key}' unreachable: check connectivity"
                )

        if self.fallback is None and not self.adapters:
            recommendations.append(
                "no remote tier configured: data is stored on this device only"
            )
        if not user_id:
            recommendations.append("no authenticated user: migration unavailable")
        return recommendations

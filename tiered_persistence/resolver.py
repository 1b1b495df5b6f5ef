"""
Persistence resolver.

Single read/write contract over three tiers:
- Durable remote store: one entity-specific adapter per storage key
- Remote fallback store: one generic (scope, key) table
- Local cache: always available, no network

Architecture:
- Writes go to the local cache and one remote tier concurrently
- A set succeeds once the local write succeeds; remote failures only
  show up in the returned WriteResult
- Reads walk the tiers in the order the TierPolicy dictates and return
  the first hit; a remote hit refreshes the local cache in the background
- Unauthenticated (guest) scopes never touch the remote tiers
- Nothing is retried here; retries belong to the migration sweeper or
  the caller
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from .exceptions import LocalCacheQuotaError, PersistenceError, StorageIOError
from .identity import IdentityProvider
from .keys import (
    DEFAULT_APP_PREFIX,
    GUEST_SCOPE,
    USER_PREFERENCES,
    StorageKeyRegistry,
    is_authenticated_scope,
    native_key,
    scope_for,
    validate_key,
)
from .logging_utils import PersistenceLoggerAdapter, get_persistence_logger
from .outcomes import (
    DEFAULT_REMOTE_TIMEOUT,
    FALLBACK_TIER,
    LOCAL_TIER,
    TierOutcome,
    attempt,
    durable_tier_name,
)
from .policy import TierPolicy
from .serialization import StoredEnvelope
from .storage.base import DurableStoreAdapter, LocalCache, RemoteFallbackStore
from .sync import SyncStateTracker

logger = get_persistence_logger("resolver")


@dataclass
class WriteResult:
    """Outcome of a set.

    Attributes:
        remote: True if a remote tier accepted the value
        local: True if the local cache accepted the value
        tier: Name of the remote tier that accepted the value, if any
        outcomes: Every remote attempt made, in order
    """

    remote: bool
    local: bool
    tier: str | None = None
    outcomes: list[TierOutcome] = field(default_factory=list)


@dataclass
class TierPlan:
    """Tiers consulted for one (key, scope).

    Attributes:
        reads: Read order, local tier included
        writes: Remote write chain; the first tier that accepts wins
        skipped: Remote tiers left out because the scope is a guest
    """

    reads: list[str]
    writes: list[str]
    skipped: list[str] = field(default_factory=list)


class PersistenceResolver:
    """Orchestrates reads and writes across the persistence tiers.

    Callers never talk to a tier directly. All service instances are
    passed in; the resolver creates none of them.
    """

    def __init__(
        self,
        local: LocalCache,
        fallback: RemoteFallbackStore | None = None,
        adapters: Mapping[str, DurableStoreAdapter] | Iterable[DurableStoreAdapter] | None = None,
        identity: IdentityProvider | None = None,
        registry: StorageKeyRegistry | None = None,
        policy: TierPolicy = TierPolicy.PREFER_DURABLE,
        tracker: SyncStateTracker | None = None,
        app_prefix: str = DEFAULT_APP_PREFIX,
        remote_timeout: float = DEFAULT_REMOTE_TIMEOUT,
    ) -> None:
        """Initialize the resolver.

        Args:
            local: Local cache tier
            fallback: Generic remote table, or None
            adapters: Durable store adapters, keyed by storage key
            identity: Source of the current user id
            registry: Registered storage keys (defaults to the application keys)
            policy: Tier selection policy
            tracker: Sync state tracker fed by set and remove
            app_prefix: Prefix for native local cache keys
            remote_timeout: Seconds allowed per remote call
        """
        if remote_timeout <= 0:
            raise ValueError("remote_timeout must be positive")

        self.local = local
        self.fallback = fallback
        if adapters is None:
            self.adapters: dict[str, DurableStoreAdapter] = {}
        elif isinstance(adapters, Mapping):
            self.adapters = dict(adapters)
        else:
            self.adapters = {adapter.key: adapter for adapter in adapters}
        self.identity = identity
        self.registry = registry or StorageKeyRegistry.default()
        self.policy = policy
        self.tracker = tracker
        self.app_prefix = app_prefix
        self.remote_timeout = remote_timeout

        for key in self.adapters:
            self.registry.register(key)

        # Background write-through refreshes, one per native key
        self._refreshes: dict[str, asyncio.Task[None]] = {}
        self._log = PersistenceLoggerAdapter(logger, {})

    # Policy

    def native_key(self, key: str, scope: str | None) -> str:
        return native_key(self.app_prefix, key, scope)

    def remote_tiers(self, key: str) -> list[str]:
        """Remote tiers configured for a key, in preference order."""
        if not self.policy.uses_remote:
            return []
        tiers = []
        if self.policy.uses_durable and key in self.adapters:
            tiers.append(durable_tier_name(key))
        if self.fallback is not None:
            tiers.append(FALLBACK_TIER)
        return tiers

    def plan(self, key: str, scope: str | None) -> TierPlan:
        """Derive the read order and remote write chain for (key, scope)."""
        remote = self.remote_tiers(key)
        skipped: list[str] = []
        if remote and not is_authenticated_scope(scope):
            skipped, remote = remote, []

        if self.policy == TierPolicy.LOCAL_FIRST:
            reads = [LOCAL_TIER, *remote]
        else:
            reads = [*remote, LOCAL_TIER]
        return TierPlan(reads=reads, writes=list(remote), skipped=skipped)

    async def current_scope(self) -> str:
        """User scope for the identity provider's current user."""
        if self.identity is None:
            return GUEST_SCOPE
        return scope_for(await self.identity.current_user_id())

    # Operations

    async def get(self, key: str, scope: str | None) -> Any | None:
        """Read a record, trying tiers in policy order.

        Returns:
            The first hit, or None if no tier has the key
        """
        validate_key(key)
        scope = scope_for(scope)
        log = self._log.bind(key=key, scope=scope)

        for tier in self.plan(key, scope).reads:
            if tier == LOCAL_TIER:
                found, value = await self._read_local(key, scope)
                if found:
                    log.debug("Read hit", extra={"tier": tier})
                    return value
                continue

            outcome = await attempt(
                tier,
                partial(self._remote_read, tier, key, scope),
                self.remote_timeout,
                expect_value=True,
            )
            if outcome.ok:
                log.debug("Read hit", extra={"tier": tier, "latency_ms": outcome.latency_ms})
                self._schedule_refresh(key, scope, outcome.value)
                return outcome.value
            log.debug(f"Read miss: {outcome.kind.value}", extra={"tier": tier})

        return None

    async def set(self, key: str, scope: str | None, value: Any) -> WriteResult:
        """Write a record to the local cache and the best remote tier.

        Raises:
            SerializationError: If the value is not JSON; no tier is touched
            LocalCacheQuotaError: If the local write exceeded capacity;
                ``remote_written`` tells whether a remote tier took the value
            StorageIOError: If the local write failed otherwise
        """
        validate_key(key)
        scope = scope_for(scope)
        _, text = StoredEnvelope.wrap(key, value, scope)
        native = self.native_key(key, scope)
        plan = self.plan(key, scope)
        log = self._log.bind(key=key, scope=scope)

        self._cancel_refresh(native)
        self._begin()
        try:
            local_error, (tier, outcomes) = await asyncio.gather(
                self._write_local(native, text),
                self._write_remote(plan, key, scope, value),
            )
        except BaseException as e:
            self._complete(False, f"{type(e).__name__}: {e}")
            raise

        remote = tier is not None
        outcomes = [TierOutcome.skipped_unauthenticated(t) for t in plan.skipped] + outcomes
        self._complete(
            local_error is None or remote,
            str(local_error) if local_error is not None else None,
        )

        if local_error is not None:
            local_error.remote_written = remote
            log.error(f"Local write failed: {local_error}", extra={"tier": LOCAL_TIER})
            raise local_error

        if remote:
            log.debug("Write accepted", extra={"tier": tier})
        elif plan.writes:
            log.warning("Remote write failed on every tier; kept locally")
        return WriteResult(remote=remote, local=True, tier=tier, outcomes=outcomes)

    async def remove(self, key: str, scope: str | None) -> None:
        """Delete a record from every tier.

        The local delete always happens; remote deletes are best effort.

        Raises:
            StorageIOError: If the local delete failed
        """
        validate_key(key)
        scope = scope_for(scope)
        native = self.native_key(key, scope)
        plan = self.plan(key, scope)

        self._cancel_refresh(native)
        self._begin()
        try:
            local_error, *outcomes = await asyncio.gather(
                self._remove_local(native),
                *(
                    attempt(
                        tier, partial(self._remote_delete, tier, key, scope), self.remote_timeout
                    )
                    for tier in plan.writes
                ),
            )
        except BaseException as e:
            self._complete(False, f"{type(e).__name__}: {e}")
            raise

        failed = [o.tier for o in outcomes if not o.ok]
        if failed:
            self._log.bind(key=key, scope=scope).warning(
                f"Remote delete failed on {', '.join(failed)}"
            )
        self._complete(
            local_error is None or any(o.ok for o in outcomes),
            str(local_error) if local_error is not None else None,
        )
        if local_error is not None:
            raise local_error

    async def clear(
        self,
        scope: str | None,
        preserve: Iterable[str] = (USER_PREFERENCES,),
    ) -> list[str]:
        """Remove every registered key for a scope except the preserved ones.

        Returns:
            The keys that were removed
        """
        keep = set(preserve)
        keys = [key for key in self.registry if key not in keep]
        await asyncio.gather(*(self.remove(key, scope) for key in keys))
        logger.info(f"Cleared {len(keys)} keys for scope {scope_for(scope)}")
        return keys

    async def drain(self) -> None:
        """Wait for outstanding write-through refreshes."""
        while self._refreshes:
            pending = list(self._refreshes.items())
            await asyncio.gather(*(task for _, task in pending), return_exceptions=True)
            for native, task in pending:
                if self._refreshes.get(native) is task:
                    del self._refreshes[native]

    async def aclose(self) -> None:
        """Drain refreshes and close every tier."""
        await self.drain()
        await self.local.close()
        if self.fallback is not None:
            await self.fallback.close()
        for adapter in self.adapters.values():
            await adapter.close()

    # Tier access (also used by the migration sweeper)

    async def read_local(self, key: str, scope: str | None) -> tuple[bool, Any]:
        """Read the local cache entry only.

        Returns:
            (found, value); corrupt entries count as not found
        """
        return await self._read_local(key, scope_for(scope))

    async def write_local(self, key: str, scope: str | None, value: Any) -> None:
        """Write the local cache entry only."""
        scope = scope_for(scope)
        _, text = StoredEnvelope.wrap(key, value, scope)
        error = await self._write_local(self.native_key(key, scope), text)
        if error is not None:
            raise error

    async def read_tier(self, tier: str, key: str, scope: str) -> TierOutcome:
        """Read one remote tier, classified."""
        return await attempt(
            tier,
            partial(self._remote_read, tier, key, scope),
            self.remote_timeout,
            expect_value=True,
        )

    async def write_tier(self, tier: str, key: str, scope: str, value: Any) -> TierOutcome:
        """Write one remote tier, classified."""
        return await attempt(
            tier,
            partial(self._remote_write, tier, key, scope, value),
            self.remote_timeout,
        )

    # Internals

    async def _read_local(self, key: str, scope: str) -> tuple[bool, Any]:
        native = self.native_key(key, scope)
        text = await self.local.get(native)
        if text is None:
            return False, None
        try:
            return True, StoredEnvelope.decode(text).data
        except ValueError as e:
            self._log.bind(key=key, scope=scope, tier=LOCAL_TIER).warning(
                f"Ignoring corrupt local entry {native}: {e}"
            )
            return False, None

    async def _write_local(
        self, native: str, text: str
    ) -> LocalCacheQuotaError | StorageIOError | None:
        try:
            await self.local.set(native, text)
        except (LocalCacheQuotaError, StorageIOError) as e:
            return e
        return None

    async def _remove_local(self, native: str) -> StorageIOError | None:
        try:
            await self.local.remove(native)
        except StorageIOError as e:
            return e
        return None

    async def _write_remote(
        self, plan: TierPlan, key: str, scope: str, value: Any
    ) -> tuple[str | None, list[TierOutcome]]:
        outcomes = []
        for tier in plan.writes:
            outcome = await self.write_tier(tier, key, scope, value)
            outcomes.append(outcome)
            if outcome.ok:
                return tier, outcomes
        return None, outcomes

    async def _remote_read(self, tier: str, key: str, scope: str) -> Any | None:
        if tier == FALLBACK_TIER:
            return await self.fallback.get(key, scope)  # type: ignore[union-attr]
        return await self.adapters[key].read(scope)

    async def _remote_write(self, tier: str, key: str, scope: str, value: Any) -> None:
        if tier == FALLBACK_TIER:
            await self.fallback.put(key, scope, value)  # type: ignore[union-attr]
        else:
            await self.adapters[key].write(scope, value)

    async def _remote_delete(self, tier: str, key: str, scope: str) -> None:
        if tier == FALLBACK_TIER:
            await self.fallback.delete(key, scope)  # type: ignore[union-attr]
        else:
            await self.adapters[key].delete(scope)

    def _schedule_refresh(self, key: str, scope: str, value: Any) -> None:
        native = self.native_key(key, scope)
        self._cancel_refresh(native)
        task = asyncio.create_task(self._refresh_local(key, scope, value))
        self._refreshes[native] = task
        task.add_done_callback(partial(self._forget_refresh, native))

    def _forget_refresh(self, native: str, task: asyncio.Task[None]) -> None:
        if self._refreshes.get(native) is task:
            del self._refreshes[native]

    def _cancel_refresh(self, native: str) -> None:
        task = self._refreshes.pop(native, None)
        if task is not None and not task.done():
            task.cancel()

    async def _refresh_local(self, key: str, scope: str, value: Any) -> None:
        try:
            await self.write_local(key, scope, value)
        except PersistenceError as e:
            self._log.bind(key=key, scope=scope, tier=LOCAL_TIER).warning(
                f"Write-through refresh failed: {e}"
            )

    def _begin(self) -> None:
        if self.tracker is not None:
            self.tracker.begin()

    def _complete(self, succeeded: bool, error: str | None) -> None:
        if self.tracker is not None:
            self.tracker.complete(succeeded, error)

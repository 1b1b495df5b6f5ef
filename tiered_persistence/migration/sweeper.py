"""
Migration sweeper.

Copies local-cache-only records into the remote tiers once a user is
signed in and a remote tier is reachable, and refreshes the local cache
from the remote tiers on demand.

Migration is a copy: local entries are never deleted, so re-running a
sweep is harmless and a guest's data stays readable under the guest
scope after it has been copied to the user's scope.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from ..exceptions import PersistenceError
from ..keys import GUEST_SCOPE, is_authenticated_scope, scope_for
from ..logging_utils import PersistenceLoggerAdapter, get_persistence_logger
from ..outcomes import OutcomeKind
from ..resolver import PersistenceResolver
from ..sync import SyncStateTracker
from .types import KeyMigrationResult, MigrationResult, MigrationStatus, PullResult

logger = get_persistence_logger("migration")

NO_USER_REASON = "no authenticated user: migration unavailable"
LOCAL_ONLY_REASON = "local-only policy: no remote tier to migrate to"
NO_REMOTE_REASON = "no remote tier configured"
ALREADY_PRESENT = "already present remotely"
EMPTY_VALUE = "no local data"


def _is_empty(value: Any) -> bool:
    return value is None or value == [] or value == {} or value == ""


class MigrationSweeper:
    """Copies local cache entries into the best available remote tier.

    Sweeps are only ever triggered explicitly (after sign-in, or from an
    operator action). Per-key writes run with bounded concurrency and no
    global lock, so a concurrent get or set may see the value before or
    after migration.
    """

    def __init__(
        self,
        resolver: PersistenceResolver,
        tracker: SyncStateTracker | None = None,
        max_concurrency: int = 4,
    ) -> None:
        """Initialize the sweeper.

        Args:
            resolver: Resolver whose tiers and policy are used
            tracker: Sync state tracker (defaults to the resolver's)
            max_concurrency: Maximum keys migrated at the same time
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.resolver = resolver
        self.tracker = tracker if tracker is not None else resolver.tracker
        self.max_concurrency = max_concurrency

    def _unavailable_reason(self, scope: str) -> str | None:
        if not is_authenticated_scope(scope):
            return NO_USER_REASON
        if not self.resolver.policy.uses_remote:
            return LOCAL_ONLY_REASON
        if self.resolver.fallback is None and not (
            self.resolver.adapters and self.resolver.policy.uses_durable
        ):
            return NO_REMOTE_REASON
        return None

    def _select_keys(self, keys: Iterable[str] | None) -> list[str]:
        if keys is None:
            return list(self.resolver.registry)
        return [self.resolver.registry.get(key) for key in keys]

    async def migrate(
        self,
        scope: str | None,
        include_guest: bool = False,
        keys: Iterable[str] | None = None,
    ) -> MigrationResult:
        """Copy local entries for a scope into the remote tiers.

        Args:
            scope: Target user scope
            include_guest: Also copy guest entries where the scope has none
            keys: Keys to sweep (default: every registered key)

        Returns:
            MigrationResult; a guest scope or local-only policy yields an
            empty result with ``unavailable_reason`` set

        Raises:
            UnknownStorageKeyError: If ``keys`` names an unregistered key
        """
        scope = scope_for(scope)
        selected = self._select_keys(keys)
        result = MigrationResult(scope=scope, started_at=datetime.now(UTC))

        reason = self._unavailable_reason(scope)
        if reason is not None:
            logger.info(f"Migration skipped for scope {scope}: {reason}")
            result.unavailable_reason = reason
            result.completed_at = datetime.now(UTC)
            return result

        log = PersistenceLoggerAdapter(logger, {"scope": scope})
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(key: str) -> KeyMigrationResult:
            async with semaphore:
                return await self._migrate_key(key, scope, include_guest, log)

        if self.tracker is not None:
            self.tracker.begin()
        try:
            key_results = await asyncio.gather(*(bounded(key) for key in selected))
        except BaseException as e:
            if self.tracker is not None:
                self.tracker.complete(False, f"{type(e).__name__}: {e}")
            raise

        for key_result in key_results:
            result.add_result(key_result)
        result.completed_at = datetime.now(UTC)

        if self.tracker is not None:
            succeeded = not result.failed_keys or result.migrated_count > 0
            error = None if succeeded else f"migration failed for {', '.join(result.failed_keys)}"
            self.tracker.complete(succeeded, error)

        log.info(
            f"Migration complete: {result.migrated_count} migrated, "
            f"{len(result.failed_keys)} failed, {len(result.skipped_keys)} skipped"
        )
        return result

    async def migrate_current(self, include_guest: bool = True) -> MigrationResult:
        """Migrate for the identity provider's current user."""
        return await self.migrate(await self.resolver.current_scope(), include_guest)

    async def _migrate_key(
        self,
        key: str,
        scope: str,
        include_guest: bool,
        log: PersistenceLoggerAdapter,
    ) -> KeyMigrationResult:
        log = log.bind(key=key)
        try:
            found, value = await self.resolver.read_local(key, scope)
            source_scope = scope
            if not found and include_guest:
                found, value = await self.resolver.read_local(key, GUEST_SCOPE)
                source_scope = GUEST_SCOPE
                if found and not _is_empty(value):
                    await self._seed_local(key, scope, value, log)
        except PersistenceError as e:
            log.warning(f"Could not read local entry: {e}")
            return KeyMigrationResult(key, MigrationStatus.FAILED, reason=str(e))

        if not found or _is_empty(value):
            return KeyMigrationResult(key, MigrationStatus.SKIPPED, reason=EMPTY_VALUE)

        errors = []
        for tier in self.resolver.remote_tiers(key):
            check = await self.resolver.read_tier(tier, key, scope)
            if check.kind == OutcomeKind.OK:
                return KeyMigrationResult(
                    key,
                    MigrationStatus.SKIPPED,
                    tier=tier,
                    source_scope=source_scope,
                    reason=ALREADY_PRESENT,
                )
            if check.kind != OutcomeKind.NOT_FOUND:
                errors.append(f"{tier}: {check.error or check.kind.value}")
                continue

            write = await self.resolver.write_tier(tier, key, scope, value)
            if write.ok:
                log.debug("Migrated", extra={"tier": tier, "source_scope": source_scope})
                return KeyMigrationResult(
                    key, MigrationStatus.MIGRATED, tier=tier, source_scope=source_scope
                )
            errors.append(f"{tier}: {write.error or write.kind.value}")

        log.warning(f"Migration failed: {'; '.join(errors)}")
        return KeyMigrationResult(
            key,
            MigrationStatus.FAILED,
            source_scope=source_scope,
            reason="; ".join(errors) or NO_REMOTE_REASON,
        )

    async def _seed_local(
        self, key: str, scope: str, value: Any, log: PersistenceLoggerAdapter
    ) -> None:
        try:
            await self.resolver.write_local(key, scope, value)
        except PersistenceError as e:
            log.warning(f"Could not copy guest entry into scope: {e}")

    async def pull(self, scope: str | None, keys: Iterable[str] | None = None) -> PullResult:
        """Refresh local cache entries from the best remote tier.

        Keys with no remote entry are left alone. A key fails only when
        no remote tier could be read or the local write failed.
        """
        scope = scope_for(scope)
        selected = self._select_keys(keys)
        result = PullResult(scope=scope)

        reason = self._unavailable_reason(scope)
        if reason is not None:
            result.unavailable_reason = reason
            return result

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(key: str) -> tuple[str, bool | None]:
            async with semaphore:
                return key, await self._pull_key(key, scope)

        if self.tracker is not None:
            self.tracker.begin()
        outcomes = await asyncio.gather(*(bounded(key) for key in selected))
        for key, refreshed in outcomes:
            if refreshed is True:
                result.refreshed.append(key)
            elif refreshed is None:
                result.failed_keys.append(key)

        if self.tracker is not None:
            succeeded = not result.failed_keys or bool(result.refreshed)
            self.tracker.complete(succeeded, None if succeeded else "pull failed on every key")
        logger.info(
            f"Pulled {len(result.refreshed)} keys for scope {scope}, "
            f"{len(result.failed_keys)} failed"
        )
        return result

    async def _pull_key(self, key: str, scope: str) -> bool | None:
        """Returns True if refreshed, False if no remote entry, None on failure."""
        reachable = False
        for tier in self.resolver.remote_tiers(key):
            outcome = await self.resolver.read_tier(tier, key, scope)
            if outcome.reachable:
                reachable = True
            if not outcome.ok:
                continue
            try:
                await self.resolver.write_local(key, scope, outcome.value)
            except PersistenceError as e:
                logger.warning(f"Pull could not write local entry for {key}: {e}")
                return None
            return True
        return False if reachable else None

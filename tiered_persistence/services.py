"""
Service wiring.

Builds every persistence service once, at application start, and hands
the same instances to the resolver, the migration sweeper and the
status tooling. Tests build the services by hand instead and substitute
fakes per tier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import TracebackType

from .diagnostics import StatusPanel, StatusProber
from .identity import IdentityProvider, StaticIdentityProvider
from .keys import StorageKeyRegistry
from .migration import MigrationSweeper
from .resolver import PersistenceResolver
from .storage.base import (
    DurableStoreAdapter,
    LocalCache,
    PersistenceConfig,
    RemoteBackend,
    RemoteFallbackStore,
)
from .storage.cosmos import CosmosConnection, CosmosEntityAdapter, CosmosFallbackStore
from .storage.local import FileLocalCache, MemoryLocalCache
from .storage.sqlite import SQLiteEntityAdapter, SQLiteFallbackStore
from .sync import SyncStateTracker

logger = logging.getLogger(__name__)

MEMORY_LOCAL_PATH = ":memory:"


def build_local_cache(config: PersistenceConfig) -> LocalCache:
    """Local cache for the configuration (``local_path: ":memory:"`` keeps it in process)."""
    if config.local_path == MEMORY_LOCAL_PATH:
        return MemoryLocalCache(config.local_quota_bytes)
    return FileLocalCache(config.local_directory, config.local_quota_bytes)


def build_remote_tiers(
    config: PersistenceConfig,
) -> tuple[RemoteFallbackStore | None, dict[str, DurableStoreAdapter], CosmosConnection | None]:
    """Remote fallback store, durable adapters and the shared Cosmos connection."""
    if config.remote_backend == RemoteBackend.SQLITE:
        path = config.sqlite_path
        fallback: RemoteFallbackStore = SQLiteFallbackStore(path, config.fallback_container)  # type: ignore[arg-type]
        adapters: dict[str, DurableStoreAdapter] = {
            key: SQLiteEntityAdapter(path, key)  # type: ignore[arg-type]
            for key in config.durable_keys
        }
        return fallback, adapters, None

    if config.remote_backend == RemoteBackend.COSMOS:
        connection = CosmosConnection(config)
        fallback = CosmosFallbackStore(connection, config.fallback_container)
        adapters = {key: CosmosEntityAdapter(connection, key) for key in config.durable_keys}
        return fallback, adapters, connection

    return None, {}, None


@dataclass
class PersistenceServices:
    """The persistence services of one application instance."""

    config: PersistenceConfig
    identity: IdentityProvider
    registry: StorageKeyRegistry
    tracker: SyncStateTracker
    resolver: PersistenceResolver
    sweeper: MigrationSweeper
    prober: StatusProber
    panel: StatusPanel
    _cosmos: CosmosConnection | None = field(default=None, repr=False)

    @classmethod
    def create(
        cls,
        config: PersistenceConfig | None = None,
        identity: IdentityProvider | None = None,
        registry: StorageKeyRegistry | None = None,
    ) -> PersistenceServices:
        """Build every service from a configuration.

        Args:
            config: Persistence configuration (default: from environment)
            identity: Identity provider (default: signed-out static provider)
            registry: Storage keys (default: the application keys)
        """
        config = config or PersistenceConfig.from_environment()
        identity = identity or StaticIdentityProvider()
        registry = registry or StorageKeyRegistry.default()

        local = build_local_cache(config)
        fallback, adapters, cosmos = build_remote_tiers(config)
        tracker = SyncStateTracker()
        resolver = PersistenceResolver(
            local=local,
            fallback=fallback,
            adapters=adapters,
            identity=identity,
            registry=registry,
            policy=config.policy,
            tracker=tracker,
            app_prefix=config.app_prefix,
            remote_timeout=config.remote_timeout,
        )
        sweeper = MigrationSweeper(
            resolver, tracker=tracker, max_concurrency=config.migration_concurrency
        )
        prober = StatusProber(
            local=local,
            fallback=fallback,
            adapters=adapters,
            identity=identity,
            timeout=config.remote_timeout,
            app_prefix=config.app_prefix,
        )
        panel = StatusPanel(prober, sweeper, tracker, resolver)

        logger.info(
            f"Persistence services ready (policy={config.policy.value}, "
            f"remote={config.remote_backend.value}, durable_keys={len(adapters)})"
        )
        return cls(
            config=config,
            identity=identity,
            registry=registry,
            tracker=tracker,
            resolver=resolver,
            sweeper=sweeper,
            prober=prober,
            panel=panel,
            _cosmos=cosmos,
        )

    async def close(self) -> None:
        """Close every tier and the shared Cosmos connection."""
        await self.resolver.aclose()
        if self._cosmos is not None:
            await self._cosmos.close()

    async def __aenter__(self) -> PersistenceServices:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

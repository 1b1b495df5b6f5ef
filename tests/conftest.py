"""
Shared test configuration and fixtures.

Wires a resolver over the in-memory local cache and the fake remote
tiers from ``tests.fakes``.
"""

from __future__ import annotations

import pytest

from tiered_persistence.identity import StaticIdentityProvider
from tiered_persistence.migration import MigrationSweeper
from tiered_persistence.resolver import PersistenceResolver
from tiered_persistence.storage.local import MemoryLocalCache
from tiered_persistence.sync import SyncStateTracker

from .fakes import TEST_TIMEOUT, FakeDurableAdapter, FakeFallbackStore


@pytest.fixture
def local_cache() -> MemoryLocalCache:
    return MemoryLocalCache()


@pytest.fixture
def fallback() -> FakeFallbackStore:
    return FakeFallbackStore()


@pytest.fixture
def customers_store() -> FakeDurableAdapter:
    return FakeDurableAdapter("customers")


@pytest.fixture
def identity() -> StaticIdentityProvider:
    return StaticIdentityProvider()


@pytest.fixture
def tracker() -> SyncStateTracker:
    return SyncStateTracker()


@pytest.fixture
async def resolver(local_cache, fallback, customers_store, identity, tracker):
    """Resolver over the memory cache, fake fallback and a customers adapter."""
    resolver = PersistenceResolver(
        local=local_cache,
        fallback=fallback,
        adapters=[customers_store],
        identity=identity,
        tracker=tracker,
        remote_timeout=TEST_TIMEOUT,
    )
    yield resolver
    await resolver.drain()


@pytest.fixture
def sweeper(resolver) -> MigrationSweeper:
    return MigrationSweeper(resolver, max_concurrency=2)

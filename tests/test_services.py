"""End-to-end tests for service wiring on the SQLite backend."""

import asyncio
from pathlib import Path

import pytest

from tiered_persistence.identity import StaticIdentityProvider
from tiered_persistence.keys import GUEST_SCOPE
from tiered_persistence.services import PersistenceServices, build_local_cache, build_remote_tiers
from tiered_persistence.storage.base import PersistenceConfig
from tiered_persistence.storage.local import FileLocalCache, MemoryLocalCache
from tiered_persistence.storage.sqlite import SQLiteEntityAdapter, SQLiteFallbackStore


@pytest.fixture
def config(tmp_path: Path) -> PersistenceConfig:
    return PersistenceConfig(
        local_path=":memory:",
        remote_backend="sqlite",
        sqlite_path=str(tmp_path / "remote.db"),
        durable_keys=("customers", "orders"),
        remote_timeout=2.0,
    )


@pytest.fixture
async def services(config):
    identity = StaticIdentityProvider()
    async with PersistenceServices.create(config, identity=identity) as built:
        yield built


class TestBuilders:
    def test_memory_local_cache(self) -> None:
        cache = build_local_cache(PersistenceConfig(local_path=":memory:"))

        assert isinstance(cache, MemoryLocalCache)

    def test_file_local_cache(self, tmp_path: Path) -> None:
        cache = build_local_cache(PersistenceConfig(local_path=str(tmp_path)))

        assert isinstance(cache, FileLocalCache)
        assert cache.directory == tmp_path

    def test_sqlite_tiers(self, config) -> None:
        fallback, adapters, cosmos = build_remote_tiers(config)

        assert isinstance(fallback, SQLiteFallbackStore)
        assert set(adapters) == {"customers", "orders"}
        assert all(isinstance(a, SQLiteEntityAdapter) for a in adapters.values())
        assert cosmos is None

    def test_no_remote(self) -> None:
        assert build_remote_tiers(PersistenceConfig()) == (None, {}, None)


class TestPersistenceServices:
    async def test_signed_in_round_trip(self, services) -> None:
        services.identity.sign_in("user-42")
        scope = await services.resolver.current_scope()

        result = await services.resolver.set("orders", scope, [{"id": "o1"}])

        assert result.remote is True
        assert result.tier == "durable:orders"
        assert await services.resolver.get("orders", scope) == [{"id": "o1"}]

    async def test_concurrent_sets_on_one_key(self, services) -> None:
        services.identity.sign_in("user-42")
        resolver = services.resolver
        await resolver.set("customers", "user-42", [{"id": "c1", "name": "Old"}])
        first = [{"id": "c1", "name": "Ann"}]
        second = [{"id": "c1", "name": "Bea"}, {"id": "c2", "name": "Cy"}]

        results = await asyncio.gather(
            resolver.set("customers", "user-42", first),
            resolver.set("customers", "user-42", second),
        )

        assert [r.tier for r in results] == ["durable:customers", "durable:customers"]
        durable = await resolver.adapters["customers"].read("user-42")
        assert durable in (first, second)
        assert await resolver.get("customers", "user-42") == durable

    async def test_guest_then_sign_in_migrates(self, services) -> None:
        await services.resolver.set("cart", GUEST_SCOPE, [{"sku": "A-1"}])
        services.identity.sign_in("user-42")

        result = await services.panel.force_sync()

        assert result.migrated_count == 1
        fallback = services.resolver.fallback
        assert await fallback.get("cart", "user-42") == [{"sku": "A-1"}]

    async def test_status_report(self, services) -> None:
        services.identity.sign_in("user-42")

        status = await services.panel.report()

        assert status.diagnostics.healthy is True
        assert [t.name for t in status.diagnostics.tier_results] == [
            "local",
            "fallback",
            "durable:customers",
            "durable:orders",
        ]

    async def test_registry_includes_application_keys(self, services) -> None:
        assert "user-preferences" in services.registry
        assert "customers" in services.registry

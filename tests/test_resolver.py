"""Tests for the persistence resolver."""

from __future__ import annotations

import asyncio
import math

import pytest

from tiered_persistence.exceptions import LocalCacheQuotaError, SerializationError
from tiered_persistence.keys import GUEST_SCOPE
from tiered_persistence.outcomes import FALLBACK_TIER, LOCAL_TIER, OutcomeKind
from tiered_persistence.policy import TierPolicy
from tiered_persistence.resolver import PersistenceResolver
from tiered_persistence.serialization import StoredEnvelope
from tiered_persistence.storage.local import MemoryLocalCache
from tiered_persistence.sync import SyncStatus

from .fakes import TEST_TIMEOUT, FakeDurableAdapter, FakeFallbackStore

CUSTOMERS = [{"id": "c1", "name": "Ann"}]


def make_resolver(policy: TierPolicy, local=None, fallback=None, adapters=(), **kwargs):
    return PersistenceResolver(
        local=local or MemoryLocalCache(),
        fallback=fallback,
        adapters=list(adapters),
        policy=policy,
        remote_timeout=TEST_TIMEOUT,
        **kwargs,
    )


class TestRoundTrip:
    """set followed by get returns the value."""

    async def test_round_trip_with_all_tiers_up(self, resolver, customers_store) -> None:
        result = await resolver.set("customers", "user-42", CUSTOMERS)

        assert result.remote is True
        assert result.local is True
        assert result.tier == "durable:customers"
        assert customers_store.rows["user-42"] == CUSTOMERS
        assert await resolver.get("customers", "user-42") == CUSTOMERS

    async def test_key_without_adapter_goes_to_fallback(self, resolver, fallback) -> None:
        result = await resolver.set("orders", "user-42", [{"id": "o1"}])

        assert result.tier == FALLBACK_TIER
        assert fallback.rows[("user-42", "orders")] == [{"id": "o1"}]

    @pytest.mark.parametrize(
        "value",
        [
            {"theme": "dark", "page_size": 25},
            [{"id": "c1"}, {"id": "c2", "tags": ["vip"]}],
            "plain text",
            42,
            3.5,
            True,
            [],
            {"nested": {"list": [1, 2, {"deep": None}]}},
        ],
    )
    async def test_round_trip_with_remotes_unreachable(
        self, resolver, fallback, customers_store, value
    ) -> None:
        fallback.fail()
        customers_store.fail()

        result = await resolver.set("customers", "user-42", value)

        assert result.remote is False
        assert result.local is True
        assert await resolver.get("customers", "user-42") == value

    async def test_scopes_do_not_share_data(self, resolver) -> None:
        await resolver.set("cart", "user-1", ["a"])
        await resolver.set("cart", "user-2", ["b"])

        assert await resolver.get("cart", "user-1") == ["a"]
        assert await resolver.get("cart", "user-2") == ["b"]

    async def test_missing_key_returns_none(self, resolver) -> None:
        assert await resolver.get("orders", "user-42") is None

    async def test_last_write_wins(self, resolver) -> None:
        await resolver.set("orders", "user-42", [{"id": "o1"}])
        await resolver.set("orders", "user-42", [{"id": "o2"}])

        assert await resolver.get("orders", "user-42") == [{"id": "o2"}]


class TestConcreteScenario:
    """Durable store down at write time, restored before migration."""

    async def test_durable_failure_falls_back_then_migrates(
        self, resolver, sweeper, fallback, customers_store
    ) -> None:
        customers_store.fail()

        result = await resolver.set("customers", "user-42", CUSTOMERS)

        assert result.remote is True
        assert result.local is True
        assert result.tier == FALLBACK_TIER
        assert [o.kind for o in result.outcomes] == [OutcomeKind.NETWORK_ERROR, OutcomeKind.OK]
        assert await resolver.get("customers", "user-42") == CUSTOMERS

        customers_store.restore()
        migration = await sweeper.migrate("user-42")

        assert migration.migrated_count == 1
        assert migration.failed_keys == []
        assert await customers_store.read("user-42") == CUSTOMERS


class TestGuestScope:
    """Unauthenticated scopes never touch the remote tiers."""

    async def test_guest_set_skips_remote_tiers(self, resolver, fallback, customers_store) -> None:
        result = await resolver.set("customers", GUEST_SCOPE, CUSTOMERS)

        assert result.remote is False
        assert result.local is True
        assert fallback.calls == []
        assert customers_store.calls == []
        assert {o.kind for o in result.outcomes} == {OutcomeKind.AUTH_REQUIRED}

    async def test_none_scope_is_guest(self, resolver, fallback) -> None:
        await resolver.set("cart", None, ["item"])

        assert await resolver.get("cart", GUEST_SCOPE) == ["item"]
        assert fallback.calls == []

    async def test_current_scope_follows_identity(self, resolver, identity) -> None:
        assert await resolver.current_scope() == GUEST_SCOPE

        identity.sign_in("user-42")
        assert await resolver.current_scope() == "user-42"


class TestReadPlan:
    """Tier order per policy."""

    def test_prefer_durable_plan(self, resolver) -> None:
        plan = resolver.plan("customers", "user-42")

        assert plan.reads == ["durable:customers", FALLBACK_TIER, LOCAL_TIER]
        assert plan.writes == ["durable:customers", FALLBACK_TIER]

    def test_guest_plan_is_local_only(self, resolver) -> None:
        plan = resolver.plan("customers", GUEST_SCOPE)

        assert plan.reads == [LOCAL_TIER]
        assert plan.writes == []
        assert plan.skipped == ["durable:customers", FALLBACK_TIER]

    def test_fallback_only_ignores_adapters(self) -> None:
        resolver = make_resolver(
            TierPolicy.FALLBACK_ONLY,
            fallback=FakeFallbackStore(),
            adapters=[FakeDurableAdapter("customers")],
        )

        assert resolver.plan("customers", "u").reads == [FALLBACK_TIER, LOCAL_TIER]

    def test_local_first_plan(self) -> None:
        resolver = make_resolver(
            TierPolicy.LOCAL_FIRST,
            fallback=FakeFallbackStore(),
            adapters=[FakeDurableAdapter("customers")],
        )

        assert resolver.plan("customers", "u").reads == [
            LOCAL_TIER,
            "durable:customers",
            FALLBACK_TIER,
        ]

    def test_local_only_plan(self) -> None:
        resolver = make_resolver(TierPolicy.LOCAL_ONLY, fallback=FakeFallbackStore())

        plan = resolver.plan("orders", "u")
        assert plan.reads == [LOCAL_TIER]
        assert plan.writes == []
        assert plan.skipped == []

    async def test_durable_value_wins(self, resolver, fallback, customers_store) -> None:
        customers_store.rows["user-42"] = ["durable"]
        fallback.rows[("user-42", "customers")] = ["fallback"]
        await resolver.write_local("customers", "user-42", ["local"])

        assert await resolver.get("customers", "user-42") == ["durable"]

    async def test_unreachable_durable_degrades_to_fallback(
        self, resolver, fallback, customers_store
    ) -> None:
        customers_store.rows["user-42"] = ["durable"]
        fallback.rows[("user-42", "customers")] = ["fallback"]
        customers_store.fail()

        assert await resolver.get("customers", "user-42") == ["fallback"]

    async def test_durable_miss_reads_fallback(self, resolver, fallback) -> None:
        fallback.rows[("user-42", "customers")] = ["fallback"]

        assert await resolver.get("customers", "user-42") == ["fallback"]

    async def test_all_remotes_down_reads_local(self, resolver, fallback, customers_store) -> None:
        await resolver.write_local("customers", "user-42", ["local"])
        fallback.fail()
        customers_store.fail()

        assert await resolver.get("customers", "user-42") == ["local"]

    async def test_local_first_skips_remote_on_local_hit(self) -> None:
        fallback = FakeFallbackStore()
        resolver = make_resolver(TierPolicy.LOCAL_FIRST, fallback=fallback)
        await resolver.write_local("orders", "u", ["local"])
        fallback.rows[("u", "orders")] = ["remote"]

        assert await resolver.get("orders", "u") == ["local"]
        assert fallback.calls == []

    async def test_local_first_reads_remote_on_local_miss(self) -> None:
        fallback = FakeFallbackStore()
        resolver = make_resolver(TierPolicy.LOCAL_FIRST, fallback=fallback)
        fallback.rows[("u", "orders")] = ["remote"]

        assert await resolver.get("orders", "u") == ["remote"]
        await resolver.drain()

    async def test_local_only_never_touches_remote(self) -> None:
        fallback = FakeFallbackStore()
        resolver = make_resolver(TierPolicy.LOCAL_ONLY, fallback=fallback)

        result = await resolver.set("orders", "u", ["x"])

        assert result.remote is False
        assert result.outcomes == []
        assert await resolver.get("orders", "u") == ["x"]
        assert fallback.calls == []


class TestWriteThrough:
    """Remote hits refresh the local cache in the background."""

    async def test_remote_hit_refreshes_local(self, resolver, customers_store) -> None:
        customers_store.rows["user-42"] = CUSTOMERS

        assert await resolver.get("customers", "user-42") == CUSTOMERS
        await resolver.drain()

        found, value = await resolver.read_local("customers", "user-42")
        assert found is True
        assert value == CUSTOMERS

    async def test_refresh_failure_is_not_raised(self, fallback) -> None:
        resolver = make_resolver(
            TierPolicy.PREFER_DURABLE, local=MemoryLocalCache(quota_bytes=10), fallback=fallback
        )
        fallback.rows[("u", "orders")] = [{"id": "o1", "notes": "x" * 100}]

        assert await resolver.get("orders", "u") == [{"id": "o1", "notes": "x" * 100}]
        await resolver.drain()

        assert (await resolver.read_local("orders", "u"))[0] is False

    async def test_set_supersedes_pending_refresh(self, resolver, customers_store) -> None:
        customers_store.rows["user-42"] = ["old"]

        await resolver.get("customers", "user-42")
        await resolver.set("customers", "user-42", ["new"])
        await resolver.drain()

        assert (await resolver.read_local("customers", "user-42"))[1] == ["new"]


class TestTimeouts:
    """Slow tiers are treated as unreachable for the call."""

    async def test_slow_durable_write_falls_back(self, resolver, fallback, customers_store) -> None:
        customers_store.delay = TEST_TIMEOUT * 5

        result = await resolver.set("customers", "user-42", CUSTOMERS)

        assert result.tier == FALLBACK_TIER
        assert result.outcomes[0].kind == OutcomeKind.NETWORK_ERROR
        assert "timed out" in (result.outcomes[0].error or "")

    async def test_local_write_does_not_wait_for_remote(
        self, resolver, local_cache, customers_store
    ) -> None:
        customers_store.delay = TEST_TIMEOUT / 2
        native = resolver.native_key("customers", "user-42")

        task = asyncio.create_task(resolver.set("customers", "user-42", CUSTOMERS))
        for _ in range(20):
            if await local_cache.get(native) is not None:
                break
            await asyncio.sleep(0)

        text = await local_cache.get(native)
        assert not task.done()
        assert text is not None
        assert StoredEnvelope.decode(text).data == CUSTOMERS
        assert (await task).tier == "durable:customers"

    async def test_slow_durable_read_falls_back(self, resolver, fallback, customers_store) -> None:
        fallback.rows[("user-42", "customers")] = ["fallback"]
        customers_store.rows["user-42"] = ["durable"]
        customers_store.delay = TEST_TIMEOUT * 5

        assert await resolver.get("customers", "user-42") == ["fallback"]


class TestErrors:
    """Only serialization and local cache failures reach the caller."""

    @pytest.mark.parametrize("value", [{"x": math.nan}, {"x": math.inf}, object(), {1j: "x"}])
    async def test_serialization_error_before_any_tier(
        self, resolver, local_cache, fallback, customers_store, tracker, value
    ) -> None:
        with pytest.raises(SerializationError) as exc_info:
            await resolver.set("customers", "user-42", value)

        assert exc_info.value.key == "customers"
        assert fallback.calls == []
        assert customers_store.calls == []
        assert await local_cache.keys() == []
        assert tracker.status == SyncStatus.IDLE
        assert tracker.in_flight == 0

    async def test_quota_error_reports_remote_success(self, fallback, tracker) -> None:
        resolver = make_resolver(
            TierPolicy.PREFER_DURABLE,
            local=MemoryLocalCache(quota_bytes=50),
            fallback=fallback,
            tracker=tracker,
        )

        with pytest.raises(LocalCacheQuotaError) as exc_info:
            await resolver.set("orders", "u", ["x" * 200])

        assert exc_info.value.remote_written is True
        assert fallback.rows[("u", "orders")] == ["x" * 200]
        assert tracker.status == SyncStatus.IDLE

    async def test_quota_error_with_remote_down(self, fallback, tracker) -> None:
        fallback.fail()
        resolver = make_resolver(
            TierPolicy.PREFER_DURABLE,
            local=MemoryLocalCache(quota_bytes=50),
            fallback=fallback,
            tracker=tracker,
        )

        with pytest.raises(LocalCacheQuotaError) as exc_info:
            await resolver.set("orders", "u", ["x" * 200])

        assert exc_info.value.remote_written is False
        assert tracker.status == SyncStatus.ERROR

    async def test_auth_rejection_is_not_raised(self, resolver, fallback) -> None:
        fallback.auth_required = True

        result = await resolver.set("orders", "user-42", ["x"])

        assert result.remote is False
        assert result.outcomes[0].kind == OutcomeKind.AUTH_REQUIRED

    async def test_corrupt_local_entry_is_absent(self, local_cache) -> None:
        resolver = make_resolver(TierPolicy.LOCAL_ONLY, local=local_cache)
        await local_cache.set(resolver.native_key("orders", "u"), "{not json")

        assert await resolver.get("orders", "u") is None

    async def test_legacy_unwrapped_local_entry(self, local_cache) -> None:
        resolver = make_resolver(TierPolicy.LOCAL_ONLY, local=local_cache)
        await local_cache.set(resolver.native_key("orders", "u"), '[{"id": "o1"}]')

        assert await resolver.get("orders", "u") == [{"id": "o1"}]

    async def test_invalid_key(self, resolver) -> None:
        with pytest.raises(ValueError):
            await resolver.set("bad:key", "u", 1)

    def test_non_positive_timeout(self) -> None:
        with pytest.raises(ValueError):
            PersistenceResolver(local=MemoryLocalCache(), remote_timeout=0)


class TestLocalEnvelope:
    """Local entries use the wrapped envelope and native key layout."""

    async def test_native_key_and_envelope(self, resolver, local_cache) -> None:
        await resolver.set("orders", "user-42", ["x"])

        text = await local_cache.get("retail-ops:orders:user-42")
        envelope = StoredEnvelope.decode(text)
        assert envelope.data == ["x"]
        assert envelope.scope == "user-42"
        assert envelope.timestamp > 0


class TestRemove:
    """remove deletes everywhere it can."""

    async def test_remove_clears_every_tier(
        self, resolver, local_cache, fallback, customers_store
    ) -> None:
        await resolver.set("customers", "user-42", CUSTOMERS)
        fallback.rows[("user-42", "customers")] = CUSTOMERS

        await resolver.remove("customers", "user-42")

        assert await resolver.get("customers", "user-42") is None
        assert customers_store.rows == {}
        assert fallback.rows == {}
        assert await local_cache.keys() == []

    async def test_remove_with_remotes_down(
        self, resolver, local_cache, fallback, customers_store, tracker
    ) -> None:
        await resolver.set("customers", "user-42", CUSTOMERS)
        fallback.fail()
        customers_store.fail()

        await resolver.remove("customers", "user-42")

        assert await local_cache.keys() == []
        assert tracker.status == SyncStatus.IDLE

    async def test_remove_absent_key(self, resolver) -> None:
        await resolver.remove("orders", "user-42")

    async def test_clear_preserves_preferences(self, resolver) -> None:
        await resolver.set("user-preferences", "user-42", {"theme": "dark"})
        await resolver.set("orders", "user-42", ["o1"])
        await resolver.set("cart", "user-42", ["c1"])

        removed = await resolver.clear("user-42")

        assert "user-preferences" not in removed
        assert await resolver.get("user-preferences", "user-42") == {"theme": "dark"}
        assert await resolver.get("orders", "user-42") is None
        assert await resolver.get("cart", "user-42") is None


class TestSyncTracking:
    """set and remove drive the sync state tracker."""

    async def test_set_transitions(self, resolver, tracker) -> None:
        seen = []
        tracker.subscribe(lambda snapshot: seen.append(snapshot.status))

        await resolver.set("orders", "user-42", ["x"])

        assert seen == [SyncStatus.SYNCING, SyncStatus.IDLE]
        assert tracker.last_synced_at is not None

    async def test_remote_failure_is_still_success(self, resolver, fallback, tracker) -> None:
        fallback.fail()

        await resolver.set("orders", "user-42", ["x"])

        assert tracker.status == SyncStatus.IDLE

    async def test_aclose_closes_tiers(self, resolver) -> None:
        await resolver.aclose()

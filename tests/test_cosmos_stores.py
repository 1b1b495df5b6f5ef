"""Tests for the Cosmos DB tiers that run without a Cosmos account."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from azure.core.exceptions import ServiceRequestError
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError

from tiered_persistence.exceptions import (
    AuthenticationRequiredError,
    ConfigurationError,
    StorageIOError,
    TransientNetworkError,
)
from tiered_persistence.storage.base import CosmosAuthMethod, PersistenceConfig
from tiered_persistence.storage.cosmos import (
    SET_HEADER_ID,
    CosmosConnection,
    CosmosEntityAdapter,
    CosmosFallbackStore,
    _get_credential,
    cosmos_item_id,
    translate_cosmos_error,
)


_RESTRICTED_ID_CHARS = "/\\?#"


class FakeContainer:
    """In-memory stand-in for an async ContainerProxy, partitioned by scope.

    Rejects item ids containing characters Cosmos refuses in point operations.
    """

    def __init__(self) -> None:
        self.docs: dict[tuple[str, str], dict[str, Any]] = {}

    @staticmethod
    def _check_id(item: str) -> None:
        if any(c in item for c in _RESTRICTED_ID_CHARS):
            raise CosmosHttpResponseError(status_code=400, message=f"invalid id {item!r}")

    async def read_item(self, item: str, partition_key: str) -> dict[str, Any]:
        self._check_id(item)
        try:
            return dict(self.docs[(partition_key, item)])
        except KeyError:
            raise CosmosResourceNotFoundError(status_code=404, message="not found") from None

    async def upsert_item(self, body: dict[str, Any]) -> dict[str, Any]:
        self._check_id(body["id"])
        self.docs[(body["scope"], body["id"])] = dict(body, _etag="etag", _ts=1)
        return body

    async def delete_item(self, item: str, partition_key: str) -> None:
        self._check_id(item)
        if (partition_key, item) not in self.docs:
            raise CosmosResourceNotFoundError(status_code=404, message="not found")
        del self.docs[(partition_key, item)]

    async def query_items(self, query: str, parameters: list[dict], partition_key: str):
        for (scope, _), doc in list(self.docs.items()):
            if scope == partition_key:
                yield dict(doc)


class FakeConnection:
    def __init__(self, error: Exception | None = None) -> None:
        self.containers: dict[str, FakeContainer] = {}
        self.error = error

    async def container(self, name: str, tier: str) -> FakeContainer:
        if self.error is not None:
            raise translate_cosmos_error(tier, "connect", self.error)
        return self.containers.setdefault(name, FakeContainer())


class TestTranslateCosmosError:
    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_statuses(self, status) -> None:
        error = translate_cosmos_error(
            "fallback", "get", CosmosHttpResponseError(status_code=status, message="denied")
        )

        assert isinstance(error, AuthenticationRequiredError)
        assert error.tier == "fallback"

    @pytest.mark.parametrize("status", [408, 429, 503])
    def test_transient_statuses(self, status) -> None:
        error = translate_cosmos_error(
            "fallback", "put", CosmosHttpResponseError(status_code=status, message="busy")
        )

        assert isinstance(error, TransientNetworkError)

    def test_bad_request_is_io_error(self) -> None:
        error = translate_cosmos_error(
            "fallback", "put", CosmosHttpResponseError(status_code=400, message="bad")
        )

        assert isinstance(error, StorageIOError)
        assert error.operation == "put"

    @pytest.mark.parametrize(
        "cause", [ServiceRequestError("connection refused"), asyncio.TimeoutError()]
    )
    def test_connection_failures(self, cause) -> None:
        assert isinstance(translate_cosmos_error("fallback", "get", cause), TransientNetworkError)


class TestCosmosItemId:
    @pytest.mark.parametrize("value", ["orders", "o-1", "user_42.v2", "2024:01@eu"])
    def test_plain_values_unchanged(self, value) -> None:
        assert cosmos_item_id(value) == value

    @pytest.mark.parametrize(
        "value", ["#record", "#0", "a/b", "a\\b", "what?", "with space", "b64.x", SET_HEADER_ID]
    )
    def test_other_values_are_encoded(self, value) -> None:
        item_id = cosmos_item_id(value)

        assert item_id.startswith("b64.")
        assert not any(c in item_id for c in _RESTRICTED_ID_CHARS)

    def test_mapping_is_injective(self) -> None:
        values = ["#record", "b64.I3JlY29yZA", "I3JlY29yZA", "a/b", "a_b"]

        assert len({cosmos_item_id(v) for v in values}) == len(values)


class TestCredentials:
    def test_key_auth(self) -> None:
        config = PersistenceConfig(cosmos_auth_method=CosmosAuthMethod.KEY, cosmos_key="secret")

        assert _get_credential(config) == "secret"

    def test_key_auth_without_key(self) -> None:
        config = PersistenceConfig(cosmos_auth_method=CosmosAuthMethod.KEY)

        with pytest.raises(ConfigurationError):
            _get_credential(config)

    def test_service_principal_needs_all_settings(self) -> None:
        config = PersistenceConfig(
            cosmos_auth_method=CosmosAuthMethod.SERVICE_PRINCIPAL, azure_client_id="client"
        )

        with pytest.raises(ConfigurationError):
            _get_credential(config)

    def test_connection_requires_endpoint(self) -> None:
        with pytest.raises(ConfigurationError):
            CosmosConnection(PersistenceConfig())


class TestCosmosFallbackStore:
    @pytest.fixture
    def connection(self) -> FakeConnection:
        return FakeConnection()

    @pytest.fixture
    def store(self, connection) -> CosmosFallbackStore:
        return CosmosFallbackStore(connection)  # type: ignore[arg-type]

    async def test_document_layout(self, store, connection) -> None:
        await store.put("orders", "user-42", [{"id": "o1"}])

        doc = connection.containers["user_storage"].docs[("user-42", "orders")]
        assert doc["id"] == "orders"
        assert doc["storage_key"] == "orders"
        assert doc["data"] == [{"id": "o1"}]
        assert "updated_at" in doc

    async def test_get(self, store) -> None:
        await store.put("orders", "user-42", ["o1"])

        assert await store.get("orders", "user-42") == ["o1"]
        assert await store.get("orders", "user-7") is None

    async def test_delete_absent(self, store) -> None:
        await store.delete("orders", "user-42")

    async def test_key_with_restricted_characters(self, store, connection) -> None:
        await store.put("reports/2024", "user-42", {"rows": 3})

        assert await store.get("reports/2024", "user-42") == {"rows": 3}
        doc = next(iter(connection.containers["user_storage"].docs.values()))
        assert doc["storage_key"] == "reports/2024"

        await store.delete("reports/2024", "user-42")

        assert await store.get("reports/2024", "user-42") is None

    async def test_unreachable(self) -> None:
        connection = FakeConnection(ServiceRequestError("down"))
        store = CosmosFallbackStore(connection)  # type: ignore[arg-type]

        with pytest.raises(TransientNetworkError):
            await store.get("orders", "user-42")


class TestCosmosEntityAdapter:
    @pytest.fixture
    def connection(self) -> FakeConnection:
        return FakeConnection()

    @pytest.fixture
    def adapter(self, connection) -> CosmosEntityAdapter:
        return CosmosEntityAdapter(connection, "orders")  # type: ignore[arg-type]

    async def test_read_never_written(self, adapter) -> None:
        assert await adapter.read("user-42") is None

    async def test_list_round_trip(self, adapter, connection) -> None:
        orders = [{"id": "o2"}, {"id": "o1"}]

        await adapter.write("user-42", orders)

        assert await adapter.read("user-42") == orders
        assert ("user-42", SET_HEADER_ID) in connection.containers["orders"].docs

    async def test_empty_list(self, adapter) -> None:
        await adapter.write("user-42", [])

        assert await adapter.read("user-42") == []

    async def test_stale_entities_removed(self, adapter, connection) -> None:
        await adapter.write("user-42", [{"id": "o1"}, {"id": "o2"}])
        await adapter.write("user-42", [{"id": "o2"}])

        assert await adapter.read("user-42") == [{"id": "o2"}]
        assert ("user-42", "o1") not in connection.containers["orders"].docs

    async def test_delete(self, adapter, connection) -> None:
        await adapter.write("user-42", [{"id": "o1"}])
        await adapter.delete("user-42")

        assert await adapter.read("user-42") is None
        assert connection.containers["orders"].docs == {}

    async def test_object_record_round_trip(self, adapter, connection) -> None:
        await adapter.write("user-42", {"theme": "dark"})

        assert await adapter.read("user-42") == {"theme": "dark"}

        await adapter.delete("user-42")

        assert await adapter.read("user-42") is None
        assert connection.containers["orders"].docs == {}

    async def test_entities_without_ids_are_replaced(self, adapter) -> None:
        await adapter.write("user-42", ["a", "b", "c"])
        await adapter.write("user-42", ["d"])

        assert await adapter.read("user-42") == ["d"]

    async def test_entity_ids_with_restricted_characters(self, adapter, connection) -> None:
        orders = [{"id": "2024/o1"}, {"id": "a#b?c"}, {"id": SET_HEADER_ID}]

        await adapter.write("user-42", orders)
        await adapter.write("user-42", orders[1:])

        assert await adapter.read("user-42") == orders[1:]
        docs = connection.containers["orders"].docs.values()
        assert {"id": "a#b?c"} in [doc["entity"] for doc in docs if "entity" in doc]

        await adapter.delete("user-42")

        assert connection.containers["orders"].docs == {}

    def test_entity_documents_strip_system_fields(self) -> None:
        docs = [{"id": "o1", "scope": "u", "_etag": "x", "_ts": 1, "_position": 0}]

        assert CosmosEntityAdapter.entity_documents(docs) == [
            {"id": "o1", "scope": "u", "_position": 0}
        ]

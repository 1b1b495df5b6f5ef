"""
Cosmos DB remote tiers.

Implements the generic fallback container and per-entity durable
containers on Azure Cosmos DB. Every container is partitioned by user
scope, so each read or write touches a single partition.

Supports multiple authentication methods:
- Key-based authentication (if org policy allows)
- Azure AD via DefaultAzureCredential (recommended)
- Azure Managed Identity
- Service Principal
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
from datetime import UTC, datetime
from typing import Any

from azure.core.exceptions import ServiceRequestError, ServiceResponseError
from azure.cosmos import PartitionKey
from azure.cosmos.aio import ContainerProxy, CosmosClient, DatabaseProxy
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError

from ..exceptions import (
    AuthenticationRequiredError,
    ConfigurationError,
    StorageIOError,
    TransientNetworkError,
)
from ..outcomes import FALLBACK_TIER, durable_tier_name
from .base import (
    CosmosAuthMethod,
    DurableStoreAdapter,
    PersistenceConfig,
    RemoteFallbackStore,
    entity_rows,
    record_from_rows,
)

logger = logging.getLogger(__name__)

SCOPE_PARTITION_PATH = "/scope"
SET_HEADER_ID = "__set__"
_TRANSIENT_STATUS = {408, 429, 449, 500, 502, 503, 504}
_SYSTEM_FIELDS = ("_rid", "_self", "_etag", "_attachments", "_ts")
_PLAIN_ITEM_ID = re.compile(r"^[A-Za-z0-9_.:@-]+$")
_ENCODED_ID_PREFIX = "b64."


def _get_credential(config: PersistenceConfig) -> Any:
    """Get the appropriate credential based on auth method.

    Raises:
        ConfigurationError: If the credential cannot be created
    """
    auth_method = config.cosmos_auth_method

    if auth_method == CosmosAuthMethod.KEY:
        if not config.cosmos_key:
            raise ConfigurationError("cosmos_key", "required for KEY authentication")
        return config.cosmos_key

    if auth_method == CosmosAuthMethod.DEFAULT_CREDENTIAL:
        from azure.identity.aio import DefaultAzureCredential

        return DefaultAzureCredential()

    if auth_method == CosmosAuthMethod.MANAGED_IDENTITY:
        from azure.identity.aio import ManagedIdentityCredential

        # If client_id is provided, use user-assigned managed identity
        if config.azure_client_id:
            return ManagedIdentityCredential(client_id=config.azure_client_id)
        return ManagedIdentityCredential()

    if auth_method == CosmosAuthMethod.SERVICE_PRINCIPAL:
        if not all([config.azure_tenant_id, config.azure_client_id, config.azure_client_secret]):
            raise ConfigurationError(
                "azure_client_secret",
                "azure_tenant_id, azure_client_id, and azure_client_secret "
                "required for SERVICE_PRINCIPAL authentication",
            )
        from azure.identity.aio import ClientSecretCredential

        return ClientSecretCredential(
            tenant_id=config.azure_tenant_id,  # type: ignore[arg-type]
            client_id=config.azure_client_id,  # type: ignore[arg-type]
            client_secret=config.azure_client_secret,  # type: ignore[arg-type]
        )

    raise ConfigurationError("cosmos_auth_method", f"unsupported: {auth_method}")


def translate_cosmos_error(tier: str, operation: str, error: Exception) -> Exception:
    """Map a Cosmos SDK failure onto the persistence error taxonomy."""
    if isinstance(error, CosmosHttpResponseError):
        status = error.status_code
        if status in (401, 403):
            return AuthenticationRequiredError(tier, f"HTTP {status} during {operation}")
        if status in _TRANSIENT_STATUS:
            return TransientNetworkError(tier, error)
        return StorageIOError(operation, tier, error)
    if isinstance(error, (ServiceRequestError, ServiceResponseError, asyncio.TimeoutError)):
        return TransientNetworkError(tier, error)
    return StorageIOError(operation, tier, error)


def cosmos_item_id(value: str) -> str:
    """Item id under which a row id or storage key is stored.

    Cosmos rejects ``/ \\ ? #`` in ids used by point operations, so values
    outside a plain character set are stored base64url-encoded behind
    ``b64.``. Plain values that start with the prefix, or that equal the
    set header id, are encoded too, which keeps the mapping injective.
    """
    if (
        _PLAIN_ITEM_ID.match(value)
        and not value.startswith(_ENCODED_ID_PREFIX)
        and value != SET_HEADER_ID
    ):
        return value
    encoded = base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii").rstrip("=")
    return _ENCODED_ID_PREFIX + encoded


def _strip_system_fields(doc: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in doc.items() if k not in _SYSTEM_FIELDS}


class CosmosConnection:
    """Shared Cosmos client for all Cosmos-backed tiers.

    Creates the database and containers on first use. Containers are
    partitioned by ``/scope``.
    """

    def __init__(self, config: PersistenceConfig) -> None:
        if not config.cosmos_endpoint:
            raise ConfigurationError("cosmos_endpoint", "Cosmos endpoint is required")
        self.config = config
        self._credential: Any = None
        self._client: CosmosClient | None = None
        self._database: DatabaseProxy | None = None
        self._containers: dict[str, ContainerProxy] = {}
        self._lock = asyncio.Lock()

    @property
    def endpoint(self) -> str:
        return self.config.cosmos_endpoint  # type: ignore[return-value]

    async def _ensure_database(self) -> DatabaseProxy:
        if self._database is not None:
            return self._database

        self._credential = _get_credential(self.config)
        client = CosmosClient(self.endpoint, credential=self._credential)
        self._client = client
        self._database = await client.create_database_if_not_exists(
            id=self.config.cosmos_database
        )
        logger.info(
            f"Connected to Cosmos DB: {self.endpoint} "
            f"(database={self.config.cosmos_database}, "
            f"auth={self.config.cosmos_auth_method.value})"
        )
        return self._database

    async def container(self, name: str, tier: str) -> ContainerProxy:
        """Get (creating if needed) a scope-partitioned container."""
        async with self._lock:
            if name in self._containers:
                return self._containers[name]
            try:
                database = await self._ensure_database()
                container = await database.create_container_if_not_exists(
                    id=name,
                    partition_key=PartitionKey(path=SCOPE_PARTITION_PATH),
                )
            except Exception as e:
                raise translate_cosmos_error(tier, "connect", e) from e
            self._containers[name] = container
            return container

    async def close(self) -> None:
        async with self._lock:
            if self._client is not None:
                await self._client.close()
            if self._credential is not None and hasattr(self._credential, "close"):
                await self._credential.close()
            self._client = None
            self._credential = None
            self._database = None
            self._containers = {}


class CosmosFallbackStore(RemoteFallbackStore):
    """Generic key/value container on Cosmos DB.

    Document schema:
    {
        "id": "{cosmos_item_id(storage_key)}",
        "scope": "{user_scope}",      // partition key
        "storage_key": "{storage_key}",
        "data": <record>,
        "updated_at": "{iso_timestamp}"
    }
    """

    name = FALLBACK_TIER

    def __init__(self, connection: CosmosConnection, container: str = "user_storage") -> None:
        self.connection = connection
        self.container_name = container

    async def _container(self) -> ContainerProxy:
        return await self.connection.container(self.container_name, self.name)

    async def get(self, key: str, scope: str) -> Any | None:
        container = await self._container()
        try:
            doc = await container.read_item(item=cosmos_item_id(key), partition_key=scope)
        except CosmosResourceNotFoundError:
            return None
        except Exception as e:
            raise translate_cosmos_error(self.name, "get", e) from e
        return doc.get("data")

    async def put(self, key: str, scope: str, record: Any) -> None:
        container = await self._container()
        doc = {
            "id": cosmos_item_id(key),
            "scope": scope,
            "storage_key": key,
            "data": record,
            "updated_at": datetime.now(UTC).isoformat(),
        }
        try:
            await container.upsert_item(doc)
        except Exception as e:
            raise translate_cosmos_error(self.name, "put", e) from e

    async def delete(self, key: str, scope: str) -> None:
        container = await self._container()
        try:
            await container.delete_item(item=cosmos_item_id(key), partition_key=scope)
        except CosmosResourceNotFoundError:
            pass
        except Exception as e:
            raise translate_cosmos_error(self.name, "delete", e) from e


class CosmosEntityAdapter(DurableStoreAdapter):
    """Entity container for one storage key on Cosmos DB.

    Each entity of a list record is a document in the scope's partition,
    with a ``_position`` field for ordering. A header document
    (id ``__set__``) records the record shape. Document ids come from
    :func:`cosmos_item_id`; the entity itself, including its own ``id``,
    is stored unchanged under ``entity``.
    """

    def __init__(
        self,
        connection: CosmosConnection,
        key: str,
        container: str | None = None,
    ) -> None:
        self.connection = connection
        self.key = key
        self.container_name = container or key
        self.name = durable_tier_name(key)

    async def _container(self) -> ContainerProxy:
        return await self.connection.container(self.container_name, self.name)

    async def _scope_docs(self, container: ContainerProxy, scope: str) -> list[dict[str, Any]]:
        docs = []
        async for doc in container.query_items(
            query="SELECT * FROM c WHERE c.scope = @scope",
            parameters=[{"name": "@scope", "value": scope}],
            partition_key=scope,
        ):
            docs.append(doc)
        return docs

    async def read(self, scope: str) -> Any | None:
        container = await self._container()
        try:
            docs = await self._scope_docs(container, scope)
        except Exception as e:
            raise translate_cosmos_error(self.name, "read", e) from e

        header = next((d for d in docs if d["id"] == SET_HEADER_ID), None)
        if header is None:
            return None
        rows = sorted(
            (d for d in docs if d["id"] != SET_HEADER_ID),
            key=lambda d: d.get("_position", 0),
        )
        return record_from_rows(header.get("shape", "list"), [d.get("entity") for d in rows])

    async def write(self, scope: str, record: Any) -> None:
        shape, rows = entity_rows(record)
        doc_ids = [cosmos_item_id(row_id) for row_id, _ in rows]
        now = datetime.now(UTC).isoformat()
        container = await self._container()
        try:
            existing = await self._scope_docs(container, scope)
            keep = set(doc_ids) | {SET_HEADER_ID}
            stale = [d["id"] for d in existing if d["id"] not in keep]

            await asyncio.gather(
                *(
                    container.upsert_item(
                        {
                            "id": doc_id,
                            "scope": scope,
                            "_position": position,
                            "entity": entity,
                            "updated_at": now,
                        }
                    )
                    for position, (doc_id, (_, entity)) in enumerate(zip(doc_ids, rows))
                )
            )
            await asyncio.gather(
                *(container.delete_item(item=doc_id, partition_key=scope) for doc_id in stale)
            )
            await container.upsert_item(
                {"id": SET_HEADER_ID, "scope": scope, "shape": shape, "updated_at": now}
            )
        except Exception as e:
            raise translate_cosmos_error(self.name, "write", e) from e

    async def delete(self, scope: str) -> None:
        container = await self._container()
        try:
            docs = await self._scope_docs(container, scope)
            for doc in docs:
                try:
                    await container.delete_item(item=doc["id"], partition_key=scope)
                except CosmosResourceNotFoundError:
                    continue
        except Exception as e:
            raise translate_cosmos_error(self.name, "delete", e) from e

    @staticmethod
    def entity_documents(docs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Strip Cosmos system fields from raw documents (debug listings)."""
        return [_strip_system_fields(d) for d in docs]

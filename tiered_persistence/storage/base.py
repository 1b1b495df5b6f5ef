"""
Abstract tier interfaces and persistence configuration.

Defines the contracts that every tier implementation must satisfy:
the local cache, the generic remote fallback store and the per-entity
durable store adapters.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from ..exceptions import ConfigurationError
from ..keys import CLAIMS, CUSTOMERS, DEFAULT_APP_PREFIX, ORDERS, SHIPMENTS
from ..outcomes import DEFAULT_REMOTE_TIMEOUT
from ..policy import TierPolicy


class CosmosAuthMethod(Enum):
    """Authentication method for Cosmos DB.

    KEY: Use account key (not recommended for production)
    DEFAULT_CREDENTIAL: Use Azure DefaultAzureCredential (recommended)
    MANAGED_IDENTITY: Use Azure Managed Identity explicitly
    SERVICE_PRINCIPAL: Use Service Principal with client_id/client_secret
    """

    KEY = "key"
    DEFAULT_CREDENTIAL = "default_credential"
    MANAGED_IDENTITY = "managed_identity"
    SERVICE_PRINCIPAL = "service_principal"


class RemoteBackend(Enum):
    """Backend used for the remote tiers."""

    NONE = "none"
    SQLITE = "sqlite"
    COSMOS = "cosmos"


DEFAULT_LOCAL_QUOTA_BYTES = 5 * 1024 * 1024
DEFAULT_DURABLE_KEYS: tuple[str, ...] = (CUSTOMERS, ORDERS, CLAIMS, SHIPMENTS)


def _parse_enum(enum_cls: type[Enum], value: Any, field_name: str) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)  # type: ignore[attr-defined]
        raise ConfigurationError(field_name, f"expected one of {allowed}, got {value!r}") from e


def _parse_keys(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(k.strip() for k in value.split(",") if k.strip())
    return tuple(value)


@dataclass
class PersistenceConfig:
    """Configuration for the persistence tiers.

    Configuration can be provided directly, via environment variables or
    via the ``persistence`` section of a YAML settings file.

    Environment Variables:
        PERSISTENCE_APP_PREFIX: Prefix for local cache keys (default: retail-ops)
        PERSISTENCE_POLICY: prefer_durable | fallback_only | local_first | local_only
        PERSISTENCE_REMOTE_TIMEOUT: Seconds per remote call (default: 5)
        PERSISTENCE_LOCAL_PATH: Directory for the file-backed local cache
        PERSISTENCE_LOCAL_QUOTA_BYTES: Local cache capacity (default: 5 MiB)
        PERSISTENCE_REMOTE_BACKEND: none | sqlite | cosmos (default: none)
        PERSISTENCE_SQLITE_PATH: Database file for the sqlite backend
        PERSISTENCE_DURABLE_KEYS: Comma-separated keys with entity tables
        PERSISTENCE_FALLBACK_CONTAINER: Generic table name (default: user_storage)
        PERSISTENCE_MIGRATION_CONCURRENCY: Parallel writes per sweep (default: 4)
        PERSISTENCE_COSMOS_ENDPOINT: Cosmos DB endpoint URL
        PERSISTENCE_COSMOS_KEY: Cosmos DB key (if using key auth)
        PERSISTENCE_COSMOS_DATABASE: Database name (default: retail-ops)
        PERSISTENCE_COSMOS_AUTH_METHOD: Auth method (default: default_credential)
        AZURE_TENANT_ID / AZURE_CLIENT_ID / AZURE_CLIENT_SECRET: Service principal
    """

    app_prefix: str = DEFAULT_APP_PREFIX
    policy: TierPolicy = TierPolicy.PREFER_DURABLE
    remote_timeout: float = DEFAULT_REMOTE_TIMEOUT

    # Local cache settings
    local_path: str | None = None
    local_quota_bytes: int | None = DEFAULT_LOCAL_QUOTA_BYTES

    # Remote tier settings
    remote_backend: RemoteBackend = RemoteBackend.NONE
    sqlite_path: str | None = None
    durable_keys: tuple[str, ...] = DEFAULT_DURABLE_KEYS
    fallback_container: str = "user_storage"
    migration_concurrency: int = 4

    # Cosmos DB connection settings
    cosmos_endpoint: str | None = None
    cosmos_auth_method: CosmosAuthMethod = CosmosAuthMethod.DEFAULT_CREDENTIAL
    cosmos_key: str | None = None
    cosmos_database: str = "retail-ops"

    # Azure AD authentication settings (for SERVICE_PRINCIPAL)
    azure_tenant_id: str | None = None
    azure_client_id: str | None = None
    azure_client_secret: str | None = None

    options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.policy = _parse_enum(TierPolicy, self.policy, "policy")
        self.remote_backend = _parse_enum(RemoteBackend, self.remote_backend, "remote_backend")
        self.cosmos_auth_method = _parse_enum(
            CosmosAuthMethod, self.cosmos_auth_method, "cosmos_auth_method"
        )
        self.durable_keys = _parse_keys(self.durable_keys)
        if self.remote_timeout <= 0:
            raise ConfigurationError("remote_timeout", "must be positive")
        if self.migration_concurrency < 1:
            raise ConfigurationError("migration_concurrency", "must be at least 1")
        if self.remote_backend == RemoteBackend.SQLITE and not self.sqlite_path:
            raise ConfigurationError("sqlite_path", "required for the sqlite backend")
        if self.remote_backend == RemoteBackend.COSMOS and not self.cosmos_endpoint:
            raise ConfigurationError("cosmos_endpoint", "required for the cosmos backend")

    @property
    def local_directory(self) -> Path:
        """Directory for the file-backed local cache."""
        if self.local_path:
            return Path(self.local_path)
        return Path.home() / f".{self.app_prefix}" / "cache"

    @classmethod
    def from_environment(cls) -> PersistenceConfig:
        """Create configuration from environment variables."""
        env = os.environ
        quota = env.get("PERSISTENCE_LOCAL_QUOTA_BYTES")
        values: dict[str, Any] = {
            "app_prefix": env.get("PERSISTENCE_APP_PREFIX", DEFAULT_APP_PREFIX),
            "policy": env.get("PERSISTENCE_POLICY", TierPolicy.PREFER_DURABLE.value),
            "remote_timeout": float(
                env.get("PERSISTENCE_REMOTE_TIMEOUT", DEFAULT_REMOTE_TIMEOUT)
            ),
            "local_path": env.get("PERSISTENCE_LOCAL_PATH"),
            "local_quota_bytes": int(quota) if quota else DEFAULT_LOCAL_QUOTA_BYTES,
            "remote_backend": env.get("PERSISTENCE_REMOTE_BACKEND", RemoteBackend.NONE.value),
            "sqlite_path": env.get("PERSISTENCE_SQLITE_PATH"),
            "fallback_container": env.get("PERSISTENCE_FALLBACK_CONTAINER", "user_storage"),
            "migration_concurrency": int(env.get("PERSISTENCE_MIGRATION_CONCURRENCY", "4")),
            "cosmos_endpoint": env.get("PERSISTENCE_COSMOS_ENDPOINT"),
            "cosmos_auth_method": env.get(
                "PERSISTENCE_COSMOS_AUTH_METHOD", CosmosAuthMethod.DEFAULT_CREDENTIAL.value
            ),
            "cosmos_key": env.get("PERSISTENCE_COSMOS_KEY"),
            "cosmos_database": env.get("PERSISTENCE_COSMOS_DATABASE", "retail-ops"),
            "azure_tenant_id": env.get("AZURE_TENANT_ID"),
            "azure_client_id": env.get("AZURE_CLIENT_ID"),
            "azure_client_secret": env.get("AZURE_CLIENT_SECRET"),
        }
        if "PERSISTENCE_DURABLE_KEYS" in env:
            values["durable_keys"] = env["PERSISTENCE_DURABLE_KEYS"]
        return cls(**values)

    @classmethod
    def from_file(cls, path: Path) -> PersistenceConfig:
        """Create configuration from the ``persistence`` section of a YAML file.

        Unknown fields are kept in ``options``. A missing file or section
        yields the defaults.
        """
        section: dict[str, Any] = {}
        if path.exists():
            with open(path) as f:
                loaded = yaml.safe_load(f) or {}
            section = dict(loaded.get("persistence") or {})

        known = set(cls.__dataclass_fields__)
        values = {k: v for k, v in section.items() if k in known and k != "options"}
        extra = {k: v for k, v in section.items() if k not in known}
        return cls(**values, options=extra)


class LocalCache(ABC):
    """Client-resident key/value store addressed by native keys.

    Always available; no network dependency. Per-call atomicity is the
    implementation's responsibility.
    """

    @abstractmethod
    async def get(self, native_key: str) -> str | None:
        """Return the stored text, or None if absent."""
        ...

    @abstractmethod
    async def set(self, native_key: str, value: str) -> None:
        """Store text under a native key.

        Raises:
            LocalCacheQuotaError: If capacity would be exceeded
            StorageIOError: If the write fails for any other reason
        """
        ...

    @abstractmethod
    async def remove(self, native_key: str) -> None:
        """Delete a native key. Removing an absent key is a no-op."""
        ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """List native keys starting with ``prefix``."""
        ...

    async def close(self) -> None:
        """Release resources (no-op by default)."""


class RemoteFallbackStore(ABC):
    """Generic remote key/value table addressed by (scope, key)."""

    name: str = "fallback"

    @abstractmethod
    async def get(self, key: str, scope: str) -> Any | None:
        """Return the record for (key, scope), or None if no row exists.

        Raises:
            TransientNetworkError: If the store is unreachable
            AuthenticationRequiredError: If the store rejects the caller
        """
        ...

    @abstractmethod
    async def put(self, key: str, scope: str, record: Any) -> None:
        """Insert or replace the record for (key, scope)."""
        ...

    @abstractmethod
    async def delete(self, key: str, scope: str) -> None:
        """Delete the row for (key, scope). Absent rows are not an error."""
        ...

    async def close(self) -> None:
        """Release resources (no-op by default)."""


class DurableStoreAdapter(ABC):
    """Adapter between one storage key and its entity-specific remote table.

    The adapter owns the translation between a record (usually a list of
    entities) and the rows of its table.
    """

    key: str

    @abstractmethod
    async def read(self, scope: str) -> Any | None:
        """Return the record for a scope, or None if the scope has no rows."""
        ...

    @abstractmethod
    async def write(self, scope: str, record: Any) -> None:
        """Replace the scope's rows with the given record."""
        ...

    @abstractmethod
    async def delete(self, scope: str) -> None:
        """Delete every row belonging to the scope."""
        ...

    async def close(self) -> None:
        """Release resources (no-op by default)."""


def entity_rows(record: Any) -> tuple[str, list[tuple[str, Any]]]:
    """Split a record into (shape, [(row_id, entity), ...]).

    Lists become one row per entity, keyed by the entity's ``id`` when it
    has one. Anything else becomes a single row.
    """
    if isinstance(record, list):
        rows: list[tuple[str, Any]] = []
        seen: set[str] = set()
        for position, entity in enumerate(record):
            row_id = None
            if isinstance(entity, dict) and entity.get("id") is not None:
                row_id = str(entity["id"])
            if row_id is None or row_id in seen:
                row_id = f"#{position}"
            seen.add(row_id)
            rows.append((row_id, entity))
        return "list", rows
    return "object", [("#record", record)]


def record_from_rows(shape: str, entities: list[Any]) -> Any | None:
    """Inverse of :func:`entity_rows`. Rows must be in position order."""
    if not entities and shape != "list":
        return None
    if shape == "list":
        return list(entities)
    return entities[0]

"""
Tiered Persistence

Single read/write contract over a local cache, a generic remote table
and entity-specific remote tables, with graceful degradation when the
remote side is unreachable or the user is signed out.

Provides:
- PersistenceResolver: get/set/remove across tiers, policy driven
- MigrationSweeper: explicit copy of local-only data to remote tiers
- StatusProber / StatusPanel: round-trip diagnostics and force sync
- SyncStateTracker: observable idle/syncing/error state
- Backends: file or in-memory local cache, SQLite, Cosmos DB

Usage:

    >>> from tiered_persistence import PersistenceConfig, PersistenceServices
    >>> config = PersistenceConfig(remote_backend="sqlite", sqlite_path="remote.db")
    >>> async with PersistenceServices.create(config) as services:
    ...     services.identity.sign_in("user-42")
    ...     result = await services.resolver.set("customers", "user-42", [{"id": "c1"}])
    ...     customers = await services.resolver.get("customers", "user-42")
    ...     report = await services.prober.probe()
"""

# Diagnostics
from .diagnostics import DiagnosticReport, StatusPanel, StatusProber, TierResult

# Exceptions
from .exceptions import (
    AuthenticationRequiredError,
    ConfigurationError,
    LocalCacheQuotaError,
    PersistenceError,
    SerializationError,
    StorageIOError,
    TransientNetworkError,
    UnknownStorageKeyError,
)

# Identity
from .identity import ConfigFileIdentityProvider, IdentityProvider, StaticIdentityProvider

# Keys and scopes
from .keys import GUEST_SCOPE, StorageKeyRegistry, native_key, scope_for

# Logging
from .logging_utils import configure_structured_logging

# Migration
from .migration import MigrationResult, MigrationSweeper, PullResult

# Outcomes and policy
from .outcomes import OutcomeKind, TierOutcome
from .policy import TierPolicy

# Resolver
from .resolver import PersistenceResolver, WriteResult

# Wiring
from .services import PersistenceServices

# Storage
from .storage import (
    CosmosAuthMethod,
    CosmosConnection,
    CosmosEntityAdapter,
    CosmosFallbackStore,
    DurableStoreAdapter,
    FileLocalCache,
    LocalCache,
    MemoryLocalCache,
    PersistenceConfig,
    RemoteBackend,
    RemoteFallbackStore,
    SQLiteEntityAdapter,
    SQLiteFallbackStore,
)

# Sync state
from .sync import SyncStateTracker, SyncStatus

__all__ = [
    # Core
    "PersistenceResolver",
    "WriteResult",
    "TierPolicy",
    "TierOutcome",
    "OutcomeKind",
    "PersistenceServices",
    # Configuration
    "PersistenceConfig",
    "RemoteBackend",
    # Keys
    "StorageKeyRegistry",
    "GUEST_SCOPE",
    "native_key",
    "scope_for",
    # Tiers
    "LocalCache",
    "RemoteFallbackStore",
    "DurableStoreAdapter",
    "FileLocalCache",
    "MemoryLocalCache",
    "SQLiteFallbackStore",
    "SQLiteEntityAdapter",
    "CosmosAuthMethod",
    "CosmosConnection",
    "CosmosFallbackStore",
    "CosmosEntityAdapter",
    # Identity
    "IdentityProvider",
    "StaticIdentityProvider",
    "ConfigFileIdentityProvider",
    # Migration
    "MigrationSweeper",
    "MigrationResult",
    "PullResult",
    # Diagnostics
    "StatusProber",
    "StatusPanel",
    "DiagnosticReport",
    "TierResult",
    # Sync
    "SyncStateTracker",
    "SyncStatus",
    # Logging
    "configure_structured_logging",
    # Exceptions
    "PersistenceError",
    "TransientNetworkError",
    "AuthenticationRequiredError",
    "SerializationError",
    "LocalCacheQuotaError",
    "StorageIOError",
    "UnknownStorageKeyError",
    "ConfigurationError",
]

__version__ = "0.1.0"

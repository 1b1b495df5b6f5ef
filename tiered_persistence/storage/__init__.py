"""
Storage tiers for tiered persistence.

Provides the tier contracts and their backends:
- Local cache (file-backed or in-memory)
- SQLite remote tiers (single host, development)
- Cosmos DB remote tiers (hosted)
"""

from .base import (
    CosmosAuthMethod,
    DurableStoreAdapter,
    LocalCache,
    PersistenceConfig,
    RemoteBackend,
    RemoteFallbackStore,
)
from .cosmos import CosmosConnection, CosmosEntityAdapter, CosmosFallbackStore
from .local import FileLocalCache, MemoryLocalCache
from .sqlite import SQLiteEntityAdapter, SQLiteFallbackStore

__all__ = [
    # Configuration
    "PersistenceConfig",
    "RemoteBackend",
    "CosmosAuthMethod",
    # Contracts
    "LocalCache",
    "RemoteFallbackStore",
    "DurableStoreAdapter",
    # Local cache
    "FileLocalCache",
    "MemoryLocalCache",
    # SQLite
    "SQLiteFallbackStore",
    "SQLiteEntityAdapter",
    # Cosmos DB
    "CosmosConnection",
    "CosmosFallbackStore",
    "CosmosEntityAdapter",
]

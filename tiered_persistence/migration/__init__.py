"""
Migration of local cache data into the remote tiers.

Provides the explicitly triggered sweep that copies local-only records
to the best available remote tier, and the pull that refreshes the
local cache from the remote tiers.
"""

from .sweeper import MigrationSweeper
from .types import KeyMigrationResult, MigrationResult, MigrationStatus, PullResult

__all__ = [
    "MigrationSweeper",
    "MigrationStatus",
    "KeyMigrationResult",
    "MigrationResult",
    "PullResult",
]

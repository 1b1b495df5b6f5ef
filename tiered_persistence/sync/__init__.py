"""
Sync state tracking.

Provides the observable idle/syncing/error state surfaced to status UIs.
"""

from .state import SyncSnapshot, SyncStateTracker, SyncStatus

__all__ = [
    "SyncStatus",
    "SyncSnapshot",
    "SyncStateTracker",
]

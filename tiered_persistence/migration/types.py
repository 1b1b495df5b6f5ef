"""
Migration types and data structures.

Defines the results reported by a migration sweep (local cache to
remote tiers) and by a pull refresh (remote tiers to local cache).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class MigrationStatus(Enum):
    """Status of migrating one storage key."""

    MIGRATED = "migrated"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class KeyMigrationResult:
    """Result of migrating a single storage key.

    ``reason`` explains skips and failures.
    """

    key: str
    status: MigrationStatus
    tier: str | None = None
    source_scope: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "status": self.status.value,
            "tier": self.tier,
            "source_scope": self.source_scope,
            "reason": self.reason,
        }


@dataclass
class MigrationResult:
    """Result of one migration sweep over every registered key."""

    scope: str
    migrated_count: int = 0
    failed_keys: list[str] = field(default_factory=list)
    skipped_keys: list[str] = field(default_factory=list)
    key_results: list[KeyMigrationResult] = field(default_factory=list)

    # Timing
    started_at: datetime | None = None
    completed_at: datetime | None = None

    # Set when the sweep could not run at all (guest scope, local-only policy)
    unavailable_reason: str | None = None

    @property
    def available(self) -> bool:
        return self.unavailable_reason is None

    @property
    def duration_seconds(self) -> float | None:
        """Calculate sweep duration."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def add_result(self, result: KeyMigrationResult) -> None:
        """Add a per-key result to the sweep."""
        self.key_results.append(result)
        if result.status == MigrationStatus.MIGRATED:
            self.migrated_count += 1
        elif result.status == MigrationStatus.FAILED:
            self.failed_keys.append(result.key)
        else:
            self.skipped_keys.append(result.key)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "scope": self.scope,
            "migrated_count": self.migrated_count,
            "failed_keys": list(self.failed_keys),
            "skipped_keys": list(self.skipped_keys),
            "key_results": [r.to_dict() for r in self.key_results],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "unavailable_reason": self.unavailable_reason,
        }


@dataclass
class PullResult:
    """Result of refreshing the local cache from the remote tiers."""

    scope: str
    refreshed: list[str] = field(default_factory=list)
    failed_keys: list[str] = field(default_factory=list)
    unavailable_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope,
            "refreshed": list(self.refreshed),
            "failed_keys": list(self.failed_keys),
            "unavailable_reason": self.unavailable_reason,
        }

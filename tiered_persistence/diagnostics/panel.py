"""
Status panel backend.

Combines the probe report, the sync state and the force-sync action
behind the operator-facing status panel.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..keys import parse_native_key
from ..migration import MigrationResult, MigrationSweeper
from ..resolver import PersistenceResolver
from ..sync import SyncSnapshot, SyncStateTracker
from .prober import PROBE_PREFIX, StatusProber
from .types import DiagnosticReport

# Seconds a probe report is reused by the panel
STATUS_CACHE_SECONDS = 30.0


@dataclass
class PanelStatus:
    """Everything the status panel shows."""

    diagnostics: DiagnosticReport
    sync: SyncSnapshot
    warning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "diagnostics": self.diagnostics.to_dict(),
            "sync": self.sync.to_dict(),
            "warning": self.warning,
        }

    def render(self) -> str:
        lines = [self.diagnostics.render(), ""]
        synced = self.sync.last_synced_at.isoformat() if self.sync.last_synced_at else "never"
        lines.append(f"Sync: {self.sync.status.value} (last synced: {synced})")
        if self.warning:
            lines.append(f"Warning: {self.warning}")
        return "\n".join(lines)


class StatusPanel:
    """Operator view over the persistence services."""

    def __init__(
        self,
        prober: StatusProber,
        sweeper: MigrationSweeper,
        tracker: SyncStateTracker,
        resolver: PersistenceResolver,
    ) -> None:
        self.prober = prober
        self.sweeper = sweeper
        self.tracker = tracker
        self.resolver = resolver

    async def report(self, max_age: float | None = STATUS_CACHE_SECONDS) -> PanelStatus:
        """Probe report (cached for ``max_age`` seconds) plus sync state."""
        diagnostics = await self.prober.probe(max_age=max_age)
        return PanelStatus(
            diagnostics=diagnostics,
            sync=self.tracker.snapshot(),
            warning=self.tracker.warning,
        )

    async def force_sync(self) -> MigrationResult:
        """Re-run the migration sweep for the current user.

        A sweep that runs updates ``last_synced_at`` through the tracker.
        When there is nothing to sweep (guest session, local-only policy)
        the check still completes as a sync and refreshes ``last_synced_at``.
        The cached probe report is dropped.
        """
        result = await self.sweeper.migrate_current(include_guest=True)
        if result.unavailable_reason is not None:
            self.tracker.begin()
            self.tracker.complete(True)
        self.prober.invalidate()
        return result

    async def local_keys(self, scope: str | None = None) -> list[str]:
        """Storage keys with a local cache entry for a scope.

        Defaults to the current user's scope. Probe leftovers are hidden.
        """
        if scope is None:
            scope = await self.resolver.current_scope()
        found = []
        prefix = f"{self.resolver.app_prefix}:"
        for native in await self.resolver.local.keys(prefix):
            parsed = parse_native_key(self.resolver.app_prefix, native)
            if parsed is None:
                continue
            key, entry_scope = parsed
            if entry_scope == scope and not key.startswith(PROBE_PREFIX):
                found.append(key)
        return sorted(found)

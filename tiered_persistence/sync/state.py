"""
Observable sync state.

Tracks whether persistence work is idle, in progress or failing, and
when it last succeeded. Purely observational: nothing in the resolver
or the sweeper branches on it. A status UI subscribes to changes and
shows a non-blocking warning while the state is ERROR.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Observable sync state."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass(frozen=True)
class SyncSnapshot:
    """Point-in-time copy of the tracker state."""

    status: SyncStatus
    last_synced_at: datetime | None
    last_error: str | None
    in_flight: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "last_error": self.last_error,
            "in_flight": self.in_flight,
        }


Listener = Callable[[SyncSnapshot], None]


class SyncStateTracker:
    """Idle/syncing/error state machine.

    Transitions:
        IDLE -> SYNCING on begin()
        SYNCING -> IDLE on complete(succeeded=True), updating last_synced_at
        SYNCING -> ERROR on complete(succeeded=False)

    ERROR is sticky: begin() does not leave it, only a completion with at
    least one tier succeeding does.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or (lambda: datetime.now(UTC))
        self._status = SyncStatus.IDLE
        self._last_synced_at: datetime | None = None
        self._last_error: str | None = None
        self._in_flight = 0
        self._listeners: list[Listener] = []

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def last_synced_at(self) -> datetime | None:
        return self._last_synced_at

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def warning(self) -> str | None:
        """Message for a non-blocking status banner, or None."""
        if self._status != SyncStatus.ERROR:
            return None
        detail = f": {self._last_error}" if self._last_error else ""
        return f"Changes are only saved on this device{detail}"

    def snapshot(self) -> SyncSnapshot:
        return SyncSnapshot(
            status=self._status,
            last_synced_at=self._last_synced_at,
            last_error=self._last_error,
            in_flight=self._in_flight,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for state changes.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def begin(self) -> None:
        """Mark the start of a set, remove or migration sweep."""
        self._in_flight += 1
        if self._status == SyncStatus.IDLE:
            self._transition(SyncStatus.SYNCING)

    def complete(self, succeeded: bool, error: str | None = None) -> None:
        """Mark the end of an operation.

        Args:
            succeeded: True if at least one tier (local included) succeeded
            error: Description of the failure when nothing succeeded
        """
        self._in_flight = max(0, self._in_flight - 1)
        if succeeded:
            self._last_synced_at = self._clock()
            self._last_error = None
            if self._in_flight and self._status == SyncStatus.ERROR:
                self._transition(SyncStatus.SYNCING)
            elif not self._in_flight:
                self._transition(SyncStatus.IDLE, force=True)
            return

        self._last_error = error or "all tiers failed"
        self._transition(SyncStatus.ERROR, force=True)

    @asynccontextmanager
    async def track(self) -> AsyncIterator[SyncStateTracker]:
        """Wrap an operation: success on normal exit, failure on exception."""
        self.begin()
        try:
            yield self
        except Exception as e:
            self.complete(False, f"{type(e).__name__}: {e}")
            raise
        self.complete(True)

    def _transition(self, status: SyncStatus, force: bool = False) -> None:
        if status == self._status and not force:
            return
        self._status = status
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Sync state listener failed")

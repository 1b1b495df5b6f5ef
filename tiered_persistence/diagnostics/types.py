"""
Diagnostic report types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass
class TierResult:
    """Round-trip result for one tier."""

    name: str
    reachable: bool
    latency_ms: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "reachable": self.reachable,
            "latency_ms": round(self.latency_ms, 2),
            "error": self.error,
        }


@dataclass
class DiagnosticReport:
    """Health of every tier plus the current identity.

    Attributes:
        tier_results: One entry per probed tier
        current_user_id: Signed-in user, or None for a guest session
        recommendations: Operator hints derived from the results
        timestamp: When the probe ran
    """

    tier_results: list[TierResult] = field(default_factory=list)
    current_user_id: str | None = None
    recommendations: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def authenticated(self) -> bool:
        return self.current_user_id is not None

    @property
    def healthy(self) -> bool:
        return all(result.reachable for result in self.tier_results)

    def tier(self, name: str) -> TierResult | None:
        return next((r for r in self.tier_results if r.name == name), None)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "tier_results": [r.to_dict() for r in self.tier_results],
            "current_user_id": self.current_user_id,
            "recommendations": list(self.recommendations),
            "timestamp": self.timestamp.isoformat(),
        }

    def render(self) -> str:
        """Human-readable report for terminals and debug panels."""
        lines = [
            f"Persistence status at {self.timestamp.isoformat()}",
            f"User: {self.current_user_id or 'guest (not signed in)'}",
            "",
        ]
        width = max((len(r.name) for r in self.tier_results), default=0)
        for result in self.tier_results:
            mark = "OK  " if result.reachable else "FAIL"
            line = f"  [{mark}] {result.name.ljust(width)}  {result.latency_ms:8.1f} ms"
            if result.error:
                line += f"  {result.error}"
            lines.append(line)
        if self.recommendations:
            lines.append("")
            lines.append("Recommendations:")
            lines.extend(f"  - {r}" for r in self.recommendations)
        return "\n".join(lines)

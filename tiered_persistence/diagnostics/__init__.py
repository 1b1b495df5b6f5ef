"""
Diagnostics for the persistence tiers.

Provides the on-demand status probe and the operator status panel.
"""

from .panel import STATUS_CACHE_SECONDS, PanelStatus, StatusPanel
from .prober import PROBE_PREFIX, StatusProber
from .types import DiagnosticReport, TierResult

__all__ = [
    "StatusProber",
    "StatusPanel",
    "PanelStatus",
    "DiagnosticReport",
    "TierResult",
    "PROBE_PREFIX",
    "STATUS_CACHE_SECONDS",
]

"""SyncCheckpoint — process-wide sync state.

Created at startup, dropped at shutdown. Nothing here is persisted: after a
restart the reconciliation sweep rebuilds everything from ledger truth.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.pm_scheduler.guards import SweepGuard


@dataclass
class SyncCheckpoint:
    # Next block to scan for ledger events; None until the watcher starts
    event_cursor: int | None = None
    reconcile_guard: SweepGuard = field(default_factory=lambda: SweepGuard("reconciliation sweep"))
    resolution_guard: SweepGuard = field(default_factory=lambda: SweepGuard("resolution sweep"))
    last_reconcile_at: datetime | None = None
    last_resolution_at: datetime | None = None
    last_reconcile_report: dict[str, Any] | None = None
    last_resolution_report: dict[str, Any] | None = None

    def snapshot(self) -> dict[str, Any]:
        return {
            "event_cursor": self.event_cursor,
            "reconcile_running": self.reconcile_guard.running,
            "resolution_running": self.resolution_guard.running,
            "last_reconcile_at": self.last_reconcile_at.isoformat() if self.last_reconcile_at else None,
            "last_resolution_at": (
                self.last_resolution_at.isoformat() if self.last_resolution_at else None
            ),
            "last_reconcile_report": self.last_reconcile_report,
            "last_resolution_report": self.last_resolution_report,
        }

"""Status persistence and display for autonomous mode.

``status.json`` is overwritten wholesale after every iteration so external
dashboards can poll it. Keys follow the format those dashboards already read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from ralph_loop.autonomous.exit_policy import LoopCounters
from ralph_loop.autonomous.response_analyzer import AnalysisResult
from ralph_loop.utils.paths import atomic_write_json, display_path_rel_to_cwd, read_json

logger = logging.getLogger(__name__)


class LoopStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    CIRCUIT_OPEN = "circuit_open"
    COMPLETED = "completed"


@dataclass(frozen=True)
class StatusSnapshot:
    """Read-only projection of the loop state at one point in time."""

    status: str
    message: str
    loop_count: int
    consecutive_test_only_loops: int
    consecutive_done_signal_loops: int
    timestamp: datetime
    exit_reason: str | None = None

    @classmethod
    def capture(
        cls,
        status: LoopStatus,
        message: str,
        counters: LoopCounters,
        exit_reason: str | None = None,
    ) -> StatusSnapshot:
        return cls(
            status=status.value,
            message=message,
            loop_count=counters.loop_count,
            consecutive_test_only_loops=counters.consecutive_test_only_loops,
            consecutive_done_signal_loops=counters.consecutive_done_signal_loops,
            timestamp=datetime.now(UTC),
            exit_reason=exit_reason,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "loop_count": self.loop_count,
            "consecutive_test_loops": self.consecutive_test_only_loops,
            "consecutive_done_signals": self.consecutive_done_signal_loops,
            "exit_reason": self.exit_reason,
            "last_update": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatusSnapshot:
        return cls(
            status=str(data.get("status", "unknown")),
            message=str(data.get("message", "")),
            loop_count=int(data.get("loop_count", 0)),
            consecutive_test_only_loops=int(data.get("consecutive_test_loops", 0)),
            consecutive_done_signal_loops=int(data.get("consecutive_done_signals", 0)),
            timestamp=datetime.fromisoformat(data["last_update"]),
            exit_reason=data.get("exit_reason"),
        )


class StatusStore:
    """Serializes snapshots to durable storage; holds no loop state itself."""

    def __init__(self, status_file: str | Path, analysis_file: str | Path | None = None):
        self.status_file = Path(status_file)
        self.analysis_file = Path(analysis_file) if analysis_file is not None else None

    def write(self, snapshot: StatusSnapshot) -> None:
        """Atomically overwrite the status file.

        Raises:
            StateFileError: If the file cannot be written.
        """
        atomic_write_json(self.status_file, snapshot.to_dict())

    def write_analysis(self, analysis: AnalysisResult) -> None:
        """Atomically overwrite the last-analysis file, if one is configured."""
        if self.analysis_file is None:
            return
        atomic_write_json(self.analysis_file, analysis.to_dict())

    def read(self) -> StatusSnapshot | None:
        """Read the last written snapshot, or None if there is none.

        Raises:
            StateFileError: If the file exists but is unreadable.
        """
        data = read_json(self.status_file)
        if data is None:
            return None
        try:
            return StatusSnapshot.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed status file {self.status_file}: {e}")
            return None


class StatusDisplay:
    """Operator-facing rendering of loop and breaker state."""

    STATE_COLORS = {
        "CLOSED": "green",
        "HALF_OPEN": "yellow",
        "OPEN": "red",
    }

    STATUS_STYLES = {
        LoopStatus.RUNNING.value: "info",
        LoopStatus.COMPLETED.value: "success",
        LoopStatus.STOPPED.value: "warning",
        LoopStatus.CIRCUIT_OPEN.value: "error",
    }

    def __init__(self, console: Console):
        self.console = console

    def show_status(self, snapshot: StatusSnapshot | None, source: Path) -> None:
        if snapshot is None:
            self.console.print("[muted]No status file found. The loop may not have run yet.[/muted]")
            return

        style = self.STATUS_STYLES.get(snapshot.status, "muted")
        table = Table(title=f"Loop status ({display_path_rel_to_cwd(source)})", show_header=False)
        table.add_column("field", style="bold")
        table.add_column("value")
        table.add_row("Status", f"[{style}]{snapshot.status}[/{style}]")
        table.add_row("Message", snapshot.message)
        table.add_row("Loop count", str(snapshot.loop_count))
        table.add_row("Consecutive test-only loops", str(snapshot.consecutive_test_only_loops))
        table.add_row("Consecutive done signals", str(snapshot.consecutive_done_signal_loops))
        if snapshot.exit_reason:
            table.add_row("Exit reason", snapshot.exit_reason)
        table.add_row("Last update", snapshot.timestamp.isoformat())
        self.console.print(table)

    def show_circuit_breaker(self, breaker_state: dict[str, Any]) -> None:
        state = str(breaker_state.get("state", "CLOSED"))
        color = self.STATE_COLORS.get(state, "white")
        self.console.print("\n[bold]Circuit Breaker:[/bold]")
        self.console.print(f"  State: [{color}]{state}[/{color}]")
        self.console.print(
            f"  No progress loops: {breaker_state.get('consecutive_no_progress', 0)}"
            f"/{breaker_state.get('no_progress_threshold', '?')}"
        )
        self.console.print(
            f"  Consecutive errors: {breaker_state.get('consecutive_errors', 0)}"
            f"/{breaker_state.get('error_threshold', '?')}"
        )
        self.console.print(f"  Last change: {breaker_state.get('last_change_reason', 'n/a')}")

    def show_completion(self, status: LoopStatus, message: str) -> None:
        """Show completion or failure message."""
        if status == LoopStatus.CIRCUIT_OPEN:
            self.console.print(f"[error]✗ Circuit breaker open: {message}[/error]")
        elif status == LoopStatus.STOPPED:
            self.console.print(f"[warning]■ Stopped: {message}[/warning]")
        else:
            self.console.print(f"[success]✓ {message}[/success]")

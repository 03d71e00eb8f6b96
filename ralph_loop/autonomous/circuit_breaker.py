"""Stagnation and failure circuit breaker for the autonomous loop.

The breaker watches two independent counters, fed once per iteration:

- consecutive iterations without file changes
- consecutive iterations with a surviving error signal

When either reaches its threshold the breaker opens and the loop refuses to
start another agent invocation. OPEN is sticky: only an operator reset brings
it back to CLOSED. HALF_OPEN is entered only by an operator and resolves on
the next update: progress without error closes the circuit, anything else
reopens it.

State is persisted after every update and re-read before every check and
update, so ``ralph --reset-circuit`` and ``ralph --half-open-circuit`` take
effect on a loop running in another process.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from ralph_loop.utils.exceptions import CircuitOpenError, StateFileError
from ralph_loop.utils.paths import atomic_write_json, read_json

logger = logging.getLogger(__name__)

DEFAULT_NO_PROGRESS_THRESHOLD = 3
DEFAULT_ERROR_THRESHOLD = 5
MAX_HISTORY = 50


class CircuitBreakerState(Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    HALF_OPEN = "HALF_OPEN"  # Monitoring after intervention
    OPEN = "OPEN"  # Halted


class CircuitBreaker:
    """Prevents runaway loops by detecting stagnation and repeated errors."""

    def __init__(
        self,
        no_progress_threshold: int = DEFAULT_NO_PROGRESS_THRESHOLD,
        error_threshold: int = DEFAULT_ERROR_THRESHOLD,
        state_file: str | Path | None = None,
    ):
        self.no_progress_threshold = no_progress_threshold
        self.error_threshold = error_threshold
        self.state_file = Path(state_file) if state_file is not None else None

        self.state = CircuitBreakerState.CLOSED
        self.consecutive_no_progress = 0
        self.consecutive_errors = 0
        self.last_transition_reason = "initialized"
        self.last_transition_time = datetime.now(UTC)
        self.state_history: list[dict[str, Any]] = []

    @classmethod
    def load(
        cls,
        state_file: str | Path,
        no_progress_threshold: int = DEFAULT_NO_PROGRESS_THRESHOLD,
        error_threshold: int = DEFAULT_ERROR_THRESHOLD,
    ) -> CircuitBreaker:
        """Restore a breaker from ``state_file``.

        A missing file yields a fresh CLOSED breaker which is written out
        immediately. An unreadable file is logged and also replaced by a
        fresh breaker.
        """
        breaker = cls(
            no_progress_threshold=no_progress_threshold,
            error_threshold=error_threshold,
            state_file=state_file,
        )

        try:
            data = read_json(state_file)
        except StateFileError as e:
            logger.warning(f"Ignoring unreadable circuit breaker state: {e}")
            data = None

        if data is None:
            breaker.save()
            return breaker

        breaker._restore(data)
        return breaker

    def _restore(self, data: dict[str, Any]) -> None:
        try:
            self.state = CircuitBreakerState(data.get("state", CircuitBreakerState.CLOSED.value))
        except ValueError:
            logger.warning(f"Unknown circuit breaker state {data.get('state')!r}, using CLOSED")
            self.state = CircuitBreakerState.CLOSED

        self.consecutive_no_progress = _non_negative_int(data.get("consecutive_no_progress"))
        self.consecutive_errors = _non_negative_int(data.get("consecutive_errors"))
        self.last_transition_reason = str(data.get("last_change_reason") or "restored")

        timestamp = data.get("last_change")
        if isinstance(timestamp, str):
            try:
                self.last_transition_time = datetime.fromisoformat(timestamp)
            except ValueError:
                pass

        history = data.get("history")
        if isinstance(history, list):
            self.state_history = [entry for entry in history if isinstance(entry, dict)][-MAX_HISTORY:]

    def refresh(self) -> None:
        """Pick up changes another process made to the state file.

        A missing or unreadable file leaves the in-memory state as it is.
        """
        if self.state_file is None:
            return
        try:
            data = read_json(self.state_file)
        except StateFileError as e:
            logger.warning(f"Keeping in-memory circuit breaker state: {e}")
            return
        if data is not None:
            self._restore(data)

    def can_execute(self) -> bool:
        """Whether the loop may start another agent invocation."""
        self.refresh()
        return self.state != CircuitBreakerState.OPEN

    def ensure_can_execute(self) -> None:
        """Raise CircuitOpenError if the breaker is open."""
        if not self.can_execute():
            raise CircuitOpenError(
                consecutive_no_progress=self.consecutive_no_progress,
                consecutive_errors=self.consecutive_errors,
                last_reason=self.last_transition_reason,
            )

    def update(self, files_changed_count: int, has_error: bool) -> CircuitBreakerState:
        """Update breaker state from one iteration's signals.

        Args:
            files_changed_count: Number of file mutations reported.
            has_error: Whether a genuine error signal survived filtering.

        Returns:
            Current circuit breaker state.
        """
        self.refresh()
        if self.state == CircuitBreakerState.OPEN:
            # Stays open until an operator resets it
            self.save()
            return self.state

        if files_changed_count > 0:
            self.consecutive_no_progress = 0
        else:
            self.consecutive_no_progress += 1

        if has_error:
            self.consecutive_errors += 1
        else:
            self.consecutive_errors = 0

        if self.state == CircuitBreakerState.HALF_OPEN:
            if files_changed_count > 0 and not has_error:
                self._transition(CircuitBreakerState.CLOSED, "recovery_success")
            else:
                self._transition(CircuitBreakerState.OPEN, "recovery_failed")
                logger.warning("Circuit breaker OPEN: no recovery while half-open")
        elif self.consecutive_no_progress >= self.no_progress_threshold:
            self._transition(
                CircuitBreakerState.OPEN, f"no_progress_{self.consecutive_no_progress}"
            )
            logger.warning(
                f"Circuit breaker OPEN: {self.consecutive_no_progress} loops with no progress"
            )
        elif self.consecutive_errors >= self.error_threshold:
            self._transition(CircuitBreakerState.OPEN, f"errors_{self.consecutive_errors}")
            logger.warning(
                f"Circuit breaker OPEN: {self.consecutive_errors} consecutive errors"
            )

        self.save()
        return self.state

    def reset(self, reason: str = "manual_reset") -> None:
        """Reset the circuit breaker to CLOSED state."""
        self._reset_counters()
        self._transition(CircuitBreakerState.CLOSED, reason)
        self.save()
        logger.info(f"Circuit breaker reset: {reason}")

    def half_open(self, reason: str = "manual_half_open") -> None:
        """Put the breaker into HALF_OPEN monitoring after an intervention."""
        self._reset_counters()
        self._transition(CircuitBreakerState.HALF_OPEN, reason)
        self.save()
        logger.info(f"Circuit breaker half-open: {reason}")

    def _reset_counters(self) -> None:
        self.consecutive_no_progress = 0
        self.consecutive_errors = 0

    def _transition(self, to_state: CircuitBreakerState, reason: str) -> None:
        from_state = self.state
        self.state = to_state
        self.last_transition_reason = reason
        self.last_transition_time = datetime.now(UTC)
        self.state_history.append({
            "timestamp": self.last_transition_time.isoformat(),
            "from_state": from_state.value,
            "to_state": to_state.value,
            "reason": reason,
        })
        if len(self.state_history) > MAX_HISTORY:
            self.state_history = self.state_history[-MAX_HISTORY:]

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "consecutive_no_progress": self.consecutive_no_progress,
            "consecutive_errors": self.consecutive_errors,
            "no_progress_threshold": self.no_progress_threshold,
            "error_threshold": self.error_threshold,
            "last_change": self.last_transition_time.isoformat(),
            "last_change_reason": self.last_transition_reason,
            "history": list(self.state_history),
        }

    def save(self) -> None:
        """Overwrite the state file, if one is configured."""
        if self.state_file is None:
            return
        try:
            atomic_write_json(self.state_file, self.to_dict())
        except StateFileError as e:
            logger.warning(f"Failed to persist circuit breaker state: {e}")

    def get_history(self) -> list[dict[str, Any]]:
        """Get circuit breaker state history.

        Returns:
            List of state change records.
        """
        return self.state_history.copy()


def _non_negative_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0

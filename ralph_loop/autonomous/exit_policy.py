"""Exit decision for the autonomous loop.

Conditions are checked in a fixed order and the first match wins:

1. too many consecutive test-only iterations        -> ``test_loops``
2. too many consecutive strong done-signal iterations -> ``done_signals``
3. a strong done signal in the current iteration     -> ``project_complete``
4. every item of the task list checked off           -> ``tasks_complete``
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from ralph_loop.autonomous.response_analyzer import AnalysisResult
from ralph_loop.autonomous.task_list import TaskListProgress

logger = logging.getLogger(__name__)

DEFAULT_MAX_TEST_LOOPS = 3
DEFAULT_MAX_DONE_SIGNALS = 2


class ExitReason(str, Enum):
    """Why the loop stopped."""

    TEST_LOOPS = "test_loops"
    DONE_SIGNALS = "done_signals"
    PROJECT_COMPLETE = "project_complete"
    TASKS_COMPLETE = "tasks_complete"
    CIRCUIT_OPEN = "circuit_open"
    STOP_FILE = "stop_file"
    MANUAL = "manual"


@dataclass(frozen=True)
class ExitDecision:
    should_stop: bool
    reason: ExitReason | None = None
    message: str = ""

    @classmethod
    def proceed(cls) -> ExitDecision:
        return cls(should_stop=False)

    @classmethod
    def stop(cls, reason: ExitReason, message: str = "") -> ExitDecision:
        return cls(should_stop=True, reason=reason, message=message)


@dataclass
class LoopCounters:
    """Per-loop counters, mutated once per iteration by the loop controller."""

    loop_count: int = 0
    consecutive_test_only_loops: int = 0
    consecutive_done_signal_loops: int = 0

    def record(self, analysis: AnalysisResult) -> None:
        """Fold one iteration's analysis into the consecutive counters."""
        if analysis.is_test_only:
            self.consecutive_test_only_loops += 1
        else:
            self.consecutive_test_only_loops = 0

        if analysis.has_strong_done_signal:
            self.consecutive_done_signal_loops += 1
        else:
            self.consecutive_done_signal_loops = 0


class ExitPolicy:
    """Votes across independent completion heuristics."""

    def __init__(
        self,
        max_test_loops: int = DEFAULT_MAX_TEST_LOOPS,
        max_done_signals: int = DEFAULT_MAX_DONE_SIGNALS,
    ):
        self.max_test_loops = max_test_loops
        self.max_done_signals = max_done_signals

    def evaluate(
        self,
        analysis: AnalysisResult,
        counters: LoopCounters,
        task_progress: TaskListProgress | None = None,
    ) -> ExitDecision:
        """Decide whether the loop should stop after this iteration.

        Args:
            analysis: Analysis of the current iteration.
            counters: Counters already updated with the current iteration.
            task_progress: Completion counts of the external task list.

        Returns:
            ExitDecision; never raises.
        """
        if counters.consecutive_test_only_loops >= self.max_test_loops:
            return self._stop(
                ExitReason.TEST_LOOPS,
                f"{counters.consecutive_test_only_loops} consecutive test-only loops",
            )

        if counters.consecutive_done_signal_loops >= self.max_done_signals:
            return self._stop(
                ExitReason.DONE_SIGNALS,
                f"{counters.consecutive_done_signal_loops} consecutive done signals",
            )

        if analysis.has_strong_done_signal:
            return self._stop(
                ExitReason.PROJECT_COMPLETE,
                f"Strong completion indicators ({analysis.done_signal_count})",
            )

        if task_progress is not None and task_progress.is_complete:
            return self._stop(
                ExitReason.TASKS_COMPLETE,
                f"All {task_progress.total_items} tasks in task list complete",
            )

        return ExitDecision.proceed()

    def _stop(self, reason: ExitReason, message: str) -> ExitDecision:
        logger.warning(f"Exit: {message}")
        return ExitDecision.stop(reason, message)

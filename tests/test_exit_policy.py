"""Tests for exit policy and task list progress."""

import pytest

from ralph_loop.autonomous.exit_policy import (
    ExitDecision,
    ExitPolicy,
    ExitReason,
    LoopCounters,
)
from ralph_loop.autonomous.response_analyzer import AnalysisResult
from ralph_loop.autonomous.task_list import TaskListProgress


@pytest.fixture
def policy():
    return ExitPolicy(max_test_loops=3, max_done_signals=2)


def _counters(test_only=0, done=0, loops=1):
    return LoopCounters(
        loop_count=loops,
        consecutive_test_only_loops=test_only,
        consecutive_done_signal_loops=done,
    )


class TestExitPolicy:
    """Ordered evaluation, first match wins."""

    def test_nothing_triggers(self, policy):
        decision = policy.evaluate(AnalysisResult(files_changed_count=2), _counters())
        assert decision == ExitDecision.proceed()
        assert decision.reason is None

    def test_test_loops(self, policy):
        decision = policy.evaluate(AnalysisResult(is_test_only=True), _counters(test_only=3))
        assert decision.should_stop
        assert decision.reason == ExitReason.TEST_LOOPS

    def test_test_loops_below_threshold(self, policy):
        decision = policy.evaluate(AnalysisResult(is_test_only=True), _counters(test_only=2))
        assert not decision.should_stop

    def test_test_loops_wins_over_done_signals(self, policy):
        """Both conditions hold; the earlier one is reported."""
        analysis = AnalysisResult(is_test_only=True, done_signal_count=4)
        decision = policy.evaluate(analysis, _counters(test_only=3, done=2))
        assert decision.reason == ExitReason.TEST_LOOPS

    def test_done_signals(self, policy):
        analysis = AnalysisResult(done_signal_count=2)
        decision = policy.evaluate(analysis, _counters(done=2))
        assert decision.reason == ExitReason.DONE_SIGNALS

    def test_project_complete(self, policy):
        analysis = AnalysisResult(done_signal_count=2)
        decision = policy.evaluate(analysis, _counters(done=1))
        assert decision.reason == ExitReason.PROJECT_COMPLETE

    def test_single_done_signal_is_not_enough(self, policy):
        decision = policy.evaluate(AnalysisResult(done_signal_count=1), _counters())
        assert not decision.should_stop

    def test_tasks_complete(self, policy):
        progress = TaskListProgress(total_items=5, completed_items=5)
        decision = policy.evaluate(AnalysisResult(), _counters(), progress)
        assert decision.reason == ExitReason.TASKS_COMPLETE

    def test_partial_tasks_continue(self, policy):
        progress = TaskListProgress(total_items=5, completed_items=4)
        decision = policy.evaluate(AnalysisResult(), _counters(), progress)
        assert not decision.should_stop

    def test_empty_task_list_is_not_complete(self, policy):
        decision = policy.evaluate(AnalysisResult(), _counters(), TaskListProgress())
        assert not decision.should_stop

    def test_custom_thresholds(self):
        policy = ExitPolicy(max_test_loops=1, max_done_signals=5)
        decision = policy.evaluate(AnalysisResult(is_test_only=True), _counters(test_only=1))
        assert decision.reason == ExitReason.TEST_LOOPS


class TestLoopCounters:
    def test_test_only_run_accumulates_and_resets(self):
        counters = LoopCounters()
        counters.record(AnalysisResult(is_test_only=True))
        counters.record(AnalysisResult(is_test_only=True))
        assert counters.consecutive_test_only_loops == 2
        counters.record(AnalysisResult(files_changed_count=1))
        assert counters.consecutive_test_only_loops == 0

    def test_done_signal_run_needs_strong_signal(self):
        counters = LoopCounters()
        counters.record(AnalysisResult(done_signal_count=2))
        counters.record(AnalysisResult(done_signal_count=3))
        assert counters.consecutive_done_signal_loops == 2
        counters.record(AnalysisResult(done_signal_count=1))
        assert counters.consecutive_done_signal_loops == 0

    def test_record_does_not_touch_loop_count(self):
        counters = LoopCounters(loop_count=7)
        counters.record(AnalysisResult())
        assert counters.loop_count == 7


class TestTaskListProgress:
    """Checklist parsing of the fix plan."""

    def test_counts_checked_and_unchecked(self):
        text = "\n".join([
            "# Fix plan",
            "- [x] parse config",
            "- [ ] write tests",
            "  * [X] nested item",
            "- plain bullet",
            "1. [x] numbered lists are not checklist items",
        ])
        progress = TaskListProgress.from_text(text)
        assert progress.total_items == 3
        assert progress.completed_items == 2
        assert not progress.is_complete
        assert progress.fraction == pytest.approx(2 / 3)

    def test_all_checked(self):
        progress = TaskListProgress.from_text("- [x] a\n- [x] b\n")
        assert progress.is_complete
        assert progress.fraction == 1.0

    def test_empty_text(self):
        progress = TaskListProgress.from_text("")
        assert progress.total_items == 0
        assert not progress.is_complete
        assert progress.fraction == 0.0

    def test_from_file(self, tmp_path):
        plan = tmp_path / "fix_plan.md"
        plan.write_text("- [x] one\n- [ ] two\n")
        progress = TaskListProgress.from_file(plan)
        assert progress == TaskListProgress(total_items=2, completed_items=1)

    def test_missing_file(self, tmp_path):
        assert TaskListProgress.from_file(tmp_path / "missing.md") == TaskListProgress()

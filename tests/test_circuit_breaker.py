"""Tests for the circuit breaker."""

import json

import pytest

from ralph_loop.autonomous.circuit_breaker import (
    MAX_HISTORY,
    CircuitBreaker,
    CircuitBreakerState,
)
from ralph_loop.utils.exceptions import CircuitOpenError


@pytest.fixture
def state_file(tmp_path):
    return tmp_path / ".circuit_breaker_state"


@pytest.fixture
def breaker(state_file):
    return CircuitBreaker(no_progress_threshold=3, error_threshold=5, state_file=state_file)


class TestThresholds:
    """Opening on stagnation and repeated errors."""

    def test_opens_at_exactly_no_progress_threshold(self, breaker):
        assert breaker.update(0, False) == CircuitBreakerState.CLOSED
        assert breaker.update(0, False) == CircuitBreakerState.CLOSED
        assert breaker.update(0, False) == CircuitBreakerState.OPEN
        assert breaker.last_transition_reason == "no_progress_3"

    def test_opens_at_exactly_error_threshold(self, breaker):
        for _ in range(4):
            assert breaker.update(1, True) == CircuitBreakerState.CLOSED
        assert breaker.update(1, True) == CircuitBreakerState.OPEN
        assert breaker.last_transition_reason == "errors_5"

    def test_progress_resets_no_progress_counter(self, breaker):
        breaker.update(0, False)
        breaker.update(0, False)
        breaker.update(2, False)
        assert breaker.consecutive_no_progress == 0
        breaker.update(0, False)
        breaker.update(0, False)
        assert breaker.state == CircuitBreakerState.CLOSED

    def test_clean_iteration_resets_error_counter(self, breaker):
        for _ in range(4):
            breaker.update(1, True)
        breaker.update(1, False)
        assert breaker.consecutive_errors == 0
        for _ in range(4):
            breaker.update(1, True)
        assert breaker.state == CircuitBreakerState.CLOSED

    def test_counters_independent(self, breaker):
        breaker.update(0, True)
        assert breaker.consecutive_no_progress == 1
        assert breaker.consecutive_errors == 1
        breaker.update(3, True)
        assert breaker.consecutive_no_progress == 0
        assert breaker.consecutive_errors == 2

    def test_open_is_sticky(self, breaker):
        for _ in range(3):
            breaker.update(0, False)
        no_progress = breaker.consecutive_no_progress
        assert breaker.update(10, False) == CircuitBreakerState.OPEN
        assert breaker.consecutive_no_progress == no_progress
        assert not breaker.can_execute()


class TestManualTransitions:
    """Operator reset and half-open."""

    @pytest.mark.parametrize(
        "setup",
        [
            lambda b: None,
            lambda b: b.half_open(),
            lambda b: [b.update(0, False) for _ in range(3)],
        ],
        ids=["closed", "half_open", "open"],
    )
    def test_reset_from_any_state(self, breaker, setup):
        setup(breaker)
        breaker.reset("Manual reset")
        assert breaker.state == CircuitBreakerState.CLOSED
        assert breaker.consecutive_no_progress == 0
        assert breaker.consecutive_errors == 0
        assert breaker.last_transition_reason == "Manual reset"

    def test_half_open_zeroes_counters(self, breaker):
        breaker.update(0, True)
        breaker.half_open()
        assert breaker.state == CircuitBreakerState.HALF_OPEN
        assert breaker.consecutive_no_progress == 0
        assert breaker.consecutive_errors == 0
        assert breaker.can_execute()

    def test_half_open_recovers_on_progress(self, breaker):
        breaker.half_open()
        assert breaker.update(2, False) == CircuitBreakerState.CLOSED
        assert breaker.last_transition_reason == "recovery_success"

    @pytest.mark.parametrize("files,error", [(0, False), (2, True), (0, True)])
    def test_half_open_reopens_without_recovery(self, breaker, files, error):
        breaker.half_open()
        assert breaker.update(files, error) == CircuitBreakerState.OPEN
        assert breaker.last_transition_reason == "recovery_failed"

    def test_history_records_transitions(self, breaker):
        breaker.half_open()
        breaker.update(1, False)
        history = breaker.get_history()
        assert [(h["from_state"], h["to_state"]) for h in history] == [
            ("CLOSED", "HALF_OPEN"),
            ("HALF_OPEN", "CLOSED"),
        ]

    def test_history_is_capped(self, breaker):
        for _ in range(MAX_HISTORY + 10):
            breaker.half_open()
        assert len(breaker.get_history()) == MAX_HISTORY


class TestEnsureCanExecute:
    def test_closed_passes(self, breaker):
        breaker.ensure_can_execute()

    def test_open_raises(self, breaker):
        for _ in range(3):
            breaker.update(0, False)
        with pytest.raises(CircuitOpenError) as exc_info:
            breaker.ensure_can_execute()
        assert exc_info.value.code == "CIRCUIT_OPEN"
        assert exc_info.value.consecutive_no_progress == 3
        assert exc_info.value.last_reason == "no_progress_3"


class TestPersistence:
    """State file round trips through load()."""

    def test_update_writes_state_file(self, breaker, state_file):
        breaker.update(0, True)
        data = json.loads(state_file.read_text())
        assert data["state"] == "CLOSED"
        assert data["consecutive_no_progress"] == 1
        assert data["consecutive_errors"] == 1
        assert data["no_progress_threshold"] == 3
        assert data["error_threshold"] == 5

    def test_load_missing_file_creates_closed(self, state_file):
        breaker = CircuitBreaker.load(state_file)
        assert breaker.state == CircuitBreakerState.CLOSED
        assert state_file.exists()
        assert json.loads(state_file.read_text())["state"] == "CLOSED"

    def test_load_restores_open_state(self, breaker, state_file):
        for _ in range(3):
            breaker.update(0, False)

        restored = CircuitBreaker.load(state_file)
        assert restored.state == CircuitBreakerState.OPEN
        assert restored.consecutive_no_progress == 3
        assert restored.last_transition_reason == "no_progress_3"
        assert not restored.can_execute()

    def test_reset_persists(self, breaker, state_file):
        for _ in range(3):
            breaker.update(0, False)
        CircuitBreaker.load(state_file).reset("Manual reset")
        assert CircuitBreaker.load(state_file).state == CircuitBreakerState.CLOSED

    @pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]", ""])
    def test_load_corrupt_file_starts_fresh(self, state_file, content):
        state_file.write_text(content)
        breaker = CircuitBreaker.load(state_file)
        assert breaker.state == CircuitBreakerState.CLOSED
        assert json.loads(state_file.read_text())["state"] == "CLOSED"

    def test_load_unknown_state_falls_back_to_closed(self, state_file):
        state_file.write_text(json.dumps({"state": "EXPLODED", "consecutive_errors": -4}))
        breaker = CircuitBreaker.load(state_file)
        assert breaker.state == CircuitBreakerState.CLOSED
        assert breaker.consecutive_errors == 0

    def test_thresholds_come_from_caller(self, breaker, state_file):
        breaker.update(0, False)
        restored = CircuitBreaker.load(state_file, no_progress_threshold=2)
        assert restored.update(0, False) == CircuitBreakerState.OPEN

    def test_update_picks_up_reset_from_another_process(self, breaker, state_file):
        breaker.update(0, False)
        breaker.update(0, False)

        CircuitBreaker.load(state_file).reset("Manual reset")

        assert breaker.update(0, False) == CircuitBreakerState.CLOSED
        assert breaker.consecutive_no_progress == 1
        assert json.loads(state_file.read_text())["consecutive_no_progress"] == 1

    def test_can_execute_picks_up_reset_from_another_process(self, breaker, state_file):
        for _ in range(3):
            breaker.update(0, False)
        assert not breaker.can_execute()

        CircuitBreaker.load(state_file).reset("Manual reset")

        assert breaker.can_execute()
        assert breaker.state == CircuitBreakerState.CLOSED

    def test_refresh_keeps_memory_state_on_corrupt_file(self, breaker, state_file):
        breaker.update(0, False)
        state_file.write_text("{not json")

        breaker.refresh()

        assert breaker.consecutive_no_progress == 1

    def test_no_state_file_is_in_memory_only(self, tmp_path):
        breaker = CircuitBreaker()
        breaker.update(0, False)
        assert list(tmp_path.iterdir()) == []

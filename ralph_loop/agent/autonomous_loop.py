"""Autonomous development loop.

Repeatedly invokes the external coding agent with the project prompt and
decides after each iteration whether to continue, halt on stagnation, or stop
because the work looks complete.

One iteration (``tick``):

1. stop request / stop file        -> STOPPED
2. circuit breaker open            -> CIRCUIT_OPEN, agent not invoked
3. run the agent (bounded, blocking)
4. analyze the captured output
5. update the circuit breaker
6. evaluate the exit policy        -> COMPLETED
7. persist status

Iterations never overlap and the stop signal is only sampled between them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol

from ralph_loop.agent.runner import AgentRunner, AgentRunResult
from ralph_loop.autonomous.circuit_breaker import CircuitBreaker
from ralph_loop.autonomous.exit_policy import ExitPolicy, ExitReason, LoopCounters
from ralph_loop.autonomous.response_analyzer import ResponseAnalyzer
from ralph_loop.autonomous.status import LoopStatus, StatusSnapshot, StatusStore
from ralph_loop.autonomous.task_list import TaskListProgress
from ralph_loop.config.config import LoopConfig
from ralph_loop.utils.exceptions import CircuitOpenError, ConfigError, StateFileError

logger = logging.getLogger(__name__)


class LoopPhase(str, Enum):
    """Lifetime of one loop controller."""

    INIT = "init"
    RUNNING = "running"
    STOPPED = "stopped"
    CIRCUIT_OPEN = "circuit_open"
    COMPLETED = "completed"


TERMINAL_PHASES = frozenset({LoopPhase.STOPPED, LoopPhase.CIRCUIT_OPEN, LoopPhase.COMPLETED})

_PHASE_STATUS = {
    LoopPhase.RUNNING: LoopStatus.RUNNING,
    LoopPhase.STOPPED: LoopStatus.STOPPED,
    LoopPhase.CIRCUIT_OPEN: LoopStatus.CIRCUIT_OPEN,
    LoopPhase.COMPLETED: LoopStatus.COMPLETED,
}


class Runner(Protocol):
    def run(self, prompt: str, iteration: int = 0) -> AgentRunResult: ...


@dataclass(frozen=True)
class LoopResult:
    phase: LoopPhase
    exit_reason: ExitReason | None
    loops_run: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
            "loops_run": self.loops_run,
            "message": self.message,
        }


class LoopController:
    """Drives the loop; the only component that blocks.

    Collaborators default to the ones described by ``config`` and can be
    injected, which is how tests replace the agent with a scripted fake.
    """

    def __init__(
        self,
        config: LoopConfig,
        runner: Runner | None = None,
        analyzer: ResponseAnalyzer | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        exit_policy: ExitPolicy | None = None,
        status_store: StatusStore | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.runner = runner or AgentRunner(
            command=config.full_agent_command(),
            timeout_seconds=config.timeout_seconds,
            log_dir=config.path(config.log_dir),
            prompt_flag=config.prompt_flag,
            cwd=config.cwd,
        )
        self.analyzer = analyzer or ResponseAnalyzer()
        self.circuit_breaker = circuit_breaker or CircuitBreaker.load(
            config.path(config.circuit_state_file),
            no_progress_threshold=config.no_progress_threshold,
            error_threshold=config.error_threshold,
        )
        self.exit_policy = exit_policy or ExitPolicy(
            max_test_loops=config.max_test_loops,
            max_done_signals=config.max_done_signals,
        )
        self.status_store = status_store or StatusStore(
            config.path(config.status_file),
            config.path(config.analysis_file),
        )
        self._sleep = sleep

        self.counters = LoopCounters()
        self.phase = LoopPhase.INIT
        self.exit_reason: ExitReason | None = None
        self.message = ""
        self._prompt: str | None = None
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self.phase == LoopPhase.RUNNING

    def start(self) -> None:
        """INIT -> RUNNING.

        Raises:
            ConfigError: If the prompt file cannot be read.
        """
        if self.phase != LoopPhase.INIT:
            return
        self._prompt = self.config.read_prompt()
        self.phase = LoopPhase.RUNNING
        logger.info("=== Ralph Loop Started ===")
        logger.info(
            f"Prompt: {self.config.prompt_file}, Timeout: {self.config.timeout_minutes}m"
        )
        self._persist_status("Loop started")

    def stop(self) -> None:
        """Request a stop at the next iteration boundary."""
        self._stop_requested = True
        logger.info("Loop stop requested")

    def tick(self) -> LoopPhase:
        """Run one iteration and return the resulting phase."""
        if self.phase == LoopPhase.INIT:
            self.start()
        if self.phase in TERMINAL_PHASES:
            return self.phase

        # Consume the stop file even when a stop was already requested
        stop_file_seen = self._check_stop_file()
        if self._stop_requested:
            return self._finish(LoopPhase.STOPPED, ExitReason.MANUAL, "Stop requested")
        if stop_file_seen:
            return self._finish(LoopPhase.STOPPED, ExitReason.STOP_FILE, "Stop file detected")

        try:
            self.circuit_breaker.ensure_can_execute()
        except CircuitOpenError as e:
            logger.error(f"Circuit breaker is OPEN - stopping ({e.last_reason})")
            return self._finish(
                LoopPhase.CIRCUIT_OPEN, ExitReason.CIRCUIT_OPEN, "Circuit breaker triggered"
            )

        self.counters.loop_count += 1
        iteration = self.counters.loop_count
        logger.info(f"--- Loop {iteration} ---")

        result = self.runner.run(self._current_prompt(), iteration=iteration)
        logger.info(f"Agent run {result.status.value} in {result.duration_seconds:.1f}s")

        analysis = self.analyzer.analyze(result.output)
        logger.info(f"Analysis: {analysis.summary()}")
        try:
            self.status_store.write_analysis(analysis)
        except StateFileError as e:
            logger.error(f"Failed to persist analysis: {e}")

        breaker_state = self.circuit_breaker.update(
            analysis.files_changed_count, analysis.has_error
        )
        logger.debug(f"Circuit breaker: {breaker_state.value}")

        self.counters.record(analysis)
        task_progress = TaskListProgress.from_file(self.config.path(self.config.fix_plan_file))
        decision = self.exit_policy.evaluate(analysis, self.counters, task_progress)
        if decision.should_stop:
            logger.info(f"Graceful exit: {decision.reason.value}")
            return self._finish(
                LoopPhase.COMPLETED, decision.reason, f"Exit reason: {decision.reason.value}"
            )

        self._persist_status(f"Loop {iteration} completed")
        return self.phase

    def run(self) -> LoopResult:
        """Tick until a terminal phase is reached.

        Raises:
            ConfigError: If the loop cannot start.
        """
        self.start()
        try:
            while self.is_running:
                self.tick()
                if self.is_running:
                    self._sleep(self.config.sleep_seconds)
        except KeyboardInterrupt:
            self._finish(LoopPhase.STOPPED, ExitReason.MANUAL, "Interrupted by operator")

        logger.info(f"=== Ralph Loop Ended ({self.counters.loop_count} loops) ===")
        return self.result()

    def result(self) -> LoopResult:
        return LoopResult(
            phase=self.phase,
            exit_reason=self.exit_reason,
            loops_run=self.counters.loop_count,
            message=self.message,
        )

    def _current_prompt(self) -> str:
        # Re-read so prompt edits apply to the next iteration
        try:
            self._prompt = self.config.read_prompt()
        except ConfigError as e:
            logger.warning(f"Using previous prompt: {e.message}")
        return self._prompt or ""

    def _check_stop_file(self) -> bool:
        stop_file = self.config.path(self.config.stop_file)
        if not stop_file.exists():
            return False
        logger.info("Stop file detected, exiting gracefully")
        try:
            stop_file.unlink()
        except OSError as e:
            logger.warning(f"Failed to remove stop file {stop_file}: {e}")
        return True

    def _finish(self, phase: LoopPhase, reason: ExitReason, message: str) -> LoopPhase:
        self.phase = phase
        self.exit_reason = reason
        self.message = message
        self._persist_status(message)
        return self.phase

    def _persist_status(self, message: str) -> None:
        snapshot = StatusSnapshot.capture(
            _PHASE_STATUS[self.phase],
            message,
            self.counters,
            exit_reason=self.exit_reason.value if self.exit_reason else None,
        )
        try:
            self.status_store.write(snapshot)
        except StateFileError as e:
            logger.error(f"Failed to update status file: {e}")

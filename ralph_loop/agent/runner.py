"""Invocation of the external, non-interactive coding agent."""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Sequence

from ralph_loop.utils.exceptions import AgentInvocationError

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    """Outcome of one bounded agent invocation."""

    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(frozen=True)
class AgentRunResult:
    status: RunStatus
    output: str
    exit_code: int | None = None
    output_file: Path | None = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.COMPLETED


class AgentRunner:
    """Runs the agent command once per iteration with a wall-clock limit.

    Combined stdout/stderr is streamed into a per-iteration log file, so
    whatever the agent printed before a timeout is still available for
    analysis. The runner never interprets the output.
    """

    def __init__(
        self,
        command: Sequence[str],
        timeout_seconds: float,
        log_dir: str | Path,
        prompt_flag: str | None = "-p",
        cwd: str | Path | None = None,
    ):
        if not command:
            raise AgentInvocationError("Agent command is empty")
        self.command = list(command)
        self.timeout_seconds = timeout_seconds
        self.log_dir = Path(log_dir)
        self.prompt_flag = prompt_flag
        self.cwd = Path(cwd) if cwd is not None else None

    def build_command(self, prompt: str) -> list[str]:
        if self.prompt_flag:
            return [*self.command, self.prompt_flag, prompt]
        return [*self.command, prompt]

    def check_available(self) -> str:
        """Resolve the agent executable.

        Returns:
            Absolute path of the executable.

        Raises:
            AgentInvocationError: If the executable cannot be found.
        """
        executable = shutil.which(self.command[0])
        if executable is None:
            raise AgentInvocationError(
                f"Agent executable not found: {self.command[0]}", command=self.command
            )
        return executable

    def run(self, prompt: str, iteration: int = 0) -> AgentRunResult:
        """Invoke the agent once and wait for it, at most ``timeout_seconds``.

        Args:
            prompt: Full prompt text passed on the command line.
            iteration: Loop number, used in the output file name.

        Returns:
            AgentRunResult; timeouts and non-zero exits are reported, not raised.
        """
        self.log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_file = self.log_dir / f"agent_output_{iteration:04d}_{timestamp}.log"
        command = self.build_command(prompt)

        logger.info(f"Starting agent execution (timeout: {self.timeout_seconds:g}s)")
        logger.debug(f"Command: {' '.join(self.command)}")

        started = time.monotonic()
        with output_file.open("wb") as fh:
            try:
                process = subprocess.Popen(
                    command,
                    cwd=self.cwd,
                    stdin=subprocess.DEVNULL,
                    stdout=fh,
                    stderr=subprocess.STDOUT,
                )
            except OSError as e:
                logger.error(f"Failed to start agent: {e}")
                # The reason goes to the log file; the agent produced no output
                fh.write(f"Failed to start agent: {e}\n".encode())
                return AgentRunResult(
                    status=RunStatus.FAILED,
                    output="",
                    output_file=output_file,
                    duration_seconds=time.monotonic() - started,
                )

            try:
                exit_code = process.wait(timeout=self.timeout_seconds)
                status = RunStatus.COMPLETED if exit_code == 0 else RunStatus.FAILED
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
                exit_code = None
                status = RunStatus.TIMED_OUT

        duration = time.monotonic() - started
        if status == RunStatus.COMPLETED:
            logger.info("Agent execution completed successfully")
        elif status == RunStatus.TIMED_OUT:
            logger.warning(f"Agent execution timed out after {self.timeout_seconds:g}s")
        else:
            logger.warning(f"Agent execution exited with code {exit_code}")

        return AgentRunResult(
            status=status,
            output=self._read_output(output_file),
            exit_code=exit_code,
            output_file=output_file,
            duration_seconds=duration,
        )

    @staticmethod
    def _read_output(output_file: Path) -> str:
        try:
            return output_file.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.error(f"Output file not readable: {output_file}: {e}")
            return ""

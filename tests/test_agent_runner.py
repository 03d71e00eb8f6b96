"""Tests for the agent runner, using real short-lived subprocesses."""

import sys
from pathlib import Path

import pytest

from ralph_loop.agent.runner import AgentRunner, RunStatus
from ralph_loop.autonomous.response_analyzer import analyze
from ralph_loop.utils.exceptions import AgentInvocationError


def _python_runner(tmp_path, script, timeout=10.0):
    # The prompt follows "-c <script>" and arrives as sys.argv[1]
    return AgentRunner(
        command=[sys.executable, "-c", script],
        timeout_seconds=timeout,
        log_dir=tmp_path / "logs",
        prompt_flag=None,
        cwd=tmp_path,
    )


class TestBuildCommand:
    def test_prompt_flag(self, tmp_path):
        runner = AgentRunner(["kiro-cli", "chat"], 60, tmp_path)
        assert runner.build_command("do it") == ["kiro-cli", "chat", "-p", "do it"]

    def test_without_prompt_flag(self, tmp_path):
        runner = AgentRunner(["agent"], 60, tmp_path, prompt_flag=None)
        assert runner.build_command("do it") == ["agent", "do it"]

    def test_empty_command_rejected(self, tmp_path):
        with pytest.raises(AgentInvocationError):
            AgentRunner([], 60, tmp_path)


class TestCheckAvailable:
    def test_found(self, tmp_path):
        runner = AgentRunner([sys.executable], 60, tmp_path)
        assert runner.check_available()

    def test_missing(self, tmp_path):
        runner = AgentRunner(["definitely-not-an-agent-xyz"], 60, tmp_path)
        with pytest.raises(AgentInvocationError) as exc_info:
            runner.check_available()
        assert exc_info.value.code == "AGENT_INVOCATION_FAILED"
        assert exc_info.value.details["executable"] == "definitely-not-an-agent-xyz"


class TestRun:
    """Bounded invocation with output captured to a per-iteration file."""

    def test_completed_captures_stdout_and_stderr(self, tmp_path):
        script = (
            "import sys; "
            "print('Created src/app.py'); "
            "print('warned', file=sys.stderr); "
            "print('prompt=' + sys.argv[1])"
        )
        result = _python_runner(tmp_path, script).run("hello agent", iteration=3)

        assert result.status == RunStatus.COMPLETED
        assert result.ok
        assert result.exit_code == 0
        assert "Created src/app.py" in result.output
        assert "warned" in result.output
        assert "prompt=hello agent" in result.output
        assert result.output_file.parent == tmp_path / "logs"
        assert result.output_file.name.startswith("agent_output_0003_")
        assert result.output_file.read_text() == result.output

    def test_non_zero_exit_is_failed(self, tmp_path):
        script = "import sys; print('Error: disk full'); sys.exit(3)"
        result = _python_runner(tmp_path, script).run("x")

        assert result.status == RunStatus.FAILED
        assert not result.ok
        assert result.exit_code == 3
        assert "Error: disk full" in result.output

    def test_timeout_keeps_partial_output(self, tmp_path):
        script = "import time; print('Created partial.py', flush=True); time.sleep(30)"
        result = _python_runner(tmp_path, script, timeout=1.0).run("x")

        assert result.status == RunStatus.TIMED_OUT
        assert result.exit_code is None
        assert "Created partial.py" in result.output
        assert result.duration_seconds < 30

    def test_start_failure_is_reported(self, tmp_path):
        runner = AgentRunner(["definitely-not-an-agent-xyz"], 5, tmp_path / "logs")
        result = runner.run("x", iteration=1)

        assert result.status == RunStatus.FAILED
        assert result.exit_code is None
        assert result.output == ""
        assert "Failed to start agent" in result.output_file.read_text()

    def test_start_failure_is_not_an_agent_error(self, tmp_path):
        runner = AgentRunner(["definitely-not-an-agent-xyz"], 5, tmp_path / "logs")
        analysis = analyze(runner.run("x").output)
        assert analysis.has_error is False

    def test_runs_in_configured_cwd(self, tmp_path):
        script = "import os; print(os.getcwd())"
        result = _python_runner(tmp_path, script).run("x")
        assert Path(result.output.strip()).resolve() == tmp_path.resolve()

"""Loop configuration model."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ralph_loop.utils.exceptions import ConfigError
from ralph_loop.utils.paths import resolve_against

MIN_TIMEOUT_MINUTES = 1
MAX_TIMEOUT_MINUTES = 120


class LoopConfig(BaseModel):
    """Configuration for the autonomous loop.

    File locations are stored as given and resolved against ``cwd`` on use.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    cwd: Path = Field(default_factory=Path.cwd, description="Project directory")

    # Project files
    prompt_file: Path = Path(".kiro/PROMPT.md")
    fix_plan_file: Path = Path(".kiro/fix_plan.md")
    log_dir: Path = Path("logs")
    status_file: Path = Path("status.json")
    analysis_file: Path = Path(".response_analysis")
    circuit_state_file: Path = Path(".circuit_breaker_state")
    stop_file: Path = Path(".ralph-stop")

    # Execution
    timeout_minutes: int = Field(15, ge=MIN_TIMEOUT_MINUTES, le=MAX_TIMEOUT_MINUTES)
    sleep_seconds: float = Field(1.0, ge=0)
    verbose: bool = False

    # Agent invocation
    agent_command: list[str] = Field(
        default_factory=lambda: ["kiro-cli", "chat", "--no-interactive"]
    )
    prompt_flag: str | None = "-p"
    trust_all_tools: bool = True
    agent_name: str | None = None

    # Circuit breaker thresholds
    no_progress_threshold: int = Field(3, ge=1)
    error_threshold: int = Field(5, ge=1)

    # Exit detection
    max_test_loops: int = Field(3, ge=1)
    max_done_signals: int = Field(2, ge=1)

    @field_validator("agent_command")
    @classmethod
    def command_not_empty(cls, v: list[str]) -> list[str]:
        if not v or not v[0].strip():
            raise ValueError("Agent command cannot be empty")
        return v

    @field_validator("agent_name", "prompt_flag")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    def path(self, value: Path) -> Path:
        """Resolve one of the configured file locations against ``cwd``."""
        return resolve_against(self.cwd, value)

    @property
    def timeout_seconds(self) -> int:
        return self.timeout_minutes * 60

    def full_agent_command(self) -> list[str]:
        """Agent command with tool-trust and agent-selection flags, without the prompt."""
        command = list(self.agent_command)
        if self.trust_all_tools:
            command.append("--trust-all-tools")
        if self.agent_name:
            command.extend(["--agent", self.agent_name])
        return command

    def read_prompt(self) -> str:
        """Read the prompt file.

        Raises:
            ConfigError: If the prompt file is missing or unreadable.
        """
        prompt_path = self.path(self.prompt_file)
        if not prompt_path.is_file():
            raise ConfigError(
                f"Prompt file not found: {prompt_path}",
                config_key="prompt_file",
                config_file=str(prompt_path),
            )
        try:
            return prompt_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(
                f"Prompt file not readable: {prompt_path}",
                config_key="prompt_file",
                config_file=str(prompt_path),
                cause=e,
            ) from e

    def validate_for_run(self) -> list[str]:
        """Check everything a run needs before the loop starts.

        Returns:
            List of error messages, empty when the configuration is usable.
        """
        errors = []
        try:
            self.read_prompt()
        except ConfigError as e:
            errors.append(e.message)
        if not self.cwd.is_dir():
            errors.append(f"Working directory does not exist: {self.cwd}")
        return errors

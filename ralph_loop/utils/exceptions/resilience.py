from typing import Any

from .base import RalphError


class CircuitOpenError(RalphError):
    """Circuit breaker is open and no further iterations may run."""

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        consecutive_no_progress: int | None = None,
        consecutive_errors: int | None = None,
        last_reason: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if consecutive_no_progress is not None:
            details["consecutive_no_progress"] = consecutive_no_progress
        if consecutive_errors is not None:
            details["consecutive_errors"] = consecutive_errors
        if last_reason:
            details["last_reason"] = last_reason
        super().__init__(
            message=message, code="CIRCUIT_OPEN", details=details, retryable=False, **kwargs
        )
        self.consecutive_no_progress = consecutive_no_progress
        self.consecutive_errors = consecutive_errors
        self.last_reason = last_reason


class AgentInvocationError(RalphError):
    """The external agent process could not be started."""

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if command:
            details["executable"] = command[0]
        super().__init__(
            message=message,
            code="AGENT_INVOCATION_FAILED",
            details=details,
            retryable=True,
            **kwargs,
        )
        self.command = command

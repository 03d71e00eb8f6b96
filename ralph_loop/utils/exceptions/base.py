from __future__ import annotations

import uuid
from typing import Any


class RalphError(Exception):
    """Base exception for all ralph loop errors."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: dict[str, Any] | None = None,
        retryable: bool = False,
        trace_id: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.retryable = retryable
        self.trace_id = trace_id or str(uuid.uuid4())[:8]
        self.cause = cause

    def __str__(self) -> str:
        parts = [f"[{self.code}] {self.message}"]
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        if self.cause:
            parts.append(f"[caused by: {self.cause}]")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            "type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
            "trace_id": self.trace_id,
            "cause": str(self.cause) if self.cause else None,
        }


class StateFileError(RalphError):
    """A persisted state file could not be read or written."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if path:
            details["path"] = path
        super().__init__(message=message, code="STATE_FILE_ERROR", details=details, **kwargs)
        self.path = path

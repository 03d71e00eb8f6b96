from .base import RalphError, StateFileError
from .config import ConfigError
from .resilience import AgentInvocationError, CircuitOpenError

__all__ = [
    "RalphError",
    "StateFileError",
    "ConfigError",
    "AgentInvocationError",
    "CircuitOpenError",
]

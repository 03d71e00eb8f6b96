from ralph_loop.autonomous.circuit_breaker import CircuitBreaker, CircuitBreakerState
from ralph_loop.autonomous.exit_policy import ExitDecision, ExitPolicy, ExitReason, LoopCounters
from ralph_loop.autonomous.response_analyzer import AnalysisResult, ResponseAnalyzer, analyze
from ralph_loop.autonomous.status import LoopStatus, StatusSnapshot, StatusStore
from ralph_loop.autonomous.task_list import TaskListProgress

__all__ = [
    "AnalysisResult",
    "CircuitBreaker",
    "CircuitBreakerState",
    "ExitDecision",
    "ExitPolicy",
    "ExitReason",
    "LoopCounters",
    "LoopStatus",
    "ResponseAnalyzer",
    "StatusSnapshot",
    "StatusStore",
    "TaskListProgress",
    "analyze",
]

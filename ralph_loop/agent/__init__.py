from ralph_loop.agent.autonomous_loop import LoopController, LoopPhase, LoopResult
from ralph_loop.agent.runner import AgentRunner, AgentRunResult, RunStatus

__all__ = [
    "AgentRunResult",
    "AgentRunner",
    "LoopController",
    "LoopPhase",
    "LoopResult",
    "RunStatus",
]

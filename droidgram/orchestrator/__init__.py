"""Message orchestration and task routing."""

from droidgram.orchestrator.complexity import estimate_task_complexity, should_route_to_job_queue
from droidgram.orchestrator.errors import analyze_error
from droidgram.orchestrator.locks import ConversationLockManager
from droidgram.orchestrator.orchestrator import Orchestrator

__all__ = [
    "ConversationLockManager",
    "Orchestrator",
    "analyze_error",
    "estimate_task_complexity",
    "should_route_to_job_queue",
]

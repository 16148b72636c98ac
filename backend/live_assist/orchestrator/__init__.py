from live_assist.orchestrator.engine import InterviewOrchestrator
from live_assist.orchestrator.state import ListeningState, ListeningStatus, SessionClock
from live_assist.orchestrator.timers import DeferredAction, TimerSet

__all__ = [
    "DeferredAction",
    "InterviewOrchestrator",
    "ListeningState",
    "ListeningStatus",
    "SessionClock",
    "TimerSet",
]

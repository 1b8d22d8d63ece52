"""Background workers - the event orchestrator driving the presence engine."""

from presencesync.application.workers.orchestrator import (
    ConfigChanged,
    EventOrchestrator,
    OrchestratorState,
    PlayerRemove,
    PlayerUpdate,
)

__all__ = [
    "ConfigChanged",
    "EventOrchestrator",
    "OrchestratorState",
    "PlayerRemove",
    "PlayerUpdate",
]

"""Turnkeeper - a streaming, tool-calling conversation turn orchestrator."""

__version__ = "0.1.0"

from turnkeeper.config import Config
from turnkeeper.orchestrator import (
    ConversationOrchestrator,
    TurnEvent,
    TurnEventType,
    TurnOutcome,
    TurnState,
)

__all__ = [
    "Config",
    "ConversationOrchestrator",
    "TurnEvent",
    "TurnEventType",
    "TurnOutcome",
    "TurnState",
    "__version__",
]

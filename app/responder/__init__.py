"""AI responder: completion adapters and per-message orchestration."""

from .completion import CompletionError, CompletionService, OpenAICompletionService
from .orchestrator import OrchestrationOutcome, OutcomeStatus, ResponseOrchestrator

__all__ = [
    "CompletionError",
    "CompletionService",
    "OpenAICompletionService",
    "OrchestrationOutcome",
    "OutcomeStatus",
    "ResponseOrchestrator",
]

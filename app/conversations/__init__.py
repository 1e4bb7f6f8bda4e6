"""Conversation records, persistence and keyword matching."""

from . import schemas
from .keywords import matches_any
from .models import (
    Conversation,
    ConversationMode,
    Message,
    MessageDirection,
    ProducedBy,
    RecommendationEvent,
    TransitionResult,
)
from .repository import (
    ConversationNotFoundError,
    ConversationRepository,
    InMemoryConversationRepository,
    PostgresConversationRepository,
)

__all__ = [
    "Conversation",
    "ConversationMode",
    "ConversationNotFoundError",
    "ConversationRepository",
    "InMemoryConversationRepository",
    "Message",
    "MessageDirection",
    "PostgresConversationRepository",
    "ProducedBy",
    "RecommendationEvent",
    "TransitionResult",
    "matches_any",
    "schemas",
]

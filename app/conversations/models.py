"""Domain models used by the conversation state machine and orchestrator."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID, uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationMode(str, enum.Enum):
    AI = "ai"
    HUMAN = "human"
    PAUSED = "paused"


class MessageDirection(str, enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class ProducedBy(str, enum.Enum):
    AI = "ai"
    OPERATOR = "operator"
    SYSTEM = "system"


@dataclass
class Conversation:
    """Persisted conversation record.

    ``assigned_operator_id`` is set exactly when ``mode`` is ``human``, and
    ``escalation_requested`` is never true in ``human`` mode.
    """

    tenant_id: UUID
    customer_identifier: str
    channel: str = "whatsapp"
    mode: ConversationMode = ConversationMode.AI
    assigned_operator_id: str | None = None
    assigned_at: datetime | None = None
    escalation_requested: bool = False
    escalation_reason: str | None = None
    escalation_count: int = 0
    escalation_requested_at: datetime | None = None
    last_activity_at: datetime = field(default_factory=utcnow)
    is_archived: bool = False
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Message:
    """Append-only conversation message; inbound messages have no ``produced_by``."""

    tenant_id: UUID
    conversation_id: UUID
    direction: MessageDirection
    text: str
    produced_by: ProducedBy | None = None
    operator_id: str | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class RecommendationEvent:
    tenant_id: UUID
    conversation_id: UUID
    item_id: UUID
    message_id: UUID | None = None
    surfaced_at: datetime = field(default_factory=utcnow)
    clicked: bool = False
    purchased: bool = False
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a conditional transition.

    ``applied`` is false when the precondition no longer held; that is an
    expected race outcome, and ``conversation`` then holds the current state.
    """

    applied: bool
    conversation: Conversation | None
    message: Message | None = None
    reason: str | None = None

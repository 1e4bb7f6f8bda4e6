"""Pydantic schemas for conversation and webhook APIs."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .models import ConversationMode, MessageDirection, ProducedBy


class ConversationOut(BaseModel):
    id: UUID
    tenant_id: UUID
    customer_identifier: str
    channel: str
    mode: ConversationMode
    assigned_operator_id: str | None = None
    assigned_at: datetime | None = None
    escalation_requested: bool
    escalation_reason: str | None = None
    escalation_count: int
    escalation_requested_at: datetime | None = None
    last_activity_at: datetime
    is_archived: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageOut(BaseModel):
    id: UUID
    conversation_id: UUID
    direction: MessageDirection
    produced_by: ProducedBy | None = None
    operator_id: str | None = None
    text: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationList(BaseModel):
    items: list[ConversationOut]
    total: int


class ConversationStats(BaseModel):
    total: int = 0
    ai: int = 0
    human: int = 0
    paused: int = 0
    escalated: int = 0
    archived: int = 0


class ReleaseRequest(BaseModel):
    reason: str = "operator"


class SendMessageRequest(BaseModel):
    text: str = Field(min_length=1, max_length=4096)


class TransitionResponse(BaseModel):
    applied: bool
    conversation: ConversationOut


class InboundMessageRequest(BaseModel):
    """Channel-agnostic inbound message produced by a channel gateway."""

    customer_identifier: str = Field(min_length=1, max_length=255)
    text: str = Field(max_length=4096)
    channel: str = "whatsapp"
    received_at: datetime | None = None


class InboundMessageResponse(BaseModel):
    status: str
    conversation_id: UUID | None = None
    reply: str | None = None
    escalated: bool = False
    recommended_item_ids: list[UUID] = Field(default_factory=list)

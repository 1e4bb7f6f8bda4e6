"""Operator-facing conversation queries and actions."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from ..channels.delivery import ChannelDelivery
from . import schemas
from .models import (
    Conversation,
    ConversationMode,
    Message,
    MessageDirection,
    ProducedBy,
    utcnow,
)
from .repository import ConversationNotFoundError, ConversationRepository

logger = logging.getLogger(__name__)

ESCALATED_FILTER = "escalated"


class OperatorNotAssignedError(RuntimeError):
    """Raised when an operator writes to a conversation they do not hold."""


class ConversationService:
    """Queries and operator messaging on top of the repository."""

    def __init__(self, repository: ConversationRepository, delivery: ChannelDelivery) -> None:
        self._repository = repository
        self._delivery = delivery

    # ------------------------------------------------------------------
    # Queries

    def list_conversations(
        self,
        tenant_id: UUID,
        mode: str | None = None,
        *,
        include_archived: bool = False,
        limit: int = 50,
    ) -> schemas.ConversationList:
        """List conversations, optionally filtered by mode or ``"escalated"``.

        Raises ``ValueError`` for an unknown filter.
        """

        escalated_only = mode == ESCALATED_FILTER
        mode_filter = None
        if mode and not escalated_only:
            mode_filter = ConversationMode(mode)
        items = self._repository.list_conversations(
            tenant_id,
            mode=mode_filter,
            escalated_only=escalated_only,
            include_archived=include_archived,
            limit=limit,
        )
        return schemas.ConversationList(
            items=[schemas.ConversationOut.model_validate(item) for item in items],
            total=len(items),
        )

    def get_conversation(self, tenant_id: UUID, conversation_id: UUID) -> Conversation:
        conversation = self._repository.get(tenant_id, conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def list_messages(
        self, tenant_id: UUID, conversation_id: UUID, limit: int | None = None
    ) -> list[Message]:
        self.get_conversation(tenant_id, conversation_id)
        return self._repository.list_messages(tenant_id, conversation_id, limit=limit)

    def stats(self, tenant_id: UUID) -> schemas.ConversationStats:
        return schemas.ConversationStats(**self._repository.stats(tenant_id))

    # ------------------------------------------------------------------
    # Actions

    def send_operator_message(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        operator_id: str,
        text: str,
        now: datetime | None = None,
    ) -> Message:
        """Append and deliver a message written by the assigned operator."""

        conversation = self.get_conversation(tenant_id, conversation_id)
        now = now or utcnow()
        message = self._repository.append_message_if_mode(
            Message(
                tenant_id=tenant_id,
                conversation_id=conversation_id,
                direction=MessageDirection.OUTBOUND,
                text=text,
                produced_by=ProducedBy.OPERATOR,
                operator_id=operator_id,
                created_at=now,
            ),
            ConversationMode.HUMAN,
            operator_id=operator_id,
        )
        if message is None:
            raise OperatorNotAssignedError(
                f"Operator {operator_id} is not handling conversation {conversation_id}"
            )
        self._repository.touch(tenant_id, conversation_id, now)
        try:
            self._delivery.deliver(conversation, text)
        except Exception as exc:
            logger.warning("Delivery failed for conversation %s: %s", conversation_id, exc)
        return message

"""Conversation mode state machine.

States are ``ai`` (initial), ``human`` and ``paused``::

    ai     --take_over-->  human
    paused --take_over-->  human
    human  --release---->  ai
    ai     --pause------>  paused
    paused --resume----->  ai

Escalation detection only flags the conversation (``ai -> ai``); it never
transfers control. Every transition is one conditional repository update
keyed on the expected prior mode. When the precondition no longer holds the
call is a no-op and returns ``applied=False``; side effects (system messages,
delivery, notifications) run only for transitions that applied.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from ..app_logging import context_extra
from ..channels.delivery import ChannelDelivery
from ..channels.notifier import EscalationNotifier
from .keywords import matches_any
from .models import (
    Conversation,
    ConversationMode,
    Message,
    MessageDirection,
    ProducedBy,
    TransitionResult,
    utcnow,
)
from .repository import ConversationNotFoundError, ConversationRepository

logger = logging.getLogger(__name__)

TAKEOVER_MESSAGE = "Thanks for your patience! A team member is now handling your conversation."
HANDBACK_MESSAGE = (
    "Thank you for your patience! Our AI assistant will continue helping you. "
    "Feel free to request human assistance anytime if needed."
)

ALL_MODES = tuple(ConversationMode)


class ConversationStateMachine:
    def __init__(
        self,
        repository: ConversationRepository,
        delivery: ChannelDelivery,
        notifier: EscalationNotifier,
    ) -> None:
        self._repository = repository
        self._delivery = delivery
        self._notifier = notifier

    # ------------------------------------------------------------------
    # Escalation

    def detect_escalation(
        self,
        conversation: Conversation,
        text: str,
        keywords: Iterable[str],
        now: datetime | None = None,
    ) -> TransitionResult:
        """Flag ``conversation`` when ``text`` contains an escalation keyword.

        Only the first match of an episode is recorded: a conversation that is
        already flagged is left alone until a takeover clears the flag.
        """

        if conversation.mode != ConversationMode.AI or conversation.escalation_requested:
            return TransitionResult(applied=False, conversation=conversation)
        keyword = matches_any(text, keywords)
        if keyword is None:
            return TransitionResult(applied=False, conversation=conversation)
        updated = self._repository.flag_escalation(
            conversation.tenant_id, conversation.id, keyword, now or utcnow()
        )
        if updated is None:
            logger.debug("Escalation for conversation %s already recorded", conversation.id)
            return TransitionResult(applied=False, conversation=conversation, reason=keyword)
        logger.info(
            "Conversation %s escalated on keyword %r (count=%d)",
            updated.id,
            keyword,
            updated.escalation_count,
            extra=context_extra(updated.tenant_id, updated.id),
        )
        try:
            self._notifier.notify(updated, keyword)
        except Exception as exc:
            logger.warning(
                "Escalation notification failed for %s: %s",
                updated.id,
                exc,
                extra=context_extra(updated.tenant_id, updated.id),
            )
        return TransitionResult(applied=True, conversation=updated, reason=keyword)

    # ------------------------------------------------------------------
    # Control transfer

    def take_over(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        operator_id: str,
        now: datetime | None = None,
    ) -> TransitionResult:
        if not operator_id or not operator_id.strip():
            raise ValueError("operator_id is required for takeover")
        now = now or utcnow()
        updated = self._repository.transition(
            tenant_id,
            conversation_id,
            (ConversationMode.AI, ConversationMode.PAUSED),
            {
                "mode": ConversationMode.HUMAN,
                "assigned_operator_id": operator_id.strip(),
                "assigned_at": now,
                "escalation_requested": False,
                "last_activity_at": now,
            },
        )
        if updated is None:
            return self._not_applied(tenant_id, conversation_id, "takeover")
        logger.info(
            "Operator %s took over conversation %s",
            operator_id,
            conversation_id,
            extra=context_extra(tenant_id, conversation_id, operator_id),
        )
        message = self._announce(updated, TAKEOVER_MESSAGE, now)
        return TransitionResult(applied=True, conversation=updated, message=message)

    def release(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        reason: str = "operator",
        now: datetime | None = None,
        *,
        last_activity_before: datetime | None = None,
    ) -> TransitionResult:
        """Hand a ``human`` conversation back to the AI responder.

        ``last_activity_before`` adds a second precondition used by the
        auto-release sweeper, so activity recorded after candidate selection
        keeps the conversation with its operator.
        """

        now = now or utcnow()
        updated = self._repository.transition(
            tenant_id,
            conversation_id,
            (ConversationMode.HUMAN,),
            {
                "mode": ConversationMode.AI,
                "assigned_operator_id": None,
                "assigned_at": None,
            },
            last_activity_before=last_activity_before,
        )
        if updated is None:
            return self._not_applied(tenant_id, conversation_id, "release", reason)
        logger.info(
            "Conversation %s released to AI (%s)",
            conversation_id,
            reason,
            extra=context_extra(tenant_id, conversation_id),
        )
        message = self._announce(updated, HANDBACK_MESSAGE, now)
        return TransitionResult(applied=True, conversation=updated, message=message, reason=reason)

    def pause(self, tenant_id: UUID, conversation_id: UUID) -> TransitionResult:
        updated = self._repository.transition(
            tenant_id,
            conversation_id,
            (ConversationMode.AI,),
            {"mode": ConversationMode.PAUSED},
        )
        if updated is None:
            return self._not_applied(tenant_id, conversation_id, "pause")
        logger.info(
            "Conversation %s paused", conversation_id, extra=context_extra(tenant_id, conversation_id)
        )
        return TransitionResult(applied=True, conversation=updated)

    def resume(self, tenant_id: UUID, conversation_id: UUID) -> TransitionResult:
        updated = self._repository.transition(
            tenant_id,
            conversation_id,
            (ConversationMode.PAUSED,),
            {"mode": ConversationMode.AI},
        )
        if updated is None:
            return self._not_applied(tenant_id, conversation_id, "resume")
        logger.info(
            "Conversation %s resumed", conversation_id, extra=context_extra(tenant_id, conversation_id)
        )
        return TransitionResult(applied=True, conversation=updated)

    def archive(self, tenant_id: UUID, conversation_id: UUID) -> TransitionResult:
        updated = self._repository.transition(
            tenant_id, conversation_id, ALL_MODES, {"is_archived": True}
        )
        if updated is None:
            return self._not_applied(tenant_id, conversation_id, "archive")
        logger.info(
            "Conversation %s archived", conversation_id, extra=context_extra(tenant_id, conversation_id)
        )
        return TransitionResult(applied=True, conversation=updated)

    # ------------------------------------------------------------------
    # Helpers

    def _not_applied(
        self, tenant_id: UUID, conversation_id: UUID, action: str, reason: str | None = None
    ) -> TransitionResult:
        current = self._repository.get(tenant_id, conversation_id)
        if current is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        logger.debug(
            "Skipped %s for conversation %s in mode %s", action, conversation_id, current.mode.value
        )
        return TransitionResult(applied=False, conversation=current, reason=reason)

    def _announce(self, conversation: Conversation, text: str, now: datetime) -> Message:
        message = self._repository.append_message(
            Message(
                tenant_id=conversation.tenant_id,
                conversation_id=conversation.id,
                direction=MessageDirection.OUTBOUND,
                text=text,
                produced_by=ProducedBy.SYSTEM,
                created_at=now,
            )
        )
        try:
            self._delivery.deliver(conversation, text)
        except Exception as exc:
            logger.warning(
                "Delivery failed for conversation %s: %s",
                conversation.id,
                exc,
                extra=context_extra(conversation.tenant_id, conversation.id),
            )
        return message

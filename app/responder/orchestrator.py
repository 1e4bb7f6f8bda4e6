"""Per-message orchestration of the AI responder.

For every inbound customer message:

1. record the message and touch the conversation's activity;
2. stop when the conversation is not AI-controlled, the message then waits
   for a human;
3. run escalation detection, recommendation retrieval, prompt assembly and
   the completion call;
4. append the reply only if the conversation is *still* in ``ai`` mode (an
   atomic insert-if-mode), so a takeover that lands while the completion is
   in flight suppresses the reply instead of racing the operator;
5. deliver the reply and record a recommendation event for every candidate
   item whose name appears in it.

Collaborator failures never escape :meth:`ResponseOrchestrator.handle_inbound`:
retrieval and store-hours failures degrade the prompt, a completion failure
means no reply this turn, and delivery is best effort.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from langdetect import DetectorFactory, LangDetectException, detect

from ..app_logging import context_extra
from ..catalog.models import CatalogItem
from ..channels.delivery import ChannelDelivery
from ..conversations.models import (
    Conversation,
    ConversationMode,
    Message,
    MessageDirection,
    ProducedBy,
    RecommendationEvent,
    utcnow,
)
from ..conversations.repository import ConversationRepository
from ..conversations.state import ConversationStateMachine
from ..prompting.assembler import DEFAULT_HISTORY_LIMIT, MAX_INSTRUCTION_CHARS, assemble
from ..retrieval.policy import RetrievalPolicy, RetrievedItem
from ..tenants.config import TenantConfig
from ..tenants.hours import StoreHoursProvider
from ..tenants.repository import TenantConfigRepository
from .completion import CompletionService

logger = logging.getLogger(__name__)

# Deterministic language detection across runs.
DetectorFactory.seed = 0


class OutcomeStatus(str, enum.Enum):
    REPLIED = "replied"
    WAITING_FOR_HUMAN = "waiting_for_human"
    SUPPRESSED = "suppressed"
    FAILED = "failed"


@dataclass
class OrchestrationOutcome:
    status: OutcomeStatus
    conversation: Conversation
    reply: str | None = None
    escalated: bool = False
    candidates: list[RetrievedItem] = field(default_factory=list)
    recommendations: list[RecommendationEvent] = field(default_factory=list)


def mentioned_items(items: list[CatalogItem], reply: str) -> list[CatalogItem]:
    """Return items whose name appears (case-insensitively) in ``reply``."""

    text = reply.casefold()
    seen: set[UUID] = set()
    mentioned = []
    for item in items:
        name = item.name.strip().casefold()
        if name and name in text and item.id not in seen:
            seen.add(item.id)
            mentioned.append(item)
    return mentioned


def _is_first_contact(history: list[Message]) -> bool:
    # Nothing has been sent to the customer yet; greet before answering.
    return all(message.direction == MessageDirection.INBOUND for message in history)


class ResponseOrchestrator:
    def __init__(
        self,
        conversations: ConversationRepository,
        state_machine: ConversationStateMachine,
        retrieval: RetrievalPolicy,
        configs: TenantConfigRepository,
        store_hours: StoreHoursProvider,
        completion: CompletionService,
        delivery: ChannelDelivery,
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        max_instruction_chars: int = MAX_INSTRUCTION_CHARS,
    ) -> None:
        self._conversations = conversations
        self._state = state_machine
        self._retrieval = retrieval
        self._configs = configs
        self._store_hours = store_hours
        self._completion = completion
        self._delivery = delivery
        self.history_limit = history_limit
        self.max_instruction_chars = max_instruction_chars

    def handle_inbound(
        self,
        tenant_id: UUID,
        customer_identifier: str,
        text: str,
        channel: str = "whatsapp",
        received_at: datetime | None = None,
    ) -> OrchestrationOutcome:
        received_at = received_at or utcnow()
        conversation = self._conversations.touch_or_create(
            tenant_id, customer_identifier, channel, received_at
        )
        self._conversations.append_message(
            Message(
                tenant_id=tenant_id,
                conversation_id=conversation.id,
                direction=MessageDirection.INBOUND,
                text=text,
                created_at=received_at,
            )
        )
        if conversation.mode != ConversationMode.AI:
            logger.info(
                "Conversation %s is in %s mode; message waits for a human",
                conversation.id,
                conversation.mode.value,
                extra=context_extra(tenant_id, conversation.id),
            )
            return OrchestrationOutcome(OutcomeStatus.WAITING_FOR_HUMAN, conversation)

        config = self._load_config(tenant_id)
        escalation = self._state.detect_escalation(
            conversation, text, config.escalation_keywords, now=received_at
        )
        if escalation.applied and escalation.conversation is not None:
            conversation = escalation.conversation

        candidates = self._recommend(tenant_id, text)
        is_open, next_opening = self._check_hours(tenant_id, received_at)
        history = self._conversations.list_messages(
            tenant_id, conversation.id, limit=self.history_limit
        )
        prompt = assemble(
            config,
            [candidate.item for candidate in candidates],
            history,
            is_open=is_open,
            next_opening=next_opening,
            escalation_notice=escalation.applied,
            reply_language=self._reply_language(config, text),
            first_contact=_is_first_contact(history),
            history_limit=self.history_limit,
            max_chars=self.max_instruction_chars,
        )

        try:
            reply = self._completion.complete(prompt.instructions, prompt.turns)
        except Exception as exc:
            logger.warning(
                "Completion failed for conversation %s: %s",
                conversation.id,
                exc,
                extra=context_extra(tenant_id, conversation.id),
            )
            return OrchestrationOutcome(
                OutcomeStatus.FAILED,
                conversation,
                escalated=escalation.applied,
                candidates=candidates,
            )

        stored = self._conversations.append_message_if_mode(
            Message(
                tenant_id=tenant_id,
                conversation_id=conversation.id,
                direction=MessageDirection.OUTBOUND,
                text=reply,
                produced_by=ProducedBy.AI,
            ),
            ConversationMode.AI,
        )
        if stored is None:
            logger.info(
                "Discarded AI reply for conversation %s: mode changed during generation",
                conversation.id,
                extra=context_extra(tenant_id, conversation.id),
            )
            return OrchestrationOutcome(
                OutcomeStatus.SUPPRESSED,
                self._conversations.get(tenant_id, conversation.id) or conversation,
                escalated=escalation.applied,
                candidates=candidates,
            )

        try:
            self._delivery.deliver(conversation, reply)
        except Exception as exc:
            logger.warning(
                "Delivery failed for conversation %s: %s",
                conversation.id,
                exc,
                extra=context_extra(tenant_id, conversation.id),
            )

        recommendations = self._record_recommendations(conversation, prompt.items, reply, stored)
        return OrchestrationOutcome(
            OutcomeStatus.REPLIED,
            conversation,
            reply=reply,
            escalated=escalation.applied,
            candidates=candidates,
            recommendations=recommendations,
        )

    # ------------------------------------------------------------------
    # Helpers

    def _load_config(self, tenant_id: UUID) -> TenantConfig:
        try:
            return self._configs.get(tenant_id)
        except Exception as exc:
            logger.warning("Tenant configuration unavailable for %s: %s", tenant_id, exc)
            return TenantConfig()

    def _recommend(self, tenant_id: UUID, text: str) -> list[RetrievedItem]:
        try:
            return self._retrieval.recommend(tenant_id, text)
        except Exception as exc:
            logger.warning("Recommendation retrieval failed for tenant %s: %s", tenant_id, exc)
            return []

    def _check_hours(self, tenant_id: UUID, now: datetime) -> tuple[bool, str | None]:
        try:
            is_open = self._store_hours.is_open(tenant_id, now)
            next_opening = None
            if not is_open and hasattr(self._store_hours, "next_opening"):
                next_opening = self._store_hours.next_opening(tenant_id, now)
            return is_open, next_opening
        except Exception as exc:
            logger.warning("Store hours unavailable for tenant %s: %s", tenant_id, exc)
            return True, None

    @staticmethod
    def _reply_language(config: TenantConfig, text: str) -> str | None:
        if config.language != "auto":
            return None
        try:
            return detect(text)
        except LangDetectException:
            return None

    def _record_recommendations(
        self,
        conversation: Conversation,
        items: list[CatalogItem],
        reply: str,
        message: Message,
    ) -> list[RecommendationEvent]:
        events = [
            RecommendationEvent(
                tenant_id=conversation.tenant_id,
                conversation_id=conversation.id,
                item_id=item.id,
                message_id=message.id,
                surfaced_at=message.created_at,
            )
            for item in mentioned_items(items, reply)
        ]
        if not events:
            return []
        try:
            self._conversations.record_recommendations(events)
        except Exception as exc:
            logger.warning(
                "Recording recommendations failed for conversation %s: %s", conversation.id, exc
            )
            return []
        logger.info("Tracked %d product recommendation(s) for %s", len(events), conversation.id)
        return events

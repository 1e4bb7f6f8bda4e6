"""Escalation notifications for the operator team."""

from __future__ import annotations

import logging
from typing import Protocol

from ..conversations.models import Conversation

logger = logging.getLogger(__name__)


class EscalationNotifier(Protocol):
    def notify(self, conversation: Conversation, reason: str) -> None: ...


class LoggingNotifier:
    """Default notifier: writes a warning that operators' log alerts pick up."""

    def __init__(self) -> None:
        self.notified: list[tuple[Conversation, str]] = []

    def notify(self, conversation: Conversation, reason: str) -> None:
        self.notified.append((conversation, reason))
        logger.warning(
            "Escalation requested for conversation %s (tenant %s): %s",
            conversation.id,
            conversation.tenant_id,
            reason,
        )

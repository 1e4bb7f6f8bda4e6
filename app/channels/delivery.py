"""Outbound delivery of conversation messages to customer channels.

Channel-specific APIs (WhatsApp, Instagram, ...) live behind a single
webhook: :class:`WebhookDelivery` posts a normalized JSON payload to
``CHANNEL_DELIVERY_URL`` and the channel gateway takes it from there.
Delivery is best effort; callers log :class:`DeliveryError` and move on.
"""

from __future__ import annotations

import logging
from typing import Protocol

import requests

from ..conversations.models import Conversation
from ..settings import Settings, get_settings

logger = logging.getLogger(__name__)


class DeliveryError(RuntimeError):
    """Raised when a message could not be handed to the channel."""


class ChannelDelivery(Protocol):
    def deliver(self, conversation: Conversation, text: str) -> None: ...


class WebhookDelivery:
    """POST outbound messages to the channel gateway."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def deliver(self, conversation: Conversation, text: str) -> None:
        payload = {
            "tenant_id": str(conversation.tenant_id),
            "conversation_id": str(conversation.id),
            "channel": conversation.channel,
            "recipient": conversation.customer_identifier,
            "text": text,
        }
        try:
            response = self._session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise DeliveryError(f"delivery to {conversation.channel} failed: {exc}") from exc


class LoggingDelivery:
    """Record outbound messages without sending them (development and tests)."""

    def __init__(self) -> None:
        self.sent: list[tuple[Conversation, str]] = []

    def deliver(self, conversation: Conversation, text: str) -> None:
        self.sent.append((conversation, text))
        logger.info(
            "Outbound message for conversation %s on %s (%d chars)",
            conversation.id,
            conversation.channel,
            len(text),
        )


def create_delivery(settings: Settings | None = None) -> ChannelDelivery:
    settings = settings or get_settings()
    if settings.channel_delivery_url:
        return WebhookDelivery(
            settings.channel_delivery_url, timeout=settings.channel_delivery_timeout
        )
    logger.info("CHANNEL_DELIVERY_URL not set; outbound messages are only logged")
    return LoggingDelivery()

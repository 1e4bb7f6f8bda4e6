"""Outbound channel delivery and operator notifications."""

from __future__ import annotations

from .delivery import (
    ChannelDelivery,
    DeliveryError,
    LoggingDelivery,
    WebhookDelivery,
    create_delivery,
)
from .notifier import EscalationNotifier, LoggingNotifier

__all__ = [
    "ChannelDelivery",
    "DeliveryError",
    "EscalationNotifier",
    "LoggingDelivery",
    "LoggingNotifier",
    "WebhookDelivery",
    "create_delivery",
]

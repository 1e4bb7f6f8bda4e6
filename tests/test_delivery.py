import uuid

import pytest
import requests

from app.channels.delivery import (
    DeliveryError,
    LoggingDelivery,
    WebhookDelivery,
    create_delivery,
)
from app.conversations.models import Conversation
from app.settings import Settings


class _Response:
    def __init__(self, status_code: int):
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class _Session:
    def __init__(self, response=None, exc=None):
        self.response = response or _Response(200)
        self.exc = exc
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        if self.exc is not None:
            raise self.exc
        return self.response


@pytest.fixture
def conversation() -> Conversation:
    return Conversation(tenant_id=uuid.uuid4(), customer_identifier="+15550001")


def test_webhook_delivery_posts_normalized_payload(conversation):
    session = _Session()
    delivery = WebhookDelivery("https://gateway.test/send", timeout=3, session=session)

    delivery.deliver(conversation, "Hello!")

    url, payload, timeout = session.posts[0]
    assert url == "https://gateway.test/send"
    assert timeout == 3
    assert payload == {
        "tenant_id": str(conversation.tenant_id),
        "conversation_id": str(conversation.id),
        "channel": "whatsapp",
        "recipient": "+15550001",
        "text": "Hello!",
    }


def test_http_error_becomes_delivery_error(conversation):
    delivery = WebhookDelivery("https://gateway.test/send", session=_Session(_Response(502)))

    with pytest.raises(DeliveryError):
        delivery.deliver(conversation, "Hello!")


def test_connection_error_becomes_delivery_error(conversation):
    session = _Session(exc=requests.ConnectionError("refused"))
    delivery = WebhookDelivery("https://gateway.test/send", session=session)

    with pytest.raises(DeliveryError, match="refused"):
        delivery.deliver(conversation, "Hello!")


def test_create_delivery_picks_backend():
    assert isinstance(create_delivery(Settings()), LoggingDelivery)
    webhook = create_delivery(Settings(channel_delivery_url="https://gateway.test/send"))
    assert isinstance(webhook, WebhookDelivery)
    assert webhook.url == "https://gateway.test/send"

import types

import pytest

from app.responder.completion import CompletionError, OpenAICompletionService
from app.settings import Settings


class DummyClient:
    def __init__(self, content="Sure thing!", exc=None):
        self.content = content
        self.exc = exc
        self.kwargs = None
        self.chat = types.SimpleNamespace(completions=types.SimpleNamespace(create=self.create))

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.exc is not None:
            raise self.exc
        message = types.SimpleNamespace(content=self.content)
        return types.SimpleNamespace(
            choices=[types.SimpleNamespace(message=message)],
            usage=types.SimpleNamespace(total_tokens=42),
        )


def test_instructions_go_first_as_system_message():
    client = DummyClient("  The Dad Hat is $24.  ")
    service = OpenAICompletionService("gpt-test", temperature=0.2, max_tokens=50, client=client)

    reply = service.complete("You are a shop assistant.", [{"role": "user", "content": "hat?"}])

    assert reply == "The Dad Hat is $24."
    assert client.kwargs["model"] == "gpt-test"
    assert client.kwargs["temperature"] == 0.2
    assert client.kwargs["max_tokens"] == 50
    assert client.kwargs["messages"] == [
        {"role": "system", "content": "You are a shop assistant."},
        {"role": "user", "content": "hat?"},
    ]


def test_empty_completion_is_an_error():
    service = OpenAICompletionService(client=DummyClient("   "))
    with pytest.raises(CompletionError):
        service.complete("instructions", [])


def test_backend_failure_is_wrapped():
    service = OpenAICompletionService(client=DummyClient(exc=TimeoutError("slow")))
    with pytest.raises(CompletionError, match="slow"):
        service.complete("instructions", [])


def test_from_settings():
    service = OpenAICompletionService.from_settings(
        Settings(openai_model="gpt-x", openai_temperature=0.1, openai_max_tokens=99)
    )
    assert (service.model, service.temperature, service.max_tokens) == ("gpt-x", 0.1, 99)

"""Completion service adapters."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from openai import OpenAI

from ..settings import Settings, get_settings

logger = logging.getLogger(__name__)


class CompletionError(RuntimeError):
    """Raised when the completion backend fails or returns no text."""


class CompletionService(Protocol):
    def complete(self, instructions: str, turns: Sequence[dict[str, str]]) -> str: ...


class OpenAICompletionService:
    """Chat completions through the OpenAI API."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        *,
        temperature: float = 0.7,
        max_tokens: int = 500,
        client: OpenAI | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "OpenAICompletionService":
        settings = settings or get_settings()
        return cls(
            settings.openai_model,
            temperature=settings.openai_temperature,
            max_tokens=settings.openai_max_tokens,
        )

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def complete(self, instructions: str, turns: Sequence[dict[str, str]]) -> str:
        messages = [{"role": "system", "content": instructions}, *turns]
        try:
            completion = self._get_client().chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as exc:
            raise CompletionError(f"OpenAI chat completion failed: {exc}") from exc
        content = completion.choices[0].message.content if completion.choices else None
        if not content or not content.strip():
            raise CompletionError("OpenAI returned an empty completion")
        usage = getattr(completion, "usage", None)
        if usage is not None:
            logger.debug("Completion used %s tokens", usage.total_tokens)
        return content.strip()

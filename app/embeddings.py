"""Embedding service adapters.

The core only needs ``embed(text) -> vector``. Two backends are available:

- ``FastEmbedService`` runs a multilingual sentence-transformers model locally
  through fastembed (no network calls once the model is cached).
- ``OpenAIEmbeddingService`` calls the OpenAI embeddings endpoint.

Both raise :class:`EmbeddingError` on failure so callers can treat every
backend the same way.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Protocol

from fastembed import TextEmbedding
from openai import OpenAI

from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

DEFAULT_FASTEMBED_MODEL = "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"
DEFAULT_OPENAI_MODEL = "text-embedding-3-small"


class EmbeddingError(RuntimeError):
    """Raised when the embedding backend cannot produce a vector."""


class EmbeddingService(Protocol):
    model_name: str

    def embed(self, text: str) -> list[float]: ...


class FastEmbedService:
    """Local fastembed-backed embeddings.

    The model is loaded lazily on first use so importing the application does
    not trigger a model download.
    """

    def __init__(self, model_name: str = DEFAULT_FASTEMBED_MODEL) -> None:
        self.model_name = model_name
        self._embedder: TextEmbedding | None = None
        self._lock = Lock()

    def _get_embedder(self) -> TextEmbedding:
        with self._lock:
            if self._embedder is None:
                self._embedder = TextEmbedding(model_name=self.model_name)
            return self._embedder

    def embed(self, text: str) -> list[float]:
        try:
            vector = next(iter(self._get_embedder().embed([text])))
        except Exception as exc:
            raise EmbeddingError(f"fastembed failed: {exc}") from exc
        return [float(value) for value in vector]


class OpenAIEmbeddingService:
    """Embeddings from the OpenAI API (``OPENAI_API_KEY`` must be set)."""

    def __init__(self, model_name: str = DEFAULT_OPENAI_MODEL, client: OpenAI | None = None):
        self.model_name = model_name
        self._client = client

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def embed(self, text: str) -> list[float]:
        try:
            response = self._get_client().embeddings.create(
                model=self.model_name,
                input=text,
                encoding_format="float",
            )
        except Exception as exc:
            raise EmbeddingError(f"OpenAI embedding failed: {exc}") from exc
        return list(response.data[0].embedding)


def create_embedding_service(settings: Settings | None = None) -> EmbeddingService:
    """Build the embedding backend selected by ``EMBEDDING_BACKEND``."""

    settings = settings or get_settings()
    if settings.embedding_backend == "openai":
        model = settings.embedding_model
        if model == DEFAULT_FASTEMBED_MODEL:
            model = DEFAULT_OPENAI_MODEL
        logger.info("Using OpenAI embeddings (%s)", model)
        return OpenAIEmbeddingService(model)
    logger.info("Using fastembed embeddings (%s)", settings.embedding_model)
    return FastEmbedService(settings.embedding_model)

import logging
import pathlib
import re
import sys
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import jwt
import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from app.app_logging import context_extra, init_logging
from app.catalog.indexer import CatalogIndexer
from app.catalog.models import CatalogItem
from app.catalog.repository import InMemoryCatalogRepository
from app.channels.delivery import DeliveryError, LoggingDelivery
from app.channels.notifier import LoggingNotifier
from app.conversations.repository import InMemoryConversationRepository
from app.core.tenant_middleware import TenantContextMiddleware
from app.embeddings import EmbeddingError
from app.responder.completion import CompletionError
from app.retrieval.index import InMemoryVectorIndex
from app.runtime import Components, build_components
from app.settings import Settings
from app.tenants.config import TenantConfig
from app.tenants.repository import InMemoryTenantConfigRepository

# Word -> concept axis for the deterministic test embedder.
CONCEPTS = {
    "hat": 0,
    "cap": 0,
    "shirt": 1,
    "tee": 1,
    "mug": 2,
    "cup": 2,
    "blue": 3,
    "red": 4,
    "green": 5,
    "black": 6,
}
DIMENSIONS = 8
_WORD_RE = re.compile(r"[a-z]+")


def _tokens(text: str) -> list[str]:
    words = _WORD_RE.findall(text.lower())
    return [w[:-1] if len(w) > 3 and w.endswith("s") else w for w in words]


class ConceptEmbedder:
    """Bag-of-concepts embedder: shared concepts mean high cosine similarity."""

    model_name = "test-concepts"

    def __init__(self) -> None:
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        vector = [0.0] * DIMENSIONS
        for token in _tokens(text):
            axis = CONCEPTS.get(token)
            if axis is not None:
                vector[axis] += 1.0
        if not any(vector):
            vector[DIMENSIONS - 1] = 1.0
        return vector


class FailingEmbedder:
    model_name = "broken"

    def __init__(self) -> None:
        self.calls = 0

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        raise EmbeddingError("embedding backend unavailable")


class FakeCompletion:
    """Completion double returning canned replies and recording prompts."""

    def __init__(self, reply: str = "Happy to help!") -> None:
        self.reply = reply
        self.calls: list[tuple[str, list[dict[str, str]]]] = []
        self.before_return = None

    def complete(self, instructions: str, turns: Sequence[dict[str, str]]) -> str:
        self.calls.append((instructions, list(turns)))
        if self.before_return is not None:
            self.before_return()
        return self.reply


class FailingCompletion:
    def complete(self, instructions: str, turns: Sequence[dict[str, str]]) -> str:
        raise CompletionError("model unavailable")


class FailingDelivery(LoggingDelivery):
    def deliver(self, conversation, text: str) -> None:
        super().deliver(conversation, text)
        raise DeliveryError("gateway down")


@dataclass
class Harness:
    tenant_id: uuid.UUID
    components: Components
    conversations: InMemoryConversationRepository
    catalog: InMemoryCatalogRepository
    index: InMemoryVectorIndex
    configs: InMemoryTenantConfigRepository
    embedder: ConceptEmbedder
    completion: FakeCompletion
    delivery: LoggingDelivery
    notifier: LoggingNotifier
    items: dict[str, CatalogItem] = field(default_factory=dict)

    def add_item(self, item: CatalogItem, *, embed: bool = True) -> CatalogItem:
        saved = self.catalog.save(item)
        if embed:
            CatalogIndexer(self.catalog, self.index, self.embedder).index_item(saved)
            saved = self.catalog.get(saved.tenant_id, saved.id)
        self.items[saved.name] = saved
        return saved


def make_item(tenant_id: uuid.UUID, name: str, **kwargs) -> CatalogItem:
    kwargs.setdefault("price", Decimal("10.00"))
    return CatalogItem(tenant_id=tenant_id, name=name, **kwargs)


def demo_items(tenant_id: uuid.UUID) -> list[CatalogItem]:
    return [
        make_item(
            tenant_id,
            "Dad Hat",
            description="Unstructured cotton cap.",
            price=Decimal("24.00"),
            category="Hats",
            variant_attributes={"Color": ["Blue", "Black"]},
        ),
        make_item(
            tenant_id,
            "Classic Tee",
            description="Soft crew neck tee.",
            price=Decimal("19.50"),
            category="Shirts",
            variant_attributes={"Colour": ["Red"]},
        ),
        make_item(
            tenant_id,
            "Camp Mug",
            description="Enamel mug for coffee.",
            price=Decimal("14.00"),
            category="Drinkware",
            variant_attributes={"Color": ["Green"]},
        ),
    ]


@pytest.fixture
def tenant_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(enable_background_jobs=False)


@pytest.fixture
def harness(tenant_id, test_settings) -> Harness:
    conversations = InMemoryConversationRepository()
    catalog = InMemoryCatalogRepository()
    index = InMemoryVectorIndex()
    configs = InMemoryTenantConfigRepository(
        {
            tenant_id: TenantConfig(
                business_name="Acme Caps",
                escalation_keywords=["refund", "speak to a human"],
                forbidden_topics=["politics"],
            )
        }
    )
    embedder = ConceptEmbedder()
    completion = FakeCompletion()
    delivery = LoggingDelivery()
    notifier = LoggingNotifier()
    components = build_components(
        conversations=conversations,
        catalog=catalog,
        index=index,
        configs=configs,
        embedder=embedder,
        completion=completion,
        delivery=delivery,
        notifier=notifier,
        settings=test_settings,
    )
    return Harness(
        tenant_id=tenant_id,
        components=components,
        conversations=conversations,
        catalog=catalog,
        index=index,
        configs=configs,
        embedder=embedder,
        completion=completion,
        delivery=delivery,
        notifier=notifier,
    )


@pytest.fixture
def stocked_harness(harness: Harness) -> Harness:
    for item in demo_items(harness.tenant_id):
        harness.add_item(item)
    return harness


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 6, 3, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging and tenant context initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()
        webhook_logger = logging.getLogger("app.routers.webhooks")

        @app.post("/api/webhooks/messages")
        async def inbound(request: Request):
            body = await request.json()
            webhook_logger.info(
                "Inbound message handled",
                extra=context_extra(conversation_id=body.get("conversation_id")),
            )
            return {"status": "accepted"}

        init_logging(app)
        app.add_middleware(TenantContextMiddleware)
        return app

    return _create_app


class _NullConnection:
    def close(self) -> None:
        return None


@pytest.fixture
def api_client(monkeypatch, tmp_path, harness, token_env):
    """TestClient whose routers run against the in-memory harness."""

    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("ENABLE_BACKGROUND_JOBS", "false")
    from fastapi.testclient import TestClient

    import app.main as main
    from app.core.rate_limit import limiter
    from app.routers import catalog, conversations, webhooks

    limiter.reset()
    for module in (catalog, conversations, webhooks):
        monkeypatch.setattr(module, "get_conn", lambda *args, **kwargs: _NullConnection())
        monkeypatch.setattr(
            module, "postgres_components", lambda conn, settings=None: harness.components
        )
    monkeypatch.setattr(
        catalog,
        "run_catalog_sync",
        lambda tenant_id=None: harness.components.indexer.sync_pending(tenant_id=tenant_id),
    )
    return TestClient(main.app)


@pytest.fixture
def tenant_headers(tenant_id) -> dict[str, str]:
    return {"X-Tenant-Id": str(tenant_id)}


TOKEN_SECRET = "test-secret"
TOKEN_AUDIENCE = "catalog-concierge"
TOKEN_ISSUER = "https://auth.example.test"


@pytest.fixture
def token_env(monkeypatch):
    monkeypatch.setenv("TENANT_TOKEN_SECRET", TOKEN_SECRET)
    monkeypatch.setenv("TENANT_TOKEN_AUDIENCE", TOKEN_AUDIENCE)
    monkeypatch.setenv("TENANT_TOKEN_ISSUER", TOKEN_ISSUER)
    monkeypatch.setenv("TENANT_TOKEN_ALGORITHM", "HS256")


def issue_token(
    tenant_id,
    operator_id: str = "op-1",
    roles=("operator",),
    *,
    expires_in: timedelta = timedelta(minutes=5),
    secret: str = TOKEN_SECRET,
    **claims,
) -> str:
    payload = {
        "tenant_id": str(tenant_id),
        "user_id": operator_id,
        "roles": list(roles),
        "aud": TOKEN_AUDIENCE,
        "iss": TOKEN_ISSUER,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def operator_headers(tenant_id):
    """Build ``Authorization`` headers for an operator of the test tenant."""

    def _headers(operator_id: str = "op-1", role: str = "operator", tenant=None) -> dict[str, str]:
        token = issue_token(tenant or tenant_id, operator_id, roles=(role,))
        return {"Authorization": f"Bearer {token}"}

    return _headers

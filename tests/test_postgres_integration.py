"""End-to-end checks against a real PostgreSQL with pgvector.

Skipped unless ``DATABASE_URL`` points at a reachable database.
"""

from __future__ import annotations

import os
import uuid
from datetime import timedelta

import psycopg
import pytest

from app.catalog.repository import PostgresCatalogRepository
from app.channels.delivery import LoggingDelivery
from app.channels.notifier import LoggingNotifier
from app.conversations.models import ConversationMode
from app.conversations.repository import PostgresConversationRepository
from app.conversations.service import OperatorNotAssignedError
from app.core.db import ensure_schema, get_conn
from app.responder.orchestrator import OutcomeStatus
from app.retrieval.index import PgVectorIndex
from app.runtime import build_components
from app.settings import Settings
from app.tenants.config import TenantConfig
from app.tenants.repository import PostgresTenantConfigRepository

from conftest import ConceptEmbedder, FakeCompletion, demo_items


@pytest.fixture
def pg_conn():
    dsn = os.getenv("DATABASE_URL")
    if not dsn:
        pytest.skip("database not available")
    try:
        conn = get_conn(dsn, autocommit=True)
    except psycopg.OperationalError:
        pytest.skip("database not available")
    ensure_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def pg_tenant(pg_conn):
    tenant_id = uuid.uuid4()
    PostgresTenantConfigRepository(pg_conn).save(
        tenant_id,
        TenantConfig(business_name="Acme Caps", escalation_keywords=["refund"]),
        name="Acme Caps",
    )
    yield tenant_id
    with pg_conn.cursor() as cur:
        cur.execute("DELETE FROM tenants WHERE id = %s", (tenant_id,))


@pytest.fixture
def pg_components(pg_conn, pg_tenant):
    return build_components(
        conversations=PostgresConversationRepository(pg_conn),
        catalog=PostgresCatalogRepository(pg_conn),
        index=PgVectorIndex(pg_conn),
        configs=PostgresTenantConfigRepository(pg_conn),
        embedder=ConceptEmbedder(),
        completion=FakeCompletion("The Dad Hat comes in blue."),
        delivery=LoggingDelivery(),
        notifier=LoggingNotifier(),
        settings=Settings(enable_background_jobs=False),
    )


def test_sync_then_recommend(pg_components, pg_tenant):
    for item in demo_items(pg_tenant):
        pg_components.catalog.save(item)

    report = pg_components.indexer.sync_pending(tenant_id=pg_tenant)
    results = pg_components.retrieval.recommend(pg_tenant, "blue hats")

    assert report.embedded == 3
    assert [result.item.name for result in results] == ["Dad Hat"]


def test_inbound_flow_and_takeover(pg_components, pg_tenant):
    outcome = pg_components.orchestrator.handle_inbound(pg_tenant, "+15550001", "refund please")

    assert outcome.status == OutcomeStatus.REPLIED
    assert outcome.escalated

    machine = pg_components.state_machine
    taken = machine.take_over(pg_tenant, outcome.conversation.id, "op-1")
    again = machine.take_over(pg_tenant, outcome.conversation.id, "op-2")

    assert taken.applied and not again.applied
    assert taken.conversation.mode == ConversationMode.HUMAN
    assert not taken.conversation.escalation_requested
    with pytest.raises(OperatorNotAssignedError):
        pg_components.service.send_operator_message(
            pg_tenant, outcome.conversation.id, "op-2", "hello"
        )


def test_idle_conversation_is_released_once(pg_components, pg_tenant):
    outcome = pg_components.orchestrator.handle_inbound(pg_tenant, "+15550002", "hi")
    machine = pg_components.state_machine
    machine.take_over(pg_tenant, outcome.conversation.id, "op-1")
    later = outcome.conversation.last_activity_at + timedelta(hours=2)

    first = pg_components.sweeper.run_once(now=later)
    second = pg_components.sweeper.run_once(now=later)

    assert outcome.conversation.id in first.released
    assert outcome.conversation.id not in second.released
    stored = pg_components.conversations.get(pg_tenant, outcome.conversation.id)
    assert stored.mode == ConversationMode.AI

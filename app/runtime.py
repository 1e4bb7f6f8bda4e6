"""Wiring of repositories, collaborators and background jobs.

Stateless collaborators (embedding, completion, delivery, notifier) are built
once per process; repositories are bound to a connection and rebuilt for each
request or job run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from uuid import UUID

import psycopg

from .catalog.indexer import CatalogIndexer
from .catalog.models import IndexReport
from .catalog.repository import CatalogRepository, PostgresCatalogRepository
from .channels.delivery import ChannelDelivery, create_delivery
from .channels.notifier import EscalationNotifier, LoggingNotifier
from .conversations.repository import ConversationRepository, PostgresConversationRepository
from .conversations.service import ConversationService
from .conversations.state import ConversationStateMachine
from .conversations.sweeper import AutoReleaseSweeper, SweepReport
from .core.db import get_conn
from .core.scheduler import PeriodicRunner
from .embeddings import EmbeddingService, create_embedding_service
from .responder.completion import CompletionService, OpenAICompletionService
from .responder.orchestrator import ResponseOrchestrator
from .retrieval.index import PgVectorIndex, SemanticIndex
from .retrieval.policy import RetrievalPolicy, thresholds_from_settings
from .settings import Settings, get_settings
from .tenants.hours import ScheduleStoreHours
from .tenants.repository import PostgresTenantConfigRepository, TenantConfigRepository

logger = logging.getLogger(__name__)

CATALOG_SYNC_JOB = "catalog-sync"
AUTO_RELEASE_JOB = "conversation-auto-release"


@dataclass
class Components:
    conversations: ConversationRepository
    catalog: CatalogRepository
    configs: TenantConfigRepository
    state_machine: ConversationStateMachine
    service: ConversationService
    retrieval: RetrievalPolicy
    indexer: CatalogIndexer
    orchestrator: ResponseOrchestrator
    sweeper: AutoReleaseSweeper


@lru_cache(maxsize=1)
def get_embedding_service() -> EmbeddingService:
    return create_embedding_service(get_settings())


@lru_cache(maxsize=1)
def get_completion_service() -> CompletionService:
    return OpenAICompletionService.from_settings(get_settings())


@lru_cache(maxsize=1)
def get_delivery() -> ChannelDelivery:
    return create_delivery(get_settings())


@lru_cache(maxsize=1)
def get_notifier() -> EscalationNotifier:
    return LoggingNotifier()


def build_components(
    *,
    conversations: ConversationRepository,
    catalog: CatalogRepository,
    index: SemanticIndex,
    configs: TenantConfigRepository,
    embedder: EmbeddingService,
    completion: CompletionService,
    delivery: ChannelDelivery,
    notifier: EscalationNotifier,
    settings: Settings | None = None,
) -> Components:
    """Assemble the service graph from explicit repositories and collaborators."""

    settings = settings or get_settings()
    state_machine = ConversationStateMachine(conversations, delivery, notifier)
    retrieval = RetrievalPolicy(
        catalog, index, embedder, thresholds=thresholds_from_settings(settings)
    )
    orchestrator = ResponseOrchestrator(
        conversations,
        state_machine,
        retrieval,
        configs,
        ScheduleStoreHours(configs),
        completion,
        delivery,
        history_limit=settings.history_turn_limit,
        max_instruction_chars=settings.max_instruction_chars,
    )
    sweeper = AutoReleaseSweeper(
        conversations,
        state_machine,
        timeout_minutes=settings.conversation_timeout_minutes,
        interval_seconds=settings.auto_release_interval_seconds,
    )
    return Components(
        conversations=conversations,
        catalog=catalog,
        configs=configs,
        state_machine=state_machine,
        service=ConversationService(conversations, delivery),
        retrieval=retrieval,
        indexer=CatalogIndexer(catalog, index, embedder),
        orchestrator=orchestrator,
        sweeper=sweeper,
    )


def postgres_components(conn: psycopg.Connection, settings: Settings | None = None) -> Components:
    return build_components(
        conversations=PostgresConversationRepository(conn),
        catalog=PostgresCatalogRepository(conn),
        index=PgVectorIndex(conn),
        configs=PostgresTenantConfigRepository(conn),
        embedder=get_embedding_service(),
        completion=get_completion_service(),
        delivery=get_delivery(),
        notifier=get_notifier(),
        settings=settings,
    )


def run_catalog_sync(tenant_id: UUID | None = None) -> IndexReport:
    """One catalog sync pass on a dedicated connection."""

    settings = get_settings()
    with get_conn(autocommit=True) as conn:
        components = postgres_components(conn, settings)
        return components.indexer.sync_pending(
            limit=settings.catalog_sync_batch_limit, tenant_id=tenant_id
        )


def run_auto_release() -> SweepReport:
    """One auto-release sweep on a dedicated connection."""

    with get_conn(autocommit=True) as conn:
        return postgres_components(conn).sweeper.run_once()


def start_background_jobs(runner: PeriodicRunner, settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    if not settings.enable_background_jobs:
        logger.info("Background jobs disabled")
        return
    if not settings.database_url:
        logger.warning("DATABASE_URL not configured; background jobs not started")
        return
    runner.start(CATALOG_SYNC_JOB, run_catalog_sync, settings.catalog_sync_interval_seconds)
    runner.start(AUTO_RELEASE_JOB, run_auto_release, settings.auto_release_interval_seconds)

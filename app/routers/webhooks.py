"""Inbound message route used by channel gateways."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from fastapi import APIRouter, HTTPException, Request

from ..conversations import schemas as convo_schemas
from ..core.db import get_conn, get_required_tenant_id
from ..core.rate_limit import WEBHOOK_RATE_LIMIT, limiter
from ..responder.orchestrator import ResponseOrchestrator
from ..runtime import postgres_components

router = APIRouter(tags=["webhooks"])


@contextmanager
def _service_context() -> Iterator[tuple[UUID, ResponseOrchestrator]]:
    try:
        tenant_id = get_required_tenant_id()
    except RuntimeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        conn = get_conn(autocommit=True)
    except Exception as exc:  # pragma: no cover - depends on the database
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    try:
        yield tenant_id, postgres_components(conn).orchestrator
    finally:
        conn.close()


@router.post("/api/webhooks/messages", response_model=convo_schemas.InboundMessageResponse)
@limiter.limit(WEBHOOK_RATE_LIMIT)
def receive_message(
    request: Request, payload: convo_schemas.InboundMessageRequest
) -> convo_schemas.InboundMessageResponse:
    """Record an inbound customer message and run the AI responder for it."""

    if not payload.text.strip():
        raise HTTPException(status_code=400, detail="Message text is required")
    with _service_context() as (tenant_id, orchestrator):
        outcome = orchestrator.handle_inbound(
            tenant_id,
            payload.customer_identifier.strip(),
            payload.text,
            channel=payload.channel,
            received_at=payload.received_at,
        )
    return convo_schemas.InboundMessageResponse(
        status=outcome.status.value,
        conversation_id=outcome.conversation.id,
        reply=outcome.reply,
        escalated=outcome.escalated,
        recommended_item_ids=[event.item_id for event in outcome.recommendations],
    )

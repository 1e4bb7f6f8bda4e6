"""Operator-facing conversation API routes.

Every route requires an operator access token (see :mod:`app.core.auth`);
reads need the ``viewer`` role, actions that change a conversation need
``operator``. The acting operator is always the token's ``user_id``.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from ..conversations import schemas as convo_schemas
from ..conversations.models import TransitionResult
from ..conversations.repository import ConversationNotFoundError
from ..conversations.service import OperatorNotAssignedError
from ..core.auth import OperatorIdentity, require_role
from ..core.db import get_conn
from ..runtime import Components, postgres_components

router = APIRouter(prefix="/api/conversations", tags=["conversations"])

Viewer = Depends(require_role("viewer"))
Operator = Depends(require_role("operator"))


@contextmanager
def _service_context() -> Iterator[Components]:
    try:
        conn = get_conn(autocommit=True)
    except Exception as exc:  # pragma: no cover - depends on the database
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    try:
        yield postgres_components(conn)
    except ConversationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except OperatorNotAssignedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        conn.close()


def _transition_response(result: TransitionResult):
    body = convo_schemas.TransitionResponse(
        applied=result.applied,
        conversation=convo_schemas.ConversationOut.model_validate(result.conversation),
    )
    if not result.applied:
        return JSONResponse(status_code=409, content=body.model_dump(mode="json"))
    return body


@router.get("", response_model=convo_schemas.ConversationList)
def list_conversations(
    mode: Optional[str] = None,
    include_archived: bool = False,
    limit: int = 50,
    identity: OperatorIdentity = Viewer,
) -> convo_schemas.ConversationList:
    with _service_context() as components:
        return components.service.list_conversations(
            identity.tenant_id, mode, include_archived=include_archived, limit=limit
        )


@router.get("/escalated", response_model=convo_schemas.ConversationList)
def list_escalated(
    limit: int = 50, identity: OperatorIdentity = Viewer
) -> convo_schemas.ConversationList:
    with _service_context() as components:
        return components.service.list_conversations(identity.tenant_id, "escalated", limit=limit)


@router.get("/stats", response_model=convo_schemas.ConversationStats)
def conversation_stats(identity: OperatorIdentity = Viewer) -> convo_schemas.ConversationStats:
    with _service_context() as components:
        return components.service.stats(identity.tenant_id)


@router.get("/{conversation_id}", response_model=convo_schemas.ConversationOut)
def get_conversation(
    conversation_id: UUID, identity: OperatorIdentity = Viewer
) -> convo_schemas.ConversationOut:
    with _service_context() as components:
        conversation = components.service.get_conversation(identity.tenant_id, conversation_id)
    return convo_schemas.ConversationOut.model_validate(conversation)


@router.get("/{conversation_id}/messages", response_model=list[convo_schemas.MessageOut])
def list_messages(
    conversation_id: UUID,
    limit: Optional[int] = None,
    identity: OperatorIdentity = Viewer,
) -> list[convo_schemas.MessageOut]:
    with _service_context() as components:
        messages = components.service.list_messages(
            identity.tenant_id, conversation_id, limit=limit
        )
    return [convo_schemas.MessageOut.model_validate(message) for message in messages]


@router.post("/{conversation_id}/takeover", response_model=convo_schemas.TransitionResponse)
def take_over(conversation_id: UUID, identity: OperatorIdentity = Operator):
    with _service_context() as components:
        result = components.state_machine.take_over(
            identity.tenant_id, conversation_id, identity.operator_id
        )
    return _transition_response(result)


@router.post("/{conversation_id}/release", response_model=convo_schemas.TransitionResponse)
def release(
    conversation_id: UUID,
    payload: Optional[convo_schemas.ReleaseRequest] = None,
    identity: OperatorIdentity = Operator,
):
    reason = payload.reason if payload else "operator"
    with _service_context() as components:
        result = components.state_machine.release(identity.tenant_id, conversation_id, reason)
    return _transition_response(result)


@router.post("/{conversation_id}/pause", response_model=convo_schemas.TransitionResponse)
def pause(conversation_id: UUID, identity: OperatorIdentity = Operator):
    with _service_context() as components:
        result = components.state_machine.pause(identity.tenant_id, conversation_id)
    return _transition_response(result)


@router.post("/{conversation_id}/resume", response_model=convo_schemas.TransitionResponse)
def resume(conversation_id: UUID, identity: OperatorIdentity = Operator):
    with _service_context() as components:
        result = components.state_machine.resume(identity.tenant_id, conversation_id)
    return _transition_response(result)


@router.post("/{conversation_id}/archive", response_model=convo_schemas.TransitionResponse)
def archive(conversation_id: UUID, identity: OperatorIdentity = Operator):
    with _service_context() as components:
        result = components.state_machine.archive(identity.tenant_id, conversation_id)
    return _transition_response(result)


@router.post(
    "/{conversation_id}/send",
    response_model=convo_schemas.MessageOut,
    status_code=201,
)
def send_message(
    conversation_id: UUID,
    payload: convo_schemas.SendMessageRequest,
    identity: OperatorIdentity = Operator,
) -> convo_schemas.MessageOut:
    with _service_context() as components:
        message = components.service.send_operator_message(
            identity.tenant_id, conversation_id, identity.operator_id, payload.text
        )
    return convo_schemas.MessageOut.model_validate(message)

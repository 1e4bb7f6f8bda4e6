"""Persistence for conversations, messages and recommendation events.

Mode changes go through :meth:`ConversationRepository.transition`, a single
conditional update keyed on the conversation id *and* its expected current
mode(s). It returns the updated conversation, or ``None`` when the
precondition no longer held, so racing callers (an operator release against
the sweeper, a takeover against an in-flight AI reply) can tell whether they
won and only the winner performs side effects.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID

import psycopg
from psycopg.rows import dict_row

from .models import (
    Conversation,
    ConversationMode,
    Message,
    MessageDirection,
    ProducedBy,
    RecommendationEvent,
)


class ConversationNotFoundError(RuntimeError):
    """Raised when a conversation could not be located for the tenant."""


TRANSITION_FIELDS = frozenset(
    {
        "mode",
        "assigned_operator_id",
        "assigned_at",
        "escalation_requested",
        "escalation_reason",
        "escalation_requested_at",
        "last_activity_at",
        "is_archived",
    }
)


def _check_changes(changes: Dict[str, Any]) -> None:
    unknown = set(changes) - TRANSITION_FIELDS
    if unknown:
        raise ValueError(f"Unsupported conversation fields: {', '.join(sorted(unknown))}")


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, enum.Enum) else value


class ConversationRepository(Protocol):
    """Abstraction for persisting conversation state."""

    def get(self, tenant_id: UUID, conversation_id: UUID) -> Optional[Conversation]: ...

    def touch_or_create(
        self, tenant_id: UUID, customer_identifier: str, channel: str, at: datetime
    ) -> Conversation: ...

    def touch(self, tenant_id: UUID, conversation_id: UUID, at: datetime) -> None: ...

    def transition(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        expected_modes: Sequence[ConversationMode],
        changes: Dict[str, Any],
        *,
        last_activity_before: Optional[datetime] = None,
    ) -> Optional[Conversation]: ...

    def flag_escalation(
        self, tenant_id: UUID, conversation_id: UUID, reason: str, at: datetime
    ) -> Optional[Conversation]: ...

    def append_message(self, message: Message) -> Message: ...

    def append_message_if_mode(
        self,
        message: Message,
        mode: ConversationMode,
        operator_id: Optional[str] = None,
    ) -> Optional[Message]: ...

    def list_messages(
        self, tenant_id: UUID, conversation_id: UUID, limit: Optional[int] = None
    ) -> List[Message]: ...

    def list_conversations(
        self,
        tenant_id: UUID,
        *,
        mode: Optional[ConversationMode] = None,
        escalated_only: bool = False,
        include_archived: bool = False,
        limit: int = 50,
    ) -> List[Conversation]: ...

    def find_idle_human(self, cutoff: datetime, limit: int = 100) -> List[Conversation]: ...

    def record_recommendations(self, events: Sequence[RecommendationEvent]) -> None: ...

    def stats(self, tenant_id: UUID) -> Dict[str, int]: ...


class PostgresConversationRepository:
    """PostgreSQL implementation of :class:`ConversationRepository`.

    Every method issues a single statement, so on an autocommit connection no
    row lock outlives the call that took it.
    """

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    # Utility -----------------------------------------------------------------
    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    # Conversation operations --------------------------------------------------
    def get(self, tenant_id: UUID, conversation_id: UUID) -> Optional[Conversation]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM conversations WHERE tenant_id = %s AND id = %s",
                (tenant_id, conversation_id),
            )
            row = cur.fetchone()
        return self._row_to_conversation(row) if row else None

    def touch_or_create(
        self, tenant_id: UUID, customer_identifier: str, channel: str, at: datetime
    ) -> Conversation:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO conversations (tenant_id, customer_identifier, channel, last_activity_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (tenant_id, customer_identifier, channel) DO UPDATE SET
                    last_activity_at = GREATEST(conversations.last_activity_at, EXCLUDED.last_activity_at),
                    is_archived = FALSE,
                    updated_at = now()
                RETURNING *
                """,
                (tenant_id, customer_identifier, channel, at),
            )
            row = cur.fetchone()
        return self._row_to_conversation(row)

    def touch(self, tenant_id: UUID, conversation_id: UUID, at: datetime) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE conversations
                SET last_activity_at = GREATEST(last_activity_at, %s), updated_at = now()
                WHERE tenant_id = %s AND id = %s
                """,
                (at, tenant_id, conversation_id),
            )

    def transition(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        expected_modes: Sequence[ConversationMode],
        changes: Dict[str, Any],
        *,
        last_activity_before: Optional[datetime] = None,
    ) -> Optional[Conversation]:
        _check_changes(changes)
        assignments = [f"{name} = %s" for name in changes]
        values: List[Any] = [_db_value(value) for value in changes.values()]
        conditions = ["tenant_id = %s", "id = %s", "mode = ANY(%s)"]
        values.extend((tenant_id, conversation_id, [_db_value(m) for m in expected_modes]))
        if last_activity_before is not None:
            conditions.append("last_activity_at < %s")
            values.append(last_activity_before)
        query = (
            "UPDATE conversations SET "
            f"{', '.join(assignments)}, updated_at = now() "
            f"WHERE {' AND '.join(conditions)} "
            "RETURNING *"
        )
        with self._cursor() as cur:
            cur.execute(query, values)
            row = cur.fetchone()
        return self._row_to_conversation(row) if row else None

    def flag_escalation(
        self, tenant_id: UUID, conversation_id: UUID, reason: str, at: datetime
    ) -> Optional[Conversation]:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE conversations
                SET escalation_requested = TRUE,
                    escalation_reason = %s,
                    escalation_requested_at = %s,
                    escalation_count = escalation_count + 1,
                    updated_at = now()
                WHERE tenant_id = %s AND id = %s AND mode = 'ai' AND NOT escalation_requested
                RETURNING *
                """,
                (reason, at, tenant_id, conversation_id),
            )
            row = cur.fetchone()
        return self._row_to_conversation(row) if row else None

    # Messages -----------------------------------------------------------------
    def append_message(self, message: Message) -> Message:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO conversation_messages
                    (id, tenant_id, conversation_id, direction, produced_by, operator_id, text, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                self._message_params(message),
            )
            row = cur.fetchone()
        return self._row_to_message(row)

    def append_message_if_mode(
        self,
        message: Message,
        mode: ConversationMode,
        operator_id: Optional[str] = None,
    ) -> Optional[Message]:
        # FOR SHARE makes a concurrent transition wait for this insert, and
        # this insert re-check the mode if the transition got there first.
        gate_conditions = ["tenant_id = %s", "id = %s", "mode = %s"]
        gate_params: List[Any] = [message.tenant_id, message.conversation_id, mode.value]
        if operator_id is not None:
            gate_conditions.append("assigned_operator_id = %s")
            gate_params.append(operator_id)
        query = (
            "WITH gate AS ("
            f"SELECT id FROM conversations WHERE {' AND '.join(gate_conditions)} FOR SHARE"
            ") "
            "INSERT INTO conversation_messages "
            "(id, tenant_id, conversation_id, direction, produced_by, operator_id, text, created_at) "
            "SELECT %s, %s, %s, %s, %s, %s, %s, %s FROM gate "
            "RETURNING *"
        )
        with self._cursor() as cur:
            cur.execute(query, [*gate_params, *self._message_params(message)])
            row = cur.fetchone()
        return self._row_to_message(row) if row else None

    def list_messages(
        self, tenant_id: UUID, conversation_id: UUID, limit: Optional[int] = None
    ) -> List[Message]:
        with self._cursor() as cur:
            if limit is None:
                cur.execute(
                    """
                    SELECT * FROM conversation_messages
                    WHERE tenant_id = %s AND conversation_id = %s
                    ORDER BY created_at ASC
                    """,
                    (tenant_id, conversation_id),
                )
            else:
                cur.execute(
                    """
                    SELECT * FROM (
                        SELECT * FROM conversation_messages
                        WHERE tenant_id = %s AND conversation_id = %s
                        ORDER BY created_at DESC
                        LIMIT %s
                    ) recent
                    ORDER BY created_at ASC
                    """,
                    (tenant_id, conversation_id, limit),
                )
            rows = cur.fetchall()
        return [self._row_to_message(row) for row in rows]

    # Queries ------------------------------------------------------------------
    def list_conversations(
        self,
        tenant_id: UUID,
        *,
        mode: Optional[ConversationMode] = None,
        escalated_only: bool = False,
        include_archived: bool = False,
        limit: int = 50,
    ) -> List[Conversation]:
        conditions = ["tenant_id = %s"]
        params: List[Any] = [tenant_id]
        if mode is not None:
            conditions.append("mode = %s")
            params.append(mode.value)
        if escalated_only:
            conditions.append("escalation_requested AND mode <> 'human'")
        if not include_archived:
            conditions.append("NOT is_archived")
        params.append(limit)
        query = (
            "SELECT * FROM conversations "
            f"WHERE {' AND '.join(conditions)} "
            "ORDER BY last_activity_at DESC LIMIT %s"
        )
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [self._row_to_conversation(row) for row in rows]

    def find_idle_human(self, cutoff: datetime, limit: int = 100) -> List[Conversation]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM conversations
                WHERE mode = 'human' AND last_activity_at < %s
                ORDER BY last_activity_at ASC
                LIMIT %s
                """,
                (cutoff, limit),
            )
            rows = cur.fetchall()
        return [self._row_to_conversation(row) for row in rows]

    def record_recommendations(self, events: Sequence[RecommendationEvent]) -> None:
        if not events:
            return
        with self._cursor() as cur:
            cur.executemany(
                """
                INSERT INTO recommendation_events
                    (id, tenant_id, conversation_id, item_id, message_id, surfaced_at, clicked, purchased)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                [
                    (
                        event.id,
                        event.tenant_id,
                        event.conversation_id,
                        event.item_id,
                        event.message_id,
                        event.surfaced_at,
                        event.clicked,
                        event.purchased,
                    )
                    for event in events
                ],
            )

    def stats(self, tenant_id: UUID) -> Dict[str, int]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT
                    COUNT(*) FILTER (WHERE NOT is_archived) AS total,
                    COUNT(*) FILTER (WHERE mode = 'ai' AND NOT is_archived) AS ai,
                    COUNT(*) FILTER (WHERE mode = 'human' AND NOT is_archived) AS human,
                    COUNT(*) FILTER (WHERE mode = 'paused' AND NOT is_archived) AS paused,
                    COUNT(*) FILTER (
                        WHERE escalation_requested AND mode <> 'human' AND NOT is_archived
                    ) AS escalated,
                    COUNT(*) FILTER (WHERE is_archived) AS archived
                FROM conversations
                WHERE tenant_id = %s
                """,
                (tenant_id,),
            )
            row = cur.fetchone() or {}
        return {key: int(row.get(key) or 0) for key in _STATS_KEYS}

    # Helpers ------------------------------------------------------------------
    @staticmethod
    def _message_params(message: Message) -> tuple:
        return (
            message.id,
            message.tenant_id,
            message.conversation_id,
            message.direction.value,
            message.produced_by.value if message.produced_by else None,
            message.operator_id,
            message.text,
            message.created_at,
        )

    @staticmethod
    def _row_to_conversation(row: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=row["id"],
            tenant_id=row["tenant_id"],
            customer_identifier=row["customer_identifier"],
            channel=row["channel"],
            mode=ConversationMode(row["mode"]),
            assigned_operator_id=row.get("assigned_operator_id"),
            assigned_at=row.get("assigned_at"),
            escalation_requested=row["escalation_requested"],
            escalation_reason=row.get("escalation_reason"),
            escalation_count=row["escalation_count"],
            escalation_requested_at=row.get("escalation_requested_at"),
            last_activity_at=row["last_activity_at"],
            is_archived=row["is_archived"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_message(row: Dict[str, Any]) -> Message:
        produced_by = row.get("produced_by")
        return Message(
            id=row["id"],
            tenant_id=row["tenant_id"],
            conversation_id=row["conversation_id"],
            direction=MessageDirection(row["direction"]),
            text=row["text"],
            produced_by=ProducedBy(produced_by) if produced_by else None,
            operator_id=row.get("operator_id"),
            created_at=row["created_at"],
        )


_STATS_KEYS = ("total", "ai", "human", "paused", "escalated", "archived")


class InMemoryConversationRepository:
    """Thread-safe in-memory repository.

    A single lock guards every read-modify-write, which gives the same
    compare-and-swap semantics as the conditional SQL updates. Callers always
    receive copies, never the stored records.
    """

    def __init__(self) -> None:
        self._conversations: Dict[UUID, Conversation] = {}
        self._messages: Dict[UUID, List[Message]] = {}
        self.recommendations: List[RecommendationEvent] = []
        self._lock = Lock()

    def _find(self, tenant_id: UUID, conversation_id: UUID) -> Optional[Conversation]:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.tenant_id != tenant_id:
            return None
        return conversation

    def add(self, conversation: Conversation) -> Conversation:
        with self._lock:
            self._conversations[conversation.id] = replace(conversation)
            self._messages.setdefault(conversation.id, [])
        return replace(conversation)

    def get(self, tenant_id: UUID, conversation_id: UUID) -> Optional[Conversation]:
        with self._lock:
            conversation = self._find(tenant_id, conversation_id)
            return replace(conversation) if conversation else None

    def touch_or_create(
        self, tenant_id: UUID, customer_identifier: str, channel: str, at: datetime
    ) -> Conversation:
        with self._lock:
            for conversation in self._conversations.values():
                if (
                    conversation.tenant_id == tenant_id
                    and conversation.customer_identifier == customer_identifier
                    and conversation.channel == channel
                ):
                    conversation.last_activity_at = max(conversation.last_activity_at, at)
                    conversation.is_archived = False
                    conversation.updated_at = at
                    return replace(conversation)
            conversation = Conversation(
                tenant_id=tenant_id,
                customer_identifier=customer_identifier,
                channel=channel,
                last_activity_at=at,
            )
            self._conversations[conversation.id] = conversation
            self._messages[conversation.id] = []
            return replace(conversation)

    def touch(self, tenant_id: UUID, conversation_id: UUID, at: datetime) -> None:
        with self._lock:
            conversation = self._find(tenant_id, conversation_id)
            if conversation is not None:
                conversation.last_activity_at = max(conversation.last_activity_at, at)

    def transition(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        expected_modes: Sequence[ConversationMode],
        changes: Dict[str, Any],
        *,
        last_activity_before: Optional[datetime] = None,
    ) -> Optional[Conversation]:
        _check_changes(changes)
        with self._lock:
            conversation = self._find(tenant_id, conversation_id)
            if conversation is None or conversation.mode not in expected_modes:
                return None
            if last_activity_before is not None and not (
                conversation.last_activity_at < last_activity_before
            ):
                return None
            updated = replace(conversation, **changes)
            if updated.mode == ConversationMode.HUMAN and not updated.assigned_operator_id:
                raise ValueError("human mode requires an assigned operator")
            if updated.mode != ConversationMode.HUMAN and updated.assigned_operator_id:
                raise ValueError("only human mode may carry an assigned operator")
            self._conversations[conversation_id] = updated
            return replace(updated)

    def flag_escalation(
        self, tenant_id: UUID, conversation_id: UUID, reason: str, at: datetime
    ) -> Optional[Conversation]:
        with self._lock:
            conversation = self._find(tenant_id, conversation_id)
            if (
                conversation is None
                or conversation.mode != ConversationMode.AI
                or conversation.escalation_requested
            ):
                return None
            conversation.escalation_requested = True
            conversation.escalation_reason = reason
            conversation.escalation_requested_at = at
            conversation.escalation_count += 1
            return replace(conversation)

    def append_message(self, message: Message) -> Message:
        with self._lock:
            self._messages.setdefault(message.conversation_id, []).append(replace(message))
        return replace(message)

    def append_message_if_mode(
        self,
        message: Message,
        mode: ConversationMode,
        operator_id: Optional[str] = None,
    ) -> Optional[Message]:
        with self._lock:
            conversation = self._find(message.tenant_id, message.conversation_id)
            if conversation is None or conversation.mode != mode:
                return None
            if operator_id is not None and conversation.assigned_operator_id != operator_id:
                return None
            self._messages.setdefault(message.conversation_id, []).append(replace(message))
        return replace(message)

    def list_messages(
        self, tenant_id: UUID, conversation_id: UUID, limit: Optional[int] = None
    ) -> List[Message]:
        with self._lock:
            if self._find(tenant_id, conversation_id) is None:
                return []
            messages = list(self._messages.get(conversation_id, []))
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return [replace(message) for message in messages]

    def list_conversations(
        self,
        tenant_id: UUID,
        *,
        mode: Optional[ConversationMode] = None,
        escalated_only: bool = False,
        include_archived: bool = False,
        limit: int = 50,
    ) -> List[Conversation]:
        with self._lock:
            selected = [
                replace(conversation)
                for conversation in self._conversations.values()
                if conversation.tenant_id == tenant_id
                and (mode is None or conversation.mode == mode)
                and (
                    not escalated_only
                    or (
                        conversation.escalation_requested
                        and conversation.mode != ConversationMode.HUMAN
                    )
                )
                and (include_archived or not conversation.is_archived)
            ]
        selected.sort(key=lambda conversation: conversation.last_activity_at, reverse=True)
        return selected[:limit]

    def find_idle_human(self, cutoff: datetime, limit: int = 100) -> List[Conversation]:
        with self._lock:
            idle = [
                replace(conversation)
                for conversation in self._conversations.values()
                if conversation.mode == ConversationMode.HUMAN
                and conversation.last_activity_at < cutoff
            ]
        idle.sort(key=lambda conversation: conversation.last_activity_at)
        return idle[:limit]

    def record_recommendations(self, events: Sequence[RecommendationEvent]) -> None:
        with self._lock:
            self.recommendations.extend(replace(event) for event in events)

    def stats(self, tenant_id: UUID) -> Dict[str, int]:
        counts = dict.fromkeys(_STATS_KEYS, 0)
        with self._lock:
            conversations: Iterable[Conversation] = [
                c for c in self._conversations.values() if c.tenant_id == tenant_id
            ]
            for conversation in conversations:
                if conversation.is_archived:
                    counts["archived"] += 1
                    continue
                counts["total"] += 1
                counts[conversation.mode.value] += 1
                if (
                    conversation.escalation_requested
                    and conversation.mode != ConversationMode.HUMAN
                ):
                    counts["escalated"] += 1
        return counts

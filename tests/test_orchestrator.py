from datetime import timedelta

from app.conversations.models import ConversationMode, MessageDirection, ProducedBy
from app.responder.orchestrator import OutcomeStatus, ResponseOrchestrator, mentioned_items
from app.retrieval.policy import RetrievalPolicy
from app.tenants.hours import ScheduleStoreHours

from conftest import FailingCompletion, FailingDelivery, FailingEmbedder, make_item

CUSTOMER = "+15550001"


def _orchestrator(harness, **overrides) -> ResponseOrchestrator:
    values = dict(
        conversations=harness.conversations,
        state_machine=harness.components.state_machine,
        retrieval=harness.components.retrieval,
        configs=harness.configs,
        store_hours=ScheduleStoreHours(harness.configs),
        completion=harness.completion,
        delivery=harness.delivery,
    )
    values.update(overrides)
    return ResponseOrchestrator(**values)


def test_reply_recommends_matching_items(stocked_harness, fixed_now):
    stocked_harness.completion.reply = "Our Dad Hat comes in blue for $24.00!"
    orchestrator = stocked_harness.components.orchestrator

    outcome = orchestrator.handle_inbound(
        stocked_harness.tenant_id, CUSTOMER, "do you have blue hats?", received_at=fixed_now
    )

    assert outcome.status == OutcomeStatus.REPLIED
    assert outcome.reply == "Our Dad Hat comes in blue for $24.00!"
    assert [c.item.name for c in outcome.candidates] == ["Dad Hat"]
    hat = stocked_harness.items["Dad Hat"]
    assert [event.item_id for event in outcome.recommendations] == [hat.id]
    assert [e.item_id for e in stocked_harness.conversations.recommendations] == [hat.id]

    instructions, turns = stocked_harness.completion.calls[0]
    assert "1. Dad Hat" in instructions
    assert "Camp Mug" not in instructions
    assert turns == [{"role": "user", "content": "do you have blue hats?"}]

    messages = stocked_harness.conversations.list_messages(
        stocked_harness.tenant_id, outcome.conversation.id
    )
    assert [(m.direction, m.produced_by) for m in messages] == [
        (MessageDirection.INBOUND, None),
        (MessageDirection.OUTBOUND, ProducedBy.AI),
    ]
    assert [text for _, text in stocked_harness.delivery.sent] == [outcome.reply]


def test_only_the_current_message_is_embedded(stocked_harness, fixed_now):
    orchestrator = stocked_harness.components.orchestrator
    orchestrator.handle_inbound(stocked_harness.tenant_id, CUSTOMER, "hello", received_at=fixed_now)
    calls_before = len(stocked_harness.embedder.calls)

    orchestrator.handle_inbound(
        stocked_harness.tenant_id, CUSTOMER, "any mugs?", received_at=fixed_now
    )

    assert stocked_harness.embedder.calls[calls_before:] == ["any mugs?"]


def test_refund_request_escalates_but_ai_still_replies(harness, fixed_now):
    outcome = harness.components.orchestrator.handle_inbound(
        harness.tenant_id, CUSTOMER, "I want a REFUND for my order", received_at=fixed_now
    )

    assert outcome.status == OutcomeStatus.REPLIED
    assert outcome.escalated
    assert outcome.conversation.mode == ConversationMode.AI
    assert outcome.conversation.escalation_requested
    assert outcome.conversation.escalation_count == 1
    assert outcome.conversation.escalation_reason == "refund"
    assert len(harness.notifier.notified) == 1
    instructions, _ = harness.completion.calls[0]
    assert "A team member has been notified" in instructions


def test_repeated_keyword_does_not_recount(harness, fixed_now):
    orchestrator = harness.components.orchestrator
    orchestrator.handle_inbound(harness.tenant_id, CUSTOMER, "refund please", received_at=fixed_now)

    second = orchestrator.handle_inbound(
        harness.tenant_id, CUSTOMER, "refund!!", received_at=fixed_now + timedelta(minutes=1)
    )

    assert not second.escalated
    stored = harness.conversations.get(harness.tenant_id, second.conversation.id)
    assert stored.escalation_count == 1


def test_human_mode_messages_wait_for_operator(harness, fixed_now):
    orchestrator = harness.components.orchestrator
    first = orchestrator.handle_inbound(harness.tenant_id, CUSTOMER, "hi", received_at=fixed_now)
    harness.components.state_machine.take_over(
        harness.tenant_id, first.conversation.id, "op-1", now=fixed_now
    )
    sent_before = len(harness.delivery.sent)

    outcome = orchestrator.handle_inbound(
        harness.tenant_id, CUSTOMER, "are you there?", received_at=fixed_now + timedelta(minutes=5)
    )

    assert outcome.status == OutcomeStatus.WAITING_FOR_HUMAN
    assert outcome.reply is None
    assert len(harness.completion.calls) == 1
    assert len(harness.delivery.sent) == sent_before
    stored = harness.conversations.get(harness.tenant_id, first.conversation.id)
    assert stored.last_activity_at == fixed_now + timedelta(minutes=5)


def test_takeover_during_generation_suppresses_reply(harness, fixed_now):
    orchestrator = harness.components.orchestrator

    def _operator_takes_over():
        convo = harness.conversations.list_conversations(harness.tenant_id)[0]
        harness.components.state_machine.take_over(harness.tenant_id, convo.id, "op-1")

    harness.completion.before_return = _operator_takes_over

    outcome = orchestrator.handle_inbound(harness.tenant_id, CUSTOMER, "hello", received_at=fixed_now)

    assert outcome.status == OutcomeStatus.SUPPRESSED
    assert outcome.conversation.mode == ConversationMode.HUMAN
    messages = harness.conversations.list_messages(harness.tenant_id, outcome.conversation.id)
    assert all(m.produced_by != ProducedBy.AI for m in messages)
    assert harness.completion.reply not in [text for _, text in harness.delivery.sent]


def test_completion_failure_sends_nothing(harness, fixed_now):
    orchestrator = _orchestrator(harness, completion=FailingCompletion())

    outcome = orchestrator.handle_inbound(harness.tenant_id, CUSTOMER, "hello", received_at=fixed_now)

    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.reply is None
    assert harness.delivery.sent == []
    messages = harness.conversations.list_messages(harness.tenant_id, outcome.conversation.id)
    assert [m.direction for m in messages] == [MessageDirection.INBOUND]


def test_retrieval_failure_still_replies_without_candidates(stocked_harness, fixed_now):
    retrieval = RetrievalPolicy(stocked_harness.catalog, stocked_harness.index, FailingEmbedder())
    orchestrator = _orchestrator(stocked_harness, retrieval=retrieval)

    outcome = orchestrator.handle_inbound(
        stocked_harness.tenant_id, CUSTOMER, "blue hats?", received_at=fixed_now
    )

    assert outcome.status == OutcomeStatus.REPLIED
    assert outcome.candidates == []
    instructions, _ = stocked_harness.completion.calls[0]
    assert "AVAILABLE PRODUCTS" not in instructions


def test_store_hours_failure_is_treated_as_open(harness, fixed_now):
    class BrokenHours:
        def is_open(self, tenant_id, now):
            raise RuntimeError("calendar unavailable")

    orchestrator = _orchestrator(harness, store_hours=BrokenHours())

    outcome = orchestrator.handle_inbound(harness.tenant_id, CUSTOMER, "hello", received_at=fixed_now)

    assert outcome.status == OutcomeStatus.REPLIED
    instructions, _ = harness.completion.calls[0]
    assert "currently OPEN" in instructions


def test_delivery_failure_keeps_the_reply(harness, fixed_now):
    orchestrator = _orchestrator(harness, delivery=FailingDelivery())

    outcome = orchestrator.handle_inbound(harness.tenant_id, CUSTOMER, "hello", received_at=fixed_now)

    assert outcome.status == OutcomeStatus.REPLIED
    messages = harness.conversations.list_messages(harness.tenant_id, outcome.conversation.id)
    assert messages[-1].produced_by == ProducedBy.AI


def test_new_message_unarchives_conversation(harness, fixed_now):
    orchestrator = harness.components.orchestrator
    first = orchestrator.handle_inbound(harness.tenant_id, CUSTOMER, "hi", received_at=fixed_now)
    harness.components.state_machine.archive(harness.tenant_id, first.conversation.id)

    second = orchestrator.handle_inbound(
        harness.tenant_id, CUSTOMER, "hi again", received_at=fixed_now + timedelta(days=1)
    )

    assert second.conversation.id == first.conversation.id
    assert not second.conversation.is_archived


def test_mentioned_items_matches_names_case_insensitively(tenant_id):
    hat = make_item(tenant_id, "Dad Hat")
    mug = make_item(tenant_id, "Camp Mug")

    assert mentioned_items([hat, mug], "Try the DAD HAT, it's great") == [hat]
    assert mentioned_items([hat, mug], "We have nothing like that") == []


def test_first_reply_of_a_new_conversation_uses_the_custom_greeting(harness, fixed_now):
    config = harness.configs.get(harness.tenant_id)
    harness.configs.save(
        harness.tenant_id, config.model_copy(update={"greeting": "Hey there, cap fan!"})
    )
    orchestrator = harness.components.orchestrator

    orchestrator.handle_inbound(harness.tenant_id, CUSTOMER, "hello", received_at=fixed_now)
    orchestrator.handle_inbound(
        harness.tenant_id, CUSTOMER, "any hats?", received_at=fixed_now + timedelta(minutes=1)
    )

    first, _ = harness.completion.calls[0]
    second, _ = harness.completion.calls[1]
    assert "Open your reply with this greeting: Hey there, cap fan!" in first
    assert "first message" not in second


def test_first_reply_without_custom_greeting_welcomes_to_the_business(harness, fixed_now):
    harness.components.orchestrator.handle_inbound(
        harness.tenant_id, CUSTOMER, "hello", received_at=fixed_now
    )

    instructions, _ = harness.completion.calls[0]
    assert "Open with a brief, warm welcome to Acme Caps." in instructions

"""Deterministic prompt assembly.

:func:`assemble` is a pure function: the same configuration, catalog items and
turns always produce the same instruction block. Sections are rendered in a
fixed order and empty sections are left out:

1. identity
2. tone
3. instructions and custom rules
4. FAQs and special offers
5. store-hours status
6. policies
7. forbidden topics (an explicit refusal directive)
8. catalog candidates
9. reply guidelines (length, language, first-contact greeting, escalation
   acknowledgement)

When the block grows past ``max_chars`` the catalog descriptions and policy
texts are shortened first, then trailing catalog candidates are dropped. The
identity section is never shortened.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from ..catalog.models import CatalogItem
from ..catalog.normalizer import as_value_list, normalize_price
from ..conversations.models import Message, MessageDirection
from ..tenants.config import TenantConfig

MAX_INSTRUCTION_CHARS = 12000
DEFAULT_HISTORY_LIMIT = 8

# (description limit, policy limit) per compaction level; None keeps full text.
_COMPACTION_LEVELS: tuple[tuple[int | None, int | None], ...] = (
    (None, None),
    (240, 800),
    (120, 300),
)


@dataclass(frozen=True)
class AssembledPrompt:
    instructions: str
    turns: list[dict[str, str]]
    items: list[CatalogItem] = field(default_factory=list)


def _clip(text: str, limit: int | None) -> str:
    text = text.strip()
    if limit is None or len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)].rstrip() + "..."


def _identity(config: TenantConfig) -> str:
    lines = [f"You are an AI assistant for {config.business_name}."]
    if config.description.strip():
        lines.append(f"Business description: {config.description.strip()}")
    return "\n".join(lines)


def _tone(config: TenantConfig) -> str:
    return f"Your tone should be: {config.tone.strip()}." if config.tone.strip() else ""


def _instructions(config: TenantConfig) -> str:
    blocks = []
    if config.instructions.strip():
        blocks.append(f"Instructions:\n{config.instructions.strip()}")
    if config.custom_rules:
        rules = "\n".join(f"{i}. {rule}" for i, rule in enumerate(config.custom_rules, start=1))
        blocks.append(f"Rules to follow:\n{rules}")
    return "\n\n".join(blocks)


def _faqs(config: TenantConfig) -> str:
    blocks = []
    if config.faqs.strip():
        blocks.append(f"Frequently asked questions:\n{config.faqs.strip()}")
    if config.special_offers.strip():
        blocks.append(f"Current special offers:\n{config.special_offers.strip()}")
    return "\n\n".join(blocks)


def _hours(is_open: bool, next_opening: str | None) -> str:
    if is_open:
        return "Store status: the store is currently OPEN."
    text = "Store status: the store is currently CLOSED."
    if next_opening:
        text += f" It opens again {next_opening}."
    return text + " Orders and questions can still be received; let the customer know."


def _policies(config: TenantConfig, limit: int | None) -> str:
    lines = [f"{label}: {_clip(text, limit)}" for label, text in config.policies()]
    if config.delivery_rules:
        rules = "; ".join(
            f"{key}: {config.delivery_rules[key]}" for key in sorted(config.delivery_rules)
        )
        lines.append(f"Delivery rules: {_clip(rules, limit)}")
    contact = [value for value in (config.contact_email, config.contact_phone) if value]
    if contact:
        lines.append(f"Contact: {' / '.join(contact)}")
    if not lines:
        return ""
    return "=== POLICIES ===\n" + "\n".join(lines)


def _forbidden(config: TenantConfig) -> str:
    if not config.forbidden_topics:
        return ""
    topics = "\n".join(f"- {topic}" for topic in config.forbidden_topics)
    return (
        "=== FORBIDDEN TOPICS ===\n"
        "You must REFUSE to discuss the following topics. If the customer asks about any "
        "of them, politely decline, say you cannot help with that topic, and do not "
        "provide any information about it:\n"
        f"{topics}"
    )


def _format_item(position: int, item: CatalogItem, limit: int | None) -> str:
    lines = [f"{position}. {item.name.strip()}"]
    price = normalize_price(item.price)
    if price > Decimal("0"):
        lines.append(f"   Price: ${price:.2f}")
    if item.category.strip():
        lines.append(f"   Category: {item.category.strip()}")
    if item.description.strip():
        lines.append(f"   Description: {_clip(item.description, limit)}")
    for name, values in (item.variant_attributes or {}).items():
        present = as_value_list(values)
        if present:
            lines.append(f"   {name}: {', '.join(present)}")
    return "\n".join(lines)


def _catalog(items: Sequence[CatalogItem], limit: int | None) -> str:
    if not items:
        return ""
    rendered = "\n\n".join(
        _format_item(position, item, limit) for position, item in enumerate(items, start=1)
    )
    return (
        "=== AVAILABLE PRODUCTS ===\n"
        "Relevant products from our catalog that you can recommend:\n\n"
        f"{rendered}\n\n"
        "Only recommend products from this list. When you do, mention the exact product "
        "name, the price and key benefits."
    )


def _guidelines(
    config: TenantConfig,
    escalation_notice: bool,
    reply_language: str | None,
    first_contact: bool = False,
) -> str:
    lines = [
        "=== GUIDELINES ===",
        f"- Keep every reply under {config.max_response_length} characters.",
        "- Keep responses concise (2-3 sentences unless more detail is needed).",
        "- If you don't know something, admit it and offer to help in another way.",
        "- Never invent products, prices or policies that are not listed above.",
    ]
    language = reply_language or (config.language if config.language != "auto" else None)
    if language:
        lines.append(f"- Reply in {language}.")
    else:
        lines.append("- Reply in the same language as the customer.")
    if first_contact:
        if config.greeting.strip():
            lines.append(
                "- This is the customer's first message. Open your reply with this "
                f"greeting: {config.greeting.strip()}"
            )
        else:
            lines.append(
                "- This is the customer's first message. Open with a brief, warm "
                f"welcome to {config.business_name}."
            )
    if escalation_notice:
        lines.append(
            "- The customer asked for a human. A team member has been notified: "
            "briefly acknowledge this and keep helping in the meantime."
        )
    return "\n".join(lines)


def _render(
    config: TenantConfig,
    items: Sequence[CatalogItem],
    *,
    is_open: bool,
    next_opening: str | None,
    escalation_notice: bool,
    reply_language: str | None,
    first_contact: bool,
    description_limit: int | None,
    policy_limit: int | None,
) -> str:
    sections = [
        _identity(config),
        _tone(config),
        _instructions(config),
        _faqs(config),
        _hours(is_open, next_opening),
        _policies(config, policy_limit),
        _forbidden(config),
        _catalog(items, description_limit),
        _guidelines(config, escalation_notice, reply_language, first_contact),
    ]
    return "\n\n".join(section for section in sections if section)


def bound_turns(turns: Sequence[Message], limit: int = DEFAULT_HISTORY_LIMIT) -> list[dict[str, str]]:
    """Map the last ``limit`` messages onto chat roles."""

    if limit <= 0:
        return []
    recent = list(turns)[-limit:]
    return [
        {
            "role": "user" if message.direction == MessageDirection.INBOUND else "assistant",
            "content": message.text,
        }
        for message in recent
    ]


def assemble(
    config: TenantConfig,
    items: Sequence[CatalogItem],
    turns: Sequence[Message],
    *,
    is_open: bool,
    next_opening: str | None = None,
    escalation_notice: bool = False,
    reply_language: str | None = None,
    first_contact: bool = False,
    history_limit: int = DEFAULT_HISTORY_LIMIT,
    max_chars: int = MAX_INSTRUCTION_CHARS,
) -> AssembledPrompt:
    """Render the instruction block and bounded turn history for a reply."""

    kept = list(items)
    options = dict(
        is_open=is_open,
        next_opening=next_opening,
        escalation_notice=escalation_notice,
        reply_language=reply_language,
        first_contact=first_contact,
    )
    instructions = ""
    for description_limit, policy_limit in _COMPACTION_LEVELS:
        instructions = _render(
            config,
            kept,
            description_limit=description_limit,
            policy_limit=policy_limit,
            **options,
        )
        if len(instructions) <= max_chars:
            break
    else:
        description_limit, policy_limit = _COMPACTION_LEVELS[-1]
        while kept and len(instructions) > max_chars:
            kept.pop()
            instructions = _render(
                config,
                kept,
                description_limit=description_limit,
                policy_limit=policy_limit,
                **options,
            )

    return AssembledPrompt(
        instructions=instructions,
        turns=bound_turns(turns, history_limit),
        items=kept,
    )

"""Canonical embedding text for catalog items.

Embedding models weight repeated, explicit phrasing more heavily, so the
rendered text repeats the item name and restates every variant attribute.
Color-like attributes additionally get one sentence per value because colour
queries ("do you have blue hats") are the ones most often missed when the
variant information is buried in a single list.
"""

from __future__ import annotations

import html
import re
from collections.abc import Iterable, Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from .models import CatalogItem

MAX_FIELD_LENGTH = 1000

_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_DISALLOWED_RE = re.compile(r"[^\w\s\-.,!?$'&]")
_WHITESPACE_RE = re.compile(r"\s+")
_COLOR_RE = re.compile(r"colou?r", re.IGNORECASE)


def normalize_text(value: Any, limit: int = MAX_FIELD_LENGTH) -> str:
    """Strip markup and noise from ``value`` and bound its length."""

    if value is None:
        return ""
    text = _TAG_RE.sub(" ", str(value))
    text = html.unescape(text)
    text = _CONTROL_RE.sub(" ", text)
    text = _DISALLOWED_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return text[:limit].rstrip()


def normalize_price(value: Any) -> Decimal:
    """Coerce ``value`` into a non-negative ``Decimal`` (invalid -> 0)."""

    if value is None or value == "":
        return Decimal("0")
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not price.is_finite() or price < 0:
        return Decimal("0")
    return price


def is_color_attribute(name: str) -> bool:
    return bool(_COLOR_RE.search(name or ""))


def as_value_list(values: Any) -> list[str]:
    """Coerce a stored variant value (scalar, string or list) into a list of strings."""

    if values is None:
        return []
    if isinstance(values, str) or not isinstance(values, Iterable):
        values = [values]
    return [str(value).strip() for value in values if str(value).strip()]


def _clean_values(values: Any) -> list[str]:
    cleaned = (normalize_text(value) for value in as_value_list(values))
    return [text for text in cleaned if text]


def _variant_sentences(attributes: Mapping[str, Any]) -> list[str]:
    parts: list[str] = []
    for raw_name, raw_values in attributes.items():
        name = normalize_text(raw_name)
        values = _clean_values(raw_values)
        if not name or not values:
            continue
        joined = ", ".join(values)
        parts.append(f"{name}: {joined}")
        parts.append(f"Available {name.lower()}: {joined}")
        if is_color_attribute(name):
            parts.extend(f"{value} color available" for value in values)
    return parts


def build_embedding_text(item: CatalogItem) -> str:
    """Render ``item`` into the text sent to the embedding service.

    Returns an empty string for items without any usable content; such items
    cannot be embedded and are left out of the index.
    """

    parts: list[str] = []
    name = normalize_text(item.name)
    if name:
        parts.append(f"Product: {name}")
        parts.append(name)

    category = normalize_text(item.category)
    if category:
        parts.append(f"Category: {category}")

    price = normalize_price(item.price)
    if price > 0:
        parts.append(f"Price: ${price:.2f}")

    description = normalize_text(item.description)
    if description:
        parts.append(f"Description: {description}")

    parts.extend(_variant_sentences(item.variant_attributes or {}))
    return ". ".join(parts)

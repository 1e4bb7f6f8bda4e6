"""Keyword matching for escalation detection."""

from __future__ import annotations

from collections.abc import Iterable


def matches_any(text: str, keywords: Iterable[str]) -> str | None:
    """Return the first configured keyword contained in ``text``.

    Matching is a case-insensitive substring test; blank keywords are ignored.
    The keyword is returned as configured (stripped), not as found in ``text``.
    """

    if not text:
        return None
    haystack = text.casefold()
    for keyword in keywords or ():
        needle = (keyword or "").strip()
        if needle and needle.casefold() in haystack:
            return needle
    return None

"""Store-hours evaluation."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Protocol
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import WEEKDAYS, StoreHours
from .repository import TenantConfigRepository

logger = logging.getLogger(__name__)


class StoreHoursProvider(Protocol):
    def is_open(self, tenant_id: UUID, now: datetime) -> bool: ...


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown store timezone %r, using UTC", name)
        return ZoneInfo("UTC")


def _localize(hours: StoreHours, now: datetime) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(_zone(hours.timezone))


def is_open_at(hours: StoreHours | None, now: datetime) -> bool:
    """Return whether a store with ``hours`` is open at ``now``.

    No schedule means always open, as does a weekday without an entry or
    without both opening and closing times. Holidays are closed all day.
    """

    if hours is None:
        return True
    local = _localize(hours, now)
    if local.date() in hours.holidays:
        return False
    day = hours.days.get(WEEKDAYS[local.weekday()])
    if day is None:
        return True
    if day.closed:
        return False
    if day.open is None or day.close is None:
        return True
    current = local.time().replace(tzinfo=None)
    return day.open <= current < day.close


def next_opening(hours: StoreHours | None, now: datetime) -> str | None:
    """Describe the next opening within a week, e.g. ``"Monday at 09:00"``."""

    if hours is None:
        return None
    local = _localize(hours, now)
    for offset in range(8):
        candidate = local + timedelta(days=offset)
        if candidate.date() in hours.holidays:
            continue
        name = WEEKDAYS[candidate.weekday()]
        day = hours.days.get(name)
        if day is None or day.closed or day.open is None:
            continue
        if offset == 0 and local.time().replace(tzinfo=None) >= day.open:
            continue
        return f"{name.title()} at {day.open.strftime('%H:%M')}"
    return None


class ScheduleStoreHours:
    """:class:`StoreHoursProvider` backed by each tenant's configured schedule."""

    def __init__(self, configs: TenantConfigRepository) -> None:
        self._configs = configs

    def is_open(self, tenant_id: UUID, now: datetime) -> bool:
        return is_open_at(self._configs.get(tenant_id).store_hours, now)

    def next_opening(self, tenant_id: UUID, now: datetime) -> str | None:
        return next_opening(self._configs.get(tenant_id).store_hours, now)

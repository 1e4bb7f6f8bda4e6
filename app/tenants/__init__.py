"""Tenant business configuration and store hours."""

from .config import DayHours, StoreHours, TenantConfig
from .hours import ScheduleStoreHours, StoreHoursProvider, is_open_at, next_opening
from .repository import (
    InMemoryTenantConfigRepository,
    PostgresTenantConfigRepository,
    TenantConfigRepository,
)

__all__ = [
    "DayHours",
    "InMemoryTenantConfigRepository",
    "PostgresTenantConfigRepository",
    "ScheduleStoreHours",
    "StoreHours",
    "StoreHoursProvider",
    "TenantConfig",
    "TenantConfigRepository",
    "is_open_at",
    "next_opening",
]

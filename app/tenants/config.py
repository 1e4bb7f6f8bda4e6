"""Per-tenant business configuration.

Every recognised field has a default, so a tenant with an empty ``config``
document still gets a working responder; features whose configuration is
absent (escalation keywords, store hours, forbidden topics) are simply inert.
"""

from __future__ import annotations

import re
from datetime import date, time
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DEFAULT_MAX_RESPONSE_LENGTH = 500


def _split_list(value: Any) -> Any:
    """Accept newline/comma separated strings where a list is expected."""

    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in re.split(r"[\n,]", value) if part.strip()]
    return value


class DayHours(BaseModel):
    open: time | None = None
    close: time | None = None
    closed: bool = False

    model_config = ConfigDict(extra="ignore")


class StoreHours(BaseModel):
    """Weekly schedule evaluated in the tenant's timezone."""

    timezone: str = "UTC"
    days: Dict[str, DayHours] = Field(default_factory=dict)
    holidays: List[date] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")

    @field_validator("days", mode="before")
    @classmethod
    def _lowercase_days(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(key).strip().lower(): hours for key, hours in value.items()}
        return value

    @field_validator("holidays", mode="before")
    @classmethod
    def _holiday_dates(cls, value: Any) -> Any:
        if not value:
            return []
        return [item.get("date") if isinstance(item, dict) else item for item in value]

    @model_validator(mode="after")
    def _known_days(self) -> "StoreHours":
        unknown = set(self.days) - set(WEEKDAYS)
        if unknown:
            raise ValueError(f"unknown weekday(s) in store hours: {', '.join(sorted(unknown))}")
        return self


class TenantConfig(BaseModel):
    """Explicit business configuration consumed by the prompt assembler."""

    business_name: str = "our store"
    description: str = ""
    tone: str = "professional and friendly"
    instructions: str = ""
    custom_rules: List[str] = Field(default_factory=list)
    faqs: str = ""
    special_offers: str = ""
    forbidden_topics: List[str] = Field(default_factory=list)
    escalation_keywords: List[str] = Field(default_factory=list)
    max_response_length: int = Field(default=DEFAULT_MAX_RESPONSE_LENGTH, gt=0)
    language: str = "auto"
    greeting: str = ""
    refund_policy: str = ""
    return_policy: str = ""
    shipping_policy: str = ""
    privacy_policy: str = ""
    terms_of_service: str = ""
    delivery_rules: Dict[str, Any] = Field(default_factory=dict)
    store_hours: StoreHours | None = None
    contact_email: str | None = None
    contact_phone: str | None = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("custom_rules", "forbidden_topics", "escalation_keywords", mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> Any:
        return _split_list(value)

    @field_validator("custom_rules", "forbidden_topics", "escalation_keywords")
    @classmethod
    def _drop_blank(cls, value: List[str]) -> List[str]:
        return [item.strip() for item in value if item and item.strip()]

    def policies(self) -> list[tuple[str, str]]:
        """Return ``(label, text)`` for every configured policy, in display order."""

        entries = [
            ("Refund policy", self.refund_policy),
            ("Return policy", self.return_policy),
            ("Shipping policy", self.shipping_policy),
            ("Privacy policy", self.privacy_policy),
            ("Terms of service", self.terms_of_service),
        ]
        return [(label, text.strip()) for label, text in entries if text and text.strip()]

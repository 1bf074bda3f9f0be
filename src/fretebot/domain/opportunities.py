"""Freight opportunity records detected in monitored groups."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

OPPORTUNITY_TTL = timedelta(hours=48)


class Priority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class OpportunityStatus(str, Enum):
    NEW = "NEW"
    IN_REVIEW = "IN_REVIEW"
    ACCEPTED = "ACCEPTED"
    DISCARDED = "DISCARDED"


# Oracle tiers come in Portuguese or English
_PRIORITY_ALIASES: dict[str, Priority] = {
    "ALTA": Priority.HIGH,
    "HIGH": Priority.HIGH,
    "MEDIA": Priority.MEDIUM,
    "MÉDIA": Priority.MEDIUM,
    "MEDIUM": Priority.MEDIUM,
    "BAIXA": Priority.LOW,
    "LOW": Priority.LOW,
}


def map_priority(tier: str | None) -> Priority:
    """Map an oracle tier to a Priority. Unknown tiers are LOW."""
    if not tier:
        return Priority.LOW
    return _PRIORITY_ALIASES.get(tier.strip().upper(), Priority.LOW)


@dataclass(frozen=True)
class GroupMonitorEntry:
    """A WhatsApp group registered for opportunity monitoring."""

    id: str
    group_jid: str
    name: str
    active: bool = True
    keywords: tuple[str, ...] = ()

    def matches_keywords(self, text: str) -> bool:
        """True when no keywords are configured or any keyword occurs in text."""
        if not self.keywords:
            return True
        lowered = text.lower()
        return any(k.lower() in lowered for k in self.keywords if k)


@dataclass
class NewOpportunity:
    """Opportunity ready to be stored (status NEW, 48h expiry)."""

    group_id: str
    original_message: str
    created_at: datetime
    cargo_type: str | None = None
    origin: str | None = None
    destination: str | None = None
    tonnage: float | None = None
    offered_price: float | None = None
    urgency: str | None = None
    contact: str | None = None
    priority: Priority = Priority.LOW
    status: OpportunityStatus = OpportunityStatus.NEW
    expires_at: datetime = field(init=False)

    def __post_init__(self) -> None:
        self.expires_at = self.created_at + OPPORTUNITY_TTL

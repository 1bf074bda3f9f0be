"""Persistence contracts the chat core depends on.

The core never talks SQL directly; it receives objects implementing these
protocols. `fretebot.infra.repositories` holds the Postgres implementations.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol

from .identity import Driver
from .opportunities import GroupMonitorEntry, NewOpportunity


@dataclass(frozen=True)
class NewFreight:
    """Freight row created from a confirmed chat draft."""

    date: date
    origin_id: str
    destination_id: str
    tonnage: float
    price_per_ton: float
    total_value: float
    carrier_id: str
    ticket_number: str
    truck_id: str
    driver_id: str
    note: str | None = None
    status: str = "PENDING"
    record_origin: str = "WHATSAPP"


class DriverDirectory(Protocol):
    def list_messaging_drivers(self) -> list[Driver]:
        """Active drivers with a WhatsApp number."""
        ...


class FreightRepository(Protocol):
    def find_or_create_location(self, name: str) -> str: ...

    def find_or_create_carrier(self, name: str) -> str: ...

    def find_or_create_truck(self, plate: str) -> str: ...

    def create_freight(self, freight: NewFreight) -> str: ...


class GroupRepository(Protocol):
    def get_group(self, group_jid: str) -> GroupMonitorEntry | None: ...

    def list_active_location_names(self) -> list[str]: ...

    def create_opportunity(self, opportunity: NewOpportunity) -> str: ...


class WhatsAppConfigRepository(Protocol):
    def list_active_configs(self) -> list[dict[str, Any]]:
        """Active rows: id, kind ('EVOLUTION' | 'META_OFFICIAL') and credentials."""
        ...

    def set_connected(self, config_id: str, connected: bool) -> None: ...


class AiSettingsRepository(Protocol):
    def get_ai_settings(self) -> dict[str, Any] | None:
        """Active AI settings row (provider, model, prompts) or None."""
        ...

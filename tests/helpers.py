"""Shared test helpers: in-memory fakes of the persistence and messaging seams.

These are NOT fixtures - they are regular classes imported by conftest.py
and individual test files.
"""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any

from fretebot.domain.freight import FreightDraft
from fretebot.domain.identity import Driver
from fretebot.domain.opportunities import GroupMonitorEntry, NewOpportunity
from fretebot.domain.ports import NewFreight
from fretebot.extraction.oracle import (
    ClassificationContext,
    ExtractionInput,
    OpportunityClassification,
)
from fretebot.whatsapp.gateway import NoProviderAvailableError

T0 = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeGateway:
    """Records outbound texts; serves downloads from a dict."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.media: dict[str, bytes] = {}
        self.downloads: list[str] = []
        self.fail_sends = False

    def send_text(self, to: str, text: str) -> None:
        if self.fail_sends:
            raise NoProviderAvailableError("send_text")
        self.sent.append((to, text))

    def download_media(self, media_ref: str) -> bytes:
        self.downloads.append(media_ref)
        if media_ref not in self.media:
            raise NoProviderAvailableError("download_media")
        return self.media[media_ref]

    def texts_to(self, to: str) -> list[str]:
        return [text for recipient, text in self.sent if recipient == to]

    @property
    def last_text(self) -> str:
        return self.sent[-1][1]


class FakeRedis:
    """Dict-backed stand-in for the few redis.Redis calls the session store makes."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str, ex: int | None = None) -> None:
        self.values[key] = value

    def delete(self, key: str) -> None:
        self.values.pop(key, None)


class FakeOracle:
    """Returns queued drafts/classifications (or raises queued exceptions)."""

    def __init__(self) -> None:
        self.drafts: list[FreightDraft | Exception] = []
        self.classifications: list[OpportunityClassification | Exception] = []
        self.extract_calls: list[ExtractionInput] = []
        self.classify_calls: list[tuple[str, ClassificationContext]] = []

    def extract_freight(self, data: ExtractionInput) -> FreightDraft:
        self.extract_calls.append(data)
        result = self.drafts.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def classify_opportunity(
        self, message: str, context: ClassificationContext
    ) -> OpportunityClassification:
        self.classify_calls.append((message, context))
        result = self.classifications.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeDriverDirectory:
    def __init__(self, drivers: list[Driver]) -> None:
        self.drivers = drivers

    def list_messaging_drivers(self) -> list[Driver]:
        return [d for d in self.drivers if d.active and d.whatsapp]


class FakeFreightRepository:
    """Case-insensitive registries plus a freight list."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.registries: dict[str, dict[str, str]] = {"locations": {}, "carriers": {}, "trucks": {}}
        self.freights: list[NewFreight] = []
        self.fail_on_create = False

    def _resolve(self, table: str, value: str) -> str:
        registry = self.registries[table]
        key = value.strip().lower()
        if key not in registry:
            registry[key] = f"{table}-{next(self._ids)}"
        return registry[key]

    def find_or_create_location(self, name: str) -> str:
        return self._resolve("locations", name)

    def find_or_create_carrier(self, name: str) -> str:
        return self._resolve("carriers", name)

    def find_or_create_truck(self, plate: str) -> str:
        return self._resolve("trucks", plate)

    def create_freight(self, freight: NewFreight) -> str:
        if self.fail_on_create:
            raise RuntimeError("database unavailable")
        self.freights.append(freight)
        return f"freight-{len(self.freights)}"


class FakeGroupRepository:
    def __init__(self, groups: list[GroupMonitorEntry], locations: list[str] | None = None) -> None:
        self.groups = {g.group_jid: g for g in groups}
        self.locations = locations or []
        self.opportunities: list[NewOpportunity] = []

    def get_group(self, group_jid: str) -> GroupMonitorEntry | None:
        return self.groups.get(group_jid)

    def list_active_location_names(self) -> list[str]:
        return list(self.locations)

    def create_opportunity(self, opportunity: NewOpportunity) -> str:
        self.opportunities.append(opportunity)
        return f"opp-{len(self.opportunities)}"


class FakeWhatsAppConfigRepository:
    def __init__(self, rows: list[dict[str, Any]] | None = None) -> None:
        self.rows = rows or []
        self.calls = 0
        self.connected: dict[str, bool] = {}
        self.fail = False

    def list_active_configs(self) -> list[dict[str, Any]]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("store unreachable")
        return list(self.rows)

    def set_connected(self, config_id: str, connected: bool) -> None:
        self.connected[config_id] = connected


def complete_draft(**overrides: Any) -> FreightDraft:
    """A draft with every required field filled."""
    values: dict[str, Any] = {
        "date": "2026-03-09",
        "origin": "Betim",
        "destination": "Uberlandia",
        "tonnage": 32.5,
        "price_per_ton": 120.0,
        "carrier": "TransMinas",
        "ticket_number": "TK-991",
        "plate": "ABC1D23",
        "driver_name": "Joao Silva",
    }
    values.update(overrides)
    return FreightDraft(**values)

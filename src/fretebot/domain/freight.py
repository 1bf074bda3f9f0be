"""Freight draft model - the partial record assembled during a chat.

NO persistence here. The draft lives inside a conversation session until the
driver confirms it.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import date
from typing import Any

# Fields the driver must supply before a freight can be confirmed (fixed order)
REQUIRED_FIELDS: tuple[str, ...] = (
    "date",
    "origin",
    "destination",
    "tonnage",
    "price_per_ton",
    "carrier",
    "ticket_number",
    "plate",
    "driver_name",
)

FIELD_LABELS: dict[str, str] = {
    "date": "Data",
    "origin": "Origem",
    "destination": "Destino",
    "tonnage": "Toneladas",
    "price_per_ton": "Preco por Tonelada",
    "total_value": "Valor Total",
    "carrier": "Transportadora",
    "ticket_number": "Ticket/Nota",
    "plate": "Placa",
    "driver_name": "Motorista",
    "note": "Observacao",
}

_NUMERIC_FIELDS = frozenset({"tonnage", "price_per_ton", "total_value"})


@dataclass
class FreightDraft:
    """Structured freight fields extracted from a ticket. All nullable."""

    date: str | None = None
    origin: str | None = None
    destination: str | None = None
    tonnage: float | None = None
    price_per_ton: float | None = None
    total_value: float | None = None
    carrier: str | None = None
    ticket_number: str | None = None
    plate: str | None = None
    driver_name: str | None = None
    note: str | None = None

    def missing_fields(self) -> list[str]:
        """Required fields still unknown, in REQUIRED_FIELDS order."""
        return [name for name in REQUIRED_FIELDS if getattr(self, name) is None]

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def fill_total(self) -> None:
        """Derive total_value from tonnage x price_per_ton when not supplied."""
        if (
            self.total_value is None
            and self.tonnage is not None
            and self.price_per_ton is not None
        ):
            self.total_value = round(self.tonnage * self.price_per_ton, 2)

    def merge_missing(self, other: FreightDraft, field_names: list[str]) -> list[str]:
        """Copy values from `other` into fields listed in `field_names`.

        Only fields that are still None here are written, so a value that is
        already known is never overwritten. Returns the names that were filled.
        """
        filled: list[str] = []
        for name in field_names:
            if getattr(self, name) is not None:
                continue
            value = getattr(other, name)
            if value is not None:
                setattr(self, name, value)
                filled.append(name)
        self.fill_total()
        return filled

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FreightDraft:
        """Build a draft from loosely-typed data (oracle output, stored session).

        Unknown keys are ignored, blanks become None, numeric fields are
        coerced to float (unparseable numbers become None).
        """
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = data.get(f.name)
            if isinstance(raw, str):
                raw = raw.strip() or None
            if raw is not None and f.name in _NUMERIC_FIELDS:
                raw = coerce_number(raw)
            elif raw is not None and not isinstance(raw, str):
                raw = str(raw)
            values[f.name] = raw
        return cls(**values)


def coerce_number(value: Any) -> float | None:
    """Coerce oracle numbers ("32,5", "R$ 120", 32) to float, or None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.replace("R$", "").replace(" ", "")
        # Brazilian format: 1.234,56
        if "," in cleaned:
            cleaned = cleaned.replace(".", "").replace(",", ".")
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def parse_draft_date(value: str | None, today: date) -> date:
    """Interpret the draft date (ISO or dd/mm/yyyy); fall back to `today`."""
    if not value:
        return today
    text = value.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    parts = text.replace("-", "/").replace(".", "/").split("/")
    if len(parts) >= 2 and all(p.isdigit() for p in parts[:3]):
        day, month = int(parts[0]), int(parts[1])
        year = int(parts[2]) if len(parts) > 2 else today.year
        if year < 100:
            year += 2000
        try:
            return date(year, month, day)
        except ValueError:
            return today
    return today

"""Driver identity matching by WhatsApp number.

Brazilian mobile numbers appear in several shapes: with or without the
country code, and with or without the ninth digit that was inserted in
front of 8-digit mobile numbers. Matching compares every variant of the
sender against every variant of each registered number.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

COUNTRY_CODE = "55"

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class Driver:
    """Registered driver allowed to talk to the bot."""

    id: str
    name: str
    whatsapp: str | None
    active: bool = True


def phone_variations(raw: str) -> list[str]:
    """Return the normalized number followed by its ninth-digit variant.

    "31991570107" -> ["5531991570107", "553191570107"]
    "553191570107" -> ["553191570107", "5531991570107"]
    """
    full = _NON_DIGITS.sub("", raw or "")
    if len(full) in (10, 11):
        full = COUNTRY_CODE + full

    variations = [full]
    if full.startswith(COUNTRY_CODE) and len(full) >= 12:
        ddd = full[2:4]
        local = full[4:]
        if len(local) == 9 and local.startswith("9"):
            variations.append(f"{COUNTRY_CODE}{ddd}{local[1:]}")
        elif len(local) == 8:
            variations.append(f"{COUNTRY_CODE}{ddd}9{local}")
    return variations


def normalize_phone(raw: str) -> str:
    """Canonical form of a number (country code + digits)."""
    return phone_variations(raw)[0]


def numbers_match(a: str, b: str) -> bool:
    return bool(set(phone_variations(a)) & set(phone_variations(b)))


def find_matching_drivers(sender: str, drivers: Iterable[Driver]) -> list[Driver]:
    """All active drivers whose stored number matches the sender."""
    sender_variants = set(phone_variations(sender))
    matches = []
    for driver in drivers:
        if not driver.active or not driver.whatsapp:
            continue
        if sender_variants & set(phone_variations(driver.whatsapp)):
            matches.append(driver)
    return matches


def match_driver(sender: str, drivers: Iterable[Driver]) -> Driver | None:
    """Resolve the sender to a single driver.

    Returns None when nobody matches and also when more than one driver
    matches (ambiguous data must not attach a ticket to the wrong person).
    """
    matches = find_matching_drivers(sender, drivers)
    if len(matches) == 1:
        return matches[0]
    return None

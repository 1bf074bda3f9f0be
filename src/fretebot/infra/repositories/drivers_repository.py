"""Drivers repository - registry lookups for identity matching.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from psycopg2.extensions import cursor as PgCursor

from fretebot.domain.identity import Driver

from ..db import fetchall, txn


def list_messaging_drivers(cur: PgCursor) -> list[Driver]:
    """Active drivers that have a WhatsApp number on file."""
    rows = fetchall(
        cur,
        """
        SELECT id, name, whatsapp, active
        FROM drivers
        WHERE active = true AND whatsapp IS NOT NULL AND whatsapp <> ''
        ORDER BY created_at
        """,
    )
    return [
        Driver(id=str(row["id"]), name=row["name"], whatsapp=row["whatsapp"], active=row["active"])
        for row in rows
    ]


class PgDriverDirectory:
    def list_messaging_drivers(self) -> list[Driver]:
        with txn() as cur:
            return list_messaging_drivers(cur)

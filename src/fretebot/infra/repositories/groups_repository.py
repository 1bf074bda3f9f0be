"""Monitored groups and opportunities repository.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from psycopg2.extensions import cursor as PgCursor

from fretebot.domain.opportunities import GroupMonitorEntry, NewOpportunity

from ..db import fetchall, fetchone, txn


def get_group(cur: PgCursor, group_jid: str) -> GroupMonitorEntry | None:
    row = fetchone(
        cur,
        "SELECT id, group_jid, name, active, keywords FROM whatsapp_groups WHERE group_jid = %s",
        (group_jid,),
    )
    if row is None:
        return None
    return GroupMonitorEntry(
        id=str(row["id"]),
        group_jid=row["group_jid"],
        name=row["name"],
        active=row["active"],
        keywords=tuple(row["keywords"] or ()),
    )


def list_active_location_names(cur: PgCursor) -> list[str]:
    rows = fetchall(cur, "SELECT name FROM locations WHERE active = true ORDER BY name")
    return [row["name"] for row in rows]


def insert_opportunity(cur: PgCursor, opportunity: NewOpportunity) -> str:
    row = fetchone(
        cur,
        """
        INSERT INTO opportunities (
            group_id, original_message, cargo_type, origin, destination, tonnage,
            offered_price, urgency, contact, priority, status, created_at, expires_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            opportunity.group_id,
            opportunity.original_message,
            opportunity.cargo_type,
            opportunity.origin,
            opportunity.destination,
            opportunity.tonnage,
            opportunity.offered_price,
            opportunity.urgency,
            opportunity.contact,
            opportunity.priority.value,
            opportunity.status.value,
            opportunity.created_at,
            opportunity.expires_at,
        ),
    )
    return str(row["id"])  # type: ignore[index]


class PgGroupRepository:
    def get_group(self, group_jid: str) -> GroupMonitorEntry | None:
        with txn() as cur:
            return get_group(cur, group_jid)

    def list_active_location_names(self) -> list[str]:
        with txn() as cur:
            return list_active_location_names(cur)

    def create_opportunity(self, opportunity: NewOpportunity) -> str:
        with txn() as cur:
            return insert_opportunity(cur, opportunity)

"""Freights repository - resolve-or-create registry rows and insert freights.

Uses raw SQL with psycopg2 (no ORM).

Registry resolution
───────────────────
Locations, carriers and trucks are matched by case-insensitive exact name
(plate for trucks) among ACTIVE rows. A miss inserts a new active row. Every
repository call is its own short transaction.
"""

from __future__ import annotations

from psycopg2.extensions import cursor as PgCursor

from fretebot.domain.ports import NewFreight

from ..db import fetchone, txn

# table -> matched column
_REGISTRIES = {
    "locations": "name",
    "carriers": "name",
    "trucks": "plate",
}


def find_or_create(cur: PgCursor, table: str, value: str) -> str:
    """Resolve an active registry row by case-insensitive value, inserting on miss.

    Args:
        cur: Database cursor (must be inside a transaction).
        table: One of locations, carriers, trucks.
        value: Name (or plate) to match.

    Returns:
        UUID string of the resolved or created row.

    Raises:
        ValueError: If table is not a registry table.
    """
    column = _REGISTRIES.get(table)
    if column is None:
        raise ValueError(f"Unknown registry table: {table}")

    value = value.strip()
    row = fetchone(
        cur,
        f"""
        SELECT id FROM {table}
        WHERE lower({column}) = lower(%s) AND active = true
        ORDER BY created_at
        LIMIT 1
        """,
        (value,),
    )
    if row is not None:
        return str(row["id"])

    row = fetchone(
        cur,
        f"INSERT INTO {table} ({column}, active) VALUES (%s, true) RETURNING id",
        (value,),
    )
    return str(row["id"])  # type: ignore[index]


def insert_freight(cur: PgCursor, freight: NewFreight) -> str:
    row = fetchone(
        cur,
        """
        INSERT INTO freights (
            date, origin_id, destination_id, tonnage, price_per_ton, total_value,
            carrier_id, ticket_number, truck_id, driver_id, note, status, record_origin
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            freight.date,
            freight.origin_id,
            freight.destination_id,
            freight.tonnage,
            freight.price_per_ton,
            freight.total_value,
            freight.carrier_id,
            freight.ticket_number,
            freight.truck_id,
            freight.driver_id,
            freight.note,
            freight.status,
            freight.record_origin,
        ),
    )
    return str(row["id"])  # type: ignore[index]


class PgFreightRepository:
    def find_or_create_location(self, name: str) -> str:
        with txn() as cur:
            return find_or_create(cur, "locations", name)

    def find_or_create_carrier(self, name: str) -> str:
        with txn() as cur:
            return find_or_create(cur, "carriers", name)

    def find_or_create_truck(self, plate: str) -> str:
        with txn() as cur:
            return find_or_create(cur, "trucks", plate)

    def create_freight(self, freight: NewFreight) -> str:
        with txn() as cur:
            return insert_freight(cur, freight)

"""WhatsApp provider configs and AI settings, edited by operators.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from typing import Any

from ..db import fetchall, fetchone, txn


class PgWhatsAppConfigRepository:
    def list_active_configs(self) -> list[dict[str, Any]]:
        """Active rows, oldest first (the first usable row per kind wins)."""
        with txn() as cur:
            rows = fetchall(
                cur,
                """
                SELECT id, kind, evolution_url, evolution_api_key, evolution_instance,
                       meta_token, meta_phone_id, meta_verify_token, meta_app_secret
                FROM whatsapp_configs
                WHERE active = true
                ORDER BY created_at
                """,
            )
        for row in rows:
            row["id"] = str(row["id"])
        return rows

    def set_connected(self, config_id: str, connected: bool) -> None:
        with txn() as cur:
            cur.execute(
                "UPDATE whatsapp_configs SET connected = %s, updated_at = now() WHERE id = %s",
                (connected, config_id),
            )


class PgAiSettingsRepository:
    def get_ai_settings(self) -> dict[str, Any] | None:
        with txn() as cur:
            return fetchone(
                cur,
                """
                SELECT provider, model, freight_extract_prompt, group_monitor_prompt
                FROM ai_settings
                WHERE active = true
                ORDER BY updated_at DESC
                LIMIT 1
                """,
            )

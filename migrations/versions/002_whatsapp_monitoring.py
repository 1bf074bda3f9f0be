"""WhatsApp configs, monitored groups, opportunities and AI settings.

Changes:
- whatsapp_configs: Evolution / Meta credentials edited by operators
- whatsapp_groups + opportunities: group monitoring (48h opportunity expiry)
- ai_settings: optional provider/model/prompt overrides for the oracle

Revision ID: 002_whatsapp_monitoring
Revises: 001_freight_core
Create Date: 2026-10-18
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "002_whatsapp_monitoring"
down_revision = "001_freight_core"
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "002_whatsapp_monitoring.sql"


def upgrade() -> None:
    op.execute(_SQL_FILE.read_text())


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS ai_settings")
    op.execute("DROP TABLE IF EXISTS opportunities")
    op.execute("DROP TABLE IF EXISTS whatsapp_groups")
    op.execute("DROP TABLE IF EXISTS whatsapp_configs")

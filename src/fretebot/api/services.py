"""Process-wide service graph for the HTTP layer.

Built lazily on first use so importing the app never touches the database,
Redis or the oracle. Tests install their own graph with set_services().
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from fretebot.conversation.engine import ConversationEngine
from fretebot.conversation.sessions import KeyedLock, build_session_store
from fretebot.domain.ports import WhatsAppConfigRepository
from fretebot.extraction.oracle import create_oracle
from fretebot.infra.repositories.drivers_repository import PgDriverDirectory
from fretebot.infra.repositories.freights_repository import PgFreightRepository
from fretebot.infra.repositories.groups_repository import PgGroupRepository
from fretebot.infra.repositories.settings_repository import (
    PgAiSettingsRepository,
    PgWhatsAppConfigRepository,
)
from fretebot.monitor.group_monitor import GroupOpportunityMonitor
from fretebot.observability.logging import get_logger
from fretebot.whatsapp.config import ConfigCache
from fretebot.whatsapp.gateway import MessagingGateway

logger = get_logger(__name__)


@dataclass
class Services:
    gateway: MessagingGateway
    engine: ConversationEngine
    monitor: GroupOpportunityMonitor
    whatsapp_configs: WhatsAppConfigRepository


def build_services() -> Services:
    """Wire the Postgres-backed service graph from the environment."""
    whatsapp_configs = PgWhatsAppConfigRepository()
    gateway = MessagingGateway(ConfigCache(whatsapp_configs))
    oracle = create_oracle(PgAiSettingsRepository())

    engine = ConversationEngine(
        gateway=gateway,
        oracle=oracle,
        drivers=PgDriverDirectory(),
        freights=PgFreightRepository(),
        store=build_session_store(),
        locks=KeyedLock(),
    )
    monitor = GroupOpportunityMonitor(groups=PgGroupRepository(), oracle=oracle)

    logger.info("services built")
    return Services(
        gateway=gateway,
        engine=engine,
        monitor=monitor,
        whatsapp_configs=whatsapp_configs,
    )


_lock = threading.Lock()
_services: Services | None = None


def get_services() -> Services:
    global _services
    if _services is None:
        with _lock:
            if _services is None:
                _services = build_services()
    return _services


def set_services(services: Services | None) -> None:
    """Replace the service graph (tests), or reset it with None."""
    global _services
    with _lock:
        _services = services

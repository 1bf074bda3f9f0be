"""Group opportunity monitor - passive classification of group chatter.

Messages from registered, active groups that hit a keyword are classified
by the oracle; real opportunities are stored for the back office. The bot
never writes to the group.
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Callable

from fretebot.domain.opportunities import NewOpportunity, map_priority
from fretebot.domain.ports import GroupRepository
from fretebot.extraction.oracle import ClassificationContext, ExtractionOracle
from fretebot.infra.time import utc_now
from fretebot.observability.logging import get_logger
from fretebot.observability.redaction import hash_identifier, safe_log_context

logger = get_logger(__name__)


def min_price_from_env() -> float:
    try:
        return float(os.environ.get("OPPORTUNITY_MIN_PRICE_PER_TON", "0"))
    except ValueError:
        return 0.0


class GroupOpportunityMonitor:
    def __init__(
        self,
        groups: GroupRepository,
        oracle: ExtractionOracle,
        clock: Callable[[], datetime] = utc_now,
        min_price_per_ton: float | None = None,
    ) -> None:
        self._groups = groups
        self._oracle = oracle
        self._clock = clock
        self._min_price = min_price_from_env() if min_price_per_ton is None else min_price_per_ton

    def process_group_message(self, group_jid: str, sender: str, text: str) -> str | None:
        """Classify one group message. Returns the new opportunity id, if any.

        Never raises: failures are logged and the message is dropped.
        """
        group_hash = hash_identifier(group_jid)
        try:
            group = self._groups.get_group(group_jid)
            if group is None or not group.active:
                return None

            if not group.matches_keywords(text):
                logger.debug(
                    "group message without keyword hit",
                    extra={"extra_fields": safe_log_context(group_hash=group_hash)},
                )
                return None

            context = ClassificationContext(
                keywords=list(group.keywords),
                preferred_routes=self._groups.list_active_location_names(),
                min_price_per_ton=self._min_price,
            )
            result = self._oracle.classify_opportunity(text, context)
            if not result.is_opportunity:
                return None

            opportunity = NewOpportunity(
                group_id=group.id,
                original_message=text,
                created_at=self._clock(),
                cargo_type=result.cargo_type,
                origin=result.origin,
                destination=result.destination,
                tonnage=result.tonnage,
                offered_price=result.offered_price,
                urgency=result.urgency,
                contact=result.contact or sender,
                priority=map_priority(result.priority),
            )
            opportunity_id = self._groups.create_opportunity(opportunity)
        except Exception as e:
            logger.error(
                "group message processing failed",
                extra={
                    "extra_fields": safe_log_context(
                        group_hash=group_hash, error_type=type(e).__name__
                    )
                },
            )
            return None

        logger.info(
            "opportunity created",
            extra={
                "extra_fields": safe_log_context(
                    opportunity_id=opportunity_id,
                    group_hash=group_hash,
                    priority=opportunity.priority.value,
                )
            },
        )
        return opportunity_id

"""Conversation engine - ticket intake state machine for drivers.

Flow per inbound private message:
1. Sweep idle sessions
2. Resolve sender to a driver (unknown senders get a rejection, no session)
3. Under the sender's lock: load/create session, dispatch on state, then
   commit (end before replying, save after replying)

Security: NEVER log sender numbers or message text. Only hashes and lengths.
"""

from __future__ import annotations

import base64
import copy
from datetime import datetime
from typing import Callable

from fretebot.domain.freight import FreightDraft, parse_draft_date
from fretebot.domain.identity import Driver, find_matching_drivers
from fretebot.domain.ports import DriverDirectory, FreightRepository, NewFreight
from fretebot.extraction.oracle import ExtractionError, ExtractionInput, ExtractionOracle
from fretebot.infra.time import epoch_ms, utc_now
from fretebot.observability.logging import get_logger
from fretebot.observability.redaction import hash_identifier, safe_log_context
from fretebot.whatsapp.gateway import MessagingGateway, NoProviderAvailableError
from fretebot.whatsapp.models import (
    DocumentContent,
    ImageContent,
    MessageContent,
    TextContent,
    content_kind,
)

from .sessions import ConversationSession, ConversationState, KeyedLock, SessionStore
from .templates import format_missing_fields, format_summary, render

logger = get_logger(__name__)

YES_WORDS = frozenset({"sim", "s", "confirmo"})
NO_WORDS = frozenset({"nao", "não", "n", "cancelar"})

UNKNOWN_LOCATION = "Desconhecido"
UNKNOWN_CARRIER = "Desconhecida"
UNKNOWN_PLATE = "SEM-PLACA"

_DEFAULT_MEDIA_TYPE = {"image": "image/jpeg", "document": "application/pdf"}


class ConversationEngine:
    """Drives one conversation per driver from ticket to confirmed freight."""

    def __init__(
        self,
        gateway: MessagingGateway,
        oracle: ExtractionOracle,
        drivers: DriverDirectory,
        freights: FreightRepository,
        store: SessionStore,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._gateway = gateway
        self._oracle = oracle
        self._drivers = drivers
        self._freights = freights
        self._store = store
        self._locks = locks or KeyedLock()
        self._clock = clock

    def handle_incoming(self, sender: str, content: MessageContent) -> None:
        """Process one inbound private message from `sender` (digits only)."""
        now = self._clock()
        self._store.sweep(now)

        sender_hash = hash_identifier(sender)
        driver = self._resolve_driver(sender, sender_hash)
        if driver is None:
            self._gateway.send_text(sender, render("unknown_sender", {}))
            return

        with self._locks.hold(sender):
            stored = self._store.get(sender)
            if stored is None:
                session = ConversationSession(driver_id=driver.id, driver_name=driver.name)
            else:
                # Handlers mutate a working copy; the store only sees committed turns
                session = copy.deepcopy(stored)
            session.touch(now)
            before = session.state

            replies: list[str] = []
            keep = self._dispatch(session, content, replies)

            if not keep:
                # Ended before replying, so a failed send can't replay the confirmation
                self._store.delete(sender)
                self._log_transition(sender_hash, before, "ENDED", content)

            for text in replies:
                self._gateway.send_text(sender, text)

            if keep:
                self._store.put(sender, session)
                if session.state != before:
                    self._log_transition(sender_hash, before, session.state.value, content)

    def _log_transition(
        self,
        sender_hash: str,
        before: ConversationState,
        after: str,
        content: MessageContent,
    ) -> None:
        logger.info(
            "conversation state changed",
            extra={
                "extra_fields": safe_log_context(
                    sender_hash=sender_hash,
                    from_state=before.value,
                    to_state=after,
                    content_kind=content_kind(content),
                )
            },
        )

    def _resolve_driver(self, sender: str, sender_hash: str) -> Driver | None:
        matches = find_matching_drivers(sender, self._drivers.list_messaging_drivers())
        if len(matches) == 1:
            return matches[0]
        if matches:
            logger.warning(
                "ambiguous driver match, rejecting",
                extra={
                    "extra_fields": safe_log_context(
                        sender_hash=sender_hash, matches=len(matches)
                    )
                },
            )
        else:
            logger.info(
                "unknown sender",
                extra={"extra_fields": safe_log_context(sender_hash=sender_hash)},
            )
        return None

    def _dispatch(
        self, session: ConversationSession, content: MessageContent, replies: list[str]
    ) -> bool:
        """Run the handler for the current state. Returns False to end the session."""
        state = session.state
        if state == ConversationState.IDLE:
            return self._on_idle(session, content, replies)
        if state == ConversationState.AWAITING_TICKET:
            return self._on_ticket(session, content, replies)
        if state == ConversationState.AWAITING_CONFIRMATION:
            return self._on_confirmation(session, content, replies)
        return self._on_missing_fields(session, content, replies)

    def _on_idle(
        self, session: ConversationSession, content: MessageContent, replies: list[str]
    ) -> bool:
        if isinstance(content, (ImageContent, DocumentContent)):
            return self._on_ticket(session, content, replies)
        replies.append(render("welcome", {"driver_name": session.driver_name}))
        session.state = ConversationState.AWAITING_TICKET
        return True

    def _on_ticket(
        self, session: ConversationSession, content: MessageContent, replies: list[str]
    ) -> bool:
        # IDLE with media lands here too; failures leave the driver awaiting a ticket
        if session.state == ConversationState.IDLE:
            session.state = ConversationState.AWAITING_TICKET

        try:
            data = self._build_input(content)
        except (NoProviderAvailableError, ValueError) as e:
            logger.warning(
                "media download failed",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )
            replies.append(render("extraction_failed", {}))
            return True

        if data is None:
            replies.append(render("unsupported_content", {}))
            return True

        try:
            draft = self._oracle.extract_freight(data)
        except ExtractionError as e:
            logger.warning(
                "ticket extraction failed",
                extra={"extra_fields": safe_log_context(error=str(e))},
            )
            replies.append(render("extraction_failed", {}))
            return True

        draft.fill_total()
        session.draft = draft
        self._advance(session, replies)
        return True

    def _on_confirmation(
        self, session: ConversationSession, content: MessageContent, replies: list[str]
    ) -> bool:
        answer = content.text.strip().lower() if isinstance(content, TextContent) else ""

        if answer in YES_WORDS:
            try:
                freight_id = self._persist(session)
            except Exception as e:
                logger.error(
                    "freight persistence failed",
                    extra={
                        "extra_fields": safe_log_context(
                            driver_id=session.driver_id, error_type=type(e).__name__
                        )
                    },
                )
                replies.append(render("freight_failed", {}))
                return False

            logger.info(
                "freight registered",
                extra={
                    "extra_fields": safe_log_context(
                        freight_id=freight_id, driver_id=session.driver_id
                    )
                },
            )
            replies.append(render("freight_registered", {}))
            return False

        if answer in NO_WORDS:
            replies.append(render("freight_cancelled", {}))
            return False

        replies.append(render("confirm_prompt", {}))
        return True

    def _on_missing_fields(
        self, session: ConversationSession, content: MessageContent, replies: list[str]
    ) -> bool:
        if not isinstance(content, TextContent) or not content.text.strip():
            replies.append(render("text_required", {}))
            return True

        try:
            supplied = self._oracle.extract_freight(ExtractionInput(text=content.text))
        except ExtractionError as e:
            logger.warning(
                "missing field extraction failed",
                extra={"extra_fields": safe_log_context(error=str(e))},
            )
            replies.append(format_missing_fields(session.missing_fields))
            return True

        filled = session.draft.merge_missing(supplied, session.missing_fields)
        logger.info(
            "missing fields merged",
            extra={"extra_fields": safe_log_context(filled=len(filled))},
        )
        self._advance(session, replies)
        return True

    def _advance(self, session: ConversationSession, replies: list[str]) -> None:
        """Move to confirmation when the draft is complete, else ask for what's missing."""
        missing = session.draft.missing_fields()
        if not missing:
            session.set_missing([])
            session.state = ConversationState.AWAITING_CONFIRMATION
            replies.append(format_summary(session.draft))
            return
        session.set_missing(missing)
        session.state = ConversationState.AWAITING_MISSING_FIELDS
        replies.append(format_missing_fields(session.missing_fields))

    def _build_input(self, content: MessageContent) -> ExtractionInput | None:
        """Oracle input for a ticket message, or None when the content can't carry one.

        Raises:
            NoProviderAvailableError: If the media could not be downloaded.
            ValueError: If a download returned no bytes.
        """
        if isinstance(content, ImageContent) and content.inline_base64:
            return ExtractionInput(
                image_base64=content.inline_base64,
                media_type=content.mime_type or _DEFAULT_MEDIA_TYPE["image"],
                text=content.caption,
            )

        if isinstance(content, (ImageContent, DocumentContent)) and content.media_ref:
            kind = content_kind(content)
            binary = self._gateway.download_media(content.media_ref)
            if not binary:
                raise ValueError("empty media download")
            return ExtractionInput(
                image_base64=base64.b64encode(binary).decode("ascii"),
                media_type=content.mime_type or _DEFAULT_MEDIA_TYPE[kind],
                text=content.caption,
            )

        if isinstance(content, TextContent) and content.text.strip():
            return ExtractionInput(text=content.text)

        return None

    def _persist(self, session: ConversationSession) -> str:
        draft: FreightDraft = session.draft
        now = self._clock()

        origin_id = self._freights.find_or_create_location(draft.origin or UNKNOWN_LOCATION)
        destination_id = self._freights.find_or_create_location(
            draft.destination or UNKNOWN_LOCATION
        )
        carrier_id = self._freights.find_or_create_carrier(draft.carrier or UNKNOWN_CARRIER)
        truck_id = self._freights.find_or_create_truck(draft.plate or UNKNOWN_PLATE)

        tonnage = draft.tonnage or 0.0
        price_per_ton = draft.price_per_ton or 0.0
        total_value = (
            draft.total_value
            if draft.total_value is not None
            else round(tonnage * price_per_ton, 2)
        )

        return self._freights.create_freight(
            NewFreight(
                date=parse_draft_date(draft.date, now.date()),
                origin_id=origin_id,
                destination_id=destination_id,
                tonnage=tonnage,
                price_per_ton=price_per_ton,
                total_value=total_value,
                carrier_id=carrier_id,
                ticket_number=draft.ticket_number or f"WA-{epoch_ms(now)}",
                truck_id=truck_id,
                driver_id=session.driver_id,
                note=draft.note,
            )
        )

"""Background dispatch of normalized inbound messages.

Runs after the webhook response has been sent (FastAPI background task on
the Starlette threadpool). Never raises: the provider already got its 200.
"""

from __future__ import annotations

from fretebot.observability.correlation import correlation_scope
from fretebot.observability.logging import get_logger
from fretebot.observability.redaction import safe_log_context
from fretebot.whatsapp.models import InboundMessage, content_kind, content_text

from .services import Services

logger = get_logger(__name__)


def dispatch_message(services: Services, message: InboundMessage, correlation_id: str) -> None:
    """Route a private message to the engine, a group message to the monitor."""
    with correlation_scope(correlation_id):
        try:
            if message.is_group:
                text = content_text(message.content)
                if text:
                    services.monitor.process_group_message(
                        message.group_jid or "", message.sender, text
                    )
                return

            services.engine.handle_incoming(message.sender, message.content)
        except Exception:
            logger.exception(
                "inbound message processing failed",
                extra={
                    "extra_fields": safe_log_context(
                        provider=message.provider,
                        message_id_prefix=message.message_id[:8],
                        kind=content_kind(message.content),
                    )
                },
            )

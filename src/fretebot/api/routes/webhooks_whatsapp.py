"""WhatsApp webhook routes - Evolution API integration.

Security:
- Sender numbers and text exist only in memory during processing
- Logs contain NO PII (hash prefixes and lengths only)

The provider always gets 200: the message is normalized here and handed to
a background task, so slow oracle calls never hold the webhook open.
"""

import hmac
import os
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Header, Request, Response

from fretebot.observability.correlation import get_correlation_id
from fretebot.observability.logging import get_logger
from fretebot.observability.redaction import safe_log_context
from fretebot.whatsapp.evolution_adapter import InvalidPayloadError, normalize

from ..dispatch import dispatch_message
from ..services import Services, get_services

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)


def _get_services() -> Services:
    """Get the service graph (allows test injection)."""
    return get_services()


def _secret_ok(provided: str | None) -> bool:
    """Check X-Webhook-Secret when EVOLUTION_WEBHOOK_SECRET is configured."""
    expected = os.environ.get("EVOLUTION_WEBHOOK_SECRET", "")
    if not expected:
        return True
    return bool(provided) and hmac.compare_digest(provided, expected)


@router.post("/evolution")
async def evolution_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret"),
) -> Response:
    """Receive an Evolution API event.

    Only messages.upsert is processed; everything else is acknowledged and
    dropped.

    Returns:
        200 OK always.
    """
    correlation_id = get_correlation_id()

    if not _secret_ok(x_webhook_secret):
        logger.warning(
            "evolution webhook secret mismatch",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=200, content="ok")

    try:
        payload: dict[str, Any] = await request.json()
    except Exception:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=200, content="ok")

    if not isinstance(payload, dict):
        return Response(status_code=200, content="ok")

    try:
        msg = normalize(payload)
    except InvalidPayloadError as e:
        logger.warning(
            "invalid evolution payload shape",
            extra={
                "extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))
            },
        )
        return Response(status_code=200, content="ok")

    if msg is None:
        return Response(status_code=200, content="ignored")

    logger.info(
        "evolution webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                message_id_prefix=msg.message_id[:8],
                is_group=msg.is_group,
            )
        },
    )

    try:
        services = _get_services()
    except Exception:
        logger.exception(
            "service initialization failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=200, content="ok")

    background_tasks.add_task(dispatch_message, services, msg, correlation_id)
    return Response(status_code=200, content="ok")

"""WhatsApp webhook routes - Meta Cloud API integration.

Security:
- Sender numbers and text exist only in memory during processing
- Logs contain NO PII
"""

import hmac
import os
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Header, Request, Response
from fastapi.responses import JSONResponse

from fretebot.observability.correlation import get_correlation_id
from fretebot.observability.logging import get_logger
from fretebot.observability.redaction import safe_log_context
from fretebot.whatsapp.meta_adapter import (
    InvalidPayloadError,
    SignatureVerificationError,
    is_business_payload,
    normalize,
    verify_signature,
)

from ..dispatch import dispatch_message
from ..services import Services, get_services

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)


def _get_services() -> Services:
    """Get the service graph (allows test injection)."""
    return get_services()


def _accepted_verify_tokens() -> list[str]:
    """Verify tokens of all active Meta configs, then the env override."""
    tokens: list[str] = []
    try:
        config = _get_services().gateway.current_config()
        tokens.extend(config.meta_verify_tokens)
        if config.meta is not None and config.meta.verify_token:
            tokens.append(config.meta.verify_token)
    except Exception as e:
        logger.warning(
            "could not load meta verify tokens, using environment",
            extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
        )
    env_token = os.environ.get("META_VERIFY_TOKEN", "")
    if env_token:
        tokens.append(env_token)
    return tokens


def _app_secret(services: Services) -> str:
    config = services.gateway.current_config()
    if config.meta is not None and config.meta.app_secret:
        return config.meta.app_secret
    return os.environ.get("META_APP_SECRET", "")


@router.get("/meta")
async def meta_webhook_verify(request: Request) -> Response:
    """Meta webhook verification handshake.

    Returns:
        200 with hub.challenge if the token matches.
        200 {"status": "ok"} when called without any hub params.
        400 if some hub params are missing.
        403 if the token does not match.
    """
    params = request.query_params
    hub_mode = params.get("hub.mode")
    hub_verify_token = params.get("hub.verify_token")
    hub_challenge = params.get("hub.challenge")

    if hub_mode is None and hub_verify_token is None and hub_challenge is None:
        return JSONResponse({"status": "ok"})

    if not hub_mode or not hub_verify_token or hub_challenge is None:
        return Response(status_code=400, content="missing parameters")

    token_ok = any(
        hmac.compare_digest(hub_verify_token, token) for token in _accepted_verify_tokens()
    )
    if hub_mode == "subscribe" and token_ok:
        logger.info(
            "meta webhook verification successful",
            extra={"extra_fields": safe_log_context(hub_mode=hub_mode)},
        )
        return Response(status_code=200, content=hub_challenge, media_type="text/plain")

    logger.warning(
        "meta webhook verification failed",
        extra={"extra_fields": safe_log_context(hub_mode=hub_mode, token_match=token_ok)},
    )
    return Response(status_code=403, content="verification failed")


@router.post("/meta")
async def meta_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
) -> Response:
    """Receive Meta Cloud API webhook.

    IMPORTANT: Always return 200 to Meta, even on errors.
    Meta will retry on non-2xx responses, causing duplicate processing.
    """
    correlation_id = get_correlation_id()

    try:
        body_bytes = await request.body()
        services = _get_services()
        app_secret = _app_secret(services)
    except Exception:
        logger.exception(
            "meta webhook setup failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=200, content="ok")

    if app_secret:
        try:
            verify_signature(body_bytes, x_hub_signature_256 or "", app_secret)
        except SignatureVerificationError as e:
            logger.warning(
                "meta signature verification failed",
                extra={
                    "extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))
                },
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

    if not isinstance(payload, dict) or not is_business_payload(payload):
        logger.debug(
            "non-message webhook ignored",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=200, content="ok")

    try:
        messages = normalize(payload)
    except InvalidPayloadError as e:
        logger.warning(
            "invalid meta payload shape",
            extra={
                "extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))
            },
        )
        return Response(status_code=200, content="ok")

    for msg in messages:
        logger.info(
            "meta webhook received",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    message_id_prefix=msg.message_id[:8],
                    provider="meta",
                )
            },
        )
        background_tasks.add_task(dispatch_message, services, msg, correlation_id)

    return Response(status_code=200, content="ok")

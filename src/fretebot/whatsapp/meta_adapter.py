"""Meta Cloud API adapter - validate and normalize webhook payloads.

Handles Meta WhatsApp Business API webhook payloads, including
signature verification and message normalization. The Cloud API has no
group concept: every message is a private chat.
"""

from datetime import datetime, timezone
import hashlib
import hmac
from typing import Any

from .models import (
    AudioContent,
    DocumentContent,
    ImageContent,
    InboundMessage,
    MessageContent,
    TextContent,
    UnsupportedContent,
)

BUSINESS_ACCOUNT_OBJECT = "whatsapp_business_account"


class InvalidPayloadError(Exception):
    """Raised when Meta payload has invalid shape."""

    pass


class SignatureVerificationError(Exception):
    """Raised when HMAC signature verification fails."""

    pass


def verify_signature(payload_bytes: bytes, signature_header: str, app_secret: str) -> None:
    """Verify Meta webhook signature (HMAC-SHA256).

    Meta signs webhooks with sha256=<hex_signature> format.

    Raises:
        SignatureVerificationError: If signature is invalid or missing.
    """
    if not signature_header:
        raise SignatureVerificationError("missing signature header")

    if not signature_header.startswith("sha256="):
        raise SignatureVerificationError("invalid signature format")

    expected_sig = signature_header[7:]  # Remove "sha256=" prefix

    computed_sig = hmac.new(
        key=app_secret.encode("utf-8"),
        msg=payload_bytes,
        digestmod=hashlib.sha256,
    ).hexdigest()

    if not hmac.compare_digest(computed_sig, expected_sig):
        raise SignatureVerificationError("signature mismatch")


def is_business_payload(payload: dict[str, Any]) -> bool:
    return payload.get("object") == BUSINESS_ACCOUNT_OBJECT


def parse_content(message: dict[str, Any]) -> MessageContent:
    """Map a Cloud API message to a content variant (media id as reference)."""
    message_type = message.get("type", "unknown")

    if message_type == "text":
        text_obj = message.get("text")
        body = text_obj.get("body") if isinstance(text_obj, dict) else None
        return TextContent(text=body or "")

    media = message.get(message_type)
    if not isinstance(media, dict):
        return UnsupportedContent(kind=str(message_type))

    if message_type == "image":
        return ImageContent(
            media_ref=media.get("id"),
            caption=media.get("caption") or None,
            mime_type=media.get("mime_type") or None,
        )
    if message_type == "document":
        return DocumentContent(
            media_ref=media.get("id"),
            caption=media.get("caption") or None,
            filename=media.get("filename") or None,
            mime_type=media.get("mime_type") or None,
        )
    if message_type == "audio":
        return AudioContent(media_ref=media.get("id"))

    return UnsupportedContent(kind=str(message_type))


def normalize(payload: dict[str, Any]) -> list[InboundMessage]:
    """Normalize every message in a Meta webhook payload.

    Status-only deliveries (sent/read receipts) normalize to an empty list.

    Raises:
        InvalidPayloadError: If a message lacks its id or sender.
    """
    received_at = datetime.now(timezone.utc)
    result: list[InboundMessage] = []

    for message in _extract_messages(payload):
        message_id = message.get("id")
        if not message_id or not isinstance(message_id, str):
            raise InvalidPayloadError("missing or invalid message_id")

        # Meta uses "from" field for sender phone number
        sender_phone = message.get("from", "")
        if not sender_phone:
            raise InvalidPayloadError("missing sender phone number")

        result.append(
            InboundMessage(
                message_id=message_id,
                provider="meta",
                received_at=received_at,
                sender=str(sender_phone),
                content=parse_content(message),
            )
        )

    return result


def _first_change_value(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Return entry[0].changes[0].value.

    Meta payload structure:
    {
      "object": "whatsapp_business_account",
      "entry": [{
        "changes": [{
          "value": {
            "metadata": {"phone_number_id": "..."},
            "messages": [{"from": "PHONE", "id": "MSG_ID", "type": "text", ...}]
          },
          "field": "messages"
        }]
      }]
    }
    """
    try:
        entry = payload.get("entry", [])
        if not entry:
            return None

        changes = entry[0].get("changes", [])
        if not changes:
            return None

        value = changes[0].get("value")
        return value if isinstance(value, dict) else None
    except (IndexError, KeyError, TypeError, AttributeError):
        return None


def _extract_messages(payload: dict[str, Any]) -> list[dict[str, Any]]:
    value = _first_change_value(payload)
    if value is None:
        return []
    messages = value.get("messages", [])
    if not isinstance(messages, list):
        return []
    return [m for m in messages if isinstance(m, dict)]

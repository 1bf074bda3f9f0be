"""Evolution API adapter - validate and normalize webhook payloads."""

from datetime import datetime, timezone
from typing import Any

from .models import (
    AudioContent,
    DocumentContent,
    ImageContent,
    InboundMessage,
    MessageContent,
    TextContent,
    UnsupportedContent,
    content_text,
    jid_kind,
    phone_from_jid,
)

MESSAGE_EVENT = "messages.upsert"

# viewOnce wrappers nest a full message; bound the unwrapping
_MAX_WRAP_DEPTH = 3
_VIEW_ONCE_KEYS = ("viewOnceMessage", "viewOnceMessageV2", "viewOnceMessageV2Extension")


class InvalidPayloadError(Exception):
    """Raised when Evolution payload has invalid shape."""

    pass


def is_message_event(payload: dict[str, Any]) -> bool:
    """True for the new-message event ("messages.upsert" or "MESSAGES_UPSERT")."""
    event = payload.get("event")
    if not isinstance(event, str):
        return False
    return event.lower().replace("_", ".") == MESSAGE_EVENT


def parse_content(message: dict[str, Any], message_id: str, depth: int = 0) -> MessageContent:
    """Resolve an Evolution message body into one flat content variant.

    Media variants use the message id as download reference; Evolution
    resolves media by message key.
    """
    if message.get("conversation"):
        return TextContent(text=str(message["conversation"]))

    extended = message.get("extendedTextMessage")
    if isinstance(extended, dict):
        return TextContent(text=str(extended.get("text") or ""))

    image = message.get("imageMessage")
    if isinstance(image, dict):
        return ImageContent(
            media_ref=message_id,
            caption=image.get("caption") or None,
            mime_type=image.get("mimetype") or None,
            inline_base64=message.get("base64") or None,
        )

    document = message.get("documentMessage")
    if isinstance(document, dict):
        return DocumentContent(
            media_ref=message_id,
            caption=document.get("caption") or None,
            filename=document.get("fileName") or None,
            mime_type=document.get("mimetype") or None,
        )

    if isinstance(message.get("audioMessage"), dict):
        return AudioContent(media_ref=message_id)

    if depth < _MAX_WRAP_DEPTH:
        for key in _VIEW_ONCE_KEYS:
            wrapper = message.get(key)
            if isinstance(wrapper, dict) and isinstance(wrapper.get("message"), dict):
                return parse_content(wrapper["message"], message_id, depth + 1)

    kinds = [k for k in message.keys() if k != "messageContextInfo"]
    return UnsupportedContent(kind=kinds[0] if kinds else "unknown")


def normalize(payload: dict[str, Any]) -> InboundMessage | None:
    """Normalize an Evolution webhook payload.

    Returns:
        InboundMessage, or None for payloads that are valid but not for us:
        other event types, messages sent by this account, JIDs that are
        neither private chats nor groups, and group messages without text.

    Raises:
        InvalidPayloadError: If required fields are missing or invalid.
    """
    if not is_message_event(payload):
        return None

    data = payload.get("data")
    if not isinstance(data, dict):
        raise InvalidPayloadError("missing data")

    key = data.get("key")
    if not isinstance(key, dict):
        raise InvalidPayloadError("missing key")

    if key.get("fromMe"):
        return None

    message_id = key.get("id")
    if not message_id or not isinstance(message_id, str):
        raise InvalidPayloadError("missing or invalid message_id")

    remote_jid = key.get("remoteJid", "")
    if not remote_jid or not isinstance(remote_jid, str):
        raise InvalidPayloadError("missing remoteJid")

    message = data.get("message")
    if not isinstance(message, dict):
        raise InvalidPayloadError("missing message")

    content = parse_content(message, message_id)
    received_at = datetime.now(timezone.utc)

    kind = jid_kind(remote_jid)
    if kind == "private":
        return InboundMessage(
            message_id=message_id,
            provider="evolution",
            received_at=received_at,
            sender=phone_from_jid(remote_jid),
            content=content,
        )

    if kind == "group":
        if not content_text(content):
            return None
        participant = key.get("participant") or data.get("participant") or ""
        return InboundMessage(
            message_id=message_id,
            provider="evolution",
            received_at=received_at,
            sender=phone_from_jid(str(participant)),
            content=content,
            group_jid=remote_jid,
        )

    return None

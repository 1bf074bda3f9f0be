"""WhatsApp message models.

Inbound payloads from both providers are normalized into one flat set of
content variants. View-once wrappers are resolved by the adapters, so the
conversation engine only sees the variants below.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Union

PRIVATE_SUFFIX = "@s.whatsapp.net"
GROUP_SUFFIX = "@g.us"

Provider = Literal["evolution", "meta"]


@dataclass(frozen=True)
class TextContent:
    text: str


@dataclass(frozen=True)
class ImageContent:
    """Image sent in chat. `media_ref` is the provider's download handle."""

    media_ref: str | None
    caption: str | None = None
    mime_type: str | None = None
    inline_base64: str | None = None


@dataclass(frozen=True)
class DocumentContent:
    media_ref: str | None
    caption: str | None = None
    filename: str | None = None
    mime_type: str | None = None


@dataclass(frozen=True)
class AudioContent:
    media_ref: str | None


@dataclass(frozen=True)
class UnsupportedContent:
    kind: str


MessageContent = Union[
    TextContent, ImageContent, DocumentContent, AudioContent, UnsupportedContent
]

MEDIA_CONTENT = (ImageContent, DocumentContent)


def content_text(content: MessageContent) -> str | None:
    """Text carried by the content: body for text, caption for media."""
    if isinstance(content, TextContent):
        return content.text
    if isinstance(content, (ImageContent, DocumentContent)):
        return content.caption
    return None


def content_kind(content: MessageContent) -> str:
    if isinstance(content, TextContent):
        return "text"
    if isinstance(content, ImageContent):
        return "image"
    if isinstance(content, DocumentContent):
        return "document"
    if isinstance(content, AudioContent):
        return "audio"
    return content.kind


@dataclass(frozen=True)
class InboundMessage:
    """Normalized inbound message.

    ATENÇÃO PII:
    - `sender` (phone digits) and content text are PII
    - never log them raw; use hash_identifier / lengths
    """

    message_id: str
    provider: Provider
    received_at: datetime
    sender: str
    content: MessageContent
    group_jid: str | None = None

    @property
    def is_group(self) -> bool:
        return self.group_jid is not None


def phone_from_jid(jid: str) -> str:
    """Strip the WhatsApp JID suffix ("5511...@s.whatsapp.net" -> "5511...")."""
    return jid.split("@")[0]


def jid_kind(jid: str) -> Literal["private", "group", "other"]:
    if jid.endswith(PRIVATE_SUFFIX):
        return "private"
    if jid.endswith(GROUP_SUFFIX):
        return "group"
    return "other"

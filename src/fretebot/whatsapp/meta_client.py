"""Outbound WhatsApp messaging via Meta Cloud API (Graph API).

Security: NEVER log `to_phone` or `text`. Only log hashes and lengths.
"""

from __future__ import annotations

import base64
import binascii
import mimetypes
import os
from typing import Any

import requests

from fretebot.observability.redaction import hash_identifier

from .config import MetaConfig
from .http import ProviderError, json_body, request

PROVIDER = "meta"

# Default Graph API version
DEFAULT_GRAPH_API_VERSION = "v20.0"

_DEFAULT_MIME = {
    "image": "image/jpeg",
    "document": "application/pdf",
    "audio": "audio/ogg",
    "video": "video/mp4",
}

DOWNLOAD_TIMEOUT = 30


def _graph_base() -> str:
    version = os.environ.get("META_GRAPH_API_VERSION", DEFAULT_GRAPH_API_VERSION)
    return f"https://graph.facebook.com/{version}"


class MetaCloudClient:
    """Client for one WhatsApp Business phone number."""

    name = PROVIDER

    def __init__(self, config: MetaConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self._session = session or requests.Session()

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.token}"}

    def is_configured(self) -> bool:
        return bool(self.config.token) and bool(self.config.phone_number_id)

    def is_available(self) -> bool:
        # No connection state to probe; a configured number is usable
        return self.is_configured()

    def _post_message(self, payload: dict[str, Any], operation: str, to_phone: str) -> None:
        request(
            self._session,
            "POST",
            f"{_graph_base()}/{self.config.phone_number_id}/messages",
            provider=PROVIDER,
            operation=operation,
            json={"messaging_product": "whatsapp", **payload},
            headers={**self._auth_headers(), "Content-Type": "application/json"},
            log_ctx={"to_hash": hash_identifier(to_phone)},
        )

    def send_text(self, to_phone: str, text: str) -> None:
        self._post_message(
            {
                "recipient_type": "individual",
                "to": to_phone,
                "type": "text",
                "text": {"body": text},
            },
            "send_text",
            to_phone,
        )

    def send_media(
        self,
        to_phone: str,
        kind: str,
        media: str,
        caption: str | None = None,
        filename: str | None = None,
    ) -> None:
        """Send media given as a public URL, or as base64 (uploaded first)."""
        if media.startswith(("http://", "https://")):
            media_obj: dict[str, Any] = {"link": media}
        else:
            media_obj = {"id": self.upload_media(kind, media, filename)}
        if caption and kind != "audio":
            media_obj["caption"] = caption
        if filename and kind == "document":
            media_obj["filename"] = filename

        self._post_message(
            {"recipient_type": "individual", "to": to_phone, "type": kind, kind: media_obj},
            "send_media",
            to_phone,
        )

    def upload_media(self, kind: str, media_base64: str, filename: str | None = None) -> str:
        """Upload base64 media to the Graph API and return its media id."""
        try:
            content = base64.b64decode(media_base64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ProviderError(PROVIDER, "upload_media", "invalid base64") from e

        mime_type = (mimetypes.guess_type(filename)[0] if filename else None) or _DEFAULT_MIME.get(
            kind, "application/octet-stream"
        )
        response = request(
            self._session,
            "POST",
            f"{_graph_base()}/{self.config.phone_number_id}/media",
            provider=PROVIDER,
            operation="upload_media",
            headers=self._auth_headers(),
            data={"messaging_product": "whatsapp", "type": mime_type},
            files={"file": (filename or f"upload.{kind}", content, mime_type)},
            timeout=DOWNLOAD_TIMEOUT,
        )
        data = json_body(response, provider=PROVIDER, operation="upload_media")
        media_id = data.get("id") if isinstance(data, dict) else None
        if not media_id:
            raise ProviderError(PROVIDER, "upload_media", "no media id returned")
        return str(media_id)

    def download_media(self, media_id: str) -> bytes:
        """Resolve the media URL, then fetch the binary (URL expires in ~5 min)."""
        response = request(
            self._session,
            "GET",
            f"{_graph_base()}/{media_id}",
            provider=PROVIDER,
            operation="resolve_media",
            headers=self._auth_headers(),
        )
        data = json_body(response, provider=PROVIDER, operation="resolve_media")
        media_url = data.get("url") if isinstance(data, dict) else None
        if not media_url:
            raise ProviderError(PROVIDER, "resolve_media", "no media url returned")

        binary = request(
            self._session,
            "GET",
            media_url,
            provider=PROVIDER,
            operation="download_media",
            headers=self._auth_headers(),
            timeout=DOWNLOAD_TIMEOUT,
        )
        return binary.content


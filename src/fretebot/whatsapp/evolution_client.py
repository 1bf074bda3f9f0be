"""Evolution API client (self-hosted multi-device gateway).

Covers the message hot path (send, media download, connection state) and
the instance lifecycle actions used by the admin routes.

Security: NEVER log `number` or `text`. Only log hashes and lengths.
"""

from __future__ import annotations

import base64
from typing import Any

import requests

from fretebot.observability.logging import get_logger
from fretebot.observability.redaction import hash_identifier

from .config import EvolutionConfig
from .http import ProviderError, json_body, request

logger = get_logger(__name__)

PROVIDER = "evolution"

DEFAULT_WEBHOOK_EVENTS = [
    "MESSAGES_UPSERT",
    "CONNECTION_UPDATE",
    "QRCODE_UPDATED",
]

# Media downloads carry whole images/PDFs
DOWNLOAD_TIMEOUT = 30


class EvolutionClient:
    """Thin client over the Evolution REST API for one instance."""

    name = PROVIDER

    def __init__(self, config: EvolutionConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self._session = session or requests.Session()
        self._session.headers.update(
            {"apikey": config.api_key, "Content-Type": "application/json"}
        )

    @property
    def instance(self) -> str:
        return self.config.instance

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _call(self, method: str, path: str, operation: str, **kwargs: Any) -> requests.Response:
        return request(
            self._session,
            method,
            self._url(path),
            provider=PROVIDER,
            operation=operation,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connection_state(self) -> str | None:
        """Raw instance state ("open", "connecting", "close") or None on error."""
        try:
            response = self._call(
                "GET", f"/instance/connectionState/{self.instance}", "connection_state"
            )
            data = json_body(response, provider=PROVIDER, operation="connection_state")
        except ProviderError:
            return None
        instance = data.get("instance") if isinstance(data, dict) else None
        if isinstance(instance, dict):
            return instance.get("state")
        return data.get("state") if isinstance(data, dict) else None

    def is_connected(self) -> bool:
        return self.connection_state() == "open"

    def is_available(self) -> bool:
        """Hot-path health check used by the gateway before sending."""
        return self.is_connected()

    def get_pairing_code(self) -> str | None:
        """QR code (base64 image) for pairing a phone, if the instance offers one."""
        try:
            response = self._call("GET", f"/instance/connect/{self.instance}", "connect")
            data = json_body(response, provider=PROVIDER, operation="connect")
        except ProviderError:
            return None
        if not isinstance(data, dict):
            return None
        if data.get("base64"):
            return data["base64"]
        qrcode = data.get("qrcode")
        if isinstance(qrcode, dict) and qrcode.get("base64"):
            return qrcode["base64"]
        return None

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def send_text(self, number: str, text: str) -> None:
        self._call(
            "POST",
            f"/message/sendText/{self.instance}",
            "send_text",
            json={"number": number, "text": text},
            log_ctx={"to_hash": hash_identifier(number), "text_len": len(text)},
        )

    def send_media(
        self,
        number: str,
        kind: str,
        media: str,
        caption: str | None = None,
        filename: str | None = None,
    ) -> None:
        """Send media given as URL or base64 string."""
        payload: dict[str, Any] = {"number": number, "mediatype": kind, "media": media}
        if caption:
            payload["caption"] = caption
        if filename:
            payload["fileName"] = filename
        self._call(
            "POST",
            f"/message/sendMedia/{self.instance}",
            "send_media",
            json=payload,
            log_ctx={"to_hash": hash_identifier(number), "kind": kind},
        )

    def download_media(self, message_id: str) -> bytes:
        response = self._call(
            "POST",
            f"/chat/getBase64FromMediaMessage/{self.instance}",
            "download_media",
            json={"message": {"key": {"id": message_id}}},
            timeout=DOWNLOAD_TIMEOUT,
        )
        data = json_body(response, provider=PROVIDER, operation="download_media")
        encoded = data.get("base64") if isinstance(data, dict) else None
        if not encoded:
            raise ProviderError(PROVIDER, "download_media", "no base64 in response")
        try:
            return base64.b64decode(encoded)
        except ValueError as e:
            raise ProviderError(PROVIDER, "download_media", "invalid base64") from e

    # ------------------------------------------------------------------
    # Instance lifecycle (admin)
    # ------------------------------------------------------------------

    def create_instance(self, token: str | None = None, qrcode: bool = True) -> dict[str, Any]:
        response = self._call(
            "POST",
            "/instance/create",
            "create_instance",
            json={
                "instanceName": self.instance,
                "token": token or "",
                "qrcode": qrcode,
                "integration": "WHATSAPP-BAILEYS",
            },
        )
        return json_body(response, provider=PROVIDER, operation="create_instance") or {}

    def restart_instance(self) -> str | None:
        response = self._call("PUT", f"/instance/restart/{self.instance}", "restart_instance")
        data = json_body(response, provider=PROVIDER, operation="restart_instance")
        if isinstance(data, dict):
            inner = data.get("instance")
            if isinstance(inner, dict):
                return inner.get("state")
            return data.get("state")
        return None

    def logout_instance(self) -> None:
        self._call("DELETE", f"/instance/logout/{self.instance}", "logout_instance")

    def delete_instance(self) -> None:
        self._call("DELETE", f"/instance/delete/{self.instance}", "delete_instance")

    def fetch_instances(self) -> list[dict[str, Any]]:
        response = self._call("GET", "/instance/fetchInstances", "fetch_instances")
        data = json_body(response, provider=PROVIDER, operation="fetch_instances")
        return data if isinstance(data, list) else []

    def set_webhook(self, webhook_url: str, events: list[str] | None = None) -> None:
        self._call(
            "POST",
            f"/webhook/set/{self.instance}",
            "set_webhook",
            json={
                "webhook": {
                    "enabled": True,
                    "url": webhook_url,
                    "webhookByEvents": False,
                    "webhookBase64": False,
                    "events": events or DEFAULT_WEBHOOK_EVENTS,
                }
            },
        )

    def get_webhook(self) -> dict[str, Any] | None:
        try:
            response = self._call("GET", f"/webhook/find/{self.instance}", "get_webhook")
            data = json_body(response, provider=PROVIDER, operation="get_webhook")
        except ProviderError:
            return None
        return data or None

    def fetch_groups(self) -> list[dict[str, Any]]:
        """Groups this number participates in, as {id, name, size, desc}."""
        response = self._call(
            "GET",
            f"/group/fetchAllGroups/{self.instance}",
            "fetch_groups",
            params={"getParticipants": "false"},
        )
        data = json_body(response, provider=PROVIDER, operation="fetch_groups")
        if not isinstance(data, list):
            return []
        return [
            {
                "id": g.get("id"),
                "name": g.get("subject"),
                "size": g.get("size"),
                "desc": g.get("desc") or "",
            }
            for g in data
            if isinstance(g, dict)
        ]

"""Administrative actions on the self-hosted Evolution instance.

Outside the message hot path. Actions that change the connection state
persist the `connected` flag (when the config came from the store) and
invalidate the gateway's cached configuration.
"""

from __future__ import annotations

import os
from typing import Any, Callable

from fretebot.domain.ports import WhatsAppConfigRepository
from fretebot.observability.logging import get_logger
from fretebot.observability.redaction import safe_log_context

from .evolution_client import DEFAULT_WEBHOOK_EVENTS, EvolutionClient
from .gateway import MessagingGateway
from .http import ProviderError

logger = get_logger(__name__)

EVOLUTION_WEBHOOK_PATH = "/webhooks/whatsapp/evolution"
DEFAULT_PUBLIC_BASE_URL = "http://localhost:8000"


class InstanceActionError(Exception):
    """Admin action could not run.

    `reason` is "unknown_action", "not_configured" or "provider_error".
    """

    def __init__(self, reason: str, detail: str) -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(detail)


def _create(client: EvolutionClient, params: dict[str, Any]) -> tuple[dict[str, Any], bool | None]:
    result = client.create_instance(token=params.get("token"))
    qrcode = result.get("qrcode") if isinstance(result, dict) else None
    return {
        "instance": result.get("instance") if isinstance(result, dict) else None,
        "pairing_code": qrcode.get("base64") if isinstance(qrcode, dict) else None,
    }, False


def _connect(client: EvolutionClient, params: dict[str, Any]) -> tuple[dict[str, Any], bool | None]:
    return {"pairing_code": client.get_pairing_code()}, None


def _status(client: EvolutionClient, params: dict[str, Any]) -> tuple[dict[str, Any], bool | None]:
    state = client.connection_state()
    connected = state == "open"
    return {"state": state, "connected": connected}, connected


def _restart(client: EvolutionClient, params: dict[str, Any]) -> tuple[dict[str, Any], bool | None]:
    state = client.restart_instance()
    return {"state": state}, state == "open"


def _reconnect(client: EvolutionClient, params: dict[str, Any]) -> tuple[dict[str, Any], bool | None]:
    try:
        client.logout_instance()
    except ProviderError:
        # Already logged out
        pass
    return {"pairing_code": client.get_pairing_code()}, False


def _logout(client: EvolutionClient, params: dict[str, Any]) -> tuple[dict[str, Any], bool | None]:
    client.logout_instance()
    return {}, False


def _delete(client: EvolutionClient, params: dict[str, Any]) -> tuple[dict[str, Any], bool | None]:
    client.delete_instance()
    return {}, False


def _set_webhook(client: EvolutionClient, params: dict[str, Any]) -> tuple[dict[str, Any], bool | None]:
    base_url = params.get("webhook_url") or os.environ.get("PUBLIC_BASE_URL", DEFAULT_PUBLIC_BASE_URL)
    webhook_url = base_url.rstrip("/") + EVOLUTION_WEBHOOK_PATH
    client.set_webhook(webhook_url, params.get("events") or DEFAULT_WEBHOOK_EVENTS)
    return {"webhook_url": webhook_url}, None


def _get_webhook(client: EvolutionClient, params: dict[str, Any]) -> tuple[dict[str, Any], bool | None]:
    return {"webhook": client.get_webhook()}, None


def _fetch_instances(client: EvolutionClient, params: dict[str, Any]) -> tuple[dict[str, Any], bool | None]:
    return {"instances": client.fetch_instances()}, None


def _fetch_groups(client: EvolutionClient, params: dict[str, Any]) -> tuple[dict[str, Any], bool | None]:
    return {"groups": client.fetch_groups()}, None


# action -> (handler, changes connection state)
ACTIONS: dict[str, tuple[Callable[[EvolutionClient, dict[str, Any]], tuple[dict[str, Any], bool | None]], bool]] = {
    "create": (_create, True),
    "connect": (_connect, False),
    "status": (_status, False),
    "restart": (_restart, True),
    "reconnect": (_reconnect, True),
    "logout": (_logout, True),
    "delete": (_delete, True),
    "set-webhook": (_set_webhook, False),
    "get-webhook": (_get_webhook, False),
    "fetch-instances": (_fetch_instances, False),
    "fetch-groups": (_fetch_groups, False),
}


def run_instance_action(
    gateway: MessagingGateway,
    configs: WhatsAppConfigRepository,
    action: str,
    params: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Run one admin action against the configured Evolution instance.

    Args:
        gateway: Gateway holding the cached provider configuration.
        configs: Store for the `connected` flag.
        action: One of ACTIONS.
        params: Optional action parameters (token, webhook_url, events).

    Returns:
        Action result as a JSON-safe dict.

    Raises:
        InstanceActionError: Unknown action, Evolution not configured, or the
            Evolution API call failed.
    """
    entry = ACTIONS.get(action)
    if entry is None:
        raise InstanceActionError(
            "unknown_action",
            f"Invalid action: {action}. Use: {', '.join(ACTIONS)}",
        )
    handler, changes_state = entry

    client = gateway.evolution_client()
    if client is None:
        raise InstanceActionError(
            "not_configured",
            "Evolution API is not configured (URL, API key and instance are required)",
        )

    try:
        result, connected = handler(client, params or {})
    except ProviderError as e:
        logger.warning(
            "evolution instance action failed",
            extra={
                "extra_fields": safe_log_context(
                    action=action, status_code=e.status_code, detail=e.detail
                )
            },
        )
        raise InstanceActionError("provider_error", str(e)) from e

    config_id = client.config.config_id
    if connected is not None and config_id:
        configs.set_connected(config_id, connected)
    if changes_state:
        gateway.invalidate_config()

    logger.info(
        "evolution instance action completed",
        extra={"extra_fields": safe_log_context(action=action, connected=connected)},
    )
    return {"success": True, **result}

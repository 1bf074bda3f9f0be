"""WhatsApp admin routes - gateway status and Evolution instance actions."""

from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from fretebot.observability.logging import get_logger
from fretebot.whatsapp.instance_admin import InstanceActionError, run_instance_action

from ..services import Services, get_services

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])

logger = get_logger(__name__)

_ERROR_STATUS = {
    "unknown_action": 400,
    "not_configured": 400,
    "provider_error": 502,
}


class InstanceActionRequest(BaseModel):
    token: str | None = None
    webhook_url: str | None = None
    events: list[str] | None = None


def _get_services() -> Services:
    """Get the service graph (allows test injection)."""
    return get_services()


@router.get("/status")
def whatsapp_status() -> dict[str, Any]:
    """Gateway status; includes a pairing code while Evolution is disconnected."""
    gateway = _get_services().gateway
    status = gateway.get_status()
    pairing_code = None
    if not status.self_hosted_connected:
        pairing_code = gateway.get_pairing_code()
    return {
        "self_hosted_connected": status.self_hosted_connected,
        "official_configured": status.official_configured,
        "pairing_code": pairing_code,
    }


@router.post("/config/invalidate")
def invalidate_config() -> dict[str, str]:
    _get_services().gateway.invalidate_config()
    return {"status": "ok"}


@router.post("/instance/{action}")
def instance_action(action: str, body: InstanceActionRequest | None = None) -> dict[str, Any]:
    """Run an Evolution instance action (create, connect, status, restart, ...)."""
    services = _get_services()
    params = body.model_dump(exclude_none=True) if body is not None else {}
    try:
        return run_instance_action(services.gateway, services.whatsapp_configs, action, params)
    except InstanceActionError as e:
        raise HTTPException(status_code=_ERROR_STATUS.get(e.reason, 400), detail=e.detail)

"""Shared HTTP plumbing for the WhatsApp provider clients.

Security: NEVER log recipient numbers or message text. Only log hashes,
lengths and the operation name.
"""

import time
from typing import Any

import requests

from fretebot.observability.logging import get_logger
from fretebot.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Timeout for HTTP requests (seconds)
HTTP_TIMEOUT = 15

# Retry config
MAX_RETRIES = 1
RETRY_DELAY = 0.2


class ProviderError(Exception):
    """A provider call failed (network, HTTP status or unexpected body)."""

    def __init__(self, provider: str, operation: str, detail: str, status_code: int | None = None):
        self.provider = provider
        self.operation = operation
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{provider} {operation} failed: {detail}")


def _is_retryable(exc: requests.RequestException) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    response = getattr(exc, "response", None)
    return response is not None and 500 <= response.status_code < 600


def request(
    session: requests.Session,
    method: str,
    url: str,
    *,
    provider: str,
    operation: str,
    log_ctx: dict[str, Any] | None = None,
    timeout: float = HTTP_TIMEOUT,
    **kwargs: Any,
) -> requests.Response:
    """Perform an HTTP call with one retry on network errors and 5xx.

    Raises:
        ProviderError: When the call still fails after the retry, or on 4xx.
    """
    ctx = safe_log_context(provider=provider, operation=operation, **(log_ctx or {}))

    for attempt in range(MAX_RETRIES + 1):
        try:
            response = session.request(method, url, timeout=timeout, **kwargs)
            response.raise_for_status()
            return response
        except requests.RequestException as e:
            if attempt < MAX_RETRIES and _is_retryable(e):
                logger.warning(
                    "provider call failed, retrying",
                    extra={
                        "extra_fields": {
                            **ctx,
                            "attempt": str(attempt),
                            "error_type": type(e).__name__,
                        }
                    },
                )
                time.sleep(RETRY_DELAY)
                continue

            status_code = e.response.status_code if getattr(e, "response", None) is not None else None
            logger.error(
                "provider call failed",
                extra={
                    "extra_fields": {
                        **ctx,
                        "attempt": str(attempt),
                        "error_type": type(e).__name__,
                        "status_code": str(status_code),
                    }
                },
            )
            raise ProviderError(provider, operation, type(e).__name__, status_code) from e

    # Loop always returns or raises
    raise ProviderError(provider, operation, "exhausted retries")


def json_body(response: requests.Response, *, provider: str, operation: str) -> Any:
    """Decode a JSON response body, mapping decode errors to ProviderError."""
    try:
        return response.json()
    except ValueError as e:
        raise ProviderError(provider, operation, "invalid json body") from e

"""Messaging gateway - one send/download interface over both WhatsApp backends.

Providers are tried in a fixed order (Evolution, then Meta). A provider is
used for sending only while it reports itself available; any failure falls
through to the next one. Callers never see which backend delivered.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Protocol, TypeVar

from fretebot.observability.logging import get_logger
from fretebot.observability.redaction import hash_identifier, safe_log_context

from .config import ConfigCache, ProviderConfig
from .evolution_client import PROVIDER as EVOLUTION, EvolutionClient
from .meta_client import MetaCloudClient

logger = get_logger(__name__)

T = TypeVar("T")


class NoProviderAvailableError(Exception):
    """Raised when no backend could perform the operation."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"no WhatsApp provider available for {operation}")


class MessagingProvider(Protocol):
    name: str

    def is_available(self) -> bool: ...

    def send_text(self, number: str, text: str) -> None: ...

    def send_media(
        self,
        number: str,
        kind: str,
        media: str,
        caption: str | None = None,
        filename: str | None = None,
    ) -> None: ...

    def download_media(self, media_ref: str) -> bytes: ...


@dataclass(frozen=True)
class GatewayStatus:
    self_hosted_connected: bool
    official_configured: bool


def build_providers(config: ProviderConfig) -> list[MessagingProvider]:
    """Ordered provider list for a configuration snapshot."""
    providers: list[MessagingProvider] = []
    if config.evolution is not None:
        providers.append(EvolutionClient(config.evolution))
    if config.meta is not None:
        providers.append(MetaCloudClient(config.meta))
    return providers


class MessagingGateway:
    """Send, download and status operations with automatic failover."""

    def __init__(
        self,
        config_cache: ConfigCache,
        provider_factory: Callable[[ProviderConfig], list[MessagingProvider]] = build_providers,
    ) -> None:
        self._config_cache = config_cache
        self._provider_factory = provider_factory
        self._lock = threading.Lock()
        # Providers are rebuilt only when the cached snapshot changes
        self._built: tuple[ProviderConfig, list[MessagingProvider]] | None = None

    def _providers(self) -> list[MessagingProvider]:
        config = self._config_cache.get()
        built = self._built
        if built is not None and built[0] is config:
            return built[1]
        with self._lock:
            if self._built is None or self._built[0] is not config:
                self._built = (config, self._provider_factory(config))
            return self._built[1]

    def _run(
        self,
        operation: str,
        action: Callable[[MessagingProvider], T],
        *,
        require_available: bool,
    ) -> T:
        for provider in self._providers():
            try:
                if require_available and not provider.is_available():
                    logger.info(
                        "provider unavailable, skipping",
                        extra={
                            "extra_fields": safe_log_context(
                                provider=provider.name, operation=operation
                            )
                        },
                    )
                    continue
                result = action(provider)
            except Exception as e:
                logger.warning(
                    "provider failed, trying next",
                    extra={
                        "extra_fields": safe_log_context(
                            provider=provider.name,
                            operation=operation,
                            error_type=type(e).__name__,
                        )
                    },
                )
                continue

            logger.info(
                "provider operation succeeded",
                extra={
                    "extra_fields": safe_log_context(provider=provider.name, operation=operation)
                },
            )
            return result

        logger.error(
            "no whatsapp provider available",
            extra={"extra_fields": safe_log_context(operation=operation)},
        )
        raise NoProviderAvailableError(operation)

    def send_text(self, to: str, text: str) -> None:
        logger.info(
            "sending text",
            extra={
                "extra_fields": safe_log_context(to_hash=hash_identifier(to), text_len=len(text))
            },
        )
        self._run("send_text", lambda p: p.send_text(to, text), require_available=True)

    def send_media(
        self,
        to: str,
        kind: str,
        media: str,
        caption: str | None = None,
        filename: str | None = None,
    ) -> None:
        self._run(
            "send_media",
            lambda p: p.send_media(to, kind, media, caption, filename),
            require_available=True,
        )

    def download_media(self, media_ref: str) -> bytes:
        return self._run(
            "download_media",
            lambda p: p.download_media(media_ref),
            require_available=False,
        )

    def get_status(self) -> GatewayStatus:
        config = self._config_cache.get()
        connected = False
        evolution = self.evolution_client()
        if evolution is not None:
            try:
                connected = evolution.is_connected()
            except Exception:
                connected = False
        return GatewayStatus(
            self_hosted_connected=connected,
            official_configured=config.meta is not None
            and bool(config.meta.token)
            and bool(config.meta.phone_number_id),
        )

    def get_pairing_code(self) -> str | None:
        evolution = self.evolution_client()
        if evolution is None:
            return None
        return evolution.get_pairing_code()

    def evolution_client(self) -> EvolutionClient | None:
        """Client for the configured Evolution instance (admin actions)."""
        for provider in self._providers():
            if provider.name == EVOLUTION:
                return provider  # type: ignore[return-value]
        return None

    def current_config(self) -> ProviderConfig:
        return self._config_cache.get()

    def invalidate_config(self) -> None:
        self._config_cache.invalidate()
        with self._lock:
            self._built = None

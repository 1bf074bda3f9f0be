"""WhatsApp provider configuration with a TTL cache.

Configuration rows live in the `whatsapp_configs` table and are edited by
operators through the back office. Each backend falls back to environment
variables when no usable row exists (or the database is unreachable).

Priority per backend:
1. First active database row of that kind with all required fields
2. Environment variables
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from fretebot.domain.ports import WhatsAppConfigRepository
from fretebot.observability.logging import get_logger
from fretebot.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 60.0

KIND_EVOLUTION = "EVOLUTION"
KIND_META = "META_OFFICIAL"


@dataclass(frozen=True)
class EvolutionConfig:
    """Self-hosted Evolution API instance."""

    base_url: str
    api_key: str
    instance: str
    config_id: str | None = None


@dataclass(frozen=True)
class MetaConfig:
    """Meta Cloud API phone number."""

    token: str
    phone_number_id: str
    verify_token: str = ""
    app_secret: str = ""
    config_id: str | None = None


@dataclass(frozen=True)
class ProviderConfig:
    """Snapshot of both backends. Either may be None (not configured)."""

    evolution: EvolutionConfig | None = None
    meta: MetaConfig | None = None
    # Every active Meta verify token (webhook handshake accepts any of them)
    meta_verify_tokens: tuple[str, ...] = field(default_factory=tuple)


def _evolution_from_row(row: Mapping[str, Any]) -> EvolutionConfig | None:
    url = row.get("evolution_url")
    key = row.get("evolution_api_key")
    instance = row.get("evolution_instance")
    if not url or not key or not instance:
        return None
    return EvolutionConfig(base_url=url, api_key=key, instance=instance, config_id=str(row.get("id")))


def _meta_from_row(row: Mapping[str, Any]) -> MetaConfig | None:
    token = row.get("meta_token")
    phone_id = row.get("meta_phone_id")
    if not token or not phone_id:
        return None
    return MetaConfig(
        token=token,
        phone_number_id=phone_id,
        verify_token=row.get("meta_verify_token") or "",
        app_secret=row.get("meta_app_secret") or "",
        config_id=str(row.get("id")),
    )


def evolution_from_env(env: Mapping[str, str]) -> EvolutionConfig | None:
    """EVOLUTION_BASE_URL, EVOLUTION_API_KEY and EVOLUTION_INSTANCE, all required."""
    base_url = env.get("EVOLUTION_BASE_URL", "")
    api_key = env.get("EVOLUTION_API_KEY", "")
    instance = env.get("EVOLUTION_INSTANCE", "")
    if not base_url or not api_key or not instance:
        return None
    return EvolutionConfig(base_url=base_url, api_key=api_key, instance=instance)


def meta_from_env(env: Mapping[str, str]) -> MetaConfig | None:
    """META_ACCESS_TOKEN and META_PHONE_NUMBER_ID required; verify token/secret optional."""
    token = env.get("META_ACCESS_TOKEN", "")
    phone_id = env.get("META_PHONE_NUMBER_ID", "")
    if not token or not phone_id:
        return None
    return MetaConfig(
        token=token,
        phone_number_id=phone_id,
        verify_token=env.get("META_VERIFY_TOKEN", ""),
        app_secret=env.get("META_APP_SECRET", ""),
    )


def build_provider_config(
    rows: list[Mapping[str, Any]],
    env: Mapping[str, str],
) -> ProviderConfig:
    """Merge database rows with environment fallbacks."""
    evolution: EvolutionConfig | None = None
    meta: MetaConfig | None = None
    verify_tokens: list[str] = []

    for row in rows:
        kind = row.get("kind")
        if kind == KIND_EVOLUTION and evolution is None:
            evolution = _evolution_from_row(row)
        elif kind == KIND_META:
            if row.get("meta_verify_token"):
                verify_tokens.append(row["meta_verify_token"])
            if meta is None:
                meta = _meta_from_row(row)

    return ProviderConfig(
        evolution=evolution or evolution_from_env(env),
        meta=meta or meta_from_env(env),
        meta_verify_tokens=tuple(verify_tokens),
    )


def _ttl_from_env() -> float:
    try:
        return float(os.environ.get("WHATSAPP_CONFIG_TTL_SECONDS", DEFAULT_TTL_SECONDS))
    except ValueError:
        return DEFAULT_TTL_SECONDS


class ConfigCache:
    """TTL cache over the provider configuration.

    Readers of a fresh snapshot never take the lock: the snapshot is an
    immutable tuple swapped in a single assignment. Refresh and invalidation
    are serialized by the lock.
    """

    def __init__(
        self,
        repository: WhatsAppConfigRepository | None,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._repository = repository
        self._ttl = _ttl_from_env() if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._env = env
        self._lock = threading.Lock()
        self._snapshot: tuple[ProviderConfig, float] | None = None

    def _fresh(self, snapshot: tuple[ProviderConfig, float] | None) -> bool:
        return snapshot is not None and (self._clock() - snapshot[1]) < self._ttl

    def get(self) -> ProviderConfig:
        snapshot = self._snapshot
        if self._fresh(snapshot):
            return snapshot[0]  # type: ignore[index]

        with self._lock:
            snapshot = self._snapshot
            if self._fresh(snapshot):
                return snapshot[0]  # type: ignore[index]
            config = self._load()
            self._snapshot = (config, self._clock())
            return config

    def invalidate(self) -> None:
        """Force the next get() to reload (call after administrative changes)."""
        with self._lock:
            self._snapshot = None
        logger.info("whatsapp config cache invalidated")

    def _load(self) -> ProviderConfig:
        env = self._env if self._env is not None else os.environ
        rows: list[Mapping[str, Any]] = []
        if self._repository is not None:
            try:
                rows = self._repository.list_active_configs()
            except Exception as e:
                # Store unreachable: keep serving from the environment
                logger.warning(
                    "failed to load whatsapp config from store, using environment",
                    extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
                )

        config = build_provider_config(rows, env)
        logger.info(
            "whatsapp config loaded",
            extra={
                "extra_fields": safe_log_context(
                    evolution_configured=config.evolution is not None,
                    meta_configured=config.meta is not None,
                    rows=len(rows),
                )
            },
        )
        return config

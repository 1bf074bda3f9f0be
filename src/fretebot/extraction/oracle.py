"""Structured-extraction oracle: ticket fields and opportunity classification.

The chat core depends only on the `ExtractionOracle` protocol. The backing
LLM provider is chosen by configuration (AI settings row, then AI_PROVIDER)
and is invisible to callers.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

import anthropic

from fretebot.domain.freight import FreightDraft, coerce_number
from fretebot.domain.ports import AiSettingsRepository
from fretebot.observability.logging import get_logger
from fretebot.observability.redaction import safe_log_context

from .prompts import CLASSIFY_SYSTEM_PROMPT, EXTRACT_SYSTEM_PROMPT, render_classify_prompt

logger = get_logger(__name__)

DEFAULT_PROVIDER = "claude"
DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_TIMEOUT_SECONDS = 60.0
MAX_TOKENS = 1024

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")

_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})

# Operator prompts written for the Portuguese schema still parse
_FREIGHT_KEY_ALIASES = {
    "data": "date",
    "origem": "origin",
    "destino": "destination",
    "toneladas": "tonnage",
    "precoTonelada": "price_per_ton",
    "valorTotal": "total_value",
    "transportadora": "carrier",
    "ticketNota": "ticket_number",
    "placa": "plate",
    "motorista": "driver_name",
    "observacao": "note",
}

_CLASSIFY_KEY_ALIASES = {
    "isOpportunity": "is_opportunity",
    "tipoCarga": "cargo_type",
    "origem": "origin",
    "destino": "destination",
    "tonelagem": "tonnage",
    "precoOferecido": "offered_price",
    "urgencia": "urgency",
    "contato": "contact",
    "prioridade": "priority",
}


class ExtractionError(Exception):
    """The oracle failed, timed out or returned something unusable."""

    pass


@dataclass(frozen=True)
class ExtractionInput:
    """Either a base64 image/document (with media type), text, or both."""

    image_base64: str | None = None
    media_type: str | None = None
    text: str | None = None


@dataclass(frozen=True)
class ClassificationContext:
    keywords: list[str] = field(default_factory=list)
    preferred_routes: list[str] = field(default_factory=list)
    min_price_per_ton: float = 0.0


@dataclass(frozen=True)
class OpportunityClassification:
    is_opportunity: bool
    cargo_type: str | None = None
    origin: str | None = None
    destination: str | None = None
    tonnage: float | None = None
    offered_price: float | None = None
    urgency: str | None = None
    contact: str | None = None
    priority: str = "BAIXA"


class ExtractionOracle(Protocol):
    def extract_freight(self, data: ExtractionInput) -> FreightDraft: ...

    def classify_opportunity(
        self, message: str, context: ClassificationContext
    ) -> OpportunityClassification: ...


def parse_json_response(raw_text: str) -> dict[str, Any]:
    """Parse the model's JSON answer, tolerating markdown code fences."""
    text = raw_text.strip()
    match = _FENCED_JSON.search(text)
    if match:
        text = match.group(1).strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ExtractionError("oracle returned invalid JSON") from e
    if not isinstance(parsed, dict):
        raise ExtractionError("oracle returned non-object JSON")
    return parsed


def _apply_aliases(data: dict[str, Any], aliases: dict[str, str]) -> dict[str, Any]:
    result = dict(data)
    for alias, name in aliases.items():
        if alias in result and result.get(name) is None:
            result[name] = result[alias]
    return result


def freight_from_response(data: dict[str, Any]) -> FreightDraft:
    return FreightDraft.from_dict(_apply_aliases(data, _FREIGHT_KEY_ALIASES))


def classification_from_response(data: dict[str, Any]) -> OpportunityClassification:
    data = _apply_aliases(data, _CLASSIFY_KEY_ALIASES)

    def text(key: str) -> str | None:
        value = data.get(key)
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    priority = text("priority")
    return OpportunityClassification(
        is_opportunity=data.get("is_opportunity") is True
        or str(data.get("is_opportunity")).lower() == "true",
        cargo_type=text("cargo_type"),
        origin=text("origin"),
        destination=text("destination"),
        tonnage=coerce_number(data.get("tonnage")),
        offered_price=coerce_number(data.get("offered_price")),
        urgency=text("urgency"),
        contact=text("contact"),
        priority=priority.upper() if priority else "BAIXA",
    )


class AnthropicOracle:
    """Oracle backed by Claude via the Anthropic Messages API."""

    def __init__(
        self,
        client: anthropic.Anthropic | None = None,
        model: str | None = None,
        timeout: float | None = None,
        extract_prompt: str | None = None,
        classify_prompt: str | None = None,
    ) -> None:
        self._timeout = timeout if timeout is not None else _timeout_from_env()
        # Retries would multiply the bounded wait; the driver retries instead
        self._client = client or anthropic.Anthropic(timeout=self._timeout, max_retries=0)
        self._model = model or os.environ.get("ANTHROPIC_MODEL", DEFAULT_MODEL)
        self._extract_prompt = extract_prompt or EXTRACT_SYSTEM_PROMPT
        self._classify_prompt = classify_prompt or CLASSIFY_SYSTEM_PROMPT

    def _complete(self, system: str, content: Any, operation: str) -> dict[str, Any]:
        try:
            response = self._client.messages.create(
                model=self._model,
                max_tokens=MAX_TOKENS,
                system=system,
                messages=[{"role": "user", "content": content}],
            )
        except anthropic.APIError as e:
            logger.error(
                "oracle call failed",
                extra={
                    "extra_fields": safe_log_context(
                        operation=operation, error_type=type(e).__name__
                    )
                },
            )
            raise ExtractionError(f"{operation} failed: {type(e).__name__}") from e

        text_blocks = [
            block.text for block in response.content if getattr(block, "type", None) == "text"
        ]
        if not text_blocks:
            raise ExtractionError(f"{operation}: no text in oracle response")
        return parse_json_response(text_blocks[0])

    def extract_freight(self, data: ExtractionInput) -> FreightDraft:
        content: list[dict[str, Any]] = []

        if data.image_base64:
            media_type = (data.media_type or "image/jpeg").split(";")[0].strip().lower()
            if media_type == "application/pdf":
                block_type = "document"
            else:
                block_type = "image"
                if media_type not in _IMAGE_TYPES:
                    media_type = "image/jpeg"
            content.append(
                {
                    "type": block_type,
                    "source": {"type": "base64", "media_type": media_type, "data": data.image_base64},
                }
            )

        if data.text:
            content.append({"type": "text", "text": data.text})

        if not content:
            raise ExtractionError("no input provided: image or text required")

        draft = freight_from_response(self._complete(self._extract_prompt, content, "extract_freight"))
        logger.info(
            "freight extracted",
            extra={
                "extra_fields": safe_log_context(
                    has_image=bool(data.image_base64),
                    missing=len(draft.missing_fields()),
                )
            },
        )
        return draft

    def classify_opportunity(
        self, message: str, context: ClassificationContext
    ) -> OpportunityClassification:
        system = render_classify_prompt(
            self._classify_prompt,
            context.keywords,
            context.preferred_routes,
            context.min_price_per_ton,
        )
        return classification_from_response(
            self._complete(system, message, "classify_opportunity")
        )


def _timeout_from_env() -> float:
    try:
        return float(os.environ.get("ORACLE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))
    except ValueError:
        return DEFAULT_TIMEOUT_SECONDS


def _build_anthropic(settings: dict[str, Any]) -> ExtractionOracle:
    return AnthropicOracle(
        model=settings.get("model") or None,
        extract_prompt=settings.get("freight_extract_prompt") or None,
        classify_prompt=settings.get("group_monitor_prompt") or None,
    )


ORACLE_PROVIDERS: dict[str, Callable[[dict[str, Any]], ExtractionOracle]] = {
    "claude": _build_anthropic,
    "anthropic": _build_anthropic,
}


def create_oracle(settings_repository: AiSettingsRepository | None = None) -> ExtractionOracle:
    """Build the configured oracle.

    Provider/model/prompts come from the active AI settings row when present,
    else from AI_PROVIDER / ANTHROPIC_MODEL.

    Raises:
        ValueError: If the configured provider is unknown.
    """
    settings: dict[str, Any] = {}
    if settings_repository is not None:
        try:
            settings = settings_repository.get_ai_settings() or {}
        except Exception as e:
            logger.warning(
                "failed to load ai settings, using environment",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )

    provider = (settings.get("provider") or os.environ.get("AI_PROVIDER", DEFAULT_PROVIDER)).lower()
    factory = ORACLE_PROVIDERS.get(provider)
    if factory is None:
        raise ValueError(f"Unknown AI provider: {provider}")
    return factory(settings)

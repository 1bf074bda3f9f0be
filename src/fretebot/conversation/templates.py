"""Chat message templates sent to drivers.

Templates contain static text with placeholders. Text is rendered only
in-memory at send time, never persisted.
"""

from typing import Any

from fretebot.domain.freight import FIELD_LABELS, REQUIRED_FIELDS, FreightDraft

TEMPLATES: dict[str, dict[str, Any]] = {
    "welcome": {
        "text": "Ola {driver_name}! Envie o ticket do frete (foto ou PDF) para registrar.",
        "allowed_params": ["driver_name"],
    },
    "unknown_sender": {
        "text": "Numero nao reconhecido. Procure o escritorio para cadastro.",
        "allowed_params": [],
    },
    "unsupported_content": {
        "text": (
            "Por favor, envie uma foto do ticket, um PDF ou uma descricao em texto do frete."
        ),
        "allowed_params": [],
    },
    "extraction_failed": {
        "text": (
            "Desculpe, nao consegui processar o ticket. "
            "Tente novamente com uma foto mais nitida ou envie os dados por texto."
        ),
        "allowed_params": [],
    },
    "missing_fields": {
        "text": (
            "Nao consegui identificar os seguintes campos:\n{field_list}\n\n"
            "Por favor, envie as informacoes que faltam em uma mensagem de texto."
        ),
        "allowed_params": ["field_list"],
    },
    "text_required": {
        "text": "Por favor, envie as informacoes que faltam em uma mensagem de texto.",
        "allowed_params": [],
    },
    "confirm_prompt": {
        "text": "Por favor, responda *sim* para confirmar ou *nao* para cancelar.",
        "allowed_params": [],
    },
    "freight_registered": {
        "text": "Frete registrado com sucesso! Aguardando validacao.",
        "allowed_params": [],
    },
    "freight_failed": {
        "text": "Desculpe, ocorreu um erro ao registrar o frete. Tente novamente mais tarde.",
        "allowed_params": [],
    },
    "freight_cancelled": {
        "text": "Frete cancelado. Envie um novo ticket quando quiser.",
        "allowed_params": [],
    },
}


def render(template_key: str, params: dict[str, Any]) -> str:
    """Render template with params. Validates allowed_params.

    Args:
        template_key: Template identifier.
        params: Parameters to interpolate (must be in allowed_params).

    Returns:
        Rendered text string.

    Raises:
        ValueError: If template_key unknown or params contains disallowed keys.
    """
    if template_key not in TEMPLATES:
        raise ValueError(f"Unknown template: {template_key}")

    template = TEMPLATES[template_key]
    allowed = set(template["allowed_params"])
    extras = set(params.keys()) - allowed
    if extras:
        raise ValueError(f"Disallowed params for {template_key}: {extras}")

    return template["text"].format(**params)


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def format_summary(draft: FreightDraft) -> str:
    """Confirmation summary: known fields, total value, note, yes/no question."""
    lines = ["*Resumo do Frete:*"]
    for name in REQUIRED_FIELDS:
        value = getattr(draft, name)
        if value is not None:
            lines.append(f"- {FIELD_LABELS[name]}: {_format_value(value)}")
    if draft.total_value is not None:
        lines.append(f"- {FIELD_LABELS['total_value']}: R$ {draft.total_value:.2f}")
    if draft.note:
        lines.append(f"- {FIELD_LABELS['note']}: {draft.note}")
    lines.append("")
    lines.append("Esta correto? Responda *sim* para confirmar ou *nao* para cancelar.")
    return "\n".join(lines)


def format_missing_fields(field_names: list[str]) -> str:
    field_list = "\n".join(f"- {FIELD_LABELS.get(name, name)}" for name in field_names)
    return render("missing_fields", {"field_list": field_list})

"""System prompts for the extraction oracle (Portuguese, as drivers write)."""

EXTRACT_SYSTEM_PROMPT = (
    "Voce e um assistente que extrai dados de tickets e comprovantes de frete. "
    "Analise a imagem, o documento ou o texto e extraia os seguintes campos em JSON: "
    '{ "date", "origin", "destination", "tonnage", "price_per_ton", "total_value", '
    '"carrier", "ticket_number", "plate", "driver_name", "note" }. '
    "Use o formato AAAA-MM-DD para a data e numeros sem simbolo de moeda. "
    "Se nao conseguir identificar um campo, retorne null. "
    "Retorne APENAS o JSON, sem explicacoes."
)

CLASSIFY_SYSTEM_PROMPT = """Voce e um assistente que analisa mensagens de grupos de WhatsApp para identificar oportunidades de frete.

Analise a mensagem e determine:
1. Se e uma oportunidade de frete (is_opportunity: true/false)
2. Se sim, extraia: cargo_type, origin, destination, tonnage, offered_price, urgency, contact
3. Classifique a prioridade como ALTA, MEDIA ou BAIXA baseado nos seguintes criterios:
   - Palavras-chave de interesse: {keywords}
   - Rotas preferenciais: {preferred_routes}
   - Preco minimo por tonelada: R$ {min_price_per_ton}

   ALTA: contem palavras-chave E rota preferencial E preco acima do minimo
   MEDIA: atende pelo menos 2 dos 3 criterios
   BAIXA: atende 0 ou 1 criterio

Retorne APENAS JSON no formato:
{{
  "is_opportunity": boolean,
  "cargo_type": string | null,
  "origin": string | null,
  "destination": string | null,
  "tonnage": number | null,
  "offered_price": number | null,
  "urgency": string | null,
  "contact": string | null,
  "priority": "ALTA" | "MEDIA" | "BAIXA"
}}"""


def render_classify_prompt(
    template: str,
    keywords: list[str],
    preferred_routes: list[str],
    min_price_per_ton: float,
) -> str:
    """Fill the classification prompt. Operator templates may omit placeholders."""
    try:
        return template.format(
            keywords=", ".join(keywords) or "(nenhuma)",
            preferred_routes=", ".join(preferred_routes) or "(nenhuma)",
            min_price_per_ton=f"{min_price_per_ton:.2f}",
        )
    except (KeyError, IndexError, ValueError):
        return template

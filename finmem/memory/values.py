"""
Financial value extraction.

Finds money amounts, percentages and periods in Portuguese text and keys
them by meaning from the surrounding words. Numbers use Brazilian
formatting: "10.000,50" is 10000.5.
"""

import re
from dataclasses import dataclass
from typing import Optional

NUMBER = r"\d{1,3}(?:\.\d{3})+(?:,\d+)?|\d+(?:[.,]\d+)?"

MONEY = re.compile(
    rf"(?:R\$\s*(?P<explicit>{NUMBER})(?:\s*(?P<scale1>mil|k)\b)?)"
    rf"|(?:(?P<implicit>{NUMBER})\s*(?P<scale2>mil|k|reais)\b)",
    re.IGNORECASE,
)
PERCENT = re.compile(r"(\d+(?:[.,]\d+)?)\s*%")
PERIOD = re.compile(r"\b(\d+)\s*(anos?|m[êe]s|meses)\b", re.IGNORECASE)

CONTEXT_WINDOW = 40

# Labelled values attached to conversation events
LABELLED_VALUE_PATTERNS = {
    "renda": re.compile(rf"\b(renda|sal[áa]rio|ganho|ganha)\b.*?(?:R\$\s*)?({NUMBER})", re.IGNORECASE),
    "investimento": re.compile(
        rf"\b(invisto|investir|aplicado|aplica[çc][ãa]o|aporte)\b.*?(?:R\$\s*)?({NUMBER})", re.IGNORECASE
    ),
    "divida": re.compile(rf"\b(d[íi]vida|devo|parcela)\b.*?(?:R\$\s*)?({NUMBER})", re.IGNORECASE),
    "gasto": re.compile(rf"\b(gasto|gastei|pago|consumo)\b.*?(?:R\$\s*)?({NUMBER})", re.IGNORECASE),
    "patrimonio": re.compile(rf"\b(patrim[ôo]nio|capital|total)\b.*?(?:R\$\s*)?({NUMBER})", re.IGNORECASE),
    "percentual": re.compile(r"\b(rendimento|taxa|juros)\b.*?(\d+(?:[.,]\d+)?)\s*%", re.IGNORECASE),
}


@dataclass(frozen=True)
class ExtractedValue:
    kind: str
    value: float
    raw: str
    context: str


def parse_brazilian_number(raw: str) -> Optional[float]:
    """Parse "10.000,50", "1.500", "2,5" or "1500" into a float."""
    text = raw.strip()
    if not text:
        return None
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    elif re.fullmatch(r"\d{1,3}(?:\.\d{3})+", text):
        text = text.replace(".", "")
    try:
        return float(text)
    except ValueError:
        return None


def _context(text: str, start: int, end: int) -> str:
    return text[max(0, start - CONTEXT_WINDOW) : min(len(text), end + CONTEXT_WINDOW)]


def extract_values(text: str) -> list[ExtractedValue]:
    """Money, percent and period values in order of appearance."""
    if not text:
        return []

    found: list[tuple[int, ExtractedValue]] = []
    percent_spans = []
    for match in PERCENT.finditer(text):
        value = parse_brazilian_number(match.group(1))
        if value is not None:
            percent_spans.append(match.span())
            found.append(
                (match.start(), ExtractedValue("percent", value, match.group(0), _context(text, *match.span())))
            )

    for match in MONEY.finditer(text):
        if any(start <= match.start() < end for start, end in percent_spans):
            continue
        raw = match.group("explicit") or match.group("implicit")
        value = parse_brazilian_number(raw)
        if value is None:
            continue
        scale = (match.group("scale1") or match.group("scale2") or "").lower()
        if scale in ("mil", "k"):
            value *= 1000
        found.append(
            (match.start(), ExtractedValue("money", value, match.group(0).strip(), _context(text, *match.span())))
        )

    for match in PERIOD.finditer(text):
        found.append(
            (
                match.start(),
                ExtractedValue("period", float(match.group(1)), match.group(0), _context(text, *match.span())),
            )
        )

    found.sort(key=lambda pair: pair[0])
    return [value for _, value in found]


def classify_value(value: ExtractedValue) -> str:
    """Semantic key for a value, from the words around it."""
    ctx = value.context.lower()

    if value.kind == "percent":
        if re.search(r"juros|taxa|rendimento|cdi|selic", ctx):
            return "taxa_juros"
        if re.search(r"aloca|distribu|divis", ctx):
            return "percentual_alocacao"
        if re.search(r"renda|sal[áa]rio", ctx):
            return "percentual_renda"
        return "taxa_juros"

    if value.kind == "period":
        if re.search(r"\bano", value.raw.lower()):
            return "periodo_anos"
        return "periodo_meses"

    if re.search(r"investir|aplicar|colocar", ctx) and re.search(r"inicial|hoje|agora", ctx):
        return "investimento_inicial"
    if re.search(r"aporte|dep[óo]sito|depositar", ctx) and re.search(r"mensal|m[êe]s", ctx):
        return "aporte_mensal"
    if re.search(r"renda|sal[áa]rio|ganh[oa]", ctx):
        return "renda_mensal"
    if re.search(r"rendimento|lucro|juros", ctx) and "taxa" not in ctx:
        return "rendimento"
    if re.search(r"montante|total|final|resultado", ctx):
        return "montante_final"
    if re.search(r"patrim[ôo]nio|capital|poupan[çc]a", ctx):
        return "patrimonio"
    if re.search(r"reserva|emerg[êe]ncia", ctx):
        return "reserva_emergencia"
    if re.search(r"d[íi]vida|devo|devendo", ctx):
        return "divida"
    if re.search(r"parcela|presta[çc][ãa]o", ctx):
        return "parcela"
    if re.search(r"meta|objetivo|juntar", ctx):
        return "meta_financeira"
    if re.search(r"aluguel", ctx):
        return "aluguel"
    if re.search(r"gasto|despesa", ctx):
        return "gasto_mensal"
    return "valor"


def extract_keyed_values(text: str) -> dict[str, float]:
    """
    Values keyed for working memory.

    Repeated keys get a numeric suffix (valor, valor_2, ...).
    """
    keyed: dict[str, float] = {}
    for value in extract_values(text):
        key = classify_value(value)
        candidate, suffix = key, 2
        while candidate in keyed:
            candidate = f"{key}_{suffix}"
            suffix += 1
        keyed[candidate] = value.value
    return keyed


def extract_labelled_values(*texts: str) -> dict[str, float]:
    """Values labelled renda, investimento, divida, gasto, patrimonio, percentual."""
    combined = " ".join(t for t in texts if t)
    values: dict[str, float] = {}
    for label, pattern in LABELLED_VALUE_PATTERNS.items():
        match = pattern.search(combined)
        if match:
            parsed = parse_brazilian_number(match.group(2))
            if parsed is not None:
                values[label] = parsed
    return values

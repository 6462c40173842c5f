"""
Admission Rules Engine.

Deterministic checks every candidate passes before it may enter a memory
tier. The forbidden-content check always runs first and short-circuits:
credentials, national IDs, card data and connection strings are never
stored, whatever their score.
"""

import json
import re
from typing import Any, Optional

from finmem.models.schemas import AdmissionDecision, ForbiddenCheck, MemoryTier

REDACTED = "[REMOVIDO]"
MIN_USEFUL_CHARS = 10

# Values that are themselves sensitive; sanitize_text redacts these
SENSITIVE_CONTENT_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("credential", re.compile(r"\b(senha|password|pwd)\s*[:=]\s*\S+", re.IGNORECASE)),
    ("national_id", re.compile(r"\b\d{3}\.\d{3}\.\d{3}-\d{2}\b")),
    ("national_id", re.compile(r"\b\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}\b")),
    ("payment_card", re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b")),
    (
        "security_code",
        re.compile(r"\b(cvv|cvc|c[óo]digo\s+de\s+seguran[çc]a)\b\s*[:=]?\s*\d{3,4}", re.IGNORECASE),
    ),
    (
        "api_token",
        re.compile(r"\b(api[_-]?key|token|secret)\b\s*[:=]?\s*[A-Za-z0-9_\-]{20,}", re.IGNORECASE),
    ),
    (
        "connection_string",
        re.compile(r"\b(mongodb(\+srv)?|postgres(ql)?|mysql|redis)://\S+", re.IGNORECASE),
    ),
]

FORBIDDEN_KEYWORDS = (
    "password",
    "senha",
    "token",
    "api_key",
    "secret_key",
    "bearer",
    "authorization",
    "cpf",
    "cnpj",
    "cvv",
    "credit_card",
    "cartao_credito",
    "numero_cartao",
    "mongodb_uri",
    "connection_string",
)

FORBIDDEN_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"auth.*key",
        r"api.*key",
        r"secret",
        r"rg\s*:",
        r"carteira.*identidade",
        r"passaporte",
        r"cart[ãa]o.*cr[ée]dito",
        r"c[óo]digo.*seguran[çc]a",
        r"n[úu]mero.*cart[ãa]o",
        r"ag[êe]ncia",
        r"conta.*corrente",
        r"mongodb.*uri",
        r"connection.*string",
        r"private.*key",
        r"\bjwt\b",
    )
]

# Content that describes itself as transient never becomes long-term memory
LONG_TERM_UNSUITABLE = (
    "temporary values",
    "intermediate calculations",
    "unconfirmed hypotheses",
    "agent internal reasoning",
    "debug information",
    "error stack traces",
    "stack trace",
    "valores temporários",
    "valores temporarios",
    "cálculos intermediários",
    "calculos intermediarios",
    "hipóteses não confirmadas",
    "hipoteses nao confirmadas",
    "raciocínio interno",
    "raciocinio interno",
    "informação de debug",
    "informacao de debug",
)

SPAM_PHRASES = ("click here", "buy now", "free money", "urgent", "congratulations")

NUMERIC_CONTEXT_KEYS = (
    "valor",
    "calculo",
    "resultado",
    "percentual",
    "taxa",
    "porcentagem",
    "quantidade",
    "numero",
    "montante",
)

_PURE_NUMBER = re.compile(r"^\d+$")


def as_text(value: Any) -> str:
    """Flatten a value to the text the rules inspect."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


def contains_forbidden_content(text: Any) -> ForbiddenCheck:
    """Check text against the sensitive-content patterns and keywords."""
    text = as_text(text)
    if not text:
        return ForbiddenCheck(found=False)

    for kind, pattern in SENSITIVE_CONTENT_PATTERNS:
        if pattern.search(text):
            return ForbiddenCheck(found=True, kind=kind)

    lowered = text.lower()
    if any(keyword in lowered for keyword in FORBIDDEN_KEYWORDS):
        return ForbiddenCheck(found=True, kind="sensitive_keyword")

    if any(pattern.search(lowered) for pattern in FORBIDDEN_PATTERNS):
        return ForbiddenCheck(found=True, kind="sensitive_pattern")

    return ForbiddenCheck(found=False)


def is_suitable_for_tier(text: Any, tier: MemoryTier | str) -> bool:
    """Long-term memory rejects content that declares itself transient."""
    if MemoryTier(tier) != MemoryTier.LONG_TERM:
        return True
    lowered = as_text(text).lower()
    return not any(phrase in lowered for phrase in LONG_TERM_UNSUITABLE)


def is_noise_value(key: str, value: Any) -> bool:
    """Working-memory filter for values that carry no information."""
    text = as_text(value).strip()
    if len(text) < 2:
        return True

    lowered = text.lower()
    if any(phrase in lowered for phrase in SPAM_PHRASES):
        return True

    if _PURE_NUMBER.match(text) and len(text) < 4:
        key_lower = key.lower()
        return not any(context in key_lower for context in NUMERIC_CONTEXT_KEYS)

    return False


def sanitize_text(text: str) -> Optional[str]:
    """
    Redact sensitive values.

    Returns None when redaction leaves MIN_USEFUL_CHARS or fewer of content.
    """
    sanitized = text
    for _, pattern in SENSITIVE_CONTENT_PATTERNS:
        sanitized = pattern.sub(REDACTED, sanitized)
    if sanitized == text:
        return text

    useful = sanitized.replace(REDACTED, "").strip()
    if len(useful) <= MIN_USEFUL_CHARS:
        return None
    return sanitized


def sanitize_value(value: Any) -> Any:
    """Apply sanitize_text to every string inside a nested structure."""
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            result = sanitize_value(item)
            if result is not None:
                cleaned[key] = result
        return cleaned
    if isinstance(value, list):
        return [result for result in (sanitize_value(item) for item in value) if result is not None]
    return value


def check_admission(
    content: Any,
    tier: MemoryTier | str,
    key: Optional[str] = None,
) -> AdmissionDecision:
    """Run every rule that applies to the tier, forbidden content first."""
    forbidden = contains_forbidden_content(content)
    if forbidden.found:
        return AdmissionDecision(allowed=False, reason="forbidden_content", kind=forbidden.kind)

    tier = MemoryTier(tier)
    if not is_suitable_for_tier(content, tier):
        return AdmissionDecision(allowed=False, reason="unsuitable_for_tier")

    if tier == MemoryTier.WORKING and key is not None and is_noise_value(key, content):
        return AdmissionDecision(allowed=False, reason="noise")

    return AdmissionDecision(allowed=True)

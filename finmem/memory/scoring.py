"""
Relevance/Impact Scorer.

Deterministic 0-1 score for a candidate memory, the weighted sum of five
factors. Pure and side-effect free; malformed input scores 0.0.

    recurrence     0.25  access count, distinct source chats, mentions
    structural     0.30  financial domain keywords, quantified values
    durability     0.20  persistence markers minus ephemeral markers
    specificity    0.15  numbers, percentages, currency, dates; vague words penalized
    actionability  0.10  action verbs, planning and conditional language
"""

import re
from collections.abc import Mapping
from typing import Any, Optional

from finmem.models.schemas import ImpactBreakdown

WEIGHTS = {
    "recurrence": 0.25,
    "structural": 0.30,
    "durability": 0.20,
    "specificity": 0.15,
    "actionability": 0.10,
}


def _compile(*patterns: str) -> list[re.Pattern[str]]:
    return [re.compile(rf"\b(?:{pattern})\b", re.IGNORECASE) for pattern in patterns]


STRUCTURAL_PATTERNS = _compile(
    r"objetivos?",
    r"metas?",
    r"estrat[ée]gi\w*",
    r"plano|planejamento",
    r"invest\w*",
    r"d[íi]vidas?",
    r"endivid\w*",
    r"renda",
    r"sal[áa]rio\w*",
    r"ganh(?:a|o|am|os)",
    r"receitas?",
    r"despesas?",
    r"gastos?",
    r"ativos?",
    r"patrim[ôo]nio",
    r"or[çc]amento",
    r"poupan[çc]a",
    r"reserva",
    r"decis[ãa]o|decid\w*",
    r"prefer[êe]ncias?",
    r"a[çc][õo]es",
    r"fiis?",
    r"tesouro",
    r"cdbs?",
    r"cripto\w*",
    r"volatilidade",
    r"risco\w*",
    r"goals?|strateg\w*|plan|debts?|income|expenses?|assets?|budget|savings|decisions?|preferences?|salary",
)

MONEY_PATTERN = re.compile(
    r"r\$\s*\d|\$\s*\d|\d+(?:[.,]\d+)*\s*(?:reais|mil|milh[õo]es|milh[ãa]o|k)\b",
    re.IGNORECASE,
)

DURABLE_PATTERNS = _compile(
    r"sempre",
    r"nunca",
    r"jamais",
    r"prefiro|prefere",
    r"evito|evita",
    r"costum\w*",
    r"h[áa]bito",
    r"rotina",
    r"longo prazo",
    r"permanente",
    r"mensal(?:mente)?",
    r"por m[êe]s",
    r"todo m[êe]s",
    r"always|never|prefer\w*|avoid\w*|usually|habit|long term|monthly",
)
# "/mês" has no leading word boundary
PER_MONTH = re.compile(r"/\s*m[êe]s\b", re.IGNORECASE)

EPHEMERAL_PATTERNS = _compile(
    r"hoje",
    r"agora",
    r"neste momento",
    r"momento",
    r"tempor[áa]ri\w*",
    r"provis[óo]ri\w*",
    r"today|now|temporar\w*",
)

DIGITS = re.compile(r"\d")
PERCENT = re.compile(r"\d\s*%|\bpor cento\b", re.IGNORECASE)
CURRENCY = re.compile(r"r\$|\$|\breais\b|\bbrl\b|\busd\b", re.IGNORECASE)
DATE = re.compile(
    r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b|\b\d{1,2}\s+de\s+[a-zç]+\s+de\s+\d{4}\b|\b(?:19|20)\d{2}\b",
    re.IGNORECASE,
)
PERIOD = re.compile(
    r"\bmensal\w*|/\s*m[êe]s\b|\bpor m[êe]s\b|\b\d+\s*(?:anos?|meses?)\b|\bao ano\b|\banual\w*",
    re.IGNORECASE,
)
INSTRUMENT = re.compile(
    r"\b(?:renda fixa|a[çc][õo]es|tesouro|cdbs?|lci|lca|fiis?|cripto\w*|bitcoin|poupan[çc]a|previd[êe]ncia)\b",
    re.IGNORECASE,
)
VAGUE_PATTERNS = _compile(
    r"talvez",
    r"provavelmente",
    r"mais ou menos",
    r"algum|alguma|alguns|algumas",
    r"maybe|probably|some",
)

ACTION_PATTERNS = _compile(
    r"investir|invest\w*",
    r"poupar",
    r"guardar",
    r"juntar",
    r"pagar",
    r"quitar",
    r"comprar",
    r"vender",
    r"evitar",
    r"come[çc]ar",
    r"parar",
    r"aplicar",
    r"economizar",
    r"prefiro",
    r"evito",
    r"vou",
    r"pretendo",
    r"quero",
)
PLANNING_PATTERNS = _compile(
    r"quando",
    r"se",
    r"caso",
    r"plano",
    r"estrat[ée]gia",
    r"objetivo",
    r"meta",
    r"when|if|plan|strategy|goal",
)


def _hits(patterns: list[re.Pattern[str]], text: str) -> int:
    return sum(1 for pattern in patterns if pattern.search(text))


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class ImpactScorer:
    """
    Deterministic impact scorer.

    Usage:
        scorer = ImpactScorer()
        score = scorer.score("prefiro sempre investir em renda fixa", {"source_chats": ["c1"]})
    """

    def __init__(self, weights: Optional[dict[str, float]] = None) -> None:
        self.weights = weights or WEIGHTS

    def score(self, content: Any, context: Optional[Mapping[str, Any]] = None) -> float:
        return self.breakdown(content, context).total

    def breakdown(
        self, content: Any, context: Optional[Mapping[str, Any]] = None
    ) -> ImpactBreakdown:
        if not isinstance(content, str) or not content.strip():
            return ImpactBreakdown(
                recurrence=0.0,
                structural=0.0,
                durability=0.0,
                specificity=0.0,
                actionability=0.0,
                total=0.0,
            )

        context = context if isinstance(context, Mapping) else {}
        factors = {
            "recurrence": self.recurrence(context),
            "structural": self.structural(content),
            "durability": self.durability(content),
            "specificity": self.specificity(content),
            "actionability": self.actionability(content),
        }
        total = sum(self.weights[name] * value for name, value in factors.items())
        return ImpactBreakdown(**factors, total=round(_clamp(total), 4))

    @staticmethod
    def recurrence(context: Mapping[str, Any]) -> float:
        """A first mention scores 0.5; repetition across chats raises it."""
        access = _as_int(context.get("access_count"))
        chats = context.get("source_chats") or []
        chat_count = len(set(chats)) if isinstance(chats, (list, tuple, set)) else 0
        mentions = _as_int(context.get("mention_count"), default=1)

        signals = (
            min(1.0, access / 10),
            min(1.0, chat_count / 5),
            min(1.0, max(0, mentions - 1) / 2),
        )
        return _clamp(0.5 + 0.5 * sum(signals) / len(signals))

    @staticmethod
    def structural(text: str) -> float:
        hits = _hits(STRUCTURAL_PATTERNS, text)
        has_money = bool(MONEY_PATTERN.search(text))
        bonus = 0.0
        if has_money:
            bonus = 0.7 if hits else 0.4
        return _clamp(min(1.0, hits / 3) + bonus)

    @staticmethod
    def durability(text: str) -> float:
        durable = _hits(DURABLE_PATTERNS, text) + (1 if PER_MONTH.search(text) else 0)
        ephemeral = _hits(EPHEMERAL_PATTERNS, text)
        return _clamp(min(1.0, durable / 2) - min(0.5, ephemeral / 2) + 0.3)

    @staticmethod
    def specificity(text: str) -> float:
        value = 0.3
        if DIGITS.search(text):
            value += 0.2
        if PERCENT.search(text):
            value += 0.15
        if CURRENCY.search(text):
            value += 0.2
        if DATE.search(text):
            value += 0.15
        if PERIOD.search(text):
            value += 0.15
        if INSTRUMENT.search(text):
            value += 0.2
        value -= min(0.3, 0.1 * _hits(VAGUE_PATTERNS, text))
        return _clamp(value)

    @staticmethod
    def actionability(text: str) -> float:
        actions = _hits(ACTION_PATTERNS, text)
        planning = _hits(PLANNING_PATTERNS, text)
        return _clamp(min(0.7, actions / 2 * 0.7) + min(0.3, planning / 2 * 0.3))


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return default


def meets_threshold(score: float, threshold: float) -> bool:
    return score >= threshold

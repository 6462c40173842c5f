"""
Category Classifier.

Rule-based detection of the long-term categories a piece of text speaks to.
Each category owns a detector bundle:

- weighted keywords (high 10, medium 6, low 3 points; capped at 30)
- intent patterns (the first match adds 20)
- entity patterns (8 points each; capped at 20)
- multipliers for a first-person verb, a numeric value, explicit
  self-reference, and prior activation in the session (x1.3)

Scores are capped at 100. No external call is made and nothing raises:
malformed input simply yields no categories.
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from finmem.memory.types import MIN_CATEGORY_SCORE, LTMCategory
from finmem.models.schemas import CategoryMatch

KEYWORD_POINTS = {"high": 10, "medium": 6, "low": 3}
MAX_KEYWORD_POINTS = 30
INTENT_POINTS = 20
ENTITY_POINTS = 8
MAX_ENTITY_POINTS = 20
SESSION_MULTIPLIER = 1.3
TOP_N = 3

SELF_REFERENCE = re.compile(r"\b(eu|meu|minha|meus|minhas|sou|tenho|estou)\b", re.IGNORECASE)
NUMERIC = re.compile(r"\d")
SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def _keywords(*words: str) -> tuple[re.Pattern[str], ...]:
    return tuple(
        re.compile(rf"(?<!\w){re.escape(word)}(?!\w)", re.IGNORECASE) for word in words
    )


def _patterns(*patterns: str, flags: int = re.IGNORECASE) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(pattern, flags) for pattern in patterns)


@dataclass(frozen=True)
class CategoryDetector:
    """Detector bundle for one long-term category."""

    category: LTMCategory
    high: tuple[re.Pattern[str], ...] = ()
    medium: tuple[re.Pattern[str], ...] = ()
    low: tuple[re.Pattern[str], ...] = ()
    intents: tuple[re.Pattern[str], ...] = ()
    entities: tuple[re.Pattern[str], ...] = ()
    verbs: tuple[re.Pattern[str], ...] = ()
    verb_multiplier: float = 1.0
    numeric_multiplier: float = 1.0
    self_reference_multiplier: float = 1.0

    def keyword_points(self, text: str) -> int:
        points = 0
        for weight, patterns in (("high", self.high), ("medium", self.medium), ("low", self.low)):
            points += KEYWORD_POINTS[weight] * sum(1 for p in patterns if p.search(text))
        return min(MAX_KEYWORD_POINTS, points)

    def intent_points(self, text: str) -> int:
        return INTENT_POINTS if any(p.search(text) for p in self.intents) else 0

    def entity_points(self, text: str) -> int:
        matches = sum(1 for p in self.entities if p.search(text))
        return min(MAX_ENTITY_POINTS, ENTITY_POINTS * matches)

    def score(self, text: str, active: bool = False) -> int:
        base = self.keyword_points(text) + self.intent_points(text) + self.entity_points(text)
        if base == 0:
            return 0

        value = float(base)
        if any(p.search(text) for p in self.verbs):
            value *= self.verb_multiplier
        if NUMERIC.search(text):
            value *= self.numeric_multiplier
        if SELF_REFERENCE.search(text):
            value *= self.self_reference_multiplier
        if active:
            value *= SESSION_MULTIPLIER
        return min(100, round(value))


DETECTORS: dict[LTMCategory, CategoryDetector] = {
    detector.category: detector
    for detector in (
        CategoryDetector(
            category=LTMCategory.PERFIL_PROFISSIONAL,
            high=_keywords("profissão", "trabalho", "emprego", "carreira", "salário", "empresa"),
            medium=_keywords("cargo", "função", "área", "setor", "clt", "pj", "autônomo"),
            low=_keywords("chefe", "escritório", "contrato"),
            intents=_patterns(
                r"\b(sou|trabalho como|atuo como)\s+(engenheir|m[ée]dic|professor|advogad|desenvolvedor|analista|gerente|vendedor|empres[áa]ri|servidor|aut[ôo]nom)",
                r"\btrabalho (na|no|em|com)\b",
            ),
            entities=_patterns(r"\b(clt|pj|mei)\b"),
            verbs=_patterns(r"\b(sou|trabalho|atuo)\b"),
            verb_multiplier=1.5,
            self_reference_multiplier=1.2,
        ),
        CategoryDetector(
            category=LTMCategory.SITUACAO_FINANCEIRA,
            high=_keywords("renda", "salário", "ganho", "ganha", "dívida", "dívidas", "patrimônio", "saldo"),
            medium=_keywords("despesa", "despesas", "contas", "gasto fixo", "receita", "sobra"),
            low=_keywords("dinheiro", "financeiro", "apertado"),
            intents=_patterns(
                r"\b(ganho|ganha|recebo|recebe)\b.*\d",
                r"\b(tenho|devo)\b.*\b(d[íi]vida|empr[ée]stimo|financiamento)",
                r"\brenda\b.*\d",
            ),
            entities=_patterns(r"r\$\s*[\d.,]+", r"\b\d+\s*(mil|k)\b"),
            verbs=_patterns(r"\b(ganho|recebo|devo)\b"),
            verb_multiplier=1.5,
            numeric_multiplier=1.3,
            self_reference_multiplier=1.1,
        ),
        CategoryDetector(
            category=LTMCategory.INVESTIMENTOS,
            high=_keywords(
                "investir", "investimento", "investimentos", "ações", "fii", "fiis",
                "tesouro", "cdb", "renda fixa", "carteira",
            ),
            medium=_keywords("rendimento", "aplicação", "aplicar", "dividendos", "bolsa", "cripto"),
            low=_keywords("juros", "retorno", "banco"),
            intents=_patterns(
                r"\b(invisto|aplico|tenho)\b.*\b(a[çc][õo]es|fiis?|tesouro|cdb|cripto|renda fixa)",
                r"\b(quero|vou|pretendo)\s+investir",
            ),
            entities=_patterns(r"\d+(?:[.,]\d+)?\s*%", r"\b[A-Z]{4}\d{1,2}\b", flags=0),
            verbs=_patterns(r"\b(invisto|aplico)\b", r"\b(quero|vou|pretendo)\s+investir"),
            verb_multiplier=1.8,
            numeric_multiplier=1.2,
            self_reference_multiplier=1.1,
        ),
        CategoryDetector(
            category=LTMCategory.OBJETIVOS_METAS,
            high=_keywords("objetivo", "meta", "sonho", "plano", "quero", "pretendo"),
            medium=_keywords("futuro", "longo prazo", "curto prazo", "anos"),
            low=_keywords("desejo", "gostaria"),
            intents=_patterns(
                r"\b(objetivo|meta)\b.*\b[ée]\b",
                r"\bquero\b.*\b(comprar|adquirir|ter|juntar)\b",
                r"\bpretendo\b.*\bem\s*\d+",
                r"\bsonho\b.*\b[ée]\b",
            ),
            entities=_patterns(r"\b\d+\s*(anos?|meses?)\b", r"r\$\s*[\d.,]+"),
            verbs=_patterns(r"\b(quero|pretendo|sonho)\b"),
            verb_multiplier=2.2,
            numeric_multiplier=1.4,
        ),
        CategoryDetector(
            category=LTMCategory.COMPORTAMENTO_GASTOS,
            high=_keywords("gasto", "gastos", "gastar", "compro", "compras", "consumo"),
            medium=_keywords("cartão", "fatura", "parcela", "parcelas", "impulso", "mercado"),
            low=_keywords("restaurante", "delivery", "lazer", "shopping"),
            intents=_patterns(r"\b(gasto|gastei|compro|comprei)\b", r"\bfatura\b.*\d"),
            entities=_patterns(r"r\$\s*[\d.,]+"),
            verbs=_patterns(r"\b(gasto|gastei|compro|comprei)\b"),
            verb_multiplier=1.6,
            numeric_multiplier=1.2,
        ),
        CategoryDetector(
            category=LTMCategory.PERFIL_RISCO,
            high=_keywords("risco", "conservador", "moderado", "arrojado", "agressivo", "volatilidade"),
            medium=_keywords("segurança", "seguro", "estabilidade", "perder", "perda"),
            low=_keywords("medo", "tranquilo", "oscilação"),
            intents=_patterns(
                r"\b(prefiro|evito)\b.*\b(risco|renda fixa|a[çc][õo]es|volatilidade|segur)",
                r"\bperfil\s+(conservador|moderado|arrojado|agressivo)",
                r"\b(nunca|jamais)\b.*\b(a[çc][õo]es|cripto|risco)",
            ),
            entities=_patterns(r"\brenda (fixa|vari[áa]vel)\b"),
            verbs=_patterns(r"\b(prefiro|evito)\b", r"\bsou\s+(conservador|moderado|arrojado)"),
            verb_multiplier=2.0,
            self_reference_multiplier=1.2,
        ),
        CategoryDetector(
            category=LTMCategory.CONHECIMENTO_FINANCEIRO,
            high=_keywords("entender", "aprender", "explicar", "não sei", "conhecimento"),
            medium=_keywords("como funciona", "o que é", "dúvida", "iniciante", "curso"),
            low=_keywords("livro", "estudar", "conceito"),
            intents=_patterns(
                r"\b(n[ãa]o (sei|entendo)|o que [ée]|como funciona)\b",
                r"\b(sou|me considero)\s+(iniciante|leig[oa]|experiente|avan[çc]ad[oa])",
            ),
            verbs=_patterns(r"\b(quero|preciso)\s+(entender|aprender)\b"),
            verb_multiplier=1.5,
        ),
        CategoryDetector(
            category=LTMCategory.PLANEJAMENTO_FUTURO,
            high=_keywords("aposentadoria", "aposentar", "futuro", "planejamento", "previdência"),
            medium=_keywords(
                "anos", "longo prazo", "herança", "reserva de emergência", "independência financeira",
            ),
            low=_keywords("velhice", "amanhã"),
            intents=_patterns(
                r"\b(quero|pretendo|planejo)\s+(me\s+)?aposentar",
                r"\bdaqui a \d+\s*anos\b",
            ),
            entities=_patterns(r"\b\d+\s*anos\b"),
            verbs=_patterns(r"\b(planejo|pretendo)\s+(me\s+)?aposentar"),
            verb_multiplier=1.6,
            numeric_multiplier=1.2,
        ),
        CategoryDetector(
            category=LTMCategory.FAMILIA_DEPENDENTES,
            high=_keywords("filho", "filhos", "filha", "filhas", "esposa", "marido", "família", "dependente", "dependentes"),
            medium=_keywords("casado", "casada", "solteiro", "solteira", "cônjuge", "pais", "mãe", "pai"),
            low=_keywords("escola", "faculdade"),
            intents=_patterns(
                r"\b(tenho|temos)\s+\d+\s+filh",
                r"\bsou\s+(casad[oa]|solteir[oa]|divorciad[oa]|vi[úu]v[oa])",
            ),
            entities=_patterns(r"\b\d+\s+filh\w*"),
            verbs=_patterns(r"\b(tenho|temos)\s+\d+\s+filh", r"\bsou\s+casad[oa]"),
            verb_multiplier=1.4,
            numeric_multiplier=1.2,
        ),
        CategoryDetector(
            category=LTMCategory.RELACAO_PLATAFORMA,
            high=_keywords("plataforma", "aplicativo", "app", "assistente"),
            medium=_keywords("funcionalidade", "recurso", "relatório", "notificação", "notificações"),
            low=_keywords("interface", "atendimento"),
            intents=_patterns(
                r"\b(gosto|gostei|n[ãa]o gosto)\s+d[aoe]\s+(app|aplicativo|plataforma|assistente)",
                r"\b(prefiro|quero)\s+(receber|ver)\s+",
            ),
            verbs=_patterns(r"\b(gosto|gostei|prefiro)\b"),
            verb_multiplier=1.3,
        ),
    )
}


def describe_confidence(score: int) -> str:
    if score >= 80:
        return f"Alta confiança ({score}/100) - Categoria claramente identificada"
    if score >= 50:
        return f"Confiança moderada ({score}/100) - Múltiplos indicadores presentes"
    if score >= 30:
        return f"Baixa confiança ({score}/100) - Alguns indicadores presentes"
    return f"Confiança mínima ({score}/100) - Poucos indicadores"


def is_valid_category(category: Any) -> bool:
    try:
        LTMCategory(category)
    except ValueError:
        return False
    return True


def _active_categories(context: Optional[Mapping[str, Any]]) -> set[str]:
    if not isinstance(context, Mapping):
        return set()
    active = context.get("active_categories") or ()
    if isinstance(active, str):
        active = (active,)
    if not isinstance(active, Iterable):
        return set()
    return {LTMCategory(c).value for c in active if is_valid_category(c)}


@dataclass
class CategoryClassifier:
    """
    Ranks the long-term categories a text speaks to.

    Usage:
        classifier = CategoryClassifier()
        matches = classifier.detect_categories(
            "quero juntar R$50.000 para comprar um apartamento em 3 anos"
        )
        matches[0].category  # LTMCategory.OBJETIVOS_METAS
    """

    detectors: dict[LTMCategory, CategoryDetector] = field(default_factory=lambda: dict(DETECTORS))
    min_score: int = MIN_CATEGORY_SCORE
    top_n: int = TOP_N

    def score_all(
        self, text: Any, context: Optional[Mapping[str, Any]] = None
    ) -> list[CategoryMatch]:
        """Score every category, highest first, active categories winning ties."""
        if not isinstance(text, str) or not text.strip():
            return []

        active = _active_categories(context)
        matches = []
        for category, detector in self.detectors.items():
            score = detector.score(text, active=category.value in active)
            matches.append(
                CategoryMatch(category=category, score=score, reason=describe_confidence(score))
            )
        matches.sort(key=lambda m: (-m.score, m.category.value not in active))
        return matches

    def detect_categories(
        self, text: Any, context: Optional[Mapping[str, Any]] = None
    ) -> list[CategoryMatch]:
        """Top categories scoring at least the confidence floor."""
        ranked = self.score_all(text, context)
        return [m for m in ranked if m.score >= self.min_score][: self.top_n]

    def extract_relevant_info(self, text: str, category: LTMCategory | str) -> str:
        """The sentence that best evidences the category, else the whole text."""
        if not text:
            return ""
        detector = self.detectors.get(LTMCategory(category))
        sentences = [s.strip() for s in SENTENCE_SPLIT.split(text.strip()) if s.strip()]
        if detector is None or not sentences:
            return text.strip()

        for sentence in sentences:
            if any(p.search(sentence) for p in detector.intents):
                return sentence
        for sentence in sentences:
            if any(p.search(sentence) for p in detector.high):
                return sentence
        return text.strip()

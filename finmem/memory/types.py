"""Budgets, thresholds and category presentation shared by the memory tiers."""

from finmem.models.schemas import ConfidenceLevel, LTMCategory, MemoryTier


# =============================================================================
# Budgets (words)
# =============================================================================

WORKING_BUDGET = 700
EPISODIC_BUDGET = 500
LONG_TERM_PER_CATEGORY = 350
# Informational only; per-category budgets are what insertion enforces
LONG_TERM_TOTAL = 1800

# =============================================================================
# Thresholds
# =============================================================================

MIN_TO_KEEP = 0.5
MIN_FOR_LTM = 0.7
COMPRESSION_TRIGGER = 0.8
COMPRESSION_TARGET = 0.6
MERGE_THRESHOLD = 0.85
DUPLICATE_THRESHOLD = 0.9
MIN_CATEGORY_SCORE = 30

REFINE_MAX_WORDS = 60
DESCRIPTION_MAX_WORDS = 25
DESCRIPTION_REFRESH_EVERY = 5
DESCRIPTION_MAX_AGE_DAYS = 7
NARRATIVE_MAX_WORDS = 750

# =============================================================================
# Timing
# =============================================================================

SESSION_TIMEOUT_SECONDS = 40 * 60
EPISODIC_INACTIVITY_DAYS = 30
EPISODIC_MAX_AGE_DAYS = 90

# =============================================================================
# Category presentation
# =============================================================================

CATEGORY_LABELS: dict[LTMCategory, str] = {
    LTMCategory.PERFIL_PROFISSIONAL: "Perfil Profissional",
    LTMCategory.SITUACAO_FINANCEIRA: "Situação Financeira",
    LTMCategory.INVESTIMENTOS: "Investimentos",
    LTMCategory.OBJETIVOS_METAS: "Objetivos e Metas",
    LTMCategory.COMPORTAMENTO_GASTOS: "Comportamento e Gastos",
    LTMCategory.PERFIL_RISCO: "Perfil de Risco",
    LTMCategory.CONHECIMENTO_FINANCEIRO: "Conhecimento Financeiro",
    LTMCategory.PLANEJAMENTO_FUTURO: "Planejamento Futuro",
    LTMCategory.FAMILIA_DEPENDENTES: "Família e Dependentes",
    LTMCategory.RELACAO_PLATAFORMA: "Relação com Plataforma",
}

FALLBACK_DESCRIPTIONS: dict[LTMCategory, str] = {
    LTMCategory.PERFIL_PROFISSIONAL: "Perfil profissional em análise",
    LTMCategory.SITUACAO_FINANCEIRA: "Situação financeira em avaliação",
    LTMCategory.INVESTIMENTOS: "Portfólio de investimentos em construção",
    LTMCategory.OBJETIVOS_METAS: "Objetivos financeiros sendo definidos",
    LTMCategory.COMPORTAMENTO_GASTOS: "Padrões de gastos em observação",
    LTMCategory.PERFIL_RISCO: "Perfil de risco em análise",
    LTMCategory.CONHECIMENTO_FINANCEIRO: "Nível de conhecimento sendo avaliado",
    LTMCategory.PLANEJAMENTO_FUTURO: "Planos futuros em desenvolvimento",
    LTMCategory.FAMILIA_DEPENDENTES: "Contexto familiar em análise",
    LTMCategory.RELACAO_PLATAFORMA: "Relação com plataforma sendo estabelecida",
}

DEFAULT_DESCRIPTION = "Categoria em análise"

# Event categories the narrative manager never discards
PINNED_EVENT_CATEGORIES = frozenset(
    {
        LTMCategory.OBJETIVOS_METAS.value,
        LTMCategory.PERFIL_RISCO.value,
        "restricoes_limitacoes",
    }
)


def category_label(category: str) -> str:
    try:
        return CATEGORY_LABELS[LTMCategory(category)]
    except ValueError:
        return category


def fallback_description(category: str) -> str:
    try:
        return FALLBACK_DESCRIPTIONS[LTMCategory(category)]
    except ValueError:
        return DEFAULT_DESCRIPTION

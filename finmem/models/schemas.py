"""
Pydantic models for finmem.

Defines the records held by each memory tier and the result types passed
between the classifier, curator, stores and engine.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================


class MemoryTier(str, Enum):
    """The three memory lifetimes."""

    WORKING = "working"
    EPISODIC = "episodic"
    LONG_TERM = "long_term"


class LTMCategory(str, Enum):
    """Closed set of long-term profile categories."""

    PERFIL_PROFISSIONAL = "perfil_profissional"
    SITUACAO_FINANCEIRA = "situacao_financeira"
    INVESTIMENTOS = "investimentos"
    OBJETIVOS_METAS = "objetivos_metas"
    COMPORTAMENTO_GASTOS = "comportamento_gastos"
    PERFIL_RISCO = "perfil_risco"
    CONHECIMENTO_FINANCEIRO = "conhecimento_financeiro"
    PLANEJAMENTO_FUTURO = "planejamento_futuro"
    FAMILIA_DEPENDENTES = "familia_dependentes"
    RELACAO_PLATAFORMA = "relacao_plataforma"


class ConfidenceLevel(str, Enum):
    """How firmly a user stated something in an interaction."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# =============================================================================
# Working Memory
# =============================================================================


class Session(BaseModel):
    """A user session owning at most one working-memory map."""

    session_id: str
    user_id: str
    created_at: datetime = Field(default_factory=utc_now)
    last_activity: datetime = Field(default_factory=utc_now)
    metadata: dict[str, Any] = Field(default_factory=dict)


class WorkingEntry(BaseModel):
    """One key/value pair in a session's working memory."""

    key: str
    value: Any
    word_count: int = 0
    created_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Episodic Memory
# =============================================================================


class ConversationEvent(BaseModel):
    """Structured digest of one user/assistant exchange."""

    intent: str
    user_action: str
    mentioned_values: dict[str, float] = Field(default_factory=dict)
    decision: Optional[str] = None
    confidence_level: ConfidenceLevel = ConfidenceLevel.MEDIUM
    timestamp: datetime = Field(default_factory=utc_now)
    category: str = "geral"


class EpisodicContent(BaseModel):
    """
    Open-ended conversation document.

    The recognised keys are validated; anything else lands in the
    extension map (model_extra) and is counted and merged the same way.
    """

    model_config = ConfigDict(extra="allow")

    contexto_conversa: Optional[str] = None
    preferencias_mencionadas: Optional[str] = None
    decisoes_tomadas: Optional[str] = None
    events: list[ConversationEvent] = Field(default_factory=list)
    narrative: Optional[str] = None

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class EpisodicMemory(BaseModel):
    """Per-conversation memory record."""

    chat_id: str
    user_id: str
    content: EpisodicContent = Field(default_factory=EpisodicContent)
    word_count: int = 0
    compression_count: int = 0
    last_compressed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime = Field(default_factory=utc_now)

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= utc_now()


# =============================================================================
# Long-Term Memory
# =============================================================================


class MemoryItem(BaseModel):
    """A curated fact about the user."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    content: str
    category: LTMCategory
    impact_score: float = Field(..., ge=0.0, le=1.0)
    source_chats: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    event_date: Optional[datetime] = None
    last_accessed: datetime = Field(default_factory=utc_now)
    access_count: int = 0
    vector_ref: Optional[str] = None
    word_count: int = 0


class CategoryDescription(BaseModel):
    """Short summary of what the profile knows about one category."""

    description: str = ""
    last_updated: Optional[datetime] = None
    update_count: int = 0
    accepted_count: int = 0


class CurationStats(BaseModel):
    total_proposed: int = 0
    total_accepted: int = 0
    total_rejected: int = 0
    total_merged: int = 0
    last_curation_at: Optional[datetime] = None


class LongTermProfile(BaseModel):
    """Per-user long-term memory, partitioned by category."""

    user_id: str
    items: list[MemoryItem] = Field(default_factory=list)
    category_descriptions: dict[str, CategoryDescription] = Field(default_factory=dict)
    total_word_count: int = 0
    curation_stats: CurationStats = Field(default_factory=CurationStats)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def items_in(self, category: LTMCategory | str) -> list[MemoryItem]:
        category = LTMCategory(category)
        return [item for item in self.items if item.category == category]

    def category_words(self, category: LTMCategory | str) -> int:
        return sum(item.word_count for item in self.items_in(category))

    def find(self, item_id: str) -> Optional[MemoryItem]:
        return next((item for item in self.items if item.id == item_id), None)

    def description_for(self, category: LTMCategory | str) -> CategoryDescription:
        key = LTMCategory(category).value
        if key not in self.category_descriptions:
            self.category_descriptions[key] = CategoryDescription()
        return self.category_descriptions[key]

    def recount(self) -> int:
        self.total_word_count = sum(item.word_count for item in self.items)
        return self.total_word_count


# =============================================================================
# Rule, Scoring and Classification Results
# =============================================================================


class ForbiddenCheck(BaseModel):
    found: bool
    kind: Optional[str] = None


class AdmissionDecision(BaseModel):
    """Outcome of the admission rules for one candidate."""

    allowed: bool
    reason: Optional[str] = None
    kind: Optional[str] = None


class ImpactBreakdown(BaseModel):
    recurrence: float
    structural: float
    durability: float
    specificity: float
    actionability: float
    total: float


class CategoryMatch(BaseModel):
    category: LTMCategory
    score: int = Field(..., ge=0, le=100)
    reason: str


class CurationResult(BaseModel):
    accepted: bool
    reason: str
    content: Optional[str] = None
    category: Optional[LTMCategory] = None
    impact_score: float = 0.0


class WorkingCandidate(BaseModel):
    key: str
    value: Any
    reason: str = ""


class LongTermCandidate(BaseModel):
    content: str
    category: LTMCategory
    score: int
    reason: str = ""


class InteractionClassification(BaseModel):
    """Per-tier write candidates derived from one interaction."""

    working: list[WorkingCandidate] = Field(default_factory=list)
    episodic: dict[str, Any] = Field(default_factory=dict)
    event: Optional[ConversationEvent] = None
    long_term: list[LongTermCandidate] = Field(default_factory=list)
    active_categories: list[str] = Field(default_factory=list)


# =============================================================================
# Engine Interface
# =============================================================================


class Interaction(BaseModel):
    """One user message and the assistant's reply."""

    session_id: str
    chat_id: str
    user_id: str
    user_message: str
    ai_response: str = ""
    history: list[dict[str, str]] = Field(default_factory=list)
    user_name: Optional[str] = None


class ProcessingAck(BaseModel):
    """Acknowledgment that an interaction was scheduled for processing."""

    scheduled: bool
    task_id: str
    session_id: str
    chat_id: str


class MemoryContext(BaseModel):
    """Read-only aggregate of all tiers for prompt construction."""

    session: Optional[Session] = None
    working_memory: dict[str, Any] = Field(default_factory=dict)
    episodic_memory: Optional[EpisodicContent] = None
    long_term_memory: list[MemoryItem] = Field(default_factory=list)
    category_descriptions: dict[str, CategoryDescription] = Field(default_factory=dict)


class CategoryUsage(BaseModel):
    category: LTMCategory
    item_count: int
    word_count: int
    average_impact: float
    budget_used_percent: float


class LongTermStats(BaseModel):
    total_items: int
    total_words: int
    budget_used_percent: float
    top_categories: list[CategoryUsage]
    average_impact: float
    curation_stats: CurationStats

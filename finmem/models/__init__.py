"""Pydantic models for memory records and pipeline results."""

from finmem.models.schemas import (
    AdmissionDecision,
    CategoryDescription,
    CategoryMatch,
    CategoryUsage,
    ConfidenceLevel,
    ConversationEvent,
    CurationResult,
    CurationStats,
    EpisodicContent,
    EpisodicMemory,
    ForbiddenCheck,
    ImpactBreakdown,
    Interaction,
    InteractionClassification,
    LongTermCandidate,
    LongTermProfile,
    LongTermStats,
    LTMCategory,
    MemoryContext,
    MemoryItem,
    MemoryTier,
    ProcessingAck,
    Session,
    WorkingCandidate,
    WorkingEntry,
    utc_now,
)

__all__ = [
    "AdmissionDecision",
    "CategoryDescription",
    "CategoryMatch",
    "CategoryUsage",
    "ConfidenceLevel",
    "ConversationEvent",
    "CurationResult",
    "CurationStats",
    "EpisodicContent",
    "EpisodicMemory",
    "ForbiddenCheck",
    "ImpactBreakdown",
    "Interaction",
    "InteractionClassification",
    "LongTermCandidate",
    "LongTermProfile",
    "LongTermStats",
    "LTMCategory",
    "MemoryContext",
    "MemoryItem",
    "MemoryTier",
    "ProcessingAck",
    "Session",
    "WorkingCandidate",
    "WorkingEntry",
    "utc_now",
]

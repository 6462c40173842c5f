"""
Prompt context rendering.

Sections appear in truth-priority order: current session data first, then
the conversation summary, the per-category profile descriptions and
finally the long-term history, oldest to newest with the time elapsed
since each fact. When sources disagree, the earlier section wins.
"""

import json
from datetime import datetime
from typing import Optional

from finmem.memory.types import category_label
from finmem.models.schemas import MemoryContext, MemoryItem, utc_now

WORKING_HEADING = "## Memória de Trabalho (Sessão Atual):"
EPISODIC_HEADING = "## Contexto da Conversa:"
DESCRIPTIONS_HEADING = "## Resumo do Perfil do Usuário:"
LONG_TERM_HEADING = "## Informações Importantes sobre o Usuário:"
PRIORITY_NOTE = (
    "Prioridade de verdade: dados da sessão atual > contexto da conversa > "
    "resumo do perfil > histórico. Em caso de conflito, use a informação mais recente."
)
EPISODIC_FIELDS = ("contexto_conversa", "preferencias_mencionadas", "decisoes_tomadas")


def describe_elapsed(moment: Optional[datetime], now: Optional[datetime] = None) -> str:
    if moment is None:
        return "data desconhecida"
    days = max(0, ((now or utc_now()) - moment).days)
    if days == 0:
        return "hoje"
    if days == 1:
        return "há 1 dia"
    if days < 60:
        return f"há {days} dias"
    months = days // 30
    if months < 24:
        return f"há {months} meses"
    return f"há {days // 365} anos"


def _chronological(items: list[MemoryItem]) -> list[MemoryItem]:
    return sorted(items, key=lambda item: item.event_date or item.created_at)


def format_context_for_prompt(context: MemoryContext, now: Optional[datetime] = None) -> str:
    """Render a MemoryContext as the markdown block placed in the prompt."""
    now = now or utc_now()
    sections = []

    if context.working_memory:
        lines = [WORKING_HEADING]
        lines += [
            f"- {key}: {json.dumps(value, ensure_ascii=False, default=str)}"
            for key, value in context.working_memory.items()
        ]
        sections.append("\n".join(lines))

    if context.episodic_memory is not None:
        document = context.episodic_memory.to_document()
        lines = [EPISODIC_HEADING]
        lines += [f"- {field}: {document[field]}" for field in EPISODIC_FIELDS if document.get(field)]
        if document.get("narrative"):
            lines.append(document["narrative"])
        if len(lines) > 1:
            sections.append("\n".join(lines))

    descriptions = {
        category: entry.description
        for category, entry in context.category_descriptions.items()
        if entry.description
    }
    if descriptions:
        lines = [DESCRIPTIONS_HEADING]
        lines += [f"- **{category_label(category)}**: {text}" for category, text in descriptions.items()]
        sections.append("\n".join(lines))

    if context.long_term_memory:
        lines = [LONG_TERM_HEADING]
        for item in _chronological(context.long_term_memory):
            elapsed = describe_elapsed(item.event_date or item.created_at, now)
            lines.append(f"- [{category_label(item.category.value)}] {item.content} ({elapsed})")
        sections.append("\n".join(lines))

    if not sections:
        return ""
    sections.append(PRIORITY_NOTE)
    return "\n\n".join(sections) + "\n"

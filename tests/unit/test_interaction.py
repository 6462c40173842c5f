"""Unit tests for interaction classification."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from finmem.memory.interaction import (
    InteractionClassifier,
    extract_decisions,
    extract_preferences,
    has_working_context,
    summarize_exchange,
)
from finmem.memory.types import LTMCategory
from finmem.models.schemas import CategoryMatch, Interaction


def interaction(message: str, response: str = "Entendido.", **kwargs) -> Interaction:
    return Interaction(
        session_id="s1", chat_id="c1", user_id="u1", user_message=message, ai_response=response, **kwargs
    )


class TestExtractors:
    """Test the rule-based extractors."""

    def test_summary_quotes_both_sides(self):
        summary = summarize_exchange("Quanto rende o CDB?", "Cerca de 100% do CDI.")

        assert summary.startswith('Usuário perguntou sobre: "Quanto rende o CDB?".')
        assert "Assistente respondeu" in summary

    def test_preferences_and_decisions(self):
        assert extract_preferences("Prefiro renda fixa.") == "renda fixa"
        assert extract_decisions("Decidi vender as ações.") == "vender as ações"
        assert extract_preferences("Qual a taxa?") is None
        assert extract_decisions("Qual a taxa?") is None

    def test_working_markers(self):
        assert has_working_context("Vamos calcular o total") is True
        assert has_working_context("Bom dia") is False


class TestInteractionClassifier:
    """Test the per-tier classification."""

    @pytest.mark.asyncio
    async def test_goal_message_produces_long_term_candidate(self):
        classifier = InteractionClassifier()

        result = await classifier.classify(
            interaction("quero juntar R$50.000 para comprar um apartamento em 3 anos", user_name="Carlos")
        )

        assert result.long_term[0].category == LTMCategory.OBJETIVOS_METAS
        assert result.long_term[0].content.startswith("Carlos ")
        assert result.active_categories[0] == "objetivos_metas"
        assert result.event.category == "objetivos_metas"
        assert result.episodic["preferencias_mencionadas"]

    @pytest.mark.asyncio
    async def test_calculation_values_go_to_working_memory(self):
        classifier = InteractionClassifier()

        result = await classifier.classify(
            interaction("Vamos calcular: meu salário é R$ 8.000 e a taxa é 12% ao ano")
        )

        keys = {candidate.key for candidate in result.working}
        assert {"renda_mensal", "taxa_juros"} <= keys

    @pytest.mark.asyncio
    async def test_small_talk_only_updates_episodic(self):
        classifier = InteractionClassifier()

        result = await classifier.classify(interaction("Bom dia!", "Bom dia! Como posso ajudar?"))

        assert result.working == []
        assert result.long_term == []
        assert set(result.episodic) == {"contexto_conversa"}
        assert result.event.category == "geral"

    @pytest.mark.asyncio
    async def test_default_user_name(self):
        classifier = InteractionClassifier()

        result = await classifier.classify(interaction("Prefiro evitar risco, sou conservador"))

        assert result.long_term[0].content.startswith("O usuário ")

    @pytest.mark.asyncio
    async def test_low_confidence_ranking_uses_text_service(self):
        categories = MagicMock()
        categories.detect_categories.return_value = [
            CategoryMatch(category=LTMCategory.SITUACAO_FINANCEIRA, score=40, reason="r"),
            CategoryMatch(category=LTMCategory.INVESTIMENTOS, score=35, reason="r"),
        ]
        categories.extract_relevant_info.side_effect = lambda text, category: text
        service = MagicMock()
        service.rank_categories = AsyncMock(side_effect=lambda text, cats, history: list(reversed(cats)))
        classifier = InteractionClassifier(categories=categories, text_service=service)

        ranked = await classifier.long_term_candidates("renda e investimentos", None, [])

        service.rank_categories.assert_awaited_once()
        assert [c.category for c in ranked] == [
            LTMCategory.INVESTIMENTOS,
            LTMCategory.SITUACAO_FINANCEIRA,
        ]

    @pytest.mark.asyncio
    async def test_ranking_sees_last_three_turns(self):
        categories = MagicMock()
        categories.detect_categories.return_value = [
            CategoryMatch(category=LTMCategory.SITUACAO_FINANCEIRA, score=40, reason="r"),
            CategoryMatch(category=LTMCategory.INVESTIMENTOS, score=35, reason="r"),
        ]
        categories.extract_relevant_info.side_effect = lambda text, category: text
        service = MagicMock()
        service.rank_categories = AsyncMock(side_effect=lambda text, cats, history: list(cats))
        classifier = InteractionClassifier(categories=categories, text_service=service)
        history = [{"role": "user", "content": f"mensagem {i}"} for i in range(5)]

        await classifier.classify(interaction("renda e investimentos", history=history))

        text, _, seen = service.rank_categories.await_args.args
        assert text == "renda e investimentos"
        assert [turn["content"] for turn in seen] == ["mensagem 2", "mensagem 3", "mensagem 4"]

    @pytest.mark.asyncio
    async def test_ranking_failure_keeps_rule_order(self):
        categories = MagicMock()
        categories.detect_categories.return_value = [
            CategoryMatch(category=LTMCategory.SITUACAO_FINANCEIRA, score=40, reason="r"),
            CategoryMatch(category=LTMCategory.INVESTIMENTOS, score=35, reason="r"),
        ]
        categories.extract_relevant_info.side_effect = lambda text, category: text
        service = MagicMock()
        service.rank_categories = AsyncMock(side_effect=RuntimeError("down"))
        classifier = InteractionClassifier(categories=categories, text_service=service)

        ranked = await classifier.long_term_candidates("renda e investimentos", None, [])

        assert ranked[0].category == LTMCategory.SITUACAO_FINANCEIRA

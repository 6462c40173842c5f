"""Unit tests for the long-term curation pipeline."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from finmem.memory.curator import MemoryCurator
from finmem.memory.types import LTMCategory

PREFERENCE = "prefiro sempre investir em renda fixa, nunca em ações de alta volatilidade"


def text_service(refined: str = None, score=None) -> MagicMock:
    service = MagicMock()
    service.refine = AsyncMock(side_effect=lambda text, max_words: refined if refined is not None else text)
    service.score_impact = AsyncMock(return_value=score)
    return service


class TestMemoryCurator:
    """Test the admit/reject/refine pipeline."""

    @pytest.mark.asyncio
    async def test_accepts_durable_fact(self):
        curator = MemoryCurator(text_service())

        result = await curator.curate(PREFERENCE, "perfil_risco")

        assert result.accepted is True
        assert result.category == LTMCategory.PERFIL_RISCO
        assert result.impact_score >= 0.7
        assert result.content == PREFERENCE

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content,category,reason",
        [
            ("", "perfil_risco", "empty_content"),
            ("senha: hunter2 e prefiro renda fixa", "perfil_risco", "forbidden_content:credential"),
            (PREFERENCE, "astrologia", "invalid_category"),
            ("sempre uso valores temporários de renda", "situacao_financeira", "unsuitable_for_tier"),
            ("oi, tudo bem?", "relacao_plataforma", "low_impact"),
        ],
    )
    async def test_rejections_in_order(self, content, category, reason):
        curator = MemoryCurator(text_service())

        result = await curator.curate(content, category)

        assert result.accepted is False
        assert result.reason == reason

    @pytest.mark.asyncio
    async def test_forbidden_checked_before_category(self):
        curator = MemoryCurator(text_service())

        result = await curator.curate("meu cpf é 123.456.789-09", "astrologia")

        assert result.reason.startswith("forbidden_content")

    @pytest.mark.asyncio
    async def test_external_score_is_averaged(self):
        curator = MemoryCurator(text_service(score=0.0))

        result = await curator.curate(PREFERENCE, "perfil_risco")

        assert result.accepted is False
        assert result.reason == "low_impact"
        assert result.impact_score == pytest.approx(0.385)

    @pytest.mark.asyncio
    async def test_refinement_introducing_sensitive_data_is_discarded(self):
        curator = MemoryCurator(text_service(refined="Cliente com CPF 123.456.789-09 prefere renda fixa"))

        result = await curator.curate(PREFERENCE, "perfil_risco")

        assert result.content == PREFERENCE

    @pytest.mark.asyncio
    async def test_refinement_capped_at_word_ceiling(self):
        long_answer = " ".join(f"palavra{i}" for i in range(90))
        curator = MemoryCurator(text_service(refined=long_answer), max_words=60)

        result = await curator.curate(PREFERENCE, "perfil_risco")

        assert len(result.content.split()) <= 60

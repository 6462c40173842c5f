"""Unit tests for category description regeneration."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from finmem.memory.descriptions import (
    generate_description,
    needs_refresh,
    refresh_description,
    sanitize_description,
)
from finmem.memory.types import LTMCategory
from finmem.models.schemas import CategoryDescription, utc_now


class TestSanitizeDescription:
    """Test removal of volatile details."""

    def test_strips_quotes_dates_amounts_and_tickers(self):
        text = 'Investe "R$ 2.000" por mês em PETR4 desde 10/01/2023, com 20% em renda fixa'

        cleaned = sanitize_description(text)

        for fragment in ('"', "R$", "2.000", "PETR4", "10/01/2023", "20%"):
            assert fragment not in cleaned
        assert "renda fixa" in cleaned

    def test_word_ceiling(self):
        text = " ".join(f"palavra{i}" for i in range(40))

        assert len(sanitize_description(text, max_words=25).split()) <= 25


class TestNeedsRefresh:
    """Test the refresh policy."""

    def test_empty_description(self):
        assert needs_refresh(CategoryDescription()) is True

    def test_every_fifth_item(self):
        fresh = dict(description="Perfil conservador", last_updated=utc_now())

        assert needs_refresh(CategoryDescription(accepted_count=5, **fresh)) is True
        assert needs_refresh(CategoryDescription(accepted_count=4, **fresh)) is False

    def test_stale_after_a_week(self):
        stale = CategoryDescription(
            description="Perfil conservador",
            accepted_count=3,
            last_updated=utc_now() - timedelta(days=8),
        )

        assert needs_refresh(stale) is True


class TestGenerateDescription:
    """Test generation through the text service."""

    @pytest.mark.asyncio
    async def test_fallback_without_items(self):
        service = MagicMock()

        result = await generate_description(service, LTMCategory.PERFIL_RISCO, [])

        assert result == "Perfil de risco em análise"

    @pytest.mark.asyncio
    async def test_service_error_uses_fallback(self, make_item):
        service = MagicMock()
        service.summarize_category = AsyncMock(side_effect=RuntimeError("down"))

        result = await generate_description(
            service, LTMCategory.INVESTIMENTOS, [make_item("Investe em CDB")]
        )

        assert result == "Portfólio de investimentos em construção"

    @pytest.mark.asyncio
    async def test_answer_is_sanitized(self, make_item):
        service = MagicMock()
        service.summarize_category = AsyncMock(return_value="Investidor disciplinado, aporta R$ 2.000 mensais")

        result = await generate_description(
            service, LTMCategory.INVESTIMENTOS, [make_item("Em 01/01/2024, Aporta R$ 2.000 por mês")]
        )

        assert "R$" not in result
        contents = service.summarize_category.await_args.args[1]
        assert contents == ["Aporta R$ 2.000 por mês"]

    @pytest.mark.asyncio
    async def test_refresh_updates_in_place(self, make_item):
        service = MagicMock()
        service.summarize_category = AsyncMock(return_value="Investidor de longo prazo")
        description = CategoryDescription()

        text = await refresh_description(
            service, description, LTMCategory.INVESTIMENTOS, [make_item("Investe em CDB")]
        )

        assert text == description.description == "Investidor de longo prazo"
        assert description.update_count == 1
        assert description.last_updated is not None

    @pytest.mark.asyncio
    async def test_refresh_skipped_when_not_due(self, make_item):
        service = MagicMock()
        service.summarize_category = AsyncMock(return_value="novo")
        description = CategoryDescription(
            description="antigo", accepted_count=2, last_updated=utc_now()
        )

        assert await refresh_description(service, description, LTMCategory.INVESTIMENTOS, []) is None
        assert description.description == "antigo"
        service.summarize_category.assert_not_awaited()

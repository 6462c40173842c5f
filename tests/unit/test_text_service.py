"""Unit tests for the text service implementations."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from finmem.core.circuit_breaker import CircuitBreaker
from finmem.core.exceptions import ConfigurationError
from finmem.services.text_service import (
    AnthropicTextService,
    LocalTextService,
    ResilientTextService,
    _parse_json,
    create_text_service,
)


def remote_service(**methods) -> MagicMock:
    remote = MagicMock()
    for name, behaviour in methods.items():
        if isinstance(behaviour, Exception) or callable(behaviour):
            setattr(remote, name, AsyncMock(side_effect=behaviour))
        else:
            setattr(remote, name, AsyncMock(return_value=behaviour))
    return remote


class TestLocalTextService:
    """Test the deterministic implementation."""

    @pytest.mark.asyncio
    async def test_refine_respects_ceiling(self):
        service = LocalTextService()
        text = " ".join(f"palavra{i}" for i in range(80))

        refined = await service.refine(text, 60)

        assert len(refined.split()) <= 60

    @pytest.mark.asyncio
    async def test_summary_is_category_template(self):
        service = LocalTextService()

        summary = await service.summarize_category("perfil_risco", ["prefere renda fixa"], 25)

        assert summary == "Perfil de risco em análise"

    @pytest.mark.asyncio
    async def test_no_external_opinion(self):
        service = LocalTextService()

        assert await service.score_impact("qualquer coisa") is None
        assert await service.rank_categories("x", ["a", "b"]) == ["a", "b"]


class TestResilientTextService:
    """Test fallback behaviour of the remote wrapper."""

    @pytest.mark.asyncio
    async def test_uses_remote_answer(self):
        remote = remote_service(refine="Carlos ganha oito mil por mês")
        service = ResilientTextService(remote, CircuitBreaker("test"), timeout=1.0)

        assert await service.refine("Eu ganho 8 mil por mês", 60) == "Carlos ganha oito mil por mês"

    @pytest.mark.asyncio
    async def test_error_falls_back_to_local(self):
        remote = remote_service(score_impact=RuntimeError("boom"))
        service = ResilientTextService(remote, CircuitBreaker("test"), timeout=1.0)

        assert await service.score_impact("texto") is None

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_local(self):
        async def slow(*args):
            await asyncio.sleep(1)
            return "tarde demais"

        remote = remote_service(summarize_category=slow)
        service = ResilientTextService(remote, CircuitBreaker("test"), timeout=0.01)

        summary = await service.summarize_category("investimentos", ["CDB"], 25)

        assert summary == "Portfólio de investimentos em construção"

    @pytest.mark.asyncio
    async def test_open_circuit_skips_remote(self):
        remote = remote_service(rank_categories=RuntimeError("down"))
        breaker = CircuitBreaker("test", failure_threshold=2, recovery_timeout=60)
        service = ResilientTextService(remote, breaker, timeout=1.0)

        for _ in range(3):
            await service.rank_categories("texto", ["a", "b"])

        assert breaker.is_open is True
        assert remote.rank_categories.await_count == 2

    @pytest.mark.asyncio
    async def test_empty_refinement_replaced_by_local(self):
        remote = remote_service(refine="   ")
        service = ResilientTextService(remote, CircuitBreaker("test"), timeout=1.0)

        assert await service.refine("Tem reserva de emergência", 60) == "Tem reserva de emergência"

    @pytest.mark.asyncio
    async def test_non_reducing_compression_replaced_by_local(self):
        text = " ".join(f"palavra{i}" for i in range(50))
        remote = remote_service(compress=text + " e mais")
        service = ResilientTextService(remote, CircuitBreaker("test"), timeout=1.0)

        compressed = await service.compress(text, 20)

        assert len(compressed.split()) <= 20


class TestAnthropicTextService:
    """Test prompt assembly with the model call stubbed."""

    @pytest.mark.asyncio
    async def test_ranking_prompt_includes_recent_turns(self):
        service = AnthropicTextService("sk-test")
        service._complete = AsyncMock(return_value='{"categories": ["investimentos"]}')
        history = [
            {"role": "user", "content": "Tenho R$ 20.000 parados"},
            {"role": "assistant", "content": "Podemos pensar em renda fixa."},
        ]

        ranked = await service.rank_categories(
            "e agora?", ["situacao_financeira", "investimentos"], history
        )

        assert ranked == ["investimentos", "situacao_financeira"]
        _, text = service._complete.await_args.args
        assert "user: Tenho R$ 20.000 parados" in text
        assert "assistant: Podemos pensar em renda fixa." in text
        assert text.endswith("e agora?")

    @pytest.mark.asyncio
    async def test_ranking_without_history_sends_message_only(self):
        service = AnthropicTextService("sk-test")
        service._complete = AsyncMock(return_value='{"categories": []}')

        await service.rank_categories("quero investir", ["investimentos"])

        _, text = service._complete.await_args.args
        assert text == "quero investir"


class TestHelpers:
    """Test JSON parsing and the factory."""

    def test_parse_json_with_code_fence(self):
        assert _parse_json('```json\n{"score": 0.8}\n```') == {"score": 0.8}

    def test_parse_json_with_prose(self):
        assert _parse_json('Claro! {"categories": ["investimentos"]} pronto') == {
            "categories": ["investimentos"]
        }

    def test_parse_json_failure(self):
        with pytest.raises(ValueError):
            _parse_json("sem json aqui")

    def test_factory_defaults_to_local(self, settings):
        assert isinstance(create_text_service(settings), LocalTextService)

    def test_factory_wraps_anthropic(self, settings):
        configured = settings.model_copy(
            update={"text_service_provider": "anthropic", "anthropic_api_key": SecretStr("sk-test")}
        )

        service = create_text_service(configured)

        assert isinstance(service, ResilientTextService)
        assert service.timeout == configured.external_timeout_seconds

    def test_factory_requires_anthropic_key(self, settings):
        configured = settings.model_copy(
            update={"text_service_provider": "anthropic", "anthropic_api_key": None}
        )

        with pytest.raises(ConfigurationError) as exc_info:
            create_text_service(configured)

        assert exc_info.value.config_key == "anthropic_api_key"

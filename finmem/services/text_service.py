"""
Text Service.

The narrow language interface the memory engine consumes for refinement,
compression, category summaries, impact scoring and category ranking.

- LocalTextService: deterministic rules; the contract of record
- AnthropicTextService: Claude-backed, prompts in Portuguese
- ResilientTextService: time bound + circuit breaker, local fallback

Every external answer is post-processed by the caller's own rules
(word ceilings, sanitization), so a misbehaving model cannot break an
invariant.
"""

import asyncio
import json
import re
from typing import Optional, Protocol, Sequence

import anthropic
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finmem.config.settings import Settings
from finmem.core.circuit_breaker import CircuitBreaker
from finmem.core.exceptions import CircuitBreakerOpenError, ConfigurationError
from finmem.memory.compression import compress_text
from finmem.memory.types import fallback_description
from finmem.memory.word_counter import count_words, truncate_words
from finmem.monitoring.metrics import record_fallback, track_external_call

logger = structlog.get_logger(__name__)


class TextService(Protocol):
    """Protocol for text service implementations."""

    async def refine(self, text: str, max_words: int) -> str: ...

    async def compress(self, text: str, target_words: int) -> str: ...

    async def summarize_category(self, category: str, contents: list[str], max_words: int) -> str: ...

    async def score_impact(self, text: str) -> Optional[float]: ...

    async def rank_categories(
        self, text: str, categories: list[str], history: Sequence[dict[str, str]] = ()
    ) -> list[str]: ...


# =============================================================================
# Local
# =============================================================================


class LocalTextService:
    """Deterministic implementation built on the rule-based compressor."""

    async def refine(self, text: str, max_words: int) -> str:
        return compress_text(text, max_words)

    async def compress(self, text: str, target_words: int) -> str:
        return compress_text(text, target_words)

    async def summarize_category(self, category: str, contents: list[str], max_words: int) -> str:
        return truncate_words(fallback_description(category), max_words)

    async def score_impact(self, text: str) -> Optional[float]:
        # No opinion; the rule-based score stands alone
        return None

    async def rank_categories(
        self, text: str, categories: list[str], history: Sequence[dict[str, str]] = ()
    ) -> list[str]:
        return list(categories)


# =============================================================================
# Anthropic
# =============================================================================

REFINE_PROMPT = """Você reescreve fatos sobre clientes de um assistente financeiro.

REGRAS:
- Reescreva o fato em no máximo {max_words} palavras, em português.
- Mantenha números, valores e prazos exatamente como estão.
- Não invente informações e não adicione opiniões.
- Escreva em terceira pessoa.

Responda APENAS com o texto reescrito."""

COMPRESS_PROMPT = """Resuma o texto em no máximo {max_words} palavras, em português,
preservando decisões, valores e objetivos. Responda APENAS com o resumo."""

SUMMARY_PROMPT = """Você descreve o que se sabe sobre um cliente na categoria "{category}".

REGRAS:
- No máximo {max_words} palavras, em português.
- Sem datas, sem valores monetários, sem nomes de ativos ou produtos.
- Descreva o padrão geral, não fatos isolados.

Responda APENAS com a descrição."""

SCORE_PROMPT = """Avalie de 0 a 1 o quanto a informação abaixo é relevante e duradoura
para o perfil financeiro de um cliente. Responda APENAS com JSON: {"score": <número>}"""

RANK_PROMPT = """Ordene as categorias da mais para a menos adequada para a mensagem.
Categorias: {categories}
Responda APENAS com JSON: {{"categories": ["..."]}}"""


def _parse_json(text: str) -> dict:
    """Parse JSON from a model answer, tolerating code fences and prose."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\{[\s\S]*\}", text)
        if match:
            return json.loads(match.group())
        raise ValueError(f"Could not parse JSON from response: {text[:200]}")


class AnthropicTextService:
    """
    Claude-backed text service.

    Usage:
        service = AnthropicTextService(api_key, model="claude-sonnet-4-20250514")
        refined = await service.refine("Eu ganho 8 mil por mês", 60)
    """

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-20250514") -> None:
        self.client = anthropic.AsyncAnthropic(api_key=api_key)
        self.model = model

    @retry(
        retry=retry_if_exception_type((anthropic.RateLimitError, anthropic.APIConnectionError)),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        stop=stop_after_attempt(2),
        before_sleep=lambda retry_state: logger.warning(
            "anthropic_retry",
            attempt=retry_state.attempt_number,
            wait=retry_state.next_action.sleep,
        ),
        reraise=True,
    )
    async def _complete(self, system: str, user_message: str, max_tokens: int = 256) -> str:
        raw = await self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": user_message}],
        )
        return raw.content[0].text.strip()

    async def refine(self, text: str, max_words: int) -> str:
        return await self._complete(REFINE_PROMPT.format(max_words=max_words), text)

    async def compress(self, text: str, target_words: int) -> str:
        return await self._complete(
            COMPRESS_PROMPT.format(max_words=target_words), text, max_tokens=1024
        )

    async def summarize_category(self, category: str, contents: list[str], max_words: int) -> str:
        facts = "\n".join(f"- {content}" for content in contents)
        return await self._complete(
            SUMMARY_PROMPT.format(category=category, max_words=max_words), facts
        )

    async def score_impact(self, text: str) -> Optional[float]:
        result = _parse_json(await self._complete(SCORE_PROMPT, text, max_tokens=32))
        return max(0.0, min(1.0, float(result["score"])))

    async def rank_categories(
        self, text: str, categories: list[str], history: Sequence[dict[str, str]] = ()
    ) -> list[str]:
        if history:
            turns = "\n".join(
                f"{turn.get('role', 'user')}: {turn.get('content', '')}" for turn in history
            )
            text = f"Conversa recente:\n{turns}\n\nMensagem:\n{text}"
        result = _parse_json(
            await self._complete(RANK_PROMPT.format(categories=", ".join(categories)), text)
        )
        ranked = [c for c in result.get("categories", []) if c in categories]
        return ranked + [c for c in categories if c not in ranked]


# =============================================================================
# Resilient Wrapper
# =============================================================================


class ResilientTextService:
    """
    Wraps a remote text service with a time bound and a circuit breaker.

    Any failure (timeout, open circuit, provider error) is answered by the
    local implementation and counted as a fallback.
    """

    def __init__(
        self,
        remote: TextService,
        breaker: CircuitBreaker,
        timeout: float = 8.0,
        local: Optional[LocalTextService] = None,
    ) -> None:
        self.remote = remote
        self.breaker = breaker
        self.timeout = timeout
        self.local = local or LocalTextService()

    async def _call(self, operation: str, *args):
        async def bounded():
            return await asyncio.wait_for(getattr(self.remote, operation)(*args), timeout=self.timeout)

        try:
            with track_external_call("text_service", operation):
                return await self.breaker.call(bounded)
        except CircuitBreakerOpenError:
            record_fallback("text_service", operation)
            logger.debug("text_service_circuit_open", operation=operation)
        except asyncio.TimeoutError:
            record_fallback("text_service", operation)
            logger.warning("text_service_timeout_fallback", operation=operation, timeout=self.timeout)
        except Exception as e:
            record_fallback("text_service", operation)
            logger.warning("text_service_error_fallback", operation=operation, error=str(e))
        return await getattr(self.local, operation)(*args)

    async def refine(self, text: str, max_words: int) -> str:
        refined = await self._call("refine", text, max_words)
        if not refined or not refined.strip():
            return await self.local.refine(text, max_words)
        return refined

    async def compress(self, text: str, target_words: int) -> str:
        compressed = await self._call("compress", text, target_words)
        if not compressed or count_words(compressed) >= count_words(text):
            return await self.local.compress(text, target_words)
        return compressed

    async def summarize_category(self, category: str, contents: list[str], max_words: int) -> str:
        summary = await self._call("summarize_category", category, contents, max_words)
        return summary or await self.local.summarize_category(category, contents, max_words)

    async def score_impact(self, text: str) -> Optional[float]:
        return await self._call("score_impact", text)

    async def rank_categories(
        self, text: str, categories: list[str], history: Sequence[dict[str, str]] = ()
    ) -> list[str]:
        return await self._call("rank_categories", text, categories, history)


def create_text_service(settings: Settings) -> TextService:
    """
    Build the configured text service.

    Raises:
        ConfigurationError: If Anthropic is selected without an API key.
    """
    if settings.text_service_provider == "anthropic":
        if not settings.anthropic_api_key:
            raise ConfigurationError(
                "anthropic_api_key is required for the anthropic text service",
                config_key="anthropic_api_key",
            )
        remote = AnthropicTextService(
            settings.anthropic_api_key.get_secret_value(),
            model=settings.anthropic_model,
        )
        breaker = CircuitBreaker(
            "text_service",
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=settings.circuit_recovery_timeout,
        )
        logger.info("text_service_initialized", backend="anthropic", model=settings.anthropic_model)
        return ResilientTextService(remote, breaker, timeout=settings.external_timeout_seconds)

    logger.info("text_service_initialized", backend="local")
    return LocalTextService()

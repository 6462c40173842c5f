"""
finmem - Main Entry Point

Runs a short demonstration conversation through the memory engine and
prints the resulting prompt context.
"""

import asyncio
import logging
import sys

import structlog

from finmem.config import Settings, get_settings
from finmem.core.container import DependencyContainer
from finmem.models import Interaction
from finmem.monitoring import export_metrics


def configure_logging(settings: Settings) -> None:
    """Configure structlog on top of the stdlib logging module."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger(__name__)

DEMO_MESSAGES = [
    (
        "Oi! Sou engenheiro de software e ganho R$ 12.000 por mês.",
        "Ótimo! Com essa renda dá para montar um bom plano de investimentos.",
    ),
    (
        "Meu objetivo é juntar R$ 200.000 para comprar um apartamento em 5 anos.",
        "Vou montar uma simulação considerando aportes mensais.",
    ),
    (
        "Prefiro investimentos conservadores, não gosto de correr risco.",
        "Entendido, vamos focar em renda fixa como Tesouro IPCA+ e CDBs.",
    ),
]


async def run_demo(settings: Settings) -> None:
    container = DependencyContainer(settings)
    await container.initialize(start_scheduler=False)
    engine = container.engine

    session_id, chat_id, user_id = "demo-session", "demo-chat", "demo-user"
    try:
        await engine.initialize_session(session_id, user_id)
        for user_message, ai_response in DEMO_MESSAGES:
            await engine.process_interaction(
                Interaction(
                    session_id=session_id,
                    chat_id=chat_id,
                    user_id=user_id,
                    user_message=user_message,
                    ai_response=ai_response,
                    user_name="Ana",
                )
            )
            # Keeps the demo's turns in order
            await engine.drain()

        context = await engine.build_context(session_id, chat_id, user_id)
        print(engine.format_context_for_prompt(context))

        stats = await engine.long_term.get_stats(user_id)
        logger.info(
            "demo_completed",
            long_term_items=stats.total_items,
            long_term_words=stats.total_words,
            working_words=engine.working.word_count(session_id),
        )
        if settings.debug:
            print(export_metrics().decode("utf-8"))
    finally:
        await engine.end_session(session_id)
        await container.shutdown()


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    logger.info("finmem_demo_starting", environment=settings.app_env)
    asyncio.run(run_demo(settings))


if __name__ == "__main__":
    main()

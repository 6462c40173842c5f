"""External language services consumed by the memory engine."""

from finmem.services.text_service import (
    AnthropicTextService,
    LocalTextService,
    ResilientTextService,
    TextService,
    create_text_service,
)

__all__ = [
    "TextService",
    "LocalTextService",
    "AnthropicTextService",
    "ResilientTextService",
    "create_text_service",
]

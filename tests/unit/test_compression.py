"""Unit tests for text and document compression."""

from finmem.memory.compression import (
    clean_text,
    compress_content,
    compress_text,
    compression_ratio,
    dedupe_sentences,
)
from finmem.memory.narrative import extract_event
from finmem.memory.word_counter import count_words


def words(n: int, stem: str = "w") -> str:
    return " ".join(f"{stem}{i}" for i in range(n))


class TestCompressText:
    """Test plain-text compression."""

    def test_repeated_sentences_removed(self):
        text = "Investe em CDB. Investe em CDB. Tem reserva de emergência."

        assert dedupe_sentences(text) == "Investe em CDB. Tem reserva de emergência."

    def test_reaches_target(self):
        assert count_words(compress_text(words(120), 40)) <= 40

    def test_never_empty(self):
        assert compress_text("tipo assim", 1)
        assert clean_text("   ") == ""

    def test_short_text_untouched(self):
        assert compress_text("Tem reserva de emergência.", 60) == "Tem reserva de emergência."


class TestCompressContent:
    """Test structured document compression."""

    def test_reduces_below_target(self):
        document = {
            "contexto_conversa": words(250, "c"),
            "preferencias_mencionadas": words(150, "p"),
        }

        compressed = compress_content(document, 300)

        assert count_words(compressed) <= 300
        assert compressed["contexto_conversa"]
        assert compressed["preferencias_mencionadas"]

    def test_input_not_mutated(self):
        document = {"contexto_conversa": words(100)}

        compress_content(document, 10)

        assert count_words(document) == 100

    def test_events_folded_into_narrative(self):
        events = [
            extract_event(f"Quero investir R$ {i}.000 no tesouro", "Certo.").model_dump(mode="json")
            for i in range(1, 40)
        ]
        document = {"contexto_conversa": "Conversa longa sobre tesouro", "events": events}

        compressed = compress_content(document, 120)

        assert count_words(compressed) < count_words(document)
        assert compressed.get("narrative")

    def test_document_under_target_is_copied(self):
        document = {"contexto_conversa": "curto"}

        compressed = compress_content(document, 100)

        assert compressed == document
        assert compressed is not document

    def test_compression_ratio(self):
        assert compression_ratio(400, 300) == 0.75
        assert compression_ratio(0, 0) is None

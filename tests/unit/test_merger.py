"""Unit tests for merging and eviction of long-term items."""

from datetime import datetime, timedelta, timezone

from finmem.memory.merger import MERGED_MAX_WORDS, eviction_order, fuse_contents, merge_items
from finmem.memory.word_counter import count_words


class TestFuseContents:
    """Test sentence-level union of contents."""

    def test_new_sentences_appended(self):
        fused = fuse_contents("Ganha R$ 8.000 por mês.", "Tem reserva de emergência.")

        assert fused == "Ganha R$ 8.000 por mês. Tem reserva de emergência."

    def test_repeated_sentences_not_duplicated(self):
        fused = fuse_contents("Em 01/02/2024, Ganha R$ 8.000 por mês", "ganha R$ 8.000 por mês.")

        assert fused == "Ganha R$ 8.000 por mês."

    def test_fusing_twice_is_stable(self):
        once = fuse_contents("Investe em CDB.", "Investe em tesouro.")

        assert fuse_contents(once, "Investe em tesouro.") == once

    def test_capped_at_ceiling(self):
        existing = " ".join(f"a{i}" for i in range(80)) + "."
        incoming = " ".join(f"b{i}" for i in range(80)) + "."

        assert count_words(fuse_contents(existing, incoming)) <= MERGED_MAX_WORDS


class TestMergeItems:
    """Test field-level merge of two items."""

    def test_merge_keeps_strongest_signals(self, make_item):
        earlier = datetime(2024, 1, 10, tzinfo=timezone.utc)
        later = datetime(2024, 3, 5, tzinfo=timezone.utc)
        existing = make_item(
            "Em 10/01/2024, Ganha R$ 8.000 por mês",
            impact_score=0.75,
            source_chats=["c1"],
            event_date=earlier,
        )
        incoming = make_item(
            "Em 05/03/2024, Recebeu aumento para R$ 9.000",
            impact_score=0.9,
            source_chats=["c1", "c2"],
            event_date=later,
        )

        merged = merge_items(existing, incoming)

        assert merged.id == existing.id
        assert merged.content.startswith("Em 05/03/2024, ")
        assert "R$ 9.000" in merged.content
        assert merged.impact_score == 0.9
        assert merged.source_chats == ["c1", "c2"]
        assert merged.event_date == later
        assert merged.access_count == existing.access_count + 1
        assert merged.word_count == count_words(merged.content)

    def test_existing_item_not_mutated(self, make_item):
        existing = make_item("Investe em CDB")

        merge_items(existing, make_item("Investe em LCI"))

        assert existing.content == "Investe em CDB"


class TestEvictionOrder:
    """Test which items go first."""

    def test_lowest_impact_then_oldest(self, make_item):
        now = datetime.now(timezone.utc)
        old_low = make_item("a", impact_score=0.7, created_at=now - timedelta(days=10))
        new_low = make_item("b", impact_score=0.7, created_at=now)
        high = make_item("c", impact_score=0.95, created_at=now - timedelta(days=30))

        order = eviction_order([high, new_low, old_low])

        assert [i.content for i in order] == ["a", "b", "c"]

    def test_protected_item_excluded(self, make_item):
        item = make_item("protegido", impact_score=0.1)

        assert eviction_order([item], protect=item.id) == []

"""
Tiered memory: working (per session), episodic (per conversation) and
long-term (per user).

Store and engine classes are imported from their modules, e.g.
``from finmem.memory.engine import MemoryEngine``.
"""

from finmem.memory.types import LTMCategory, MemoryTier
from finmem.memory.word_counter import count_words

__all__ = ["LTMCategory", "MemoryTier", "count_words"]

"""Background maintenance scheduling."""

from finmem.scheduler.scheduler import MemoryScheduler

__all__ = ["MemoryScheduler"]

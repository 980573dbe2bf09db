"""Per-contact memories, compaction and daily summary scheduling."""

from .manager import MemoryManager
from .models import ContactMemories, MemoryEntry
from .scheduler import SummaryScheduler, next_trigger, ran_today
from .summarizer import (
    DailySummarizer,
    DailySummaryResult,
    RollingSummarizer,
    SummaryError,
    count_rounds,
)

__all__ = [
    "ContactMemories",
    "DailySummarizer",
    "DailySummaryResult",
    "MemoryEntry",
    "MemoryManager",
    "RollingSummarizer",
    "SummaryError",
    "SummaryScheduler",
    "count_rounds",
    "next_trigger",
    "ran_today",
]

"""Memory manager: loading, recall and prompt formatting."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..models import now_ms
from .models import ContactMemories, MemoryEntry

if TYPE_CHECKING:
    from ..store.containers import Containers


class MemoryManager:
    """Orchestrates memory reads and writes for the prompt and the summarizers."""

    def __init__(self, containers: Containers) -> None:
        """Initialize the manager.

        Args:
            containers: Typed access to the state store.
        """
        self.containers = containers

    def load(self, contact_id: str) -> ContactMemories:
        return self.containers.memories(contact_id)

    @staticmethod
    def triggered(memories: ContactMemories, text: str) -> list[MemoryEntry]:
        """Normal memories with a keyword that occurs in ``text``.

        Matching is a case-insensitive substring test so it also works for
        scripts without word separators.
        """
        if not text:
            return []
        haystack = text.lower()
        return [
            m for m in memories.normal
            if any(kw.strip() and kw.strip().lower() in haystack for kw in m.keywords)
        ]

    @staticmethod
    def format_important(entries: list[MemoryEntry]) -> str:
        """Format permanent memories for the instruction block.

        Returns:
            The block, or empty string if there are none.
        """
        if not entries:
            return ""
        lines = [f"{i}. {m.content}" for i, m in enumerate(entries, 1)]
        return "[Important memories - never forget these]\n" + "\n".join(lines)

    @staticmethod
    def format_triggered(entries: list[MemoryEntry]) -> str:
        if not entries:
            return ""
        lines = [f"{i}. {m.content}" for i, m in enumerate(entries, 1)]
        return "[Related memories - recalled by the conversation]\n" + "\n".join(lines)

    def add_normal(
        self,
        contact_id: str,
        content: str,
        keywords: list[str] | None = None,
        timestamp: int | None = None,
    ) -> MemoryEntry:
        """Append a normal memory, re-reading the container first."""
        entry = MemoryEntry(
            content=content,
            keywords=list(keywords or []),
            timestamp=timestamp if timestamp is not None else now_ms(),
        )
        memories = self.containers.memories(contact_id)
        memories.normal.append(entry)
        self.containers.save_memories(contact_id, memories)
        return entry

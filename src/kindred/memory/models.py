"""Data models for the memory system."""

import uuid
from dataclasses import asdict, dataclass, field
from typing import Any


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _stable_id(content: str, timestamp: int | None) -> str:
    """Derive an id for stored entries that predate ids."""
    return uuid.uuid5(uuid.NAMESPACE_OID, f"{timestamp}:{content}").hex[:12]


@dataclass
class MemoryEntry:
    """A remembered piece of the relationship.

    Attributes:
        content: The memory text, first person.
        keywords: Trigger words; a normal memory is recalled when one of
            them appears in the latest user message.
        timestamp: Creation time in epoch milliseconds, None for legacy entries.
        id: Stable identifier used when compaction removes entries.
        daily_summary: True for entries produced by the daily compaction.
    """

    content: str
    keywords: list[str] = field(default_factory=list)
    timestamp: int | None = None
    id: str = field(default_factory=_new_id)
    daily_summary: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str) -> "MemoryEntry":
        if isinstance(data, str):
            return cls(content=data, id=_stable_id(data, None))
        return cls(
            content=str(data.get("content", "")),
            keywords=[str(k) for k in data.get("keywords") or []],
            timestamp=data.get("timestamp"),
            id=data.get("id") or _stable_id(str(data.get("content", "")), data.get("timestamp")),
            daily_summary=bool(data.get("daily_summary", False)),
        )


@dataclass
class ContactMemories:
    """Both memory lists for one contact."""

    important: list[MemoryEntry] = field(default_factory=list)
    normal: list[MemoryEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "important": [m.to_dict() for m in self.important],
            "normal": [m.to_dict() for m in self.normal],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | list | None) -> "ContactMemories":
        """Build from a stored container.

        The older layout stored a bare list of strings per contact; those
        become untagged normal memories.
        """
        if data is None:
            return cls()
        if isinstance(data, list):
            return cls(normal=[MemoryEntry.from_dict(item) for item in data])
        return cls(
            important=[MemoryEntry.from_dict(m) for m in data.get("important") or []],
            normal=[MemoryEntry.from_dict(m) for m in data.get("normal") or []],
        )

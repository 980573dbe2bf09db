"""Data models for contacts, messages and the relationship record.

Every model round-trips through plain JSON containers (``to_dict`` /
``from_dict``) because the state store only holds JSON values.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Role(str, Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class DeliveryMode(str, Enum):
    """Channel a message was delivered through."""

    ONLINE = "online"
    OFFLINE = "offline"


class MessageType(str, Enum):
    """Structured message kinds. Plain text messages have no type."""

    TRANSFER = "transfer"
    TRANSFER_RECEIPT = "transfer_receipt"
    INVITE_REQUEST = "invite_request"
    INVITE_ACCEPT = "invite_accept"
    INVITE_REJECT = "invite_reject"
    STICKER = "sticker"
    CALL_END = "call_end"


class TransferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


def _known(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    """Keep only the keys that are fields of ``cls``."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class Message:
    """One turn in a contact's timeline.

    Attributes:
        role: Who wrote the message.
        content: Free text (or the stored gloss for structured types).
        timestamp: Creation time in epoch milliseconds.
        mode: Delivery mode active when the message was created.
        type: Structured type tag, None for plain text.
        quote: Quoted content the message replies to.
        thought: Inner-voice side channel extracted from the reply.
        retracted: True once the author withdrew the message.
        amount: Transfer amount (transfer and receipt records).
        note: Transfer note.
        status: Transfer status (transfer and receipt records).
        sticker_url: Image reference for sticker messages.
        sticker_desc: Catalog descriptor for sticker messages.
    """

    role: str
    content: str = ""
    timestamp: int = field(default_factory=now_ms)
    mode: str = DeliveryMode.ONLINE.value
    type: str | None = None
    quote: str | None = None
    thought: str | None = None
    retracted: bool = False
    amount: float | None = None
    note: str | None = None
    status: str | None = None
    sticker_url: str | None = None
    sticker_desc: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding unset optional values."""
        data = asdict(self)
        return {
            k: v for k, v in data.items()
            if v is not None and not (k == "retracted" and v is False)
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(**_known(cls, data))

    def is_type(self, kind: MessageType) -> bool:
        return self.type == kind.value


@dataclass
class UserSettings:
    """Per-contact conversation settings."""

    user_name: str = ""
    user_persona: str = ""
    time_awareness: bool = False
    auto_summary: bool = True
    summary_interval: int = 20
    context_limit: int = 100

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "UserSettings":
        return cls(**_known(cls, data or {}))


@dataclass
class DailySummarySettings:
    """Daily compaction schedule for one contact."""

    enabled: bool = False
    time: str = "08:00"
    last_summary: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "DailySummarySettings":
        return cls(**_known(cls, data or {}))


@dataclass
class OfflineSettings:
    """Length and style hints for offline (long-form) replies."""

    min: int = 500
    max: int = 700
    style: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "OfflineSettings":
        return cls(**_known(cls, data or {}))


@dataclass
class Contact:
    """A persona the user converses with."""

    id: str
    name: str
    persona: str = ""
    avatar: str = ""
    user_settings: UserSettings = field(default_factory=UserSettings)
    daily_summary: DailySummarySettings = field(default_factory=DailySummarySettings)
    offline_settings: OfflineSettings = field(default_factory=OfflineSettings)
    bound_world_entries: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Contact":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            persona=data.get("persona", ""),
            avatar=data.get("avatar", ""),
            user_settings=UserSettings.from_dict(data.get("user_settings")),
            daily_summary=DailySummarySettings.from_dict(data.get("daily_summary")),
            offline_settings=OfflineSettings.from_dict(data.get("offline_settings")),
            bound_world_entries=[str(i) for i in data.get("bound_world_entries", [])],
        )


@dataclass
class CoupleState:
    """The relationship singleton."""

    active: bool = False
    partner_id: str | None = None
    start_time: int = 0
    last_water_time: int = 0
    tree_level: int = 0
    letters: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CoupleState":
        return cls(**_known(cls, data or {}))

    def is_bound_to(self, contact_id: str) -> bool:
        return self.active and str(self.partner_id) == str(contact_id)


@dataclass(frozen=True)
class Sticker:
    """A catalog sticker: image reference plus descriptor."""

    url: str
    desc: str


@dataclass(frozen=True)
class WorldEntry:
    """A worldbook entry injected as background lore."""

    id: str
    title: str
    content: str
    type: str = "global"

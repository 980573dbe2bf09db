"""Memory compaction using the chat backend.

Two jobs share the JSON reply handling:

- ``DailySummarizer`` folds the trailing 24 hours of messages and loose
  memories into one first-person daily entry, promoting the truly important
  parts into permanent memories.
- ``RollingSummarizer`` writes a short keyword-tagged memory every
  ``summary_interval`` conversation rounds.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from ..gateway import TransportError
from ..logging import get_logger
from ..models import Contact, Message, Role
from .models import MemoryEntry

if TYPE_CHECKING:
    from ..gateway import ChatBackend
    from ..store.containers import Containers

logger = logging.getLogger(__name__)

SUMMARY_TEMPERATURE = 0.5
EMPTY_MARKERS = {"", "none", "无"}
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

DAILY_PROMPT = """You are {name}.
Read the chat log and the existing memory fragments from the past 24 hours ({start} to {end}) and write a daily summary.

===== Chat log =====
{chat}

===== Memory fragments =====
{memories}

===== Task =====
1. Summarize every important event of the day in the first person ("I ...").
2. Merge all memory fragments into one complete daily summary.
3. Decide whether anything deserves to be an important memory (a big decision, a turning point, a sweet moment created together, a major event).
4. List those important memories separately.

Return strictly JSON:
{{
    "dailySummary": "the complete summary of the day...",
    "keywords": ["keyword 1", "keyword 2"],
    "importantMemories": ["important memory 1 (if any)"],
    "hasContent": true
}}

Notes:
- If nothing meaningful happened, return hasContent false and dailySummary "none".
- importantMemories may be empty; only truly important events belong there.
- The daily summary is one connected narrative, not a list."""

ROLLING_PROMPT = """You are {name}. Read the recent conversation between you and the user and summarize the key events in the first person ("I ...").
Requirements:
1. Include concrete points in time.
2. Extract 3-5 keywords.
3. If there is nothing important, content is "none".
4. Return strictly JSON: {{"content": "...", "keywords": ["..."]}}.

Conversation:
{conversation}

Current time: {now}"""


class SummaryError(Exception):
    """Raised when a compaction run cannot complete."""

    pass


def parse_json_reply(content: str) -> dict[str, Any]:
    """Parse a JSON object from a model reply, tolerating markdown fences.

    Raises:
        SummaryError: If no JSON object can be decoded.
    """
    json_str = content.strip()
    if json_str.startswith("```"):
        lines = [line for line in json_str.split("\n") if not line.strip().startswith("```")]
        json_str = "\n".join(lines).strip()

    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise SummaryError(f"Invalid JSON in summary reply: {e}") from e

    if not isinstance(data, dict):
        raise SummaryError("Summary reply is not a JSON object")
    return data


def _is_empty(text: Any) -> bool:
    return not isinstance(text, str) or text.strip().lower() in EMPTY_MARKERS


def _keywords(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(k).strip() for k in value if str(k).strip()]


def _important_items(value: Any) -> list[str]:
    """Promoted memories: a list of texts, or a single text."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    texts = [str(item).strip() for item in value]
    return [text for text in texts if text.lower() not in EMPTY_MARKERS]


def format_transcript(messages: list[Message], contact_name: str, user_label: str = "User") -> str:
    """Render messages as ``[time] speaker: text`` lines."""
    lines = []
    for msg in messages:
        when = (
            datetime.fromtimestamp(msg.timestamp / 1000).strftime(TIME_FORMAT)
            if msg.timestamp else "unknown time"
        )
        speaker = user_label if msg.role == Role.USER.value else contact_name
        text = msg.content or (f"[{msg.type}]" if msg.type else "")
        lines.append(f"[{when}] {speaker}: {text}")
    return "\n".join(lines)


@dataclass
class DailySummaryResult:
    """Outcome of one daily compaction."""

    contact_id: str
    ran_at: datetime
    entry: MemoryEntry | None = None
    consumed: list[str] = field(default_factory=list)
    promoted: list[MemoryEntry] = field(default_factory=list)


class DailySummarizer:
    """Compacts the trailing 24 hours into one daily memory."""

    def __init__(
        self,
        containers: Containers,
        backend: ChatBackend,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize the summarizer.

        Args:
            containers: Typed access to the state store.
            backend: Chat backend used for the compaction request.
            clock: Source of the local wall-clock time.
        """
        self.containers = containers
        self.backend = backend
        self.clock = clock

    async def run(self, contact_id: str, trigger: str = "scheduled") -> DailySummaryResult:
        """Run a compaction for one contact.

        Args:
            contact_id: Contact to compact.
            trigger: Why the run happened (logged only).

        Returns:
            What was written. ``entry`` is None when there was nothing to keep.

        Raises:
            SummaryError: On unknown contact, transport failure or an
                unreadable reply. Nothing is stamped in that case.
        """
        contact = self.containers.get_contact(contact_id)
        if contact is None:
            raise SummaryError(f"Unknown contact: {contact_id}")

        now = self.clock()
        now_stamp = int(now.timestamp() * 1000)
        since = now - timedelta(hours=24)
        cutoff = int(since.timestamp() * 1000)
        result = DailySummaryResult(contact_id=contact.id, ran_at=now)

        recent_messages = [
            m for m in self.containers.messages(contact.id)
            if m.timestamp and m.timestamp >= cutoff
        ]
        recent_memories = [
            m for m in self.containers.memories(contact.id).normal
            if m.timestamp and m.timestamp >= cutoff and not m.daily_summary
        ]

        if not recent_messages and not recent_memories:
            logger.info("No recent content to summarize for %s", contact.id)
            self.containers.stamp_last_summary(contact.id, now_stamp)
            get_logger().log_summary(contact.id, success=True, trigger=trigger, consumed=0)
            return result

        prompt = self._build_prompt(contact, recent_messages, recent_memories, since, now)
        try:
            reply = await self.backend.chat(
                [{"role": "user", "content": prompt}], temperature=SUMMARY_TEMPERATURE
            )
        except TransportError as e:
            raise SummaryError(f"Daily summary request failed: {e}") from e

        data = parse_json_reply(reply)
        summary = data.get("dailySummary")

        if data.get("hasContent") and not _is_empty(summary):
            date_str = now.strftime("%Y-%m-%d")
            consumed_ids = {m.id for m in recent_memories}

            # Re-read: the chat may have appended memories while we waited.
            memories = self.containers.memories(contact.id)
            memories.normal = [m for m in memories.normal if m.id not in consumed_ids]

            result.entry = MemoryEntry(
                content=f"[{date_str} daily summary]\n{summary.strip()}",
                keywords=_keywords(data.get("keywords")),
                timestamp=now_stamp,
                daily_summary=True,
            )
            memories.normal.append(result.entry)

            for text in _important_items(data.get("importantMemories")):
                promoted = MemoryEntry(content=f"[{date_str}] {text}", timestamp=now_stamp)
                memories.important.append(promoted)
                result.promoted.append(promoted)

            self.containers.save_memories(contact.id, memories)
            result.consumed = sorted(consumed_ids)

        self.containers.stamp_last_summary(contact.id, now_stamp)
        get_logger().log_summary(
            contact.id,
            success=True,
            trigger=trigger,
            consumed=len(result.consumed),
            promoted=len(result.promoted),
        )
        return result

    def _build_prompt(
        self,
        contact: Contact,
        messages: list[Message],
        memories: list[MemoryEntry],
        since: datetime,
        now: datetime,
    ) -> str:
        chat = format_transcript(messages, contact.name)
        mems = "\n".join(f"Memory {i}: {m.content}" for i, m in enumerate(memories, 1))
        return DAILY_PROMPT.format(
            name=contact.name,
            start=since.strftime(TIME_FORMAT),
            end=now.strftime(TIME_FORMAT),
            chat=chat or "(no chat log)",
            memories=mems or "(no memory fragments)",
        )


def count_rounds(messages: list[Message]) -> int:
    """Count completed user -> assistant exchanges."""
    rounds = 0
    has_user = False
    for msg in messages:
        if msg.role == Role.USER.value:
            has_user = True
        elif msg.role == Role.ASSISTANT.value and has_user:
            rounds += 1
            has_user = False
    return rounds


class RollingSummarizer:
    """Writes a short memory every ``summary_interval`` rounds.

    Best-effort: failures are logged and never raised.
    """

    def __init__(
        self,
        containers: Containers,
        backend: ChatBackend,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.containers = containers
        self.backend = backend
        self.clock = clock

    def is_due(self, contact: Contact, messages: list[Message]) -> bool:
        settings = contact.user_settings
        if not settings.auto_summary or settings.summary_interval <= 0:
            return False
        rounds = count_rounds(messages)
        return rounds > 0 and rounds % settings.summary_interval == 0

    async def maybe_summarize(self, contact_id: str) -> MemoryEntry | None:
        """Summarize the recent conversation if a round boundary was reached."""
        contact = self.containers.get_contact(contact_id)
        if contact is None:
            return None

        messages = self.containers.messages(contact.id)
        if not self.is_due(contact, messages):
            return None

        recent = messages[-contact.user_settings.summary_interval * 4:]
        return await self.summarize(contact, recent)

    async def summarize(self, contact: Contact, messages: list[Message]) -> MemoryEntry | None:
        now = self.clock()
        prompt = ROLLING_PROMPT.format(
            name=contact.name,
            conversation=format_transcript(messages, "Me"),
            now=now.strftime(TIME_FORMAT),
        )

        try:
            reply = await self.backend.chat(
                [{"role": "user", "content": prompt}], temperature=SUMMARY_TEMPERATURE
            )
            data = parse_json_reply(reply)
        except (TransportError, SummaryError) as e:
            logger.warning("Rolling summary failed for %s: %s", contact.id, e)
            get_logger().log_summary(contact.id, success=False, trigger="rolling", error=str(e))
            return None

        content = data.get("content")
        if _is_empty(content):
            return None

        entry = MemoryEntry(
            content=content.strip(),
            keywords=_keywords(data.get("keywords")),
            timestamp=int(now.timestamp() * 1000),
        )
        memories = self.containers.memories(contact.id)
        memories.normal.append(entry)
        self.containers.save_memories(contact.id, memories)
        get_logger().log_summary(contact.id, success=True, trigger="rolling")
        return entry

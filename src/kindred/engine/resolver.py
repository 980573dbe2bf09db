"""Pending-event detection and settlement.

Two tiny state machines, one per event kind:

- transfer: ``pending -> accepted | rejected``
- invitation: ``requested -> accepted | rejected``

Both are idempotent per pending instance: the stored timeline is re-read
before settling, and an instance that already reached a terminal state is
left alone.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..logging import get_logger
from ..models import (
    CoupleState,
    Message,
    MessageType,
    Role,
    TransferStatus,
    now_ms,
)
from .context import SessionContext
from .protocol import Decision, Directives

if TYPE_CHECKING:
    from ..store.containers import Containers

logger = logging.getLogger(__name__)

POSITIVE_KEYWORDS = [
    "yes", "sure", "of course", "okay", "agree", "accept", "love to", "would love",
    "happy", "glad", "absolutely", "let's do it",
    "同意", "答应", "愿意", "好呀", "好的", "没问题", "可以", "开通", "建立", "想和你", "开心",
]
NEGATIVE_KEYWORDS = [
    "no", "not ready", "reject", "decline", "refuse", "sorry", "can't", "cannot",
    "don't want", "wait", "think about",
    "拒绝", "不行", "不要", "不答应", "不愿意", "抱歉", "对不起", "再等等", "考虑", "不想",
]

INVITE_ACCEPTED_TEXT = "I accepted your couple space invitation"
INVITE_REJECTED_TEXT = "I declined your couple space invitation"


@dataclass(frozen=True)
class PendingTransfer:
    index: int
    timestamp: int
    amount: float
    note: str


@dataclass(frozen=True)
class PendingInvite:
    index: int
    timestamp: int


@dataclass(frozen=True)
class PendingEvents:
    """Live pending events of a timeline; at most one of each kind."""

    transfer: PendingTransfer | None = None
    invite: PendingInvite | None = None

    @property
    def kind(self) -> str | None:
        """The event this turn settles. A transfer takes precedence."""
        if self.transfer is not None:
            return "transfer"
        if self.invite is not None:
            return "invite"
        return None


def find_pending(
    messages: list[Message],
    window: int,
    couple: CoupleState,
    contact_id: str,
) -> PendingEvents:
    """Scan the active context window, newest first, for pending events.

    Args:
        messages: The full timeline.
        window: Context window size in messages.
        couple: Current relationship state.
        contact_id: Contact the timeline belongs to.

    Returns:
        The pending transfer and invitation, each None if not live.
    """
    offset = max(0, len(messages) - max(window, 0))
    transfer: PendingTransfer | None = None
    invite: PendingInvite | None = None
    invite_answered = couple.is_bound_to(contact_id)

    for index in range(len(messages) - 1, offset - 1, -1):
        msg = messages[index]
        if (
            transfer is None
            and msg.is_type(MessageType.TRANSFER)
            and msg.status == TransferStatus.PENDING.value
        ):
            transfer = PendingTransfer(
                index=index,
                timestamp=msg.timestamp,
                amount=msg.amount or 0,
                note=msg.note or "",
            )
        if msg.is_type(MessageType.INVITE_ACCEPT) or msg.is_type(MessageType.INVITE_REJECT):
            invite_answered = True
        elif msg.is_type(MessageType.INVITE_REQUEST) and invite is None and not invite_answered:
            invite = PendingInvite(index=index, timestamp=msg.timestamp)

    return PendingEvents(transfer=transfer, invite=invite)


def _keyword_present(keyword: str, text: str) -> bool:
    if keyword.isascii():
        pattern = r"(?<!\w)" + re.escape(keyword) + r"(?!\w)"
        return re.search(pattern, text) is not None
    return keyword in text


def score_invite_reply(text: str) -> int:
    """Score a reply that carries no invitation marker.

    +1 for each positive keyword present, -2 for each negative one.
    """
    normalized = text.lower().replace("’", "'")
    score = sum(1 for kw in POSITIVE_KEYWORDS if _keyword_present(kw, normalized))
    score -= sum(2 for kw in NEGATIVE_KEYWORDS if _keyword_present(kw, normalized))
    return score


def classify_invite_reply(text: str) -> Decision:
    """Fallback decision: accept only on a net positive score."""
    return "accept" if score_invite_reply(text) > 0 else "reject"


@dataclass
class Resolution:
    """What settling a reply produced."""

    transfer_receipt: Message | None = None
    invite_reply: Message | None = None

    @property
    def transfer_resolved(self) -> bool:
        return self.transfer_receipt is not None


class EventResolver:
    """Settles pending transfers and invitations exactly once."""

    def __init__(
        self,
        containers: Containers,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.containers = containers
        self.clock = clock
        self.jsonl = get_logger()

    def resolve(
        self,
        ctx: SessionContext,
        pending: PendingEvents,
        directives: Directives,
    ) -> Resolution:
        """Settle this turn's pending event from the parsed reply."""
        result = Resolution()

        if pending.transfer is not None:
            decision = directives.transfer_decision or "accept"
            result.transfer_receipt = self.resolve_transfer(ctx, pending.transfer, decision)
        elif pending.invite is not None:
            decision = directives.invite_decision
            if decision is None:
                decision = classify_invite_reply(" ".join(directives.segments))
            result.invite_reply = self.resolve_invite(ctx, pending.invite, decision)

        return result

    def resolve_transfer(
        self,
        ctx: SessionContext,
        pending: PendingTransfer,
        decision: Decision,
    ) -> Message | None:
        """Move a pending transfer to its terminal state and append a receipt.

        Returns:
            The receipt, or None if the transfer was already settled.
        """
        messages = self.containers.messages(ctx.contact_id)
        if pending.index >= len(messages):
            return None

        target = messages[pending.index]
        if (
            not target.is_type(MessageType.TRANSFER)
            or target.timestamp != pending.timestamp
            or target.status != TransferStatus.PENDING.value
        ):
            logger.debug("Transfer at %d already settled", pending.index)
            return None

        status = TransferStatus.ACCEPTED if decision == "accept" else TransferStatus.REJECTED
        target.status = status.value
        receipt = Message(
            role=Role.ASSISTANT.value,
            type=MessageType.TRANSFER_RECEIPT.value,
            status=status.value,
            amount=target.amount,
            timestamp=self.clock(),
            mode=ctx.mode.delivery_mode.value,
        )
        messages.append(receipt)
        self.containers.save_messages(ctx.contact_id, messages)

        self.jsonl.log_event_resolved(ctx.contact_id, "transfer", status.value)
        return receipt

    def resolve_invite(
        self,
        ctx: SessionContext,
        pending: PendingInvite,
        decision: Decision,
    ) -> Message | None:
        """Answer a pending invitation; accepting binds the relationship.

        Returns:
            The appended answer, or None if the invitation was already answered.
        """
        messages = self.containers.messages(ctx.contact_id)
        if pending.index >= len(messages):
            return None

        target = messages[pending.index]
        if not target.is_type(MessageType.INVITE_REQUEST) or target.timestamp != pending.timestamp:
            return None
        if any(
            m.is_type(MessageType.INVITE_ACCEPT) or m.is_type(MessageType.INVITE_REJECT)
            for m in messages[pending.index + 1:]
        ):
            logger.debug("Invitation at %d already answered", pending.index)
            return None

        now = self.clock()
        if decision == "accept":
            couple = self.containers.couple()
            couple.active = True
            couple.partner_id = ctx.contact_id
            couple.start_time = now
            couple.last_water_time = 0
            couple.tree_level = 0
            self.containers.save_couple(couple)
            reply = Message(
                role=Role.ASSISTANT.value,
                type=MessageType.INVITE_ACCEPT.value,
                content=INVITE_ACCEPTED_TEXT,
                timestamp=now,
                mode=ctx.mode.delivery_mode.value,
            )
        else:
            reply = Message(
                role=Role.ASSISTANT.value,
                type=MessageType.INVITE_REJECT.value,
                content=INVITE_REJECTED_TEXT,
                timestamp=now,
                mode=ctx.mode.delivery_mode.value,
            )

        self.containers.append_message(ctx.contact_id, reply)
        self.jsonl.log_event_resolved(
            ctx.contact_id, "invite", "accepted" if decision == "accept" else "rejected"
        )
        return reply

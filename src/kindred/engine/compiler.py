"""Context compiler: builds the outbound request from session state."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ..calendar import calendar_notes
from ..models import Contact, Message, MessageType, Role, Sticker, TransferStatus
from . import prompts
from .context import Mode, SessionContext
from .resolver import PendingEvents, find_pending

if TYPE_CHECKING:
    from ..memory.manager import MemoryManager
    from ..store.containers import Containers

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

RETRACTED_USER_NOTICE = (
    "[System notice: the user retracted a message. You cannot see what it said, "
    "but you know it was withdrawn. React naturally, for example ask what they took back.]"
)
RETRACTED_ASSISTANT_TEXT = "[retracted message]"


class UnknownContactError(LookupError):
    """Raised when a request names a contact that is not in the store."""

    pass


def format_amount(amount: float | None) -> str:
    """Render an amount without a trailing ``.0``."""
    value = float(amount or 0)
    return str(int(value)) if value.is_integer() else f"{value:.2f}"


def _format_ms(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime(TIME_FORMAT)


def gloss_message(msg: Message, time_awareness: bool = False) -> dict[str, str]:
    """Rewrite one stored message into a request block.

    Structured types become short natural-language glosses. Retracted
    messages only reveal that something was withdrawn.
    """
    if msg.retracted:
        if msg.role == Role.USER.value:
            return {"role": Role.SYSTEM.value, "content": RETRACTED_USER_NOTICE}
        return {"role": Role.ASSISTANT.value, "content": RETRACTED_ASSISTANT_TEXT}

    role = msg.role
    if msg.is_type(MessageType.TRANSFER):
        role = Role.USER.value
        content = f"[The user sent you a payment of {format_amount(msg.amount)}, note: {msg.note or 'none'}]"
    elif msg.is_type(MessageType.TRANSFER_RECEIPT):
        role = Role.ASSISTANT.value
        if msg.status == TransferStatus.REJECTED.value:
            content = f"[I declined and returned the payment of {format_amount(msg.amount)}]"
        else:
            content = f"[I accepted the payment of {format_amount(msg.amount)}]"
    elif msg.is_type(MessageType.INVITE_REQUEST):
        role = Role.USER.value
        content = "[The user invited you to open a couple space together]"
    elif msg.is_type(MessageType.INVITE_ACCEPT):
        role = Role.ASSISTANT.value
        content = "[I accepted your couple space invitation]"
    elif msg.is_type(MessageType.INVITE_REJECT):
        role = Role.ASSISTANT.value
        content = "[I declined your couple space invitation]"
    elif msg.is_type(MessageType.CALL_END):
        role = Role.SYSTEM.value
        content = msg.content
    elif msg.is_type(MessageType.STICKER):
        content = f"[Sticker: {msg.sticker_desc or 'sticker'}]"
    else:
        content = msg.content
        if msg.quote:
            content = f'[Replying to: "{msg.quote}"] {content}'

    if time_awareness and msg.timestamp:
        content = f"[sent at {_format_ms(msg.timestamp)}] {content}"

    return {"role": role, "content": content}


@dataclass
class CompiledContext:
    """An outbound request, ready for the gateway.

    Attributes:
        contact: The contact the request is for.
        instruction: The synthesized system block.
        history: Glossed timeline blocks, oldest first.
        pending: Pending events detected in the window.
        mode_instruction: Which mode-specific block was emitted.
        catalog: Sticker catalog offered to the model, None when disabled.
    """

    contact: Contact
    instruction: str
    history: list[dict[str, str]] = field(default_factory=list)
    pending: PendingEvents = field(default_factory=PendingEvents)
    mode_instruction: str = "default"
    catalog: list[Sticker] | None = None

    def to_messages(self) -> list[dict[str, Any]]:
        return [{"role": Role.SYSTEM.value, "content": self.instruction}, *self.history]


class ContextCompiler:
    """Assembles persona, memories, world entries, calendar facts and mode rules."""

    def __init__(
        self,
        containers: Containers,
        memory: MemoryManager,
        system_prompt: str = prompts.DEFAULT_SYSTEM_PROMPT,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.containers = containers
        self.memory = memory
        self.system_prompt = system_prompt
        self.clock = clock

    def _contact(self, contact_id: str) -> Contact:
        contact = self.containers.get_contact(contact_id)
        if contact is None:
            raise UnknownContactError(f"Unknown contact: {contact_id}")
        return contact

    def _base_prompt(self) -> str:
        return self.containers.settings().get("prompt") or self.system_prompt

    def _identity_blocks(self, contact: Contact, full_user: bool = True) -> list[str]:
        blocks = [
            self._base_prompt(),
            prompts.CHARACTER_BLOCK.format(name=contact.name, persona=contact.persona),
        ]
        us = contact.user_settings
        if us.user_name or (full_user and us.user_persona):
            blocks.append(prompts.USER_BLOCK.format(
                name=us.user_name or "User",
                persona=us.user_persona if full_user else "",
            ))
        return blocks

    def compile(self, ctx: SessionContext) -> CompiledContext:
        """Compile the full request for a reply in ``ctx``.

        Raises:
            UnknownContactError: If the contact does not exist.
        """
        contact = self._contact(ctx.contact_id)
        settings = contact.user_settings
        now = self.clock()

        timeline = self.containers.messages(contact.id)
        window = timeline[-settings.context_limit:] if settings.context_limit > 0 else []
        pending = find_pending(
            timeline, settings.context_limit, self.containers.couple(), contact.id
        )
        history = [gloss_message(m, settings.time_awareness) for m in window]

        blocks = self._identity_blocks(contact)

        memories = self.memory.load(contact.id)
        important = self.memory.format_important(memories.important)
        if important:
            blocks.append(important)

        last_user = next(
            (m.content for m in reversed(window) if m.role == Role.USER.value and m.content),
            "",
        )
        triggered = self.memory.format_triggered(self.memory.triggered(memories, last_user))
        if triggered:
            blocks.append(triggered)

        if settings.time_awareness:
            blocks.append(prompts.TIME_AWARENESS_BLOCK.format(now=now.strftime(TIME_FORMAT)))

        notes = calendar_notes(self.containers.calendar(), now.date(), contact.name)
        if notes:
            blocks.append(prompts.CALENDAR_BLOCK.format(notes="\n".join(f"- {n}" for n in notes)))

        blocks.extend(self._world_blocks(contact))

        catalog: list[Sticker] | None = None
        if ctx.stickers_enabled:
            catalog = self.containers.stickers()
            if catalog:
                lines = "\n".join(f"{i}. {s.desc}" for i, s in enumerate(catalog, 1))
                blocks.append(prompts.STICKER_BLOCK.format(catalog=lines))

        blocks.append(prompts.RETRACT_NOTICE)

        kind, instruction = self._mode_instruction(ctx, contact, pending)
        blocks.append(instruction)

        return CompiledContext(
            contact=contact,
            instruction="\n\n".join(blocks),
            history=history,
            pending=pending,
            mode_instruction=kind,
            catalog=catalog,
        )

    def compile_call_answer(self, ctx: SessionContext) -> CompiledContext:
        """Compile the request for picking up a call: persona only, no history."""
        contact = self._contact(ctx.contact_id)
        blocks = self._identity_blocks(contact, full_user=False)
        blocks.append(prompts.CALL_ANSWER_INSTRUCTION)
        return CompiledContext(
            contact=contact,
            instruction="\n\n".join(blocks),
            mode_instruction="call_answer",
        )

    def _world_blocks(self, contact: Contact) -> list[str]:
        entries = self.containers.world_entries()
        blocks: list[str] = []

        global_entries = [e for e in entries if e.type == "global"]
        if global_entries:
            lines = [f"[{e.title}]: {e.content}" for e in global_entries]
            blocks.append(prompts.WORLD_GLOBAL_HEADER + "\n" + "\n".join(lines))

        by_id = {e.id: e for e in entries}
        bound = [by_id[i] for i in contact.bound_world_entries if i in by_id]
        if bound:
            lines = [f"[{e.title}]: {e.content}" for e in bound]
            blocks.append(prompts.WORLD_BOUND_HEADER + "\n" + "\n".join(lines))

        return blocks

    def _mode_instruction(
        self,
        ctx: SessionContext,
        contact: Contact,
        pending: PendingEvents,
    ) -> tuple[str, str]:
        """Pick exactly one mode-specific block."""
        if pending.transfer is not None:
            shape = (
                prompts.SINGLE_SEGMENT_SHAPE if ctx.mode.single_segment
                else prompts.MULTI_SEGMENT_SHAPE
            )
            return "transfer", prompts.TRANSFER_INSTRUCTION.format(
                amount=format_amount(pending.transfer.amount),
                note=pending.transfer.note or "none",
                shape=shape,
            )
        if pending.invite is not None:
            return "invite", prompts.INVITE_INSTRUCTION
        if ctx.mode is Mode.CALL:
            return "call", prompts.CALL_INSTRUCTION
        if ctx.mode is Mode.OFFLINE:
            off = contact.offline_settings
            return "offline", prompts.OFFLINE_INSTRUCTION.format(
                min=off.min,
                max=off.max,
                style=off.style or "delicate and immersive",
            )
        return "default", prompts.DEFAULT_INSTRUCTION

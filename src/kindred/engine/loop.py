"""Response engine: one user-facing operation at a time.

``respond`` runs the whole turn: compile -> exchange -> decode -> retract ->
settle -> deliver, then schedules a rolling summary once delivery lands.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from ..gateway import TransportError
from ..logging import JSONLLogger, get_logger
from ..memory.manager import MemoryManager
from ..memory.summarizer import RollingSummarizer
from ..models import Message, MessageType, Role, Sticker, TransferStatus, now_ms
from . import prompts
from .compiler import CompiledContext, ContextCompiler
from .context import Mode, SessionContext
from .delivery import SEGMENT_DELAY, TRANSFER_RECEIPT_DELAY, DeliveryScheduler
from .protocol import Directives, parse_reply
from .resolver import EventResolver, Resolution

if TYPE_CHECKING:
    from ..gateway import ChatBackend
    from ..store.containers import Containers

logger = logging.getLogger(__name__)

INVITE_REQUEST_TEXT = "I'd like to open a couple space with you"

TypingHook = Callable[[str, bool], None]


@dataclass
class EngineConfig:
    """Configuration for the response engine."""

    system_prompt: str = prompts.DEFAULT_SYSTEM_PROMPT
    segment_delay: float = SEGMENT_DELAY
    transfer_delay: float = TRANSFER_RECEIPT_DELAY
    rolling_summary: bool = True


@dataclass
class ResponseResult:
    """Result of one response turn."""

    directives: Directives
    mode_instruction: str
    resolution: Resolution = field(default_factory=Resolution)
    delivery: asyncio.Task | None = None
    retracted: Message | None = None
    duration_ms: float = 0.0

    @property
    def delivered(self) -> bool:
        return self.directives.has_content


class ResponseEngine:
    """Drives a contact's conversation against the chat backend."""

    def __init__(
        self,
        containers: Containers,
        backend: ChatBackend,
        config: EngineConfig | None = None,
        on_typing: TypingHook | None = None,
        jsonl: JSONLLogger | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the engine and its pipeline stages.

        Args:
            containers: Typed access to the state store.
            backend: Chat backend for every exchange.
            config: Engine configuration.
            on_typing: Called with ``(contact_id, True)`` before a request
                and ``(contact_id, False)`` after it, whatever the outcome.
            jsonl: Structured event logger, the global one by default.
            clock: Epoch-millisecond clock for user records.
        """
        self.containers = containers
        self.backend = backend
        self.config = config or EngineConfig()
        self.on_typing = on_typing
        self.jsonl = jsonl or get_logger()
        self.clock = clock

        self.memory = MemoryManager(containers)
        self.compiler = ContextCompiler(containers, self.memory, self.config.system_prompt)
        self.resolver = EventResolver(containers)
        self.delivery = DeliveryScheduler(
            containers,
            segment_delay=self.config.segment_delay,
            transfer_delay=self.config.transfer_delay,
        )
        self.rolling = RollingSummarizer(containers, backend)
        self._background: set[asyncio.Task] = set()

    @property
    def model(self) -> str | None:
        return getattr(self.backend, "model", None)

    # User records

    def _append_user(self, ctx: SessionContext, message: Message) -> Message:
        message.timestamp = self.clock()
        message.mode = ctx.mode.delivery_mode.value
        return self.containers.append_message(ctx.contact_id, message)

    def send_message(self, ctx: SessionContext, text: str, quote: str | None = None) -> Message:
        return self._append_user(ctx, Message(role=Role.USER.value, content=text, quote=quote))

    def send_transfer(self, ctx: SessionContext, amount: float, note: str = "") -> Message:
        """Record a payment awaiting the contact's decision."""
        if amount <= 0:
            raise ValueError("Transfer amount must be positive")
        return self._append_user(ctx, Message(
            role=Role.USER.value,
            type=MessageType.TRANSFER.value,
            amount=float(amount),
            note=note,
            status=TransferStatus.PENDING.value,
        ))

    def send_invite(self, ctx: SessionContext) -> Message:
        return self._append_user(ctx, Message(
            role=Role.USER.value,
            type=MessageType.INVITE_REQUEST.value,
            content=INVITE_REQUEST_TEXT,
        ))

    def send_sticker(self, ctx: SessionContext, sticker: Sticker) -> Message:
        return self._append_user(ctx, Message(
            role=Role.USER.value,
            type=MessageType.STICKER.value,
            content=f"[Sticker: {sticker.desc}]",
            sticker_url=sticker.url,
            sticker_desc=sticker.desc,
        ))

    def end_call(self, ctx: SessionContext, duration_seconds: float) -> Message | None:
        """Record that the user hung up. Nothing is recorded for a call that never lasted."""
        if duration_seconds <= 0:
            return None
        contact = self.containers.get_contact(ctx.contact_id)
        user_name = (contact.user_settings.user_name if contact else "") or "The user"
        return self.containers.append_message(ctx.contact_id, Message(
            role=Role.SYSTEM.value,
            type=MessageType.CALL_END.value,
            content=f"Call ended, {user_name} hung up",
            timestamp=self.clock(),
        ))

    # Turns

    async def respond(self, ctx: SessionContext) -> ResponseResult:
        """Request, decode, settle and deliver one reply.

        Raises:
            UnknownContactError: If the contact does not exist.
            TransportError: If the exchange fails. Nothing is appended.
        """
        compiled = self.compiler.compile(ctx)
        reply, duration_ms = await self._exchange(ctx, compiled)

        directives = parse_reply(
            reply,
            mode=ctx.mode,
            expect_transfer=compiled.pending.transfer is not None,
            catalog=compiled.catalog,
            strip_clock_echo=compiled.contact.user_settings.time_awareness,
        )
        self.jsonl.log_llm_response(
            ctx.contact_id,
            duration_ms=duration_ms,
            segments=len(directives.segments),
            has_thought=directives.thought is not None,
        )

        retracted = self._retract_last(ctx) if directives.retract_last else None
        resolution = self.resolver.resolve(ctx, compiled.pending, directives)
        task = self.delivery.deliver(
            ctx, directives, transfer_resolved=resolution.transfer_resolved
        )

        if directives.has_content and self.config.rolling_summary:
            self._spawn(self._after_delivery(ctx.contact_id, task))

        return ResponseResult(
            directives=directives,
            mode_instruction=compiled.mode_instruction,
            resolution=resolution,
            delivery=task,
            retracted=retracted,
            duration_ms=duration_ms,
        )

    async def regenerate(self, ctx: SessionContext) -> ResponseResult | None:
        """Drop the trailing assistant messages and respond again.

        Returns:
            None when the timeline does not end with an assistant message.
        """
        messages = self.containers.messages(ctx.contact_id)
        if not messages or messages[-1].role != Role.ASSISTANT.value:
            return None

        while messages and messages[-1].role == Role.ASSISTANT.value:
            messages.pop()
        self.containers.save_messages(ctx.contact_id, messages)
        return await self.respond(ctx)

    async def start_call(self, ctx: SessionContext) -> ResponseResult:
        """Have the contact pick up a call with one short line."""
        ctx = replace(ctx, mode=Mode.CALL)
        compiled = self.compiler.compile_call_answer(ctx)
        reply, duration_ms = await self._exchange(ctx, compiled)

        directives = parse_reply(reply, mode=Mode.CALL)
        self.delivery.deliver(ctx, directives)
        return ResponseResult(
            directives=directives,
            mode_instruction=compiled.mode_instruction,
            duration_ms=duration_ms,
        )

    async def _exchange(self, ctx: SessionContext, compiled: CompiledContext) -> tuple[str, float]:
        messages = compiled.to_messages()
        self.jsonl.log_llm_request(
            ctx.contact_id,
            model=self.model or "",
            mode=ctx.mode.value,
            messages_count=len(messages),
            pending=compiled.pending.kind,
        )

        self._typing(ctx.contact_id, True)
        start = time.time()
        try:
            reply = await self.backend.chat(messages)
        except TransportError as e:
            logger.warning("Exchange failed for %s: %s", ctx.contact_id, e)
            self.jsonl.log(
                "transport_error",
                contact_id=ctx.contact_id,
                mode=ctx.mode.value,
                model=self.model,
                duration_ms=(time.time() - start) * 1000,
                error=str(e),
            )
            raise
        finally:
            self._typing(ctx.contact_id, False)

        return reply, (time.time() - start) * 1000

    def _typing(self, contact_id: str, active: bool) -> None:
        if self.on_typing is not None:
            self.on_typing(contact_id, active)

    def _retract_last(self, ctx: SessionContext) -> Message | None:
        """Mark the latest live assistant message as retracted."""
        messages = self.containers.messages(ctx.contact_id)
        for msg in reversed(messages):
            if msg.role == Role.ASSISTANT.value and not msg.retracted:
                msg.retracted = True
                self.containers.save_messages(ctx.contact_id, messages)
                self.jsonl.log("retract", contact_id=ctx.contact_id, mode=ctx.mode.value)
                return msg
        return None

    # Background work

    async def _after_delivery(self, contact_id: str, task: asyncio.Task | None) -> None:
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        await self.rolling.maybe_summarize(contact_id)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for pending deliveries and background summaries."""
        await self.delivery.drain()
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

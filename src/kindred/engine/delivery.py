"""Delivery scheduler: commits reply segments at staggered offsets."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from ..logging import get_logger
from ..models import Message, MessageType, Role, now_ms
from .context import SessionContext
from .protocol import Directives

if TYPE_CHECKING:
    from ..store.containers import Containers

logger = logging.getLogger(__name__)

SEGMENT_DELAY = 0.8
TRANSFER_RECEIPT_DELAY = 0.5


class DeliveryScheduler:
    """Appends reply messages to the store with a typing-like rhythm.

    Armed deliveries are never cancelled: a mode or contact switch while a
    delivery is pending still completes it against the original contact and
    with the delivery mode captured when it was scheduled.
    """

    def __init__(
        self,
        containers: Containers,
        segment_delay: float = SEGMENT_DELAY,
        transfer_delay: float = TRANSFER_RECEIPT_DELAY,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.containers = containers
        self.segment_delay = segment_delay
        self.transfer_delay = transfer_delay
        self.clock = clock
        self.sleep = sleep
        self._last_timestamp: dict[str, int] = {}
        self._tasks: set[asyncio.Task] = set()

    def _append(
        self,
        contact_id: str,
        message: Message,
    ) -> Message:
        """Stamp at append time, strictly after the previous delivery."""
        stamp = self.clock()
        last = self._last_timestamp.get(contact_id)
        if last is not None and stamp <= last:
            stamp = last + 1
        message.timestamp = stamp
        self._last_timestamp[contact_id] = stamp
        return self.containers.append_message(contact_id, message)

    def deliver(
        self,
        ctx: SessionContext,
        directives: Directives,
        transfer_resolved: bool = False,
    ) -> asyncio.Task | None:
        """Deliver a parsed reply.

        Stickers land immediately. Call and offline replies are one message
        appended immediately. Normal replies are appended one segment at a
        time by a background task, the thought riding on the last one.

        Args:
            ctx: Session the reply belongs to.
            directives: Parsed reply.
            transfer_resolved: A transfer receipt was just appended; the first
                segment waits a little longer so the receipt lands first.

        Returns:
            The delivery task for staggered replies, otherwise None.
        """
        contact_id = ctx.contact_id
        mode = ctx.mode.delivery_mode.value

        for ref in directives.stickers:
            self._append(contact_id, Message(
                role=Role.ASSISTANT.value,
                type=MessageType.STICKER.value,
                content=f"[Sticker: {ref.sticker.desc}]",
                sticker_url=ref.sticker.url,
                sticker_desc=ref.sticker.desc,
                mode=mode,
            ))

        if not directives.segments:
            return None

        if ctx.mode.single_segment:
            self._append(contact_id, Message(
                role=Role.ASSISTANT.value,
                content=directives.segments[0],
                thought=directives.thought,
                mode=mode,
            ))
            get_logger().log("delivery", contact_id=contact_id, mode=mode, segments=1)
            return None

        initial = self.transfer_delay if transfer_resolved else 0.0
        task = asyncio.create_task(self._stagger(
            contact_id, list(directives.segments), directives.thought, mode, initial
        ))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def _stagger(
        self,
        contact_id: str,
        segments: list[str],
        thought: str | None,
        mode: str,
        initial: float,
    ) -> list[Message]:
        delivered: list[Message] = []
        last_index = len(segments) - 1

        for index, segment in enumerate(segments):
            delay = initial if index == 0 else self.segment_delay
            if delay > 0:
                await self.sleep(delay)
            delivered.append(self._append(contact_id, Message(
                role=Role.ASSISTANT.value,
                content=segment,
                thought=thought if index == last_index else None,
                mode=mode,
            )))

        get_logger().log("delivery", contact_id=contact_id, mode=mode, segments=len(delivered))
        return delivered

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Delivery failed: %s", error)

    @property
    def pending(self) -> int:
        """Number of deliveries still in flight."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight delivery to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

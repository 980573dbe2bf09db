"""Daily summary scheduling.

Each contact with daily summaries enabled gets one armed timer at its
configured local ``HH:MM``. Timers live in a heap with lazy invalidation:
re-arming a contact pushes a fresh entry and the old one is discarded when
it surfaces. A once-a-minute sweep catches runs a suspended process missed.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from ..logging import get_logger
from ..models import Contact
from .summarizer import DailySummarizer, DailySummaryResult, SummaryError

if TYPE_CHECKING:
    from ..store.containers import Containers

logger = logging.getLogger(__name__)

SWEEP_INTERVAL = 60.0
# Upper bound on one runner sleep, so wall-clock jumps are noticed.
MAX_SLEEP = 60.0


def parse_time_of_day(value: str) -> tuple[int, int]:
    """Parse ``HH:MM``.

    Raises:
        ValueError: If the value is not a valid time of day.
    """
    hours, _, minutes = value.strip().partition(":")
    hour, minute = int(hours), int(minutes)
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid time of day: {value!r}")
    return hour, minute


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def ran_today(last_summary: int | None, now: datetime) -> bool:
    """Whether ``last_summary`` (epoch ms) falls on the local date of ``now``."""
    if not last_summary:
        return False
    return datetime.fromtimestamp(last_summary / 1000) >= start_of_day(now)


def next_trigger(time_of_day: str, now: datetime, last_summary: int | None) -> datetime:
    """Compute the next firing instant for a contact.

    The next occurrence of the configured time strictly after ``now``. If a
    summary already ran today and that occurrence is still today, it moves
    to tomorrow.

    Args:
        time_of_day: Configured ``HH:MM``.
        now: Current local time.
        last_summary: Epoch ms of the last completed summary, if any.

    Returns:
        The local datetime of the next run.
    """
    hour, minute = parse_time_of_day(time_of_day)
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    if ran_today(last_summary, now) and target.date() == now.date():
        target += timedelta(days=1)
    return target


class SummaryScheduler:
    """Arms and fires per-contact daily summaries."""

    def __init__(
        self,
        containers: Containers,
        summarizer: DailySummarizer,
        clock: Callable[[], datetime] = datetime.now,
        sweep_interval: float = SWEEP_INTERVAL,
    ) -> None:
        self.containers = containers
        self.summarizer = summarizer
        self.clock = clock
        self.sweep_interval = sweep_interval
        self._heap: list[tuple[datetime, int, str]] = []
        self._armed: dict[str, datetime] = {}
        self._seq = itertools.count()
        self._running: set[str] = set()
        self._wakeup = asyncio.Event()
        self._runner: asyncio.Task | None = None
        self._sweeper: asyncio.Task | None = None

    # Arming

    def arm(self, contact: Contact) -> datetime | None:
        """Arm (or re-arm) a contact's timer.

        Returns:
            The due time, or None if the contact is not scheduled.
        """
        settings = contact.daily_summary
        if not settings.enabled:
            self.disarm(contact.id)
            return None

        try:
            due = next_trigger(settings.time, self.clock(), settings.last_summary)
        except ValueError as e:
            logger.warning("Not scheduling %s: %s", contact.id, e)
            self.disarm(contact.id)
            return None

        self._armed[contact.id] = due
        heapq.heappush(self._heap, (due, next(self._seq), contact.id))
        self._wakeup.set()
        logger.debug("Daily summary for %s armed at %s", contact.id, due)
        return due

    def disarm(self, contact_id: str) -> None:
        if self._armed.pop(contact_id, None) is not None:
            self._wakeup.set()

    def sync(self) -> None:
        """Arm every enabled contact and disarm everyone else."""
        contacts = self.containers.contacts()
        known = {c.id for c in contacts}
        for contact_id in list(self._armed):
            if contact_id not in known:
                self.disarm(contact_id)
        for contact in contacts:
            self.arm(contact)

    def due_at(self, contact_id: str) -> datetime | None:
        return self._armed.get(contact_id)

    def next_due(self) -> tuple[datetime, str] | None:
        """Peek the earliest live timer, dropping stale heap entries."""
        while self._heap:
            due, _, contact_id = self._heap[0]
            if self._armed.get(contact_id) == due:
                return due, contact_id
            heapq.heappop(self._heap)
        return None

    # Firing

    async def fire_due(self, now: datetime | None = None) -> list[str]:
        """Fire every timer due at ``now``.

        Returns:
            Ids of the contacts whose timers fired.
        """
        now = now or self.clock()
        fired = []
        while True:
            entry = self.next_due()
            if entry is None or entry[0] > now:
                break
            heapq.heappop(self._heap)
            contact_id = entry[1]
            del self._armed[contact_id]
            fired.append(contact_id)
            await self._fire(contact_id)
        return fired

    async def _fire(self, contact_id: str) -> None:
        contact = self.containers.get_contact(contact_id)
        if contact is None or not contact.daily_summary.enabled:
            return

        try:
            if ran_today(contact.daily_summary.last_summary, self.clock()):
                logger.info("Daily summary for %s already ran today", contact_id)
            else:
                await self._run(contact, "scheduled")
        finally:
            # Re-read so a successful run's stamp moves the trigger to tomorrow.
            self.arm(self.containers.get_contact(contact_id) or contact)

    async def sweep(self, now: datetime | None = None) -> list[str]:
        """Catch-up pass: run contacts whose configured minute is now.

        Returns:
            Ids of the contacts a catch-up run was started for.
        """
        now = now or self.clock()
        current = (now.hour, now.minute)
        started = []
        for contact in self.containers.contacts():
            settings = contact.daily_summary
            if not settings.enabled or contact.id in self._running:
                continue
            try:
                if parse_time_of_day(settings.time) != current:
                    continue
            except ValueError:
                continue
            if ran_today(settings.last_summary, now):
                continue
            started.append(contact.id)
            await self._run(contact, "catch_up")
        return started

    async def trigger_now(self, contact_id: str) -> DailySummaryResult:
        """Run a summary immediately, regardless of the schedule.

        Raises:
            SummaryError: If the run fails.
        """
        result = await self.summarizer.run(contact_id, trigger="manual")
        contact = self.containers.get_contact(contact_id)
        if contact is not None:
            self.arm(contact)
        return result

    async def _run(self, contact: Contact, trigger: str) -> DailySummaryResult | None:
        if contact.id in self._running:
            return None
        self._running.add(contact.id)
        try:
            return await self.summarizer.run(contact.id, trigger=trigger)
        except SummaryError as e:
            logger.warning("Daily summary failed for %s: %s", contact.id, e)
            get_logger().log_summary(contact.id, success=False, trigger=trigger, error=str(e))
            return None
        finally:
            self._running.discard(contact.id)

    # Background tasks

    def start(self) -> None:
        """Arm all contacts and start the runner and sweep tasks."""
        self.sync()
        if self._runner is None:
            self._runner = asyncio.create_task(self._run_loop())
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        for task in (self._runner, self._sweeper):
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._runner = None
        self._sweeper = None

    async def _run_loop(self) -> None:
        while True:
            entry = self.next_due()
            timeout = MAX_SLEEP
            if entry is not None:
                remaining = (entry[0] - self.clock()).total_seconds()
                timeout = min(max(remaining, 0.0), MAX_SLEEP)

            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                try:
                    await self.fire_due()
                except Exception as e:
                    logger.error("Daily summary runner failed: %s", e)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Summary sweep failed: %s", e)

"""
Reconciliation Loop

Decides WHEN reconciliation runs. Three things can trigger a pass:
- the session starting
- a change to the family's obligation collections
- a coarse timer

All of them are events on one queue, drained by one consumer task, so passes
never overlap within a session. Events that arrive while a pass is running
are coalesced into at most one follow-up pass.
"""

import asyncio
import functools
from enum import Enum
from typing import Optional

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, wait_exponential
from tenacity.wait import wait_base

from moneymap.config import get_settings
from moneymap.models.ledger import EntryKind
from moneymap.reconciliation.engine import ReconciliationEngine, ReconciliationReport
from moneymap.registry import ObligationRegistry


logger = structlog.get_logger(__name__)


class ReconciliationEvent(str, Enum):
    SESSION_STARTED = "session_started"
    OBLIGATIONS_CHANGED = "obligations_changed"
    TICK = "tick"
    STOP = "stop"


class ReconciliationLoop:
    """Single-consumer event loop around a ReconciliationEngine."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        obligations: ObligationRegistry,
        family_id: str,
        interval_seconds: Optional[float] = None,
        retry_wait: Optional[wait_base] = None,
    ):
        self._engine = engine
        self._obligations = obligations
        self._family_id = family_id
        if interval_seconds is None:
            interval_seconds = get_settings().engine.reconcile_interval_minutes * 60
        self._interval = interval_seconds
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=10)
        self._queue: asyncio.Queue[ReconciliationEvent] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._consumer: Optional[asyncio.Task] = None
        self.passes = 0
        self.subscriptions = 0
        self.last_report: Optional[ReconciliationReport] = None

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def post(self, event: ReconciliationEvent) -> None:
        self._queue.put_nowait(event)

    async def start(self) -> None:
        """Start the consumer, the timer and the obligation watchers."""
        if self.running:
            return
        self._consumer = asyncio.create_task(self._consume())
        self._tasks = [asyncio.create_task(self._tick())]
        for kind in EntryKind:
            self._tasks.append(asyncio.create_task(self._watch(kind)))
        self.post(ReconciliationEvent.SESSION_STARTED)
        logger.info("reconciliation_loop_started", family_id=self._family_id)

    async def stop(self) -> None:
        """Cancel the feeders, let the consumer finish its current pass, then stop it."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self._consumer is not None:
            self.post(ReconciliationEvent.STOP)
            await self._consumer
            self._consumer = None
        logger.info("reconciliation_loop_stopped", family_id=self._family_id, passes=self.passes)

    async def wait_idle(self) -> None:
        """Block until every queued event has been handled."""
        await self._queue.join()

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            # Coalesce whatever piled up behind this event
            events = [event]
            while not self._queue.empty():
                events.append(self._queue.get_nowait())

            try:
                if ReconciliationEvent.STOP in events:
                    return
                logger.debug(
                    "reconciliation_triggered",
                    family_id=self._family_id,
                    events=[e.value for e in events],
                )
                self.last_report = await self._engine.reconcile(self._family_id)
                self.passes += 1
            except Exception as e:
                logger.error("reconciliation_pass_crashed", family_id=self._family_id, error=str(e))
            finally:
                for _ in events:
                    self._queue.task_done()

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.post(ReconciliationEvent.TICK)

    async def _watch(self, kind: EntryKind) -> None:
        """Post OBLIGATIONS_CHANGED whenever the active set of this kind changes, re-subscribing on failure."""
        # No stop condition: only cancellation (not an Exception) ends the retries
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(Exception),
            wait=self._retry_wait,
            before_sleep=functools.partial(self._log_retry, kind),
            reraise=True,
        ):
            with attempt:
                await self._watch_once(kind, resumed=attempt.retry_state.attempt_number > 1)

    async def _watch_once(self, kind: EntryKind, resumed: bool) -> None:
        self.subscriptions += 1
        first = True
        async for snapshot in self._obligations.watch(self._family_id, kind):
            if first:
                first = False
                # The initial result set is covered by SESSION_STARTED, unless
                # this subscription replaces one that broke and may have missed changes
                if resumed:
                    self.post(ReconciliationEvent.OBLIGATIONS_CHANGED)
                continue
            if snapshot.has_changes:
                self.post(ReconciliationEvent.OBLIGATIONS_CHANGED)

    def _log_retry(self, kind: EntryKind, retry_state: RetryCallState) -> None:
        logger.error(
            "obligation_watch_failed",
            family_id=self._family_id,
            kind=kind.value,
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()),
        )

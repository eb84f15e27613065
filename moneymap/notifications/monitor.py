"""
Notification Monitor

Subscribes to the family's expenses and runs evaluate() on every snapshot.
New alerts go to the caller's callback and to the audit log.

A broken subscription is not fatal: the monitor re-subscribes with
exponential backoff until it is stopped.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional, Union

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, wait_exponential
from tenacity.wait import wait_base

from moneymap.audit import AuditLogger
from moneymap.models.ledger import Alert, EntryKind, NotificationThresholds
from moneymap.notifications.engine import NotificationDedupState, evaluate
from moneymap.registry import LedgerRepository, parse_entries


logger = structlog.get_logger(__name__)

AlertCallback = Callable[[Alert], Union[None, Awaitable[None]]]


class NotificationMonitor:
    """
    Background task that keeps evaluating a family's expense stream.

    Owns nothing but the task: thresholds and the dedup state belong to
    the session and are shared with on-demand evaluation.
    """

    def __init__(
        self,
        ledger: LedgerRepository,
        family_id: str,
        thresholds: NotificationThresholds,
        dedup_state: NotificationDedupState,
        on_alert: Optional[AlertCallback] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = datetime.now,
        retry_wait: Optional[wait_base] = None,
    ):
        self._ledger = ledger
        self._family_id = family_id
        self._thresholds = thresholds
        self._dedup_state = dedup_state
        self._on_alert = on_alert
        self._audit_logger = audit_logger
        self._clock = clock
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=10)
        self._task: Optional[asyncio.Task] = None
        self.snapshots_seen = 0
        self.subscriptions = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_thresholds(self, thresholds: NotificationThresholds) -> None:
        """Takes effect from the next snapshot."""
        self._thresholds = thresholds

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _run(self) -> None:
        # No stop condition: only cancellation (not an Exception) ends the retries
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(Exception),
            wait=self._retry_wait,
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                await self._watch_expenses()

    async def _watch_expenses(self) -> None:
        self.subscriptions += 1
        async for snapshot in self._ledger.watch(self._family_id, EntryKind.EXPENSE):
            self.snapshots_seen += 1
            expenses = parse_entries(EntryKind.EXPENSE, snapshot.documents)
            await self.dispatch(evaluate(
                expenses,
                self._thresholds,
                self._dedup_state,
                now=self._clock(),
            ))

    def _log_retry(self, retry_state: RetryCallState) -> None:
        logger.error(
            "expense_watch_failed",
            family_id=self._family_id,
            attempt=retry_state.attempt_number,
            retry_in=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(retry_state.outcome.exception()),
        )

    async def dispatch(self, alerts: list[Alert]) -> None:
        for alert in alerts:
            logger.info("alert_raised", family_id=self._family_id, key=alert.key)
            if self._audit_logger:
                await self._audit_logger.log_alert_raised(
                    family_id=self._family_id,
                    kind=alert.kind.value,
                    key=alert.key,
                    total=str(alert.total),
                    limit=str(alert.limit),
                )
            if self._on_alert is None:
                continue
            try:
                result = self._on_alert(alert)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("alert_callback_failed", key=alert.key, error=str(e))

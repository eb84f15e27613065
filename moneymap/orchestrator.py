"""
Family Session Orchestrator

This module ties together all the components for one signed-in member
working in one family, and is the only surface the presentation layer
talks to.

Lifecycle:
1. create_session() wires storage, audit and the engines
2. start() runs the first reconciliation pass and begins watching
   obligations (reconciliation) and expenses (notifications)
3. The UI calls the helpers below; every one returns models or plain data
4. close() stops the background tasks

DESIGN DECISION: The session owns every piece of per-session state:
the notification dedup set, the migrated-families set and the
reconciliation in-flight guard. Nothing lives in module globals, so two
sessions in one process behave like two browser tabs.
"""

from datetime import date, datetime
from typing import Any, Callable, Optional

import structlog

from moneymap.audit import AuditLogger, configure_logging
from moneymap.config import get_settings
from moneymap.goals import SavingsGoalManager, compute_progress
from moneymap.models.ledger import (
    Alert,
    CustomCategory,
    EntryKind,
    Frequency,
    LedgerEntry,
    NotificationThresholds,
    RecurringObligation,
    SavingsGoal,
)
from moneymap.models.reports import (
    CategoryTotal,
    GoalProgress,
    MonthlyComparisonRow,
    PeriodSummary,
    SavingsHistoryPoint,
)
from moneymap.notifications import (
    NotificationDedupState,
    NotificationMonitor,
    NotificationSettingsStore,
    evaluate,
)
from moneymap.notifications.monitor import AlertCallback
from moneymap.reconciliation import (
    ReconciliationEngine,
    ReconciliationLoop,
    ReconciliationReport,
    days_in_month,
)
from moneymap.registry import CategoryRegistry, LedgerRepository, ObligationRegistry
from moneymap.reports import category_breakdown, monthly_comparison, savings_history, summarize
from moneymap.services.storage import (
    DocumentStore,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
)
from moneymap.validation import InputValidator


logger = structlog.get_logger(__name__)


class FamilySession:
    """
    Everything one member needs while working in one family.

    Usage:
        async with create_session(family_id, actor_id) as session:
            await session.add_expense("Rent", "1500", date.today(), "Housing", recurring=True)
            goal = await session.get_current_goal()
    """

    def __init__(
        self,
        store: DocumentStore,
        family_id: str,
        actor_id: str,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = datetime.now,
        on_alert: Optional[AlertCallback] = None,
    ):
        settings = get_settings().engine

        self.family_id = family_id
        self.actor_id = actor_id
        self._store = store
        self._clock = clock
        self._on_alert = on_alert
        self._audit_logger = audit_logger or AuditLogger()
        self._history_months = settings.history_months

        validator = InputValidator(max_amount=settings.max_amount)
        self.obligations = ObligationRegistry(store, self._audit_logger, validator)
        self.ledger = LedgerRepository(store, self._audit_logger, validator)
        self.categories = CategoryRegistry(store)
        self.goals = SavingsGoalManager(store, self._audit_logger, validator)
        self.thresholds = NotificationSettingsStore(store, self._audit_logger, validator)
        self.dedup_state = NotificationDedupState()

        self.reconciler = ReconciliationEngine(
            self.obligations,
            self.ledger,
            self._audit_logger,
            clock=clock,
            default_annual_month=settings.default_annual_month,
        )
        self.loop = ReconciliationLoop(
            self.reconciler,
            self.obligations,
            family_id,
            interval_seconds=settings.reconcile_interval_minutes * 60,
        )
        self._monitor: Optional[NotificationMonitor] = None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Start background reconciliation and threshold monitoring."""
        await self.loop.start()
        self._monitor = NotificationMonitor(
            self.ledger,
            self.family_id,
            await self.thresholds.load(self.family_id),
            self.dedup_state,
            on_alert=self._on_alert,
            audit_logger=self._audit_logger,
            clock=self._clock,
        )
        self._monitor.start()
        logger.info("session_started", family_id=self.family_id, actor_id=self.actor_id)

    async def close(self) -> None:
        if self._monitor is not None:
            await self._monitor.stop()
            self._monitor = None
        await self.loop.stop()
        logger.info("session_closed", family_id=self.family_id)

    async def __aenter__(self) -> "FamilySession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # =========================================================================
    # RECONCILIATION & NOTIFICATIONS
    # =========================================================================

    async def reconcile(self, now: Optional[datetime] = None) -> ReconciliationReport:
        """Run one reconciliation pass right now, outside the loop's schedule."""
        return await self.reconciler.reconcile(self.family_id, now=now)

    async def evaluate(self, now: Optional[datetime] = None) -> list[Alert]:
        """
        Check current expenses against the thresholds once.

        Shares the session's dedup state with the background monitor, so an
        alert raised here is not raised again there.
        """
        expenses = await self.ledger.list_entries(self.family_id, EntryKind.EXPENSE)
        thresholds = await self.thresholds.load(self.family_id)
        alerts = evaluate(expenses, thresholds, self.dedup_state, now=now or self._clock())
        for alert in alerts:
            await self._audit_logger.log_alert_raised(
                family_id=self.family_id,
                kind=alert.kind.value,
                key=alert.key,
                total=str(alert.total),
                limit=str(alert.limit),
            )
        return alerts

    async def get_thresholds(self) -> NotificationThresholds:
        return await self.thresholds.load(self.family_id)

    async def save_thresholds(
        self,
        daily_limit: Any = 0,
        monthly_limit: Any = 0,
        single_expense_limit: Any = 0,
        category_limits: Optional[dict[str, Any]] = None,
    ) -> NotificationThresholds:
        thresholds = await self.thresholds.save(
            self.family_id,
            daily_limit=daily_limit,
            monthly_limit=monthly_limit,
            single_expense_limit=single_expense_limit,
            category_limits=category_limits,
        )
        if self._monitor is not None:
            self._monitor.set_thresholds(thresholds)
        return thresholds

    # =========================================================================
    # SAVINGS GOAL
    # =========================================================================

    async def get_current_goal(self) -> Optional[SavingsGoal]:
        return await self.goals.get_current_goal(self.family_id)

    async def set_goal(self, amount: Any) -> SavingsGoal:
        return await self.goals.set_goal(self.family_id, amount, self.actor_id)

    async def update_goal_amount(self, goal_id: str, amount: Any) -> SavingsGoal:
        return await self.goals.update_goal_amount(goal_id, amount)

    async def goal_progress(self, on: Optional[date] = None) -> Optional[GoalProgress]:
        """Progress in the month containing `on` (default today); None without a goal."""
        goal = await self.get_current_goal()
        if goal is None:
            return None
        on = on or self._clock().date()
        start = on.replace(day=1)
        end = on.replace(day=days_in_month(on.year, on.month))
        incomes = await self.ledger.list_entries(self.family_id, EntryKind.INCOME, start, end)
        expenses = await self.ledger.list_entries(self.family_id, EntryKind.EXPENSE, start, end)
        return compute_progress(goal, incomes, expenses, on)

    # =========================================================================
    # ENTRIES
    # =========================================================================

    async def add_expense(
        self,
        name: str,
        amount: Any,
        entry_date: date,
        category: str,
        recurring: bool = False,
        frequency: Frequency = Frequency.MONTHLY,
    ) -> LedgerEntry:
        """Log an expense; with recurring=True it also becomes a recurring obligation."""
        return await self._add(EntryKind.EXPENSE, name, amount, entry_date, category, recurring, frequency)

    async def add_income(
        self,
        name: str,
        amount: Any,
        entry_date: date,
        recurring: bool = False,
        frequency: Frequency = Frequency.MONTHLY,
    ) -> LedgerEntry:
        return await self._add(EntryKind.INCOME, name, amount, entry_date, None, recurring, frequency)

    async def _add(
        self,
        kind: EntryKind,
        name: str,
        amount: Any,
        entry_date: date,
        category: Optional[str],
        recurring: bool,
        frequency: Frequency,
    ) -> LedgerEntry:
        entry = await self.ledger.add_entry(
            family_id=self.family_id,
            actor_id=self.actor_id,
            kind=kind,
            name=name,
            amount=amount,
            entry_date=entry_date,
            category=category,
        )
        if recurring:
            await self.obligations.create_from_entry(entry, frequency)
        return entry

    async def update_entry(self, kind: EntryKind, entry_id: str, **changes: Any) -> LedgerEntry:
        return await self.ledger.update_entry(kind, entry_id, actor_id=self.actor_id, **changes)

    async def delete_entry(self, kind: EntryKind, entry_id: str) -> bool:
        return await self.ledger.delete_entry(kind, entry_id, actor_id=self.actor_id)

    async def list_expenses(self, start: Optional[date] = None, end: Optional[date] = None) -> list[LedgerEntry]:
        return await self.ledger.list_entries(self.family_id, EntryKind.EXPENSE, start, end)

    async def list_incomes(self, start: Optional[date] = None, end: Optional[date] = None) -> list[LedgerEntry]:
        return await self.ledger.list_entries(self.family_id, EntryKind.INCOME, start, end)

    # =========================================================================
    # OBLIGATIONS & CATEGORIES
    # =========================================================================

    async def list_obligations(self, kind: Optional[EntryKind] = None) -> list[RecurringObligation]:
        return await self.obligations.list_active(self.family_id, kind)

    async def update_obligation(self, kind: EntryKind, obligation_id: str, **changes: Any) -> RecurringObligation:
        return await self.obligations.update(kind, obligation_id, actor_id=self.actor_id, **changes)

    async def deactivate_obligation(self, kind: EntryKind, obligation_id: str) -> None:
        await self.obligations.deactivate(kind, obligation_id, actor_id=self.actor_id)

    async def list_categories(self) -> list[str]:
        return await self.categories.list_categories(self.family_id)

    async def add_category(self, name: str) -> CustomCategory:
        return await self.categories.add_category(self.family_id, name, self.actor_id)

    async def delete_category(self, category_id: str) -> bool:
        return await self.categories.delete_category(category_id)

    # =========================================================================
    # REPORTS
    # =========================================================================

    async def summary(
        self,
        start: date,
        end: date,
        category: Optional[str] = None,
        member: Optional[str] = None,
    ) -> PeriodSummary:
        return summarize(
            await self.list_incomes(start, end),
            await self.list_expenses(start, end),
            start,
            end,
            category=category,
            member=member,
        )

    async def category_breakdown(self, start: date, end: date) -> list[CategoryTotal]:
        return category_breakdown(await self.list_expenses(start, end), start, end)

    async def monthly_comparison(
        self,
        start: date,
        end: date,
        max_months: int = 6,
        category: Optional[str] = None,
        member: Optional[str] = None,
    ) -> list[MonthlyComparisonRow]:
        return monthly_comparison(
            await self.list_incomes(start, end),
            await self.list_expenses(start, end),
            start,
            end,
            max_months=max_months,
            category=category,
            member=member,
        )

    async def savings_history(self, months: Optional[int] = None) -> list[SavingsHistoryPoint]:
        goal = await self.get_current_goal()
        return savings_history(
            await self.list_incomes(),
            await self.list_expenses(),
            months=months or self._history_months,
            today=self._clock().date(),
            goal=goal.amount if goal else None,
        )


def create_session(
    family_id: str,
    actor_id: str,
    use_storage: bool = True,
    on_alert: Optional[AlertCallback] = None,
) -> FamilySession:
    """
    Factory function to create a fully wired session.

    Args:
        family_id: Family the member is working in
        actor_id: The signed-in member
        use_storage: Whether to use Google Sheets storage.
                    Set to False for an offline, in-memory session.
        on_alert: Called with each new spending alert

    Returns:
        A FamilySession; call start() or use it as an async context manager
    """
    configure_logging(get_settings().app.log_level)

    store: Optional[DocumentStore] = None
    audit_logger = None

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            sheets_client.connect()
            store = GoogleSheetsDocumentStore(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            store = None

    if store is None:
        store = InMemoryDocumentStore()
        audit_logger = AuditLogger()  # Local-only logging

    return FamilySession(
        store,
        family_id,
        actor_id,
        audit_logger=audit_logger,
        on_alert=on_alert,
    )

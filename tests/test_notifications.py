"""Tests for threshold evaluation, the settings store and the expense monitor."""

import asyncio
from datetime import date, datetime
from decimal import Decimal

import pytest
from tenacity import wait_none

from moneymap.models.audit import AuditEventType
from moneymap.models.ledger import AlertKind, EntryKind, Expense, Income, NotificationThresholds
from moneymap.notifications import (
    NotificationDedupState,
    NotificationMonitor,
    NotificationSettingsStore,
    evaluate,
)
from moneymap.registry import LedgerRepository
from moneymap.validation import InvalidInputError

from tests.conftest import ALICE, FAMILY, DroppingSubscriptionStore


NOW = datetime(2024, 3, 15, 18, 30)


def expense(amount, day=15, month=3, category="Food", entry_id=None) -> Expense:
    fields = {}
    if entry_id:
        fields["id"] = entry_id
    return Expense(
        family_id=FAMILY,
        name=f"{category} {amount}",
        amount=Decimal(str(amount)),
        category=category,
        entry_date=date(2024, month, day),
        added_by=ALICE,
        **fields,
    )


async def wait_until(predicate, attempts: int = 100) -> bool:
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return bool(predicate())


@pytest.fixture
def dedup():
    return NotificationDedupState()


class TestEvaluate:

    def test_monthly_limit_alerts_once(self, dedup):
        thresholds = NotificationThresholds(monthly_limit=Decimal("1000"))
        spent = [expense(700, day=2), expense(500, day=10)]

        alerts = evaluate(spent, thresholds, dedup, now=NOW)

        assert [a.kind for a in alerts] == [AlertKind.MONTHLY_LIMIT]
        assert alerts[0].key == "monthly:2024-03"
        assert alerts[0].total == Decimal("1200")
        assert evaluate(spent, thresholds, dedup, now=NOW) == []

    def test_previous_month_does_not_count(self, dedup):
        thresholds = NotificationThresholds(monthly_limit=Decimal("1000"))
        spent = [expense(900, month=2), expense(200)]
        assert evaluate(spent, thresholds, dedup, now=NOW) == []

    def test_limit_must_be_exceeded(self, dedup):
        thresholds = NotificationThresholds(monthly_limit=Decimal("1000"))
        assert evaluate([expense(1000)], thresholds, dedup, now=NOW) == []

    def test_daily_limit(self, dedup):
        thresholds = NotificationThresholds(daily_limit=Decimal("100"))
        spent = [expense(60), expense(50), expense(500, day=14)]

        alerts = evaluate(spent, thresholds, dedup, now=NOW)

        assert [a.key for a in alerts] == ["daily:2024-03-15"]
        assert alerts[0].total == Decimal("110")

    def test_single_expense_keyed_by_entry(self, dedup):
        thresholds = NotificationThresholds(single_expense_limit=Decimal("300"))
        first = expense(400, entry_id="e1")

        assert [a.key for a in evaluate([first], thresholds, dedup, now=NOW)] == ["expense:e1"]

        second = expense(450, day=16, entry_id="e2")
        alerts = evaluate([first, second], thresholds, dedup, now=NOW)
        assert [a.entry_id for a in alerts] == ["e2"]

    def test_category_limit(self, dedup):
        thresholds = NotificationThresholds(category_limits={"Food": Decimal("200"), "Leisure": Decimal("0")})
        spent = [expense(150), expense(100), expense(5000, category="Leisure")]

        alerts = evaluate(spent, thresholds, dedup, now=NOW)

        assert [a.key for a in alerts] == ["category:Food:2024-03"]
        assert alerts[0].category == "Food"

    def test_rule_order(self, dedup):
        thresholds = NotificationThresholds(
            daily_limit=Decimal("10"),
            monthly_limit=Decimal("10"),
            single_expense_limit=Decimal("10"),
            category_limits={"Food": Decimal("10")},
        )
        alerts = evaluate([expense(50, entry_id="e1")], thresholds, dedup, now=NOW)
        assert [a.kind for a in alerts] == [
            AlertKind.MONTHLY_LIMIT,
            AlertKind.SINGLE_EXPENSE,
            AlertKind.DAILY_LIMIT,
            AlertKind.CATEGORY_LIMIT,
        ]
        assert len(dedup) == 4

    def test_incomes_are_ignored(self, dedup):
        thresholds = NotificationThresholds(monthly_limit=Decimal("10"), single_expense_limit=Decimal("10"))
        salary = Income(family_id=FAMILY, name="Salary", amount=Decimal("5000"), entry_date=date(2024, 3, 15), added_by=ALICE)
        assert evaluate([salary], thresholds, dedup, now=NOW) == []

    def test_zero_disables_every_rule(self, dedup):
        assert evaluate([expense(10_000)], NotificationThresholds(), dedup, now=NOW) == []
        assert len(dedup) == 0

    def test_new_month_alerts_again(self, dedup):
        thresholds = NotificationThresholds(monthly_limit=Decimal("100"))
        evaluate([expense(200)], thresholds, dedup, now=NOW)

        alerts = evaluate([expense(200, day=1, month=4)], thresholds, dedup, now=datetime(2024, 4, 1, 8))
        assert [a.key for a in alerts] == ["monthly:2024-04"]

    def test_dedup_reset(self, dedup):
        thresholds = NotificationThresholds(monthly_limit=Decimal("100"))
        evaluate([expense(200)], thresholds, dedup, now=NOW)
        dedup.reset()
        assert len(evaluate([expense(200)], thresholds, dedup, now=NOW)) == 1


class TestNotificationSettingsStore:

    @pytest.mark.asyncio
    async def test_defaults_when_missing(self, store):
        thresholds = await NotificationSettingsStore(store).load(FAMILY)
        assert thresholds.id == FAMILY
        assert thresholds.monthly_limit == Decimal("0")
        assert thresholds.category_limits == {}

    @pytest.mark.asyncio
    async def test_save_and_load(self, store, audit_logger, audit_storage):
        settings = NotificationSettingsStore(store, audit_logger)
        await settings.save(FAMILY, daily_limit="50", monthly_limit="1000,00", category_limits={"Food": 300})
        await settings.save(FAMILY, monthly_limit=1500)

        loaded = await settings.load(FAMILY)
        assert loaded.monthly_limit == Decimal("1500")
        assert loaded.daily_limit == Decimal("0")
        assert len(store.dump(NotificationThresholds.collection)) == 1
        assert audit_storage.events[-1].event_type is AuditEventType.THRESHOLDS_UPDATED

    @pytest.mark.asyncio
    async def test_negative_rejected(self, store):
        with pytest.raises(InvalidInputError):
            await NotificationSettingsStore(store).save(FAMILY, monthly_limit=-1)
        assert store.dump(NotificationThresholds.collection) == []

    @pytest.mark.asyncio
    async def test_unreadable_document_falls_back(self, store):
        store.seed(NotificationThresholds.collection, [{"id": FAMILY, "monthlyLimit": "lots"}])
        thresholds = await NotificationSettingsStore(store).load(FAMILY)
        assert thresholds.monthly_limit == Decimal("0")


class TestNotificationMonitor:

    @pytest.mark.asyncio
    async def test_alerts_on_new_expense(self, ledger, audit_logger, audit_storage, dedup):
        received = []
        monitor = NotificationMonitor(
            ledger,
            FAMILY,
            NotificationThresholds(monthly_limit=Decimal("100")),
            dedup,
            on_alert=received.append,
            audit_logger=audit_logger,
            clock=lambda: NOW,
        )
        monitor.start()
        await asyncio.sleep(0)

        await ledger.add_entry(FAMILY, ALICE, EntryKind.EXPENSE, "TV", 250, date(2024, 3, 15), "Leisure")
        await ledger.add_entry(FAMILY, ALICE, EntryKind.EXPENSE, "Snack", 5, date(2024, 3, 15), "Food")
        for _ in range(10):
            if monitor.snapshots_seen >= 3:
                break
            await asyncio.sleep(0.01)
        await monitor.stop()

        assert [a.key for a in received] == ["monthly:2024-03"]
        raised = [e for e in audit_storage.events if e.event_type is AuditEventType.ALERT_RAISED]
        assert len(raised) == 1
        assert not monitor.running

    @pytest.mark.asyncio
    async def test_async_callback_and_failing_callback(self, ledger, dedup):
        received = []

        async def collect(alert):
            received.append(alert)

        def explode(alert):
            raise RuntimeError("ui gone")

        thresholds = NotificationThresholds(single_expense_limit=Decimal("10"))
        alerts = evaluate([expense(20, entry_id="e1")], thresholds, dedup, now=NOW)

        await NotificationMonitor(ledger, FAMILY, thresholds, dedup, on_alert=collect).dispatch(alerts)
        await NotificationMonitor(ledger, FAMILY, thresholds, dedup, on_alert=explode).dispatch(alerts)

        assert [a.key for a in received] == ["expense:e1"]

    @pytest.mark.asyncio
    async def test_resubscribes_after_stream_failure(self, audit_logger):
        store = DroppingSubscriptionStore(Expense.collection)
        ledger = LedgerRepository(store, audit_logger)
        received = []
        monitor = NotificationMonitor(
            ledger,
            FAMILY,
            NotificationThresholds(monthly_limit=Decimal("100")),
            NotificationDedupState(),
            on_alert=received.append,
            clock=lambda: NOW,
            retry_wait=wait_none(),
        )
        monitor.start()
        assert await wait_until(lambda: monitor.subscriptions == 2 and monitor.snapshots_seen >= 1)

        await ledger.add_entry(FAMILY, ALICE, EntryKind.EXPENSE, "TV", 250, date(2024, 3, 15), "Leisure")
        assert await wait_until(lambda: received)

        assert monitor.running
        await monitor.stop()
        assert [a.key for a in received] == ["monthly:2024-03"]

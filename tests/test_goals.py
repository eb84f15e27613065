"""Tests for the savings goal manager: convergence, legacy migration and progress."""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from moneymap.goals import SavingsGoalManager, choose_canonical, compute_progress, progress_pct
from moneymap.models.audit import AuditEventType
from moneymap.models.ledger import Expense, Income, SavingsGoal
from moneymap.services.storage import InMemoryDocumentStore, StorageError
from moneymap.validation import InvalidInputError

from tests.conftest import ALICE, FAMILY


GOALS = SavingsGoal.collection


def stored_flags(store: InMemoryDocumentStore) -> dict[str, object]:
    return {doc["id"]: doc.get("active") for doc in store.dump(GOALS)}


class TestSelection:

    def test_latest_created_at_wins(self):
        older = SavingsGoal(id="a", family_id=FAMILY, amount=Decimal("1"), created_at=datetime(2023, 1, 1, tzinfo=timezone.utc))
        newer = SavingsGoal(id="b", family_id=FAMILY, amount=Decimal("1"), created_at=datetime(2023, 6, 1, tzinfo=timezone.utc))
        assert choose_canonical([older, newer]).id == "b"

    def test_missing_created_at_sorts_oldest(self):
        undated = SavingsGoal(id="z", family_id=FAMILY, amount=Decimal("1"))
        dated = SavingsGoal(id="a", family_id=FAMILY, amount=Decimal("1"), created_at=datetime(2020, 1, 1))
        assert choose_canonical([undated, dated]).id == "a"

    def test_ties_broken_by_id(self):
        when = datetime(2023, 1, 1, tzinfo=timezone.utc)
        goals = [SavingsGoal(id=i, family_id=FAMILY, amount=Decimal("1"), created_at=when) for i in ("b", "c", "a")]
        assert choose_canonical(goals).id == "c"


class TestMigration:

    @pytest.mark.asyncio
    async def test_two_unflagged_goals(self, store, goals):
        """Goals A (t1) and B (t2 > t1), neither with `active`: B active, A inactive."""
        store.seed(GOALS, [
            {"id": "A", "familyId": FAMILY, "amount": "100", "createdAt": "2023-01-01T00:00:00+00:00"},
            {"id": "B", "familyId": FAMILY, "amount": "200", "createdAt": "2023-02-01T00:00:00+00:00"},
        ])

        current = await goals.get_current_goal(FAMILY)

        assert current.id == "B"
        assert current.active is True
        assert stored_flags(store) == {"A": False, "B": True}
        assert goals.is_migrated(FAMILY)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("n", [1, 3, 7])
    async def test_n_legacy_goals(self, store, goals, n):
        store.seed(GOALS, [
            {"id": f"g{i}", "familyId": FAMILY, "valor": 100 + i, "createdAt": f"2023-{i + 1:02d}-01T00:00:00"}
            for i in range(n)
        ])

        current = await goals.get_current_goal(FAMILY)

        flags = stored_flags(store)
        assert list(flags.values()).count(True) == 1
        assert list(flags.values()).count(False) == n - 1
        assert flags[f"g{n - 1}"] is True
        assert current.amount == Decimal(100 + n - 1)

    @pytest.mark.asyncio
    async def test_monthly_legacy_shape_and_missing_created_at(self, store, goals):
        store.seed(GOALS, [
            {"id": "old", "familyId": FAMILY, "valor": 50, "mes": 1, "ano": 2022},
            {"id": "new", "familyId": FAMILY, "valor": 80, "mes": 2, "ano": 2022, "createdAt": "2022-02-01T00:00:00"},
        ])
        current = await goals.get_current_goal(FAMILY)
        assert current.id == "new"
        assert stored_flags(store) == {"old": False, "new": True}

    @pytest.mark.asyncio
    async def test_other_families_untouched(self, store, goals):
        store.seed(GOALS, [
            {"id": "mine", "familyId": FAMILY, "amount": "100"},
            {"id": "theirs", "familyId": "other", "amount": "100"},
        ])
        await goals.get_current_goal(FAMILY)
        assert "active" not in {d["id"]: d for d in store.dump(GOALS)}["theirs"]

    @pytest.mark.asyncio
    async def test_undated_goal_stays_visible_after_migration(self, store, goals):
        store.seed(GOALS, [{"id": "only", "familyId": FAMILY, "valor": 300}])

        assert (await goals.get_current_goal(FAMILY)).id == "only"
        again = await goals.get_current_goal(FAMILY)
        assert again is not None and again.id == "only"
        assert again.created_at is not None

    @pytest.mark.asyncio
    async def test_no_goals(self, goals):
        assert await goals.get_current_goal(FAMILY) is None

    @pytest.mark.asyncio
    async def test_migration_is_idempotent(self, store, goals, audit_storage):
        store.seed(GOALS, [
            {"id": "A", "familyId": FAMILY, "amount": "100", "createdAt": "2023-01-01T00:00:00+00:00"},
            {"id": "B", "familyId": FAMILY, "amount": "200", "createdAt": "2023-02-01T00:00:00+00:00"},
        ])
        await goals.get_current_goal(FAMILY)
        before = store.dump(GOALS)

        # A fresh session runs the migration again; nothing changes
        other_session = SavingsGoalManager(store)
        again = await other_session.migrate(FAMILY)

        assert again.id == "B"
        assert store.dump(GOALS) == before
        migrated = [e for e in audit_storage.events if e.event_type is AuditEventType.GOAL_MIGRATED]
        assert len(migrated) == 1

    @pytest.mark.asyncio
    async def test_partial_failure_is_retried(self, audit_logger, audit_storage):
        class FailingOnceStore(InMemoryDocumentStore):
            def __init__(self):
                super().__init__()
                self.fail_ids = {"A"}

            async def update(self, collection, doc_id, patch):
                if doc_id in self.fail_ids:
                    self.fail_ids.discard(doc_id)
                    raise StorageError("write failed")
                return await super().update(collection, doc_id, patch)

        store = FailingOnceStore()
        store.seed(GOALS, [
            {"id": "A", "familyId": FAMILY, "amount": "100", "createdAt": "2023-01-01T00:00:00+00:00"},
            {"id": "B", "familyId": FAMILY, "amount": "200", "createdAt": "2023-02-01T00:00:00+00:00"},
            {"id": "C", "familyId": FAMILY, "amount": "300", "createdAt": "2022-12-01T00:00:00+00:00"},
        ])
        goals = SavingsGoalManager(store, audit_logger)

        first = await goals.get_current_goal(FAMILY)
        assert first.id == "B"
        assert not goals.is_migrated(FAMILY)
        assert stored_flags(store) == {"A": None, "B": True, "C": False}
        assert audit_storage.events[-1].event_type is AuditEventType.GOAL_MIGRATION_INCOMPLETE

        # B is active now, so the next read takes the fast path; an explicit
        # migrate() finishes the job with the same choice
        second = await goals.migrate(FAMILY)
        assert second.id == "B"
        assert goals.is_migrated(FAMILY)
        assert stored_flags(store) == {"A": False, "B": True, "C": False}


class TestConvergence:

    @pytest.mark.asyncio
    async def test_multiple_active_goals_converge(self, store, goals, audit_storage):
        store.seed(GOALS, [
            {"id": "x", "familyId": FAMILY, "amount": "100", "active": True, "createdAt": "2024-01-01T00:00:00+00:00"},
            {"id": "y", "familyId": FAMILY, "amount": "200", "active": True, "createdAt": "2024-03-01T00:00:00+00:00"},
            {"id": "z", "familyId": FAMILY, "amount": "300", "active": True, "createdAt": "2024-02-01T00:00:00+00:00"},
        ])

        current = await goals.get_current_goal(FAMILY)

        assert current.id == "y"
        assert stored_flags(store) == {"x": False, "y": True, "z": False}
        assert audit_storage.events[-1].event_type is AuditEventType.GOAL_INVARIANT_REPAIRED

    @pytest.mark.asyncio
    async def test_falls_back_to_full_scan(self, audit_logger):
        class NoIndexStore(InMemoryDocumentStore):
            async def query(self, query):
                if query.order_by is not None:
                    raise StorageError("The query requires an index")
                return await super().query(query)

        store = NoIndexStore()
        store.seed(GOALS, [
            {"id": "a", "familyId": FAMILY, "amount": "100", "active": False, "createdAt": "2024-01-01T00:00:00+00:00"},
            {"id": "b", "familyId": FAMILY, "amount": "200", "active": True, "createdAt": "2023-01-01T00:00:00+00:00"},
        ])
        goals = SavingsGoalManager(store, audit_logger)

        assert (await goals.get_current_goal(FAMILY)).id == "b"


class TestSetAndUpdate:

    @pytest.mark.asyncio
    async def test_set_goal_deactivates_previous(self, store, goals):
        first = await goals.set_goal(FAMILY, "500", ALICE)
        second = await goals.set_goal(FAMILY, "750,50", ALICE)

        assert stored_flags(store) == {first.id: False, second.id: True}
        current = await goals.get_current_goal(FAMILY)
        assert current.id == second.id
        assert current.amount == Decimal("750.50")
        assert current.created_by == ALICE

    @pytest.mark.asyncio
    async def test_set_goal_validates_before_writing(self, store, goals):
        with pytest.raises(InvalidInputError):
            await goals.set_goal(FAMILY, "-10", ALICE)
        assert store.dump(GOALS) == []

    @pytest.mark.asyncio
    async def test_update_goal_amount(self, goals):
        goal = await goals.set_goal(FAMILY, 500, ALICE)
        updated = await goals.update_goal_amount(goal.id, "650")
        assert updated.id == goal.id
        assert updated.amount == Decimal("650")
        assert updated.active is True

    @pytest.mark.asyncio
    async def test_update_legacy_goal_amount(self, store, goals):
        store.seed(GOALS, [{"id": "g", "familyId": FAMILY, "valor": 100, "active": True}])
        updated = await goals.update_goal_amount("g", 150)
        assert updated.amount == Decimal("150")

    @pytest.mark.asyncio
    async def test_update_rejects_invalid_amount(self, goals):
        goal = await goals.set_goal(FAMILY, 500, ALICE)
        with pytest.raises(InvalidInputError):
            await goals.update_goal_amount(goal.id, "0")

    @pytest.mark.asyncio
    async def test_watch_current_goal(self, goals):
        stream = goals.watch_current_goal(FAMILY)
        assert await stream.__anext__() is None

        goal = await goals.set_goal(FAMILY, 500, ALICE)
        assert (await asyncio.wait_for(stream.__anext__(), timeout=1)).id == goal.id
        await stream.aclose()


class TestProgress:

    @pytest.mark.parametrize("savings, expected", [
        (Decimal("-500"), 0.0),
        (Decimal("0"), 0.0),
        (Decimal("250"), 50.0),
        (Decimal("500"), 100.0),
        (Decimal("5000"), 100.0),
    ])
    def test_progress_pct_is_clamped(self, savings, expected):
        assert progress_pct(savings, Decimal("500")) == expected

    def test_progress_pct_rejects_zero_goal(self):
        with pytest.raises(ValueError):
            progress_pct(Decimal("1"), Decimal("0"))

    def test_compute_progress_uses_the_month(self):
        goal = SavingsGoal(id="g", family_id=FAMILY, amount=Decimal("1000"), active=True)
        incomes = [
            Income(family_id=FAMILY, name="Salary", amount=Decimal("3000"), entry_date=date(2024, 3, 5), added_by=ALICE),
            Income(family_id=FAMILY, name="Old", amount=Decimal("9999"), entry_date=date(2024, 2, 5), added_by=ALICE),
        ]
        expenses = [
            Expense(family_id=FAMILY, name="Rent", amount=Decimal("2400"), category="Housing",
                    entry_date=date(2024, 3, 1), added_by=ALICE),
        ]

        progress = compute_progress(goal, incomes, expenses, date(2024, 3, 20))

        assert progress.period_key == "2024-03"
        assert progress.savings == Decimal("600")
        assert progress.progress_pct == 60.0
        assert not progress.achieved
        assert progress.remaining == Decimal("400")

    def test_overspending_reads_zero(self):
        goal = SavingsGoal(id="g", family_id=FAMILY, amount=Decimal("100"), active=True)
        expenses = [
            Expense(family_id=FAMILY, name="Car", amount=Decimal("900"), category="Transport",
                    entry_date=date(2024, 3, 1), added_by=ALICE),
        ]
        progress = compute_progress(goal, [], expenses, date(2024, 3, 2))
        assert progress.progress_pct == 0.0
        assert progress.remaining == Decimal("1000")

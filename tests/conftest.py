"""Shared fixtures. No network: everything runs on the in-memory store."""

from datetime import datetime

import pytest

from moneymap.audit import AuditLogger
from moneymap.goals import SavingsGoalManager
from moneymap.reconciliation import ReconciliationEngine
from moneymap.registry import CategoryRegistry, LedgerRepository, ObligationRegistry
from moneymap.services.storage import InMemoryAuditStorage, InMemoryDocumentStore, StorageError
from moneymap.validation import InputValidator


FAMILY = "fam-1"
ALICE = "user-alice"
BOB = "user-bob"


class FixedClock:
    """Callable clock that tests can move."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class DroppingSubscriptionStore(InMemoryDocumentStore):
    """In-memory store whose first subscription to each listed collection breaks."""

    def __init__(self, *collections: str, failures: int = 1):
        super().__init__()
        self.failures = {collection: failures for collection in collections}

    async def subscribe(self, query):
        if self.failures.get(query.collection, 0) > 0:
            self.failures[query.collection] -= 1
            raise StorageError("subscription dropped")
        async for snapshot in super().subscribe(query):
            yield snapshot


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def validator():
    return InputValidator(max_amount=1_000_000)


@pytest.fixture
def obligations(store, audit_logger, validator):
    return ObligationRegistry(store, audit_logger, validator)


@pytest.fixture
def ledger(store, audit_logger, validator):
    return LedgerRepository(store, audit_logger, validator)


@pytest.fixture
def categories(store):
    return CategoryRegistry(store)


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 2, 29, 9, 0))


@pytest.fixture
def engine(obligations, ledger, audit_logger, clock):
    return ReconciliationEngine(obligations, ledger, audit_logger, clock=clock, default_annual_month=1)


@pytest.fixture
def goals(store, audit_logger, validator):
    return SavingsGoalManager(store, audit_logger, validator)

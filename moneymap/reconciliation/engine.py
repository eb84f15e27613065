"""
Reconciliation Engine

Turns active recurring obligations into dated ledger entries, exactly once
per obligation per period.

DESIGN DECISION: Each materialization is two writes that behave as one:
1. Create the ledger entry under "<obligationId>-<periodKey>", create-if-absent.
   An entry that already exists counts as success.
2. Compare-and-swap lastProcessedPeriod from the value read at the start of
   the pass to the current period key.

The marker is never written unless the entry exists, and the entry can never
be written twice. A crash between the two steps is repaired by the next pass:
step 1 finds the entry, step 2 records the period.

Failures are NEVER fatal. They are logged, audited, and left for the next
pass; one bad obligation does not stop the others.
"""

from datetime import date, datetime
from typing import Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from moneymap.audit import AuditLogger, create_correlation_id
from moneymap.config import get_settings
from moneymap.models.ledger import (
    ENTRY_TYPES,
    LedgerEntry,
    PeriodKey,
    RecurringObligation,
    materialized_entry_id,
)
from moneymap.reconciliation.periods import current_period_key, effective_trigger_date, is_due
from moneymap.registry import LedgerRepository, ObligationRegistry


logger = structlog.get_logger(__name__)


class ReconciliationReport(BaseModel):
    """Outcome of one pass. Callers are free to ignore it."""

    family_id: str
    run_date: date
    correlation_id: UUID
    materialized: list[str] = Field(
        default_factory=list,
        description="Ids of ledger entries this pass created"
    )
    recovered: list[str] = Field(
        default_factory=list,
        description="Entries that already existed; only the period marker was missing"
    )
    claimed_elsewhere: list[str] = Field(
        default_factory=list,
        description="Obligations whose period another session recorded first"
    )
    failed: list[str] = Field(
        default_factory=list,
        description="Obligations left for the next pass after a store failure"
    )
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed


class ReconciliationEngine:
    """
    Materializes due obligations for one family.

    One engine instance belongs to one session. Its in-flight guard makes
    sure two overlapping passes in the same session never work on the same
    obligation at once; across sessions the conditional write takes over.
    """

    def __init__(
        self,
        obligations: ObligationRegistry,
        ledger: LedgerRepository,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = datetime.now,
        default_annual_month: Optional[int] = None,
    ):
        self._obligations = obligations
        self._ledger = ledger
        self._audit_logger = audit_logger or AuditLogger()
        self._clock = clock
        if default_annual_month is None:
            default_annual_month = get_settings().engine.default_annual_month
        self._default_annual_month = default_annual_month
        self._in_flight: set[str] = set()

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    async def reconcile(
        self,
        family_id: str,
        now: Optional[datetime] = None,
    ) -> ReconciliationReport:
        """
        Run one reconciliation pass for the family.

        Args:
            family_id: Family whose obligations to process
            now: Override for the current time (defaults to the engine clock)

        Returns:
            ReconciliationReport with what happened to each obligation
        """
        today = (now or self._clock()).date()
        correlation_id = create_correlation_id()
        report = ReconciliationReport(
            family_id=family_id,
            run_date=today,
            correlation_id=correlation_id,
        )
        log = logger.bind(family_id=family_id, correlation_id=str(correlation_id))

        try:
            obligations = await self._obligations.list_active(family_id)
        except Exception as e:
            log.error("reconciliation_load_failed", error=str(e))
            await self._audit_logger.log_storage_error(
                operation="list_active_obligations",
                error_message=str(e),
                family_id=family_id,
                correlation_id=correlation_id,
            )
            return report

        for obligation in obligations:
            await self._process(obligation, today, report, log)

        log.info(
            "reconciliation_completed",
            materialized=len(report.materialized),
            recovered=len(report.recovered),
            failed=len(report.failed),
            skipped=report.skipped,
        )
        if report.materialized or report.recovered or report.failed:
            await self._audit_logger.log_reconciliation_completed(
                family_id=family_id,
                materialized=len(report.materialized) + len(report.recovered),
                failed=len(report.failed),
                skipped=report.skipped,
                correlation_id=correlation_id,
            )
        return report

    def build_entry(
        self,
        obligation: RecurringObligation,
        period_key: PeriodKey,
        today: date,
    ) -> LedgerEntry:
        """The ledger entry an obligation produces for the given period."""
        return ENTRY_TYPES[obligation.kind](
            id=materialized_entry_id(obligation.id, period_key),
            family_id=obligation.family_id,
            entry_date=effective_trigger_date(obligation.trigger_day, today.year, today.month),
            added_by=obligation.created_by,
            obligation_id=obligation.id,
            period_key=period_key,
            **obligation.entry_fields(),
        )

    async def _process(
        self,
        obligation: RecurringObligation,
        today: date,
        report: ReconciliationReport,
        log,
    ) -> None:
        if not is_due(obligation, today, self._default_annual_month):
            report.skipped += 1
            return
        if obligation.id in self._in_flight:
            log.debug("obligation_in_flight", obligation_id=obligation.id)
            report.skipped += 1
            return

        period_key = current_period_key(obligation, today, self._default_annual_month)
        self._in_flight.add(obligation.id)
        try:
            await self._materialize(obligation, period_key, today, report, log)
        finally:
            self._in_flight.discard(obligation.id)

    async def _materialize(
        self,
        obligation: RecurringObligation,
        period_key: PeriodKey,
        today: date,
        report: ReconciliationReport,
        log,
    ) -> None:
        log = log.bind(obligation_id=obligation.id, period_key=str(period_key))
        entry = self.build_entry(obligation, period_key, today)

        # Step 1: the entry, create-if-absent
        try:
            created = await self._ledger.create_materialized(entry)
        except Exception as e:
            await self._record_failure(obligation, period_key, "create_entry", e, report, log)
            return

        # Step 2: the marker, compare-and-swap against what this pass read
        try:
            claimed = await self._obligations.mark_processed(obligation, period_key)
        except Exception as e:
            await self._record_failure(obligation, period_key, "mark_processed", e, report, log)
            return

        if claimed:
            if created:
                report.materialized.append(entry.id)
                log.info("entry_materialized", entry_id=entry.id, amount=str(entry.amount))
                await self._audit_logger.log_entry_materialized(
                    family_id=obligation.family_id,
                    obligation_id=obligation.id,
                    entry_id=entry.id,
                    period_key=str(period_key),
                    amount=str(entry.amount),
                    correlation_id=report.correlation_id,
                )
            else:
                report.recovered.append(entry.id)
                log.info("period_marker_recovered", entry_id=entry.id)
            return

        await self._resolve_lost_claim(obligation, period_key, report, log)

    async def _resolve_lost_claim(
        self,
        obligation: RecurringObligation,
        period_key: PeriodKey,
        report: ReconciliationReport,
        log,
    ) -> None:
        """The conditional write was refused; find out whether that is a problem."""
        try:
            stored = await self._obligations.get(obligation.kind, obligation.id)
        except Exception as e:
            await self._record_failure(obligation, period_key, "verify_marker", e, report, log)
            return

        if stored is not None and stored.last_processed_period == period_key:
            report.claimed_elsewhere.append(obligation.id)
            log.info("period_claimed_elsewhere")
            await self._audit_logger.log_period_claimed_elsewhere(
                family_id=obligation.family_id,
                obligation_id=obligation.id,
                period_key=str(period_key),
                correlation_id=report.correlation_id,
            )
        else:
            # Marker moved to something else under us; the next pass re-reads it
            report.skipped += 1
            log.warning(
                "period_marker_changed",
                stored=None if stored is None else stored.last_processed_period,
            )

    async def _record_failure(
        self,
        obligation: RecurringObligation,
        period_key: PeriodKey,
        stage: str,
        error: Exception,
        report: ReconciliationReport,
        log,
    ) -> None:
        report.failed.append(obligation.id)
        log.error("materialization_failed", stage=stage, error=str(error))
        await self._audit_logger.log_materialization_failed(
            family_id=obligation.family_id,
            obligation_id=obligation.id,
            period_key=str(period_key),
            stage=stage,
            error_message=str(error),
            correlation_id=report.correlation_id,
        )

"""
Audit Logger

DESIGN DECISION: Every write the engine makes on a family's behalf is logged.
This provides:
1. Traceability of entries nobody typed in
2. Debugging capability when a pass fails halfway
3. Family members can see history of what the engine did

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from moneymap.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from moneymap.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through the stdlib root logger at `level`."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and family visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("moneymap.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_reconciliation_completed(
        self,
        family_id: str,
        materialized: int,
        failed: int,
        skipped: int,
        correlation_id: UUID,
    ) -> None:
        """Log the outcome of one reconciliation pass."""
        await self.log(AuditEventBuilder.reconciliation_completed(
            family_id=family_id,
            materialized=materialized,
            failed=failed,
            skipped=skipped,
            correlation_id=correlation_id,
        ))

    async def log_entry_materialized(
        self,
        family_id: str,
        obligation_id: str,
        entry_id: str,
        period_key: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.entry_materialized(
            family_id=family_id,
            obligation_id=obligation_id,
            entry_id=entry_id,
            period_key=period_key,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_materialization_failed(
        self,
        family_id: str,
        obligation_id: str,
        period_key: str,
        stage: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.materialization_failed(
            family_id=family_id,
            obligation_id=obligation_id,
            period_key=period_key,
            stage=stage,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_period_claimed_elsewhere(
        self,
        family_id: str,
        obligation_id: str,
        period_key: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.period_claimed_elsewhere(
            family_id=family_id,
            obligation_id=obligation_id,
            period_key=period_key,
            correlation_id=correlation_id,
        ))

    async def log_obligation_changed(
        self,
        event_type: AuditEventType,
        family_id: str,
        obligation_id: str,
        kind: str,
        actor_id: Optional[str] = None,
        changes: Optional[dict] = None,
    ) -> None:
        """Log creation, edit or soft delete of a recurring obligation."""
        await self.log(AuditEventBuilder.obligation_changed(
            event_type=event_type,
            family_id=family_id,
            obligation_id=obligation_id,
            kind=kind,
            actor_id=actor_id,
            changes=changes,
        ))

    async def log_entry_changed(
        self,
        event_type: AuditEventType,
        family_id: str,
        entry_id: str,
        kind: str,
        actor_id: Optional[str] = None,
        changes: Optional[dict] = None,
    ) -> None:
        await self.log(AuditEventBuilder.entry_changed(
            event_type=event_type,
            family_id=family_id,
            entry_id=entry_id,
            kind=kind,
            actor_id=actor_id,
            changes=changes,
        ))

    async def log_goal_created(
        self,
        family_id: str,
        goal_id: str,
        amount: str,
        actor_id: str,
        deactivated: list[str],
    ) -> None:
        await self.log(AuditEventBuilder.goal_created(
            family_id=family_id,
            goal_id=goal_id,
            amount=amount,
            actor_id=actor_id,
            deactivated=deactivated,
        ))

    async def log_goal_updated(
        self,
        family_id: str,
        goal_id: str,
        amount: str,
    ) -> None:
        await self.log(AuditEventBuilder.goal_updated(
            family_id=family_id,
            goal_id=goal_id,
            amount=amount,
        ))

    async def log_goal_migrated(
        self,
        family_id: str,
        canonical_id: str,
        deactivated: list[str],
        failed: list[str],
    ) -> None:
        await self.log(AuditEventBuilder.goal_migrated(
            family_id=family_id,
            canonical_id=canonical_id,
            deactivated=deactivated,
            failed=failed,
        ))

    async def log_goal_invariant_repaired(
        self,
        family_id: str,
        canonical_id: str,
        deactivated: list[str],
    ) -> None:
        await self.log(AuditEventBuilder.goal_invariant_repaired(
            family_id=family_id,
            canonical_id=canonical_id,
            deactivated=deactivated,
        ))

    async def log_alert_raised(
        self,
        family_id: str,
        kind: str,
        key: str,
        total: str,
        limit: str,
    ) -> None:
        await self.log(AuditEventBuilder.alert_raised(
            family_id=family_id,
            kind=kind,
            key=key,
            total=total,
            limit=limit,
        ))

    async def log_thresholds_updated(
        self,
        family_id: str,
        thresholds: dict,
    ) -> None:
        await self.log(AuditEventBuilder.thresholds_updated(
            family_id=family_id,
            thresholds=thresholds,
        ))

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        family_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a storage failure that was absorbed rather than raised."""
        await self.log(AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            family_id=family_id,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        family_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            family_id=family_id,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new engine pass (e.g., one reconciliation).
    Pass it through all subsequent operations.
    """
    return uuid4()

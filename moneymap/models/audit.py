"""
Audit Models for Money Map Engine

Every write the engine performs on a family's behalf is logged for audit purposes.
This provides:
1. Traceability of entries nobody typed in (materialized obligations)
2. Debugging information when a pass fails halfway
3. A record of every goal migration and invariant repair
4. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from moneymap.models.ledger import utcnow


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each engine component has its own group of event types.
    """
    # Reconciliation
    RECONCILIATION_COMPLETED = "reconciliation_completed"
    ENTRY_MATERIALIZED = "entry_materialized"
    MATERIALIZATION_FAILED = "materialization_failed"
    PERIOD_CLAIMED_ELSEWHERE = "period_claimed_elsewhere"

    # Obligation registry
    OBLIGATION_CREATED = "obligation_created"
    OBLIGATION_UPDATED = "obligation_updated"
    OBLIGATION_DEACTIVATED = "obligation_deactivated"

    # Ledger
    ENTRY_ADDED = "entry_added"
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"

    # Savings goals
    GOAL_CREATED = "goal_created"
    GOAL_UPDATED = "goal_updated"
    GOAL_MIGRATED = "goal_migrated"
    GOAL_MIGRATION_INCOMPLETE = "goal_migration_incomplete"
    GOAL_INVARIANT_REPAIRED = "goal_invariant_repaired"

    # Notifications
    ALERT_RAISED = "alert_raised"
    THRESHOLDS_UPDATED = "thresholds_updated"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    family_id: Optional[str] = Field(
        default=None,
        description="Family workspace the event belongs to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'obligation', 'expense', 'goal')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all writes of one reconciliation pass)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "family_id": self.family_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, family_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.family_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entry_materialized(family_id, obligation_id, ...)
        event = AuditEventBuilder.goal_migrated(family_id, canonical_id, ...)
    """

    @staticmethod
    def reconciliation_completed(
        family_id: str,
        materialized: int,
        failed: int,
        skipped: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            family_id=family_id,
            entity_type="family",
            entity_id=family_id,
            correlation_id=correlation_id,
            description=f"Reconciliation pass: {materialized} materialized, {failed} failed",
            details={
                "materialized": materialized,
                "failed": failed,
                "skipped": skipped,
            },
        )

    @staticmethod
    def entry_materialized(
        family_id: str,
        obligation_id: str,
        entry_id: str,
        period_key: str,
        amount: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_MATERIALIZED,
            family_id=family_id,
            entity_type="obligation",
            entity_id=obligation_id,
            correlation_id=correlation_id,
            description=f"Recurring entry materialized for period {period_key}",
            details={
                "entry_id": entry_id,
                "period_key": period_key,
                "amount": amount,
            },
        )

    @staticmethod
    def materialization_failed(
        family_id: str,
        obligation_id: str,
        period_key: str,
        stage: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MATERIALIZATION_FAILED,
            severity=AuditSeverity.WARNING,
            family_id=family_id,
            entity_type="obligation",
            entity_id=obligation_id,
            correlation_id=correlation_id,
            description=f"Materialization failed at {stage}; will retry next pass",
            error_message=error_message,
            details={
                "period_key": period_key,
                "stage": stage,
            },
        )

    @staticmethod
    def period_claimed_elsewhere(
        family_id: str,
        obligation_id: str,
        period_key: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERIOD_CLAIMED_ELSEWHERE,
            family_id=family_id,
            entity_type="obligation",
            entity_id=obligation_id,
            correlation_id=correlation_id,
            description=f"Period {period_key} was already processed by another session",
            details={
                "period_key": period_key,
            },
        )

    @staticmethod
    def obligation_changed(
        event_type: AuditEventType,
        family_id: str,
        obligation_id: str,
        kind: str,
        actor_id: Optional[str] = None,
        changes: Optional[dict] = None
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            family_id=family_id,
            entity_type=f"recurring_{kind}",
            entity_id=obligation_id,
            description=f"Recurring {kind} {verb}",
            details={
                "actor_id": actor_id,
                "changes": changes or {},
            },
            is_user_action=True,
        )

    @staticmethod
    def entry_changed(
        event_type: AuditEventType,
        family_id: str,
        entry_id: str,
        kind: str,
        actor_id: Optional[str] = None,
        changes: Optional[dict] = None
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            family_id=family_id,
            entity_type=kind,
            entity_id=entry_id,
            description=f"{kind.capitalize()} {verb}",
            details={
                "actor_id": actor_id,
                "changes": changes or {},
            },
            is_user_action=True,
        )

    @staticmethod
    def goal_created(
        family_id: str,
        goal_id: str,
        amount: str,
        actor_id: str,
        deactivated: list[str]
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_CREATED,
            family_id=family_id,
            entity_type="goal",
            entity_id=goal_id,
            description=f"Savings goal set to {amount}",
            details={
                "amount": amount,
                "actor_id": actor_id,
                "deactivated": deactivated,
            },
            is_user_action=True,
        )

    @staticmethod
    def goal_updated(
        family_id: str,
        goal_id: str,
        amount: str
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_UPDATED,
            family_id=family_id,
            entity_type="goal",
            entity_id=goal_id,
            description=f"Savings goal amount changed to {amount}",
            details={
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def goal_migrated(
        family_id: str,
        canonical_id: str,
        deactivated: list[str],
        failed: list[str]
    ) -> AuditEvent:
        complete = not failed
        return AuditEvent(
            event_type=(
                AuditEventType.GOAL_MIGRATED
                if complete
                else AuditEventType.GOAL_MIGRATION_INCOMPLETE
            ),
            severity=AuditSeverity.INFO if complete else AuditSeverity.WARNING,
            family_id=family_id,
            entity_type="goal",
            entity_id=canonical_id,
            description=(
                "Legacy savings goals migrated"
                if complete
                else f"Legacy goal migration incomplete ({len(failed)} writes failed)"
            ),
            details={
                "canonical_id": canonical_id,
                "deactivated": deactivated,
                "failed": failed,
            },
        )

    @staticmethod
    def goal_invariant_repaired(
        family_id: str,
        canonical_id: str,
        deactivated: list[str]
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_INVARIANT_REPAIRED,
            severity=AuditSeverity.WARNING,
            family_id=family_id,
            entity_type="goal",
            entity_id=canonical_id,
            description=f"Found {len(deactivated) + 1} active goals; kept the most recent",
            details={
                "canonical_id": canonical_id,
                "deactivated": deactivated,
            },
        )

    @staticmethod
    def alert_raised(
        family_id: str,
        kind: str,
        key: str,
        total: str,
        limit: str
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALERT_RAISED,
            family_id=family_id,
            entity_type="alert",
            entity_id=key,
            description=f"Spending alert: {kind}",
            details={
                "kind": kind,
                "total": total,
                "limit": limit,
            },
        )

    @staticmethod
    def thresholds_updated(
        family_id: str,
        thresholds: dict
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.THRESHOLDS_UPDATED,
            family_id=family_id,
            entity_type="settings",
            entity_id=family_id,
            description="Notification thresholds updated",
            details=thresholds,
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        family_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            family_id=family_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        family_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            family_id=family_id,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={
                "operation": operation,
            },
            correlation_id=correlation_id,
        )

"""
Savings Goal Manager

Keeps exactly one active savings goal per family, on top of a collection
that has been through two schemas.

DESIGN DECISION: Every read converges. Whatever state the collection is in
(one active goal, several, or only legacy records without the flag), the
same deterministic choice is made: the goal with the latest createdAt wins,
missing createdAt sorts oldest, and ties go to the larger id. Repairs are
idempotent, so a half-finished repair is simply redone on the next read.
"""

from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import structlog
from pydantic import ValidationError

from moneymap.audit import AuditLogger
from moneymap.models.ledger import SavingsGoal, utcnow
from moneymap.services.storage import Document, DocumentStore, NotFoundError, Query
from moneymap.validation import InputValidator, ensure_valid, parse_amount


logger = structlog.get_logger(__name__)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def selection_key(goal: SavingsGoal) -> tuple[datetime, str]:
    """Sort key for choosing the canonical goal; the max wins."""
    created_at = goal.created_at
    if created_at is None:
        created_at = _OLDEST
    elif created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at, goal.id


def choose_canonical(goals: list[SavingsGoal]) -> SavingsGoal:
    return max(goals, key=selection_key)


def parse_goals(documents: list[Document]) -> list[SavingsGoal]:
    goals = []
    for document in documents:
        try:
            goals.append(SavingsGoal.from_document(document))
        except ValidationError as e:
            logger.warning("goal_document_skipped", doc_id=document.get("id"), error=str(e))
    return goals


class SavingsGoalManager:
    """
    Reads and writes a family's savings goal.

    The migrated-families set lives on the instance, so "at most one
    successful migration per family" holds per session.
    """

    def __init__(
        self,
        store: DocumentStore,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[InputValidator] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger or AuditLogger()
        self._validator = validator or InputValidator()
        self._migrated: set[str] = set()

    def is_migrated(self, family_id: str) -> bool:
        return family_id in self._migrated

    @staticmethod
    def active_query(family_id: str) -> Query:
        return Query.where(
            SavingsGoal.collection,
            familyId=family_id,
            active=True,
        ).ordered("createdAt", descending=True)

    async def list_goals(self, family_id: str) -> list[SavingsGoal]:
        """Every goal record of the family, active or not, in any schema."""
        documents = await self._store.query(Query.where(SavingsGoal.collection, familyId=family_id))
        return parse_goals(documents)

    async def get_current_goal(self, family_id: str) -> Optional[SavingsGoal]:
        """
        The family's single active goal, repairing the collection if needed.

        Returns:
            The active goal, or None if the family never set one
        """
        try:
            active = parse_goals(await self._store.query(self.active_query(family_id)))
        except Exception as e:
            # e.g. the hosted store lacks the composite index for this query
            logger.warning("active_goal_query_failed", family_id=family_id, error=str(e))
            return await self._from_full_scan(family_id)

        if len(active) == 1:
            return active[0]
        if active:
            return await self.converge(family_id, active)
        if family_id in self._migrated:
            return None
        return await self.migrate(family_id)

    async def _from_full_scan(self, family_id: str) -> Optional[SavingsGoal]:
        goals = await self.list_goals(family_id)
        active = [g for g in goals if g.is_active]
        if len(active) == 1:
            return active[0]
        if active:
            return await self.converge(family_id, active)
        if family_id in self._migrated:
            return None
        return await self.migrate(family_id, goals)

    async def converge(self, family_id: str, active: list[SavingsGoal]) -> SavingsGoal:
        """Several goals claim to be active: keep the canonical one, deactivate the rest."""
        canonical = choose_canonical(active)
        deactivated = []
        for goal in active:
            if goal.id == canonical.id:
                continue
            try:
                await self._store.update(SavingsGoal.collection, goal.id, {"active": False})
                deactivated.append(goal.id)
            except Exception as e:
                logger.error("goal_deactivation_failed", family_id=family_id, goal_id=goal.id, error=str(e))

        logger.warning(
            "multiple_active_goals",
            family_id=family_id,
            canonical_id=canonical.id,
            deactivated=deactivated,
        )
        await self._audit_logger.log_goal_invariant_repaired(
            family_id=family_id,
            canonical_id=canonical.id,
            deactivated=deactivated,
        )
        return canonical

    async def migrate(
        self,
        family_id: str,
        goals: Optional[list[SavingsGoal]] = None,
    ) -> Optional[SavingsGoal]:
        """
        Bring legacy goal records into the current schema.

        The canonical record becomes active and every other record inactive.
        Each write is independent; if any fails the family is not marked
        migrated, and the next call makes the same choice and finishes the job.

        Returns:
            The canonical goal, or None if the family has no goal records
        """
        if goals is None:
            goals = await self.list_goals(family_id)
        if not goals:
            return None

        canonical = choose_canonical(goals)
        deactivated: list[str] = []
        failed: list[str] = []

        # The active query orders by createdAt and never returns records without it
        stamp = canonical.created_at is None

        for goal in goals:
            wanted = goal.id == canonical.id
            patch: dict[str, Any] = {"active": wanted}
            if wanted and stamp:
                canonical = canonical.model_copy(update={"created_at": utcnow()})
                patch["createdAt"] = canonical.created_at.isoformat()
            elif goal.active is wanted:
                continue
            try:
                await self._store.update(SavingsGoal.collection, goal.id, patch)
                if not wanted:
                    deactivated.append(goal.id)
            except Exception as e:
                failed.append(goal.id)
                logger.error("goal_migration_write_failed", family_id=family_id, goal_id=goal.id, error=str(e))

        if not failed:
            self._migrated.add(family_id)

        if deactivated or failed or canonical.active is not True:
            await self._audit_logger.log_goal_migrated(
                family_id=family_id,
                canonical_id=canonical.id,
                deactivated=deactivated,
                failed=failed,
            )
        logger.info(
            "goal_migration_finished",
            family_id=family_id,
            canonical_id=canonical.id,
            records=len(goals),
            failed=len(failed),
        )
        return canonical.model_copy(update={"active": True})

    async def set_goal(self, family_id: str, amount: Any, actor_id: str) -> SavingsGoal:
        """
        Replace the family's goal with a new active one.

        Previous active goals are deactivated BEFORE the new one is written;
        if a deactivation fails, nothing is created.

        Raises:
            InvalidInputError: If the amount is invalid
        """
        ensure_valid(self._validator.validate_goal_amount(amount))

        documents = await self._store.query(
            Query.where(SavingsGoal.collection, familyId=family_id, active=True)
        )
        deactivated = []
        for document in documents:
            await self._store.update(SavingsGoal.collection, document["id"], {"active": False})
            deactivated.append(document["id"])

        goal = SavingsGoal(
            family_id=family_id,
            amount=parse_amount(amount),
            active=True,
            created_by=actor_id,
            created_at=utcnow(),
        )
        await self._store.create(goal.collection, goal.to_document(), doc_id=goal.id)
        # A family that sets a goal has nothing left to migrate
        self._migrated.add(family_id)

        await self._audit_logger.log_goal_created(
            family_id=family_id,
            goal_id=goal.id,
            amount=str(goal.amount),
            actor_id=actor_id,
            deactivated=deactivated,
        )
        return goal

    async def update_goal_amount(self, goal_id: str, amount: Any) -> SavingsGoal:
        """
        Change the amount of an existing goal in place.

        Raises:
            InvalidInputError: If the amount is invalid
            NotFoundError: If the goal doesn't exist
        """
        ensure_valid(self._validator.validate_goal_amount(amount))
        value = parse_amount(amount)

        if await self._store.get(SavingsGoal.collection, goal_id) is None:
            raise NotFoundError(f"Savings goal not found: {goal_id}")
        document = await self._store.update(SavingsGoal.collection, goal_id, {"amount": str(value)})
        goal = SavingsGoal.from_document(document)

        await self._audit_logger.log_goal_updated(
            family_id=goal.family_id,
            goal_id=goal.id,
            amount=str(goal.amount),
        )
        return goal

    async def watch_current_goal(self, family_id: str) -> AsyncIterator[Optional[SavingsGoal]]:
        """
        Yield the current goal every time the active set changes.

        Read-only: if several goals are active the canonical one is yielded,
        and the repair is left to get_current_goal().
        """
        async for snapshot in self._store.subscribe(self.active_query(family_id)):
            active = parse_goals(snapshot.documents)
            yield choose_canonical(active) if active else None

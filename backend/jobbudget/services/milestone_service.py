# Overview: Service-layer operations for milestones; forward-only status machine plus budget completion trigger.

"""
Milestone State Machine

    PENDING -> IN_PROGRESS -> COMPLETED

RULES:
1. Transitions may skip ahead or repeat the current status; they never go back
2. Entering COMPLETED stamps completed_at / completed_by_user_id
3. COMPLETED milestones cannot be deleted, and only their notes stay editable
4. Every status change or delete re-checks budget completion in the SAME
   transaction, so the check always sees the just-written milestone set
5. Status only changes through update_status(); update() rejects it
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func

from ..errors import (
    BudgetNotFound,
    CannotDeleteCompleted,
    CannotModifyCompleted,
    InvalidTransition,
    MilestoneNotFound,
    ValidationError,
)
from ..models import Budget, Milestone, MilestoneStatus
from ..models.budgets import money_str
from ..time_utils import utcnow
from ..validation import (
    MILESTONE_POLICY,
    coerce_enum,
    enforce_rules_milestone,
    validate_payload,
)
from .base import BaseService
from .concurrency import lock_for_update
from .event_service import (
    BudgetCompleted,
    MilestoneCreated,
    MilestoneDeleted,
    MilestoneStatusChanged,
    MilestoneUpdated,
)


logger = logging.getLogger(__name__)

# Editable after COMPLETED
_POST_COMPLETION_FIELDS = {"notes"}


def status_rank(status: MilestoneStatus | str) -> int:
    member = coerce_enum(MilestoneStatus, status, "status")
    return list(MilestoneStatus).index(member)


def can_transition(current: MilestoneStatus | str, new: MilestoneStatus | str) -> bool:
    return status_rank(new) >= status_rank(current)


def validate_status(current: MilestoneStatus | str, new: MilestoneStatus | str) -> MilestoneStatus:
    """Return the target status, or raise InvalidTransition on regression."""
    target = coerce_enum(MilestoneStatus, new, "status")
    if not can_transition(current, target):
        current_value = coerce_enum(MilestoneStatus, current, "status").value
        raise InvalidTransition(f"Invalid status transition from {current_value} to {target.value}")
    return target


class MilestoneService(BaseService):

    def __init__(self, session, budgets, **kwargs):
        super().__init__(session, **kwargs)
        self.budgets = budgets

    def _milestone(self, milestone_id: int, *, for_update: bool = False) -> Milestone:
        q = self.session.query(Milestone).filter_by(id=milestone_id)
        if for_update:
            q = lock_for_update(q)
        milestone = q.first()
        if milestone is None:
            raise MilestoneNotFound(f"Milestone {milestone_id} not found")
        return milestone

    def get(self, milestone_id: int) -> Milestone:
        return self._milestone(milestone_id)

    def _other_milestones_total(self, budget_id: int, exclude_id: int | None = None) -> Decimal:
        q = self.session.query(func.coalesce(func.sum(Milestone.amount), 0)).filter(Milestone.budget_id == budget_id)
        if exclude_id is not None:
            q = q.filter(Milestone.id != exclude_id)
        return Decimal(str(q.scalar()))

    def _check_total(self, budget: Budget, amount: Decimal, exclude_id: int | None = None) -> None:
        self.budgets.currencies.require_precision(amount, budget.currency, "Milestone amount")
        if self._other_milestones_total(budget.id, exclude_id) + amount > Decimal(budget.amount):
            raise ValidationError("Total milestone amount cannot exceed budget amount")

    def _after_completion_check(self, result: tuple, actor_id: int) -> None:
        milestone, budget, completed, count = result
        if not completed:
            return
        self._emit(budget.job_id, BudgetCompleted(budget_id=budget.id, milestone_count=count), actor_id)
        self._notify("BUDGET_COMPLETED", job_id=budget.job_id, user_id=budget.created_by_user_id, data={
            "budget_id": budget.id,
            "amount": money_str(budget.amount),
            "currency": budget.currency,
        })

    def _completion_check(self, budget_id: int) -> tuple[bool, int]:
        completed = self.budgets.check_completion(budget_id)
        count = self.session.query(Milestone).filter_by(budget_id=budget_id).count() if completed else 0
        return completed, count

    # =========================================================================
    # Mutations
    # =========================================================================

    def create(self, budget_id: int, data: dict, created_by: int) -> Milestone:
        patch = validate_payload(model=Milestone, payload=data, policy=MILESTONE_POLICY, partial=False)
        enforce_rules_milestone(patch)

        def _op():
            budget = lock_for_update(self.session.query(Budget).filter_by(id=budget_id)).first()
            if budget is None:
                raise BudgetNotFound(f"Budget {budget_id} not found")
            self._check_total(budget, patch["amount"])

            milestone = Milestone(budget_id=budget.id, status=MilestoneStatus.PENDING.value, **patch)
            self.session.add(milestone)
            self.session.flush()
            return milestone, budget

        milestone, budget = self._transaction(_op)
        logger.info("Milestone %s created on budget %s by user %s", milestone.id, budget_id, created_by)

        self._emit(budget.job_id, MilestoneCreated(
            budget_id=budget.id,
            milestone_id=milestone.id,
            name=milestone.name,
            amount=Decimal(milestone.amount),
            percentage=Decimal(milestone.percentage or 0),
        ), created_by)
        self._notify("MILESTONE_CREATED", job_id=budget.job_id, user_id=budget.created_by_user_id, data={
            "budget_id": budget.id,
            "milestone_id": milestone.id,
            "milestone_name": milestone.name,
            "amount": money_str(milestone.amount),
        })
        return milestone

    def update(self, milestone_id: int, data: dict, updated_by: int) -> Milestone:
        """
        Edit milestone fields. Status is not accepted here.

        On a COMPLETED milestone only notes may change.
        """
        if isinstance(data, dict) and "status" in data:
            raise ValidationError("Use update_status to change milestone status")
        patch = validate_payload(model=Milestone, payload=data, policy=MILESTONE_POLICY, partial=True)
        enforce_rules_milestone(patch)

        def _op():
            milestone = self._milestone(milestone_id, for_update=True)
            budget = milestone.budget

            if milestone.status == MilestoneStatus.COMPLETED.value:
                frozen = sorted(set(patch) - _POST_COMPLETION_FIELDS)
                if frozen:
                    raise CannotModifyCompleted(
                        f"Cannot modify {', '.join(frozen)} on a completed milestone"
                    )

            if "amount" in patch:
                self._check_total(budget, patch["amount"], exclude_id=milestone.id)

            for key, value in patch.items():
                setattr(milestone, key, value)
            self.session.flush()

            completed, count = self._completion_check(budget.id)
            return milestone, budget, completed, count

        result = self._transaction(_op)
        milestone, budget = result[0], result[1]
        logger.info("Milestone %s updated by user %s", milestone.id, updated_by)

        self._emit(budget.job_id, MilestoneUpdated(
            budget_id=budget.id,
            milestone_id=milestone.id,
            changed_fields=tuple(sorted(patch.keys())),
        ), updated_by)
        self._notify("MILESTONE_UPDATED", job_id=budget.job_id, user_id=budget.created_by_user_id, data={
            "budget_id": budget.id,
            "milestone_id": milestone.id,
            "milestone_name": milestone.name,
        })
        self._after_completion_check(result, updated_by)
        return milestone

    def update_status(self, milestone_id: int, new_status, updated_by: int, reason: str | None = None) -> Milestone:
        if reason is not None and not isinstance(reason, str):
            raise ValidationError("reason must be a string")
        reason = (reason or "").strip() or None

        def _op():
            milestone = self._milestone(milestone_id, for_update=True)
            old_status = milestone.status
            target = validate_status(old_status, new_status)

            milestone.status = target.value
            if target is MilestoneStatus.COMPLETED and old_status != MilestoneStatus.COMPLETED.value:
                milestone.completed_at = utcnow()
                milestone.completed_by_user_id = updated_by
            if reason:
                entry = f"Status Update: {target.value} - {reason}"
                milestone.notes = f"{milestone.notes}\n\n{entry}" if milestone.notes else entry
            self.session.flush()

            budget = milestone.budget
            completed, count = self._completion_check(budget.id)
            return (milestone, budget, completed, count), old_status

        result, old_status = self._transaction(_op)
        milestone, budget = result[0], result[1]
        logger.info(
            "Milestone %s status %s -> %s by user %s", milestone.id, old_status, milestone.status, updated_by,
        )

        self._emit(budget.job_id, MilestoneStatusChanged(
            budget_id=budget.id,
            milestone_id=milestone.id,
            old_status=old_status,
            new_status=milestone.status,
            reason=reason,
        ), updated_by)
        kind = (
            "MILESTONE_COMPLETED"
            if milestone.status == MilestoneStatus.COMPLETED.value and old_status != milestone.status
            else "MILESTONE_STATUS_UPDATED"
        )
        self._notify(kind, job_id=budget.job_id, user_id=budget.created_by_user_id, data={
            "budget_id": budget.id,
            "milestone_id": milestone.id,
            "milestone_name": milestone.name,
            "status": milestone.status,
        })
        self._after_completion_check(result, updated_by)
        return milestone

    def delete(self, milestone_id: int, deleted_by: int) -> None:
        def _op():
            milestone = self._milestone(milestone_id, for_update=True)
            if milestone.status == MilestoneStatus.COMPLETED.value:
                raise CannotDeleteCompleted("Cannot delete completed milestone")

            budget = milestone.budget
            info = (milestone.id, milestone.name)
            budget.milestones.remove(milestone)
            self.session.flush()

            completed, count = self._completion_check(budget.id)
            return (info, budget, completed, count)

        result = self._transaction(_op)
        (deleted_id, name), budget = result[0], result[1]
        logger.info("Milestone %s deleted from budget %s by user %s", deleted_id, budget.id, deleted_by)

        self._emit(budget.job_id, MilestoneDeleted(
            budget_id=budget.id,
            milestone_id=deleted_id,
            name=name,
        ), deleted_by)
        self._notify("MILESTONE_DELETED", job_id=budget.job_id, user_id=budget.created_by_user_id, data={
            "budget_id": budget.id,
            "milestone_id": deleted_id,
            "milestone_name": name,
        })
        self._after_completion_check(result, deleted_by)

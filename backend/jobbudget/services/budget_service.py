# Overview: Service-layer operations for job budgets; create/update/delete, completion check, and summary projections.

"""
Budget Aggregate

WHY: A job's budget, its milestones and its payments change together. This
service owns the aggregate root and every rule that spans more than one of
its rows.

LIFECYCLE:
    ACTIVE ──(all milestones COMPLETED)──> COMPLETED

- COMPLETED is reached only through check_completion(), always inside the
  transaction of the milestone change that triggered it.
- COMPLETED is terminal: adding, replacing or deleting milestones later does
  not move the budget back to ACTIVE.

MILESTONE REPLACEMENT:
update(..., {"milestones": [...]}) deletes the current set and inserts the new
one in the same transaction as the field changes. If any step fails the old
set is untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from ..errors import (
    BudgetAlreadyExists,
    BudgetNotFound,
    CannotDeleteCompleted,
    ValidationError,
)
from ..models import Budget, BudgetStatus, BudgetType, Milestone, MilestoneStatus, Payment
from ..models.budgets import money_str
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    BUDGET_POLICY,
    clean_milestone_item,
    coerce_enum,
    enforce_rules_budget,
    normalize_currency_code,
    to_decimal,
    validate_payload,
)
from .base import BaseService
from .concurrency import lock_for_update
from .event_service import BudgetCreated, BudgetDeleted, BudgetUpdated


logger = logging.getLogger(__name__)

DEFAULT_BUDGET_CURRENCY = "USD"
DEFAULT_MAX_AMOUNT = Decimal("1000000")


@dataclass(frozen=True)
class BudgetSummary:
    """Read-only projection of one budget; never written back."""
    budget_id: int
    job_id: int
    type: str
    status: str
    amount: Decimal
    currency: str
    milestone_count: int
    completed_milestones: int
    total_paid: Decimal
    total_pending: Decimal
    remaining_amount: Decimal
    percent_paid: Decimal
    budget_health: str
    next_due_milestone: dict | None
    created_at: datetime | None
    updated_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "budget_id": self.budget_id,
            "job_id": self.job_id,
            "type": self.type,
            "status": self.status,
            "amount": money_str(self.amount),
            "currency": self.currency,
            "milestone_count": self.milestone_count,
            "completed_milestones": self.completed_milestones,
            "total_paid": money_str(self.total_paid),
            "total_pending": money_str(self.total_pending),
            "remaining_amount": money_str(self.remaining_amount),
            "percent_paid": money_str(self.percent_paid),
            "budget_health": self.budget_health,
            "next_due_milestone": self.next_due_milestone,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


def summarize(budget: Budget) -> BudgetSummary:
    metrics = budget.metrics()

    open_with_due = [
        m for m in budget.milestones
        if m.status != MilestoneStatus.COMPLETED.value and m.due_date is not None
    ]
    next_due = min(open_with_due, key=lambda m: (m.due_date, m.id), default=None)

    return BudgetSummary(
        budget_id=budget.id,
        job_id=budget.job_id,
        type=budget.type,
        status=budget.status,
        amount=Decimal(budget.amount),
        currency=budget.currency,
        milestone_count=metrics["milestone_progress"]["total"],
        completed_milestones=metrics["milestone_progress"]["completed"],
        total_paid=Decimal(metrics["total_paid"]),
        total_pending=Decimal(metrics["total_pending"]),
        remaining_amount=Decimal(metrics["remaining_amount"]),
        percent_paid=Decimal(metrics["percent_paid"]),
        budget_health=metrics["budget_health"],
        next_due_milestone=(
            {
                "id": next_due.id,
                "name": next_due.name,
                "amount": money_str(next_due.amount),
                "status": next_due.status,
                "due_date": to_utc_z(next_due.due_date),
            }
            if next_due is not None else None
        ),
        created_at=budget.created_at,
        updated_at=budget.updated_at,
    )


class BudgetService(BaseService):

    def __init__(self, session, currencies, *, max_amount=DEFAULT_MAX_AMOUNT, **kwargs):
        super().__init__(session, **kwargs)
        self.currencies = currencies
        self.max_amount = to_decimal(max_amount, "BUDGET_MAX_AMOUNT")

    # =========================================================================
    # Lookups
    # =========================================================================

    def _budget_for_job(self, job_id: int, *, for_update: bool = False) -> Budget:
        q = self.session.query(Budget).filter_by(job_id=job_id)
        if for_update:
            q = lock_for_update(q)
        budget = q.first()
        if budget is None:
            raise BudgetNotFound(f"Budget not found for job {job_id}")
        return budget

    def get_by_job(self, job_id: int) -> Budget:
        """Budget with milestones oldest-first and payments newest-first."""
        return self._budget_for_job(job_id)

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if budget is None:
            raise BudgetNotFound(f"Budget {budget_id} not found")
        return budget

    # =========================================================================
    # Validation helpers
    # =========================================================================

    def _check_amount_for_currency(self, amount: Decimal, currency_code: str) -> None:
        enforce_rules_budget({"amount": amount}, max_amount=self.max_amount)
        self.currencies.require_precision(amount, currency_code)

    def _clean_milestones(self, items, budget_amount: Decimal, currency_code: str) -> list[dict]:
        if not isinstance(items, (list, tuple)):
            raise ValidationError("milestones must be a list")

        cleaned = [clean_milestone_item(item, i) for i, item in enumerate(items, start=1)]
        for m in cleaned:
            self.currencies.require_precision(m["amount"], currency_code, f"Milestone \"{m['name']}\" amount")
        total = sum((m["amount"] for m in cleaned), Decimal("0"))
        if total > budget_amount:
            raise ValidationError("Total milestone amount cannot exceed budget amount")
        return cleaned

    # =========================================================================
    # Mutations
    # =========================================================================

    def create(self, job_id: int, data: dict, created_by: int) -> Budget:
        """
        Create the budget for a job, with optional initial milestones.

        The budget starts ACTIVE and is approved by its creator.
        """
        if not isinstance(data, dict):
            raise ValidationError("Invalid payload")
        payload = dict(data)
        milestone_items = payload.pop("milestones", None)

        patch = validate_payload(model=Budget, payload=payload, policy=BUDGET_POLICY, partial=False)
        patch["type"] = coerce_enum(BudgetType, patch["type"], "type").value
        patch["currency"] = self.currencies.get_active_currency(
            patch.get("currency") or DEFAULT_BUDGET_CURRENCY
        ).code

        enforce_rules_budget(patch, max_amount=self.max_amount)
        self._check_amount_for_currency(patch["amount"], patch["currency"])
        if patch["type"] == BudgetType.HOURLY.value and not patch.get("estimated_hours"):
            raise ValidationError("Estimated hours are required for hourly budgets")

        milestones = self._clean_milestones(milestone_items or [], patch["amount"], patch["currency"])

        def _op():
            if self.session.query(Budget.id).filter_by(job_id=job_id).first() is not None:
                raise BudgetAlreadyExists(f"Budget already exists for job {job_id}")

            now = utcnow()
            budget = Budget(
                job_id=job_id,
                status=BudgetStatus.ACTIVE.value,
                created_by_user_id=created_by,
                approved_by_user_id=created_by,
                approved_at=now,
                **patch,
            )
            self.session.add(budget)
            self.session.flush()

            for fields in milestones:
                self.session.add(Milestone(
                    budget_id=budget.id,
                    status=MilestoneStatus.PENDING.value,
                    **fields,
                ))
            self.session.flush()
            return budget

        budget = self._transaction(_op)
        logger.info("Budget %s created for job %s by user %s", budget.id, job_id, created_by)

        self._emit(job_id, BudgetCreated(
            budget_id=budget.id,
            amount=Decimal(budget.amount),
            currency=budget.currency,
            budget_type=budget.type,
            milestone_count=len(milestones),
        ), created_by)
        self._notify("BUDGET_CREATED", job_id=job_id, user_id=created_by, data={
            "budget_id": budget.id,
            "amount": money_str(budget.amount),
            "currency": budget.currency,
        })
        return budget

    def update(self, job_id: int, patch: dict, updated_by: int) -> Budget:
        """
        Apply a partial update; a `milestones` key replaces the whole set.

        Replacement refuses to drop milestones that already carry payments
        or are COMPLETED.
        """
        if not isinstance(patch, dict):
            raise ValidationError("Invalid payload")
        if "status" in patch:
            raise ValidationError("Budget status cannot be set directly")

        payload = dict(patch)
        replace_milestones = "milestones" in payload
        milestone_items = payload.pop("milestones", None)

        cleaned = validate_payload(model=Budget, payload=payload, policy=BUDGET_POLICY, partial=True)
        if "type" in cleaned:
            cleaned["type"] = coerce_enum(BudgetType, cleaned["type"], "type").value
        if "currency" in cleaned:
            cleaned["currency"] = self.currencies.get_active_currency(cleaned["currency"]).code
        enforce_rules_budget(cleaned, max_amount=self.max_amount)

        def _op():
            budget = self._budget_for_job(job_id, for_update=True)

            if "amount" in cleaned or "currency" in cleaned:
                self._check_amount_for_currency(
                    Decimal(cleaned.get("amount", budget.amount)),
                    cleaned.get("currency", budget.currency),
                )

            new_type = cleaned.get("type", budget.type)
            hours = cleaned.get("estimated_hours", budget.estimated_hours)
            if new_type == BudgetType.HOURLY.value and not hours:
                raise ValidationError("Estimated hours are required for hourly budgets")

            for key, value in cleaned.items():
                setattr(budget, key, value)

            amount = Decimal(budget.amount)
            if replace_milestones:
                new_set = self._clean_milestones(milestone_items or [], amount, budget.currency)
                self._replace_milestones(budget, new_set)
            elif "amount" in cleaned or "currency" in cleaned:
                self._check_kept_milestones(budget, amount)

            self.session.flush()
            return budget

        budget = self._transaction(_op)
        logger.info("Budget %s for job %s updated by user %s", budget.id, job_id, updated_by)

        self._emit(job_id, BudgetUpdated(
            budget_id=budget.id,
            changed_fields=tuple(sorted(cleaned.keys())),
            milestones_replaced=replace_milestones,
        ), updated_by)
        self._notify("BUDGET_UPDATED", job_id=job_id, user_id=budget.created_by_user_id, data={
            "budget_id": budget.id,
            "amount": money_str(budget.amount),
            "currency": budget.currency,
        })
        return budget

    def _check_kept_milestones(self, budget: Budget, amount: Decimal) -> None:
        """Existing milestones must still fit the new amount and currency."""
        total = Decimal("0")
        for m in budget.milestones:
            self.currencies.require_precision(m.amount, budget.currency, f"Milestone \"{m.name}\" amount")
            total += Decimal(m.amount)
        if total > amount:
            raise ValidationError(
                f"Budget amount {money_str(amount)} is below the milestone total {money_str(total)}"
            )

    def _replace_milestones(self, budget: Budget, new_set: list[dict]) -> None:
        existing = lock_for_update(
            self.session.query(Milestone).filter_by(budget_id=budget.id)
        ).all()

        ids = [m.id for m in existing]
        if ids:
            paid = self.session.query(Payment.id).filter(Payment.milestone_id.in_(ids)).first()
            if paid is not None:
                raise ValidationError("Cannot replace milestones that already have payments")
        if any(m.status == MilestoneStatus.COMPLETED.value for m in existing):
            raise CannotDeleteCompleted("Cannot replace a milestone set that contains completed milestones")

        for m in existing:
            budget.milestones.remove(m)
        self.session.flush()

        for fields in new_set:
            budget.milestones.append(Milestone(status=MilestoneStatus.PENDING.value, **fields))

    def delete(self, job_id: int, deleted_by: int) -> None:
        """Delete the budget; milestones and payments go with it."""
        def _op():
            budget = self._budget_for_job(job_id, for_update=True)
            budget_id = budget.id
            self.session.delete(budget)
            self.session.flush()
            return budget_id

        budget_id = self._transaction(_op)
        logger.info("Budget %s for job %s deleted by user %s", budget_id, job_id, deleted_by)
        self._emit(job_id, BudgetDeleted(budget_id=budget_id), deleted_by)

    def check_completion(self, budget_id: int) -> bool:
        """
        Mark the budget COMPLETED once every milestone is COMPLETED.

        Must be called inside the caller's transaction (no commit here).
        Returns True only on the ACTIVE -> COMPLETED edge; calling it again is
        a no-op.
        """
        self.session.flush()
        budget = self.session.get(Budget, budget_id)
        if budget is None or budget.status == BudgetStatus.COMPLETED.value:
            return False

        statuses = [
            s for (s,) in self.session.query(Milestone.status).filter_by(budget_id=budget_id).all()
        ]
        if not statuses or any(s != MilestoneStatus.COMPLETED.value for s in statuses):
            return False

        budget.status = BudgetStatus.COMPLETED.value
        budget.completed_at = utcnow()
        self.session.flush()
        logger.info("Budget %s completed (%d milestones)", budget_id, len(statuses))
        return True

    # =========================================================================
    # Projections (read-only)
    # =========================================================================

    def summary(self, job_id: int) -> BudgetSummary:
        return summarize(self._budget_for_job(job_id))

    def list_for_user(self, user_id: int) -> list[BudgetSummary]:
        rows = (
            self.session.query(Budget)
            .filter_by(created_by_user_id=user_id)
            .order_by(Budget.id.desc())
            .all()
        )
        return [summarize(b) for b in rows]

    def list_all(self, *, status: str | None = None) -> list[BudgetSummary]:
        q = self.session.query(Budget)
        if status is not None:
            q = q.filter_by(status=coerce_enum(BudgetStatus, status, "status").value)
        return [summarize(b) for b in q.order_by(Budget.id.desc()).all()]

# Overview: Service-layer operations for payments; milestone and budget-level payments, and status updates.

"""
Payment Processor

WHY: Payments record money owed or moved against a budget. Creating a
payment does not move money; it records a PENDING intent that a later
update_status() marks COMPLETED or FAILED.

RULES:
1. Milestone payments require a COMPLETED milestone
2. A milestone payment cannot exceed the milestone amount
3. amount > 0, currency active (defaults to the budget currency)
4. All checks happen before anything is written
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..errors import (
    BudgetNotFound,
    InvalidAmount,
    MilestoneNotCompleted,
    MilestoneNotFound,
    PaymentNotFound,
    ValidationError,
)
from ..models import Budget, Milestone, MilestoneStatus, Payment, PaymentStatus, PaymentType
from ..models.budgets import money_str
from ..time_utils import utcnow
from ..validation import PAYMENT_POLICY, coerce_enum, validate_payload
from .base import BaseService
from .concurrency import lock_for_update
from .event_service import PaymentCreated, PaymentStatusChanged


logger = logging.getLogger(__name__)

MAX_FAILURE_REASON_LENGTH = 255


class PaymentService(BaseService):

    def __init__(self, session, currencies, **kwargs):
        super().__init__(session, **kwargs)
        self.currencies = currencies

    def get(self, payment_id: int) -> Payment:
        payment = self.session.get(Payment, payment_id)
        if payment is None:
            raise PaymentNotFound(f"Payment {payment_id} not found")
        return payment

    def _clean(self, payment_data: dict) -> dict:
        patch = validate_payload(model=Payment, payload=payment_data, policy=PAYMENT_POLICY, partial=False)
        if patch["amount"] <= 0:
            raise InvalidAmount("Payment amount must be greater than 0")
        return patch

    def _resolve_currency(self, patch: dict, default_currency: str) -> dict:
        patch["currency"] = self.currencies.get_active_currency(
            patch.get("currency") or default_currency
        ).code
        if not self.currencies.has_valid_precision(patch["amount"], patch["currency"]):
            raise InvalidAmount(f"Amount {patch['amount']} is not valid for {patch['currency']}")
        return patch

    def _created(self, payment: Payment, budget: Budget, processed_by: int) -> None:
        logger.info(
            "Payment %s (%s %s %s) created on budget %s by user %s",
            payment.id, payment.payment_type, payment.currency, payment.amount, budget.id, processed_by,
        )
        self._emit(budget.job_id, PaymentCreated(
            budget_id=budget.id,
            payment_id=payment.id,
            amount=Decimal(payment.amount),
            currency=payment.currency,
            payment_type=payment.payment_type,
            milestone_id=payment.milestone_id,
        ), processed_by)
        self._notify("PAYMENT_CREATED", job_id=budget.job_id, user_id=budget.created_by_user_id, data={
            "budget_id": budget.id,
            "payment_id": payment.id,
            "amount": money_str(payment.amount),
            "currency": payment.currency,
        })

    def process_for_milestone(self, milestone_id: int, payment_data: dict, processed_by: int) -> Payment:
        def _op():
            milestone = lock_for_update(self.session.query(Milestone).filter_by(id=milestone_id)).first()
            if milestone is None:
                raise MilestoneNotFound(f"Milestone {milestone_id} not found")
            if milestone.status != MilestoneStatus.COMPLETED.value:
                raise MilestoneNotCompleted("Payment can only be processed for completed milestones")

            budget = milestone.budget
            data = dict(payment_data) if isinstance(payment_data, dict) else payment_data
            requested = data.pop("payment_type", None) if isinstance(data, dict) else None
            if requested is not None:
                if coerce_enum(PaymentType, requested, "payment_type") is not PaymentType.MILESTONE:
                    raise ValidationError("Milestone payments must use payment_type MILESTONE")
            patch = self._clean(data)
            if patch["amount"] > Decimal(milestone.amount):
                raise InvalidAmount("Payment amount cannot exceed milestone amount")
            patch = self._resolve_currency(patch, budget.currency)

            payment = Payment(
                budget_id=budget.id,
                milestone_id=milestone.id,
                payment_type=PaymentType.MILESTONE.value,
                status=PaymentStatus.PENDING.value,
                created_by_user_id=processed_by,
                **patch,
            )
            self.session.add(payment)
            self.session.flush()
            return payment, budget

        payment, budget = self._transaction(_op)
        self._created(payment, budget, processed_by)
        return payment

    def process_for_budget(self, job_id: int, payment_data: dict, processed_by: int) -> Payment:
        """Budget-level payment (lump sum, advance, refund, ...) with no milestone."""
        data = dict(payment_data or {}) if isinstance(payment_data, dict) else payment_data
        if isinstance(data, dict):
            if data.get("milestone_id") is not None:
                raise ValidationError("Use process_for_milestone for milestone payments")
            data.pop("milestone_id", None)
            payment_type = coerce_enum(PaymentType, data.get("payment_type") or PaymentType.LUMP_SUM, "payment_type")
            if payment_type is PaymentType.MILESTONE:
                raise ValidationError("MILESTONE payments must reference a milestone")
            data["payment_type"] = payment_type.value

        def _op():
            budget = lock_for_update(self.session.query(Budget).filter_by(job_id=job_id)).first()
            if budget is None:
                raise BudgetNotFound(f"Budget not found for job {job_id}")

            patch = self._resolve_currency(self._clean(data), budget.currency)
            payment = Payment(
                budget_id=budget.id,
                status=PaymentStatus.PENDING.value,
                created_by_user_id=processed_by,
                **patch,
            )
            self.session.add(payment)
            self.session.flush()
            return payment, budget

        payment, budget = self._transaction(_op)
        self._created(payment, budget, processed_by)
        return payment

    def update_status(self, payment_id: int, new_status, updated_by: int, failure_reason: str | None = None) -> Payment:
        """
        Move a payment to `new_status`.

        COMPLETED stamps processed_at/processed_by; FAILED keeps failure_reason;
        any other status clears all three.
        """
        target = coerce_enum(PaymentStatus, new_status, "status")
        reason = (failure_reason or "").strip() or None
        if reason is not None and len(reason) > MAX_FAILURE_REASON_LENGTH:
            raise ValidationError(f"failure_reason exceeds max length {MAX_FAILURE_REASON_LENGTH}")

        def _op():
            payment = lock_for_update(self.session.query(Payment).filter_by(id=payment_id)).first()
            if payment is None:
                raise PaymentNotFound(f"Payment {payment_id} not found")

            old_status = payment.status
            payment.status = target.value
            if target is PaymentStatus.COMPLETED:
                payment.processed_at = utcnow()
                payment.processed_by_user_id = updated_by
                payment.failure_reason = None
            elif target is PaymentStatus.FAILED:
                payment.processed_at = None
                payment.processed_by_user_id = None
                payment.failure_reason = reason
            else:
                payment.processed_at = None
                payment.processed_by_user_id = None
                payment.failure_reason = None
            self.session.flush()
            return payment, payment.budget, old_status

        payment, budget, old_status = self._transaction(_op)
        logger.info("Payment %s status %s -> %s by user %s", payment.id, old_status, payment.status, updated_by)

        self._emit(budget.job_id, PaymentStatusChanged(
            budget_id=budget.id,
            payment_id=payment.id,
            old_status=old_status,
            new_status=payment.status,
            failure_reason=payment.failure_reason,
        ), updated_by)

        kind = {
            PaymentStatus.COMPLETED: "PAYMENT_COMPLETED",
            PaymentStatus.FAILED: "PAYMENT_FAILED",
        }.get(target)
        if kind is not None:
            self._notify(kind, job_id=budget.job_id, user_id=budget.created_by_user_id, data={
                "budget_id": budget.id,
                "payment_id": payment.id,
                "amount": money_str(payment.amount),
                "currency": payment.currency,
            })
        return payment

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..time_utils import to_utc_z


HEALTH_HEALTHY = "HEALTHY"
HEALTH_WARNING = "WARNING"
HEALTH_CRITICAL = "CRITICAL"

_PERCENT_QUANTUM = Decimal("0.01")


def money_str(value: Decimal | None) -> str | None:
    """Serialize a Decimal amount without float drift (e.g. "1250.00")."""
    if value is None:
        return None
    return format(Decimal(value), "f")


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    if not whole:
        return Decimal("0.00")
    return (Decimal(part) / Decimal(whole) * 100).quantize(_PERCENT_QUANTUM, rounding=ROUND_HALF_UP)


def budget_health(percent_paid: Decimal) -> str:
    """<= 80% HEALTHY, <= 95% WARNING, above that CRITICAL."""
    if percent_paid <= 80:
        return HEALTH_HEALTHY
    if percent_paid <= 95:
        return HEALTH_WARNING
    return HEALTH_CRITICAL


class Budget(db.Model):
    """
    Financial contract for one job.

    WHY: The job module owns the job; this row owns the money. Exactly one
    budget per job (job_id is unique), created with the job and deleted with it.

    STATUS:
    - ACTIVE: initial state
    - COMPLETED: terminal, reached only when every milestone is COMPLETED
      (see budget_service.check_completion). Never set directly, never reverted.

    Children (milestones, payments) are deleted with the budget.
    """
    __tablename__ = "budgets"
    __table_args__ = (
        db.Index("ix_budgets_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.Integer, nullable=False, unique=True, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)  # FIXED, HOURLY, MILESTONE, HYBRID
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), db.ForeignKey("currencies.code"), nullable=False, default="USD")
    estimated_hours = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)  # ACTIVE, COMPLETED

    # Attribution (users live outside this core)
    created_by_user_id = db.Column(db.Integer, nullable=False, index=True)
    approved_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    milestones = db.relationship(
        "Milestone",
        backref=db.backref("budget", lazy=True),
        order_by="Milestone.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    payments = db.relationship(
        "Payment",
        backref=db.backref("budget", lazy=True),
        order_by="Payment.id.desc()",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Budget id={self.id} job_id={self.job_id} status={self.status}>"

    def to_dict(self, *, detail: bool = False) -> dict:
        data = {
            "id": self.id,
            "job_id": self.job_id,
            "type": self.type,
            "amount": money_str(self.amount),
            "currency": self.currency,
            "estimated_hours": self.estimated_hours,
            "status": self.status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "approved_at": to_utc_z(self.approved_at),
            "completed_at": to_utc_z(self.completed_at),
            "version_id": self.version_id,
        }
        if detail:
            data["milestones"] = [m.to_dict() for m in self.milestones]
            data["payments"] = [p.to_dict() for p in self.payments]
            data["metrics"] = self.metrics()
        return data

    def metrics(self) -> dict:
        """
        Derived money/progress figures from the loaded children.

        Payments are summed at face value; COMPLETED counts as paid and
        PENDING as pending. FAILED payments count toward neither.
        """
        amount = Decimal(self.amount)
        total_paid = sum((Decimal(p.amount) for p in self.payments if p.status == "COMPLETED"), Decimal("0"))
        total_pending = sum((Decimal(p.amount) for p in self.payments if p.status == "PENDING"), Decimal("0"))
        percent_paid = percent_of(total_paid, amount)

        completed = sum(1 for m in self.milestones if m.status == "COMPLETED")
        total = len(self.milestones)

        return {
            "total_budget": money_str(amount),
            "total_paid": money_str(total_paid),
            "total_pending": money_str(total_pending),
            "remaining_amount": money_str(amount - total_paid),
            "percent_paid": money_str(percent_paid),
            "budget_health": budget_health(percent_paid),
            "milestone_progress": {
                "completed": completed,
                "total": total,
                "percentage": money_str(percent_of(Decimal(completed), Decimal(total))),
            },
        }


class Milestone(db.Model):
    """
    Deliverable-tied checkpoint within a budget.

    STATE MACHINE (forward only):
        PENDING -> IN_PROGRESS -> COMPLETED

    COMPLETED milestones cannot be deleted and their core fields are frozen;
    they are the only milestones payments may reference.
    """
    __tablename__ = "milestones"
    __table_args__ = (
        db.Index("ix_milestones_budget_status", "budget_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    budget_id = db.Column(db.Integer, db.ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)  # PENDING, IN_PROGRESS, COMPLETED

    due_date = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    deliverables = db.Column(db.JSON, nullable=False, default=list)
    acceptance_criteria = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Milestone id={self.id} budget_id={self.budget_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "budget_id": self.budget_id,
            "name": self.name,
            "description": self.description,
            "amount": money_str(self.amount),
            "percentage": money_str(self.percentage),
            "status": self.status,
            "due_date": to_utc_z(self.due_date),
            "deliverables": list(self.deliverables or []),
            "acceptance_criteria": self.acceptance_criteria,
            "notes": self.notes,
            "completed_at": to_utc_z(self.completed_at),
            "completed_by_user_id": self.completed_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Payment(db.Model):
    """
    Monetary transfer record against a budget.

    WHY: Payments are separate from milestones so a budget can be paid per
    milestone, as a lump sum, or as an advance.

    - amount is always > 0
    - milestone_id, when set, pointed at a COMPLETED milestone at creation time
    - status starts PENDING; COMPLETED/FAILED are set by update_status
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_budget_created", "budget_id", "created_at"),
        db.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    budget_id = db.Column(db.Integer, db.ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False, index=True)
    milestone_id = db.Column(db.Integer, db.ForeignKey("milestones.id"), nullable=True, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    payment_type = db.Column(db.String(16), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)  # PENDING, COMPLETED, FAILED

    # Reference info (transfer id, invoice number, etc.)
    reference = db.Column(db.String(128), nullable=True)
    description = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_by_user_id = db.Column(db.Integer, nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    milestone = db.relationship("Milestone", backref=db.backref("payments", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Payment id={self.id} budget_id={self.budget_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "budget_id": self.budget_id,
            "milestone_id": self.milestone_id,
            "amount": money_str(self.amount),
            "currency": self.currency,
            "payment_type": self.payment_type,
            "status": self.status,
            "reference": self.reference,
            "description": self.description,
            "notes": self.notes,
            "processed_at": to_utc_z(self.processed_at),
            "processed_by_user_id": self.processed_by_user_id,
            "failure_reason": self.failure_reason,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

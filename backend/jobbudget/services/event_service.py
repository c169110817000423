# Overview: Typed budget domain events and the append-only job event sink.

"""
Budget Events

Every mutation of the core produces exactly one of the event dataclasses
below (plus BudgetCompleted when a milestone change completes its budget).
The union is closed: event_payload() handles every member and refuses
anything else, so sinks can rely on the payload shape per event_type.

INVARIANTS:
- Events are recorded AFTER the domain transaction commits.
- A sink failure is logged and swallowed; it never rolls back or fails the
  domain operation.
- job_events rows are never updated or deleted.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol, Union

from ..models import JobEvent
from ..models.budgets import money_str
from ..time_utils import to_utc_z


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BudgetCreated:
    budget_id: int
    amount: Decimal
    currency: str
    budget_type: str
    milestone_count: int


@dataclass(frozen=True)
class BudgetUpdated:
    budget_id: int
    changed_fields: tuple[str, ...]
    milestones_replaced: bool


@dataclass(frozen=True)
class BudgetDeleted:
    budget_id: int


@dataclass(frozen=True)
class BudgetCompleted:
    budget_id: int
    milestone_count: int


@dataclass(frozen=True)
class MilestoneCreated:
    budget_id: int
    milestone_id: int
    name: str
    amount: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class MilestoneUpdated:
    budget_id: int
    milestone_id: int
    changed_fields: tuple[str, ...]


@dataclass(frozen=True)
class MilestoneStatusChanged:
    budget_id: int
    milestone_id: int
    old_status: str
    new_status: str
    reason: str | None = None


@dataclass(frozen=True)
class MilestoneDeleted:
    budget_id: int
    milestone_id: int
    name: str


@dataclass(frozen=True)
class PaymentCreated:
    budget_id: int
    payment_id: int
    amount: Decimal
    currency: str
    payment_type: str
    milestone_id: int | None = None


@dataclass(frozen=True)
class PaymentStatusChanged:
    budget_id: int
    payment_id: int
    old_status: str
    new_status: str
    failure_reason: str | None = None


@dataclass(frozen=True)
class NotificationSent:
    notification_type: str
    recipient_user_id: int
    email_sent: bool
    push_sent: bool
    errors: tuple[str, ...] = field(default_factory=tuple)


BudgetEvent = Union[
    BudgetCreated,
    BudgetUpdated,
    BudgetDeleted,
    BudgetCompleted,
    MilestoneCreated,
    MilestoneUpdated,
    MilestoneStatusChanged,
    MilestoneDeleted,
    PaymentCreated,
    PaymentStatusChanged,
    NotificationSent,
]

EVENT_TYPES: dict[type, str] = {
    BudgetCreated: "BUDGET_CREATED",
    BudgetUpdated: "BUDGET_UPDATED",
    BudgetDeleted: "BUDGET_DELETED",
    BudgetCompleted: "BUDGET_COMPLETED",
    MilestoneCreated: "MILESTONE_CREATED",
    MilestoneUpdated: "MILESTONE_UPDATED",
    MilestoneStatusChanged: "MILESTONE_STATUS_UPDATED",
    MilestoneDeleted: "MILESTONE_DELETED",
    PaymentCreated: "PAYMENT_CREATED",
    PaymentStatusChanged: "PAYMENT_STATUS_UPDATED",
    NotificationSent: "NOTIFICATION_SENT",
}


def event_type_of(event: BudgetEvent) -> str:
    try:
        return EVENT_TYPES[type(event)]
    except KeyError:
        raise TypeError(f"Unknown budget event: {type(event).__name__}") from None


def _jsonable(value):
    if isinstance(value, Decimal):
        return money_str(value)
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def event_payload(event: BudgetEvent) -> dict:
    """Serialize an event to a JSON-safe dict (event_type_of() validates membership)."""
    event_type_of(event)
    return {k: _jsonable(v) for k, v in asdict(event).items()}


class EventSink(Protocol):
    def record_event(self, job_id: int | None, event: BudgetEvent, actor_id: int | None) -> None:
        ...


class JobEventLedger:
    """
    Default sink: appends a job_events row in its own commit.

    Runs after the domain commit on the same session, so a failure here can
    only roll back the event row itself.
    """

    def __init__(self, session):
        self.session = session

    def record_event(self, job_id: int | None, event: BudgetEvent, actor_id: int | None) -> None:
        try:
            row = JobEvent(
                job_id=job_id,
                event_type=event_type_of(event),
                payload=event_payload(event),
                actor_user_id=actor_id,
            )
            self.session.add(row)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception("Failed to record %s for job %s", type(event).__name__, job_id)

    def list_events(self, job_id: int, *, event_type: str | None = None, limit: int = 200) -> list[JobEvent]:
        q = self.session.query(JobEvent).filter_by(job_id=job_id)
        if event_type is not None:
            q = q.filter_by(event_type=event_type)
        return q.order_by(JobEvent.id.asc()).limit(limit).all()

# Overview: Notification intents, the table-backed queue, and the worker-side dispatcher.

"""
Budget Notifications

WHY: Delivery (email, push) is slow and unreliable. Domain operations only
enqueue a NotificationIntent after their commit; a worker drains the queue
later (`flask notifications drain`) and talks to the channel.

DESIGN:
- Notifier.notify() is the only thing services call. It validates the kind
  against NOTIFICATION_TEMPLATES and enqueues; it never sends.
- Intents are rows in notification_intents, so the producing processes and
  the draining worker see the same queue.
- NotificationDispatcher.deliver() renders an intent and sends it on every
  channel the intent asks for, collecting per-channel failures instead of
  raising. Each delivery is audited as a NotificationSent event.
- A user without a known email address gets no email; the report carries
  an "Email skipped" entry so the caller can see it.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Protocol

from ..models import QueuedNotification
from ..time_utils import to_utc_z, utcnow
from .base import BaseService
from .concurrency import lock_for_update
from .event_service import NotificationSent


logger = logging.getLogger(__name__)


CHANNEL_EMAIL = "email"
CHANNEL_PUSH = "push"
VALID_CHANNELS = {CHANNEL_EMAIL, CHANNEL_PUSH}

QUEUE_PENDING = "PENDING"
QUEUE_SENDING = "SENDING"
QUEUE_DELIVERED = "DELIVERED"
QUEUE_FAILED = "FAILED"


@dataclass(frozen=True)
class NotificationTemplate:
    subject: str
    template: str
    title: str
    body: str


# kind -> how it renders. Bodies are str.format() strings over the intent data.
NOTIFICATION_TEMPLATES: dict[str, NotificationTemplate] = {
    "BUDGET_CREATED": NotificationTemplate(
        "New Budget Created", "budget-created", "Budget Created",
        "New budget of {currency} {amount} created for job {job_id}",
    ),
    "BUDGET_UPDATED": NotificationTemplate(
        "Budget Updated", "budget-updated", "Budget Updated",
        "Budget for job {job_id} has been updated",
    ),
    "BUDGET_COMPLETED": NotificationTemplate(
        "Budget Completed", "budget-completed", "Budget Completed",
        "Budget for job {job_id} has been completed",
    ),
    "MILESTONE_CREATED": NotificationTemplate(
        "New Milestone Created", "milestone-created", "Milestone Created",
        'New milestone "{milestone_name}" created for job {job_id}',
    ),
    "MILESTONE_UPDATED": NotificationTemplate(
        "Milestone Updated", "milestone-updated", "Milestone Updated",
        'Milestone "{milestone_name}" has been updated',
    ),
    "MILESTONE_STATUS_UPDATED": NotificationTemplate(
        "Milestone Status Updated", "milestone-status-updated", "Milestone Status Updated",
        'Milestone "{milestone_name}" is now {status}',
    ),
    "MILESTONE_COMPLETED": NotificationTemplate(
        "Milestone Completed", "milestone-completed", "Milestone Completed",
        'Milestone "{milestone_name}" has been completed',
    ),
    "MILESTONE_DELETED": NotificationTemplate(
        "Milestone Deleted", "milestone-deleted", "Milestone Deleted",
        'Milestone "{milestone_name}" has been removed from job {job_id}',
    ),
    "PAYMENT_CREATED": NotificationTemplate(
        "Payment Created", "payment-created", "Payment Created",
        "Payment of {currency} {amount} created for job {job_id}",
    ),
    "PAYMENT_COMPLETED": NotificationTemplate(
        "Payment Completed", "payment-completed", "Payment Completed",
        "Payment of {currency} {amount} has been completed",
    ),
    "PAYMENT_FAILED": NotificationTemplate(
        "Payment Failed", "payment-failed", "Payment Failed",
        "Payment of {currency} {amount} has failed",
    ),
    "PAYMENT_REFUNDED": NotificationTemplate(
        "Payment Refunded", "payment-refunded", "Payment Refunded",
        "Payment of {currency} {amount} has been refunded",
    ),
}


class _Blank(dict):
    def __missing__(self, key):
        return "?"


def render_text(text: str, data: dict) -> str:
    return text.format_map(_Blank(data))


def parse_channels(value) -> tuple[str, ...]:
    """'email,push' or an iterable -> validated, de-duplicated channel tuple."""
    if value is None:
        return (CHANNEL_EMAIL,)
    raw = value.split(",") if isinstance(value, str) else list(value)
    out = []
    for item in raw:
        name = str(item).strip().lower()
        if not name:
            continue
        if name not in VALID_CHANNELS:
            raise ValueError(f"Unknown notification channel: {name}")
        if name not in out:
            out.append(name)
    return tuple(out)


# =============================================================================
# Intents and the queue (producer side)
# =============================================================================

@dataclass(frozen=True)
class NotificationIntent:
    kind: str
    job_id: int | None
    user_id: int
    data: dict
    channels: tuple[str, ...] = (CHANNEL_EMAIL,)
    created_at: datetime = field(default_factory=utcnow)
    id: int | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "job_id": self.job_id,
            "user_id": self.user_id,
            "data": dict(self.data),
            "channels": list(self.channels),
            "created_at": to_utc_z(self.created_at),
        }


class NotificationQueue(Protocol):
    def enqueue(self, intent: NotificationIntent) -> NotificationIntent:
        ...

    def pop(self) -> NotificationIntent | None:
        ...

    def ack(self, intent: NotificationIntent, report: "DeliveryReport") -> None:
        ...


def _intent_from_row(row: QueuedNotification) -> NotificationIntent:
    return NotificationIntent(
        kind=row.kind,
        job_id=row.job_id,
        user_id=row.user_id,
        data=dict(row.data or {}),
        channels=tuple(row.channels or ()),
        created_at=row.created_at,
        id=row.id,
    )


class OutboxNotificationQueue(BaseService):
    """
    Notification queue backed by the notification_intents table.

    Producers and the drain worker usually live in different processes; the
    table is what they share. pop() claims a row (PENDING -> SENDING) in its
    own transaction so two workers never deliver the same intent, and ack()
    records the delivery outcome on that row.
    """

    def enqueue(self, intent: NotificationIntent) -> NotificationIntent:
        def _op():
            row = QueuedNotification(
                kind=intent.kind,
                job_id=intent.job_id,
                user_id=intent.user_id,
                data=dict(intent.data),
                channels=list(intent.channels),
                status=QUEUE_PENDING,
                created_at=intent.created_at,
            )
            self.session.add(row)
            self.session.flush()
            return replace(intent, id=row.id)

        return self._transaction(_op)

    def pop(self) -> NotificationIntent | None:
        def _op():
            row = lock_for_update(
                self.session.query(QueuedNotification)
                .filter_by(status=QUEUE_PENDING)
                .order_by(QueuedNotification.id.asc())
            ).first()
            if row is None:
                return None
            row.status = QUEUE_SENDING
            return _intent_from_row(row)

        return self._transaction(_op)

    def ack(self, intent: NotificationIntent, report: "DeliveryReport") -> None:
        def _op():
            row = lock_for_update(
                self.session.query(QueuedNotification).filter_by(id=intent.id)
            ).first()
            if row is None:
                return
            row.status = QUEUE_DELIVERED if (report.email_sent or report.push_sent) else QUEUE_FAILED
            row.email_sent = report.email_sent
            row.push_sent = report.push_sent
            row.errors = list(report.errors) or None
            row.dispatched_at = utcnow()

        self._transaction(_op)

    def pending(self) -> list[NotificationIntent]:
        rows = (
            self.session.query(QueuedNotification)
            .filter_by(status=QUEUE_PENDING)
            .order_by(QueuedNotification.id.asc())
            .all()
        )
        return [_intent_from_row(r) for r in rows]

    def history(self, *, status: str | None = None, limit: int = 100) -> list[QueuedNotification]:
        q = self.session.query(QueuedNotification)
        if status is not None:
            q = q.filter_by(status=status)
        return q.order_by(QueuedNotification.id.desc()).limit(limit).all()

    def __len__(self) -> int:
        return self.session.query(QueuedNotification).filter_by(status=QUEUE_PENDING).count()


class Notifier:
    def __init__(self, queue: NotificationQueue, channels=(CHANNEL_EMAIL,)):
        self.queue = queue
        self.channels = parse_channels(channels)

    def notify(self, kind: str, *, job_id: int | None, user_id: int, data: dict) -> NotificationIntent:
        if kind not in NOTIFICATION_TEMPLATES:
            raise ValueError(f"Unknown notification kind: {kind}")
        intent = NotificationIntent(
            kind=kind,
            job_id=job_id,
            user_id=int(user_id),
            data=dict(data or {}),
            channels=self.channels,
        )
        queued = self.queue.enqueue(intent)
        logger.debug("Queued %s notification for user %s (job %s)", kind, user_id, job_id)
        return queued


# =============================================================================
# Delivery (worker side)
# =============================================================================

@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class DeliveryReport:
    email_sent: bool
    push_sent: bool
    errors: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "email_sent": self.email_sent,
            "push_sent": self.push_sent,
            "errors": list(self.errors),
        }


class NotificationChannel(Protocol):
    def send_email(self, to: str, subject: str, template: str, data: dict) -> DeliveryResult:
        ...

    def send_push(self, user_id: int, title: str, body: str, data: dict) -> DeliveryResult:
        ...


class RecipientDirectory(Protocol):
    def email_for(self, user_id: int) -> str | None:
        ...


class StaticRecipientDirectory:
    def __init__(self, emails: dict[int, str] | None = None):
        self.emails = dict(emails or {})

    def email_for(self, user_id: int) -> str | None:
        return self.emails.get(user_id)


def parse_recipients(value) -> dict[int, str]:
    """
    Recipient map from config.

    Accepts a mapping ({101: "client@example.com"}) or the env form
    "101=client@example.com,202=freelancer@example.com".
    """
    if not value:
        return {}
    if isinstance(value, dict):
        items = value.items()
    else:
        items = []
        for chunk in str(value).split(","):
            chunk = chunk.strip()
            if not chunk:
                continue
            user_id, sep, address = chunk.partition("=")
            if not sep:
                raise ValueError(f"Recipient entry must look like <user_id>=<email>: {chunk}")
            items.append((user_id, address))

    out = {}
    for user_id, address in items:
        try:
            key = int(str(user_id).strip())
        except ValueError:
            raise ValueError(f"Recipient user id must be an integer: {user_id}") from None
        address = str(address).strip()
        if "@" not in address:
            raise ValueError(f"Invalid recipient email for user {key}: {address}")
        out[key] = address
    return out


class LoggingChannel:
    """Reference channel: writes deliveries to the log and always succeeds."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logger

    def send_email(self, to: str, subject: str, template: str, data: dict) -> DeliveryResult:
        self.log.info("Email to %s: %s [%s]", to, subject, template)
        return DeliveryResult(success=True, id=f"email_{uuid.uuid4().hex[:12]}")

    def send_push(self, user_id: int, title: str, body: str, data: dict) -> DeliveryResult:
        self.log.info("Push to user %s: %s - %s", user_id, title, body)
        return DeliveryResult(success=True, id=f"push_{uuid.uuid4().hex[:12]}")


class NotificationDispatcher:
    def __init__(self, queue: NotificationQueue, channel: NotificationChannel, *, events=None, directory=None):
        self.queue = queue
        self.channel = channel
        self.events = events
        self.directory = directory or StaticRecipientDirectory()

    def deliver(self, intent: NotificationIntent) -> DeliveryReport:
        template = NOTIFICATION_TEMPLATES[intent.kind]
        data = {"job_id": intent.job_id, **intent.data}
        errors: list[str] = []
        email_sent = False
        push_sent = False

        if CHANNEL_EMAIL in intent.channels:
            try:
                address = self.directory.email_for(intent.user_id)
                if not address:
                    errors.append(f"Email skipped: no address for user {intent.user_id}")
                else:
                    result = self.channel.send_email(address, template.subject, template.template, data)
                    if result.success:
                        email_sent = True
                    else:
                        errors.append(f"Email failed: {result.error}")
            except Exception as exc:
                errors.append(f"Email error: {exc}")

        if CHANNEL_PUSH in intent.channels:
            try:
                result = self.channel.send_push(
                    intent.user_id,
                    render_text(template.title, data),
                    render_text(template.body, data),
                    {"type": intent.kind.lower(), **data},
                )
                if result.success:
                    push_sent = True
                else:
                    errors.append(f"Push failed: {result.error}")
            except Exception as exc:
                errors.append(f"Push error: {exc}")

        report = DeliveryReport(email_sent=email_sent, push_sent=push_sent, errors=tuple(errors))
        if errors:
            logger.warning("Notification %s for user %s had errors: %s", intent.kind, intent.user_id, errors)

        self._audit(intent, report)
        return report

    def _audit(self, intent: NotificationIntent, report: DeliveryReport) -> None:
        if self.events is None:
            return
        event = NotificationSent(
            notification_type=intent.kind,
            recipient_user_id=intent.user_id,
            email_sent=report.email_sent,
            push_sent=report.push_sent,
            errors=report.errors,
        )
        try:
            self.events.record_event(intent.job_id, event, intent.user_id)
        except Exception:
            logger.exception("Failed to audit %s notification for job %s", intent.kind, intent.job_id)

    def drain(self, limit: int | None = None) -> list[DeliveryReport]:
        reports = []
        while limit is None or len(reports) < limit:
            intent = self.queue.pop()
            if intent is None:
                break
            report = self.deliver(intent)
            self.queue.ack(intent, report)
            reports.append(report)
        return reports

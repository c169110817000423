from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class JobEvent(db.Model):
    """
    Append-only log of budget domain events and notification audit records.

    - Written after the domain transaction commits (fire-and-forget).
    - Never updated or deleted.
    - payload is the serialized event dataclass (see services/event_service.py).
    """
    __tablename__ = "job_events"
    __table_args__ = (
        db.Index("ix_job_events_job_occurred", "job_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.Integer, nullable=True, index=True)  # None for system-wide notifications
    event_type = db.Column(db.String(64), nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    actor_user_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class QueuedNotification(db.Model):
    """
    Notification intent waiting for (or done with) delivery.

    Producers insert PENDING rows after their domain commit; the worker
    (`flask notifications drain`) claims the oldest PENDING row, delivers it
    and records the outcome. Rows are kept after delivery.
    """
    __tablename__ = "notification_intents"
    __table_args__ = (
        db.Index("ix_notification_intents_status_id", "status", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(64), nullable=False)
    job_id = db.Column(db.Integer, nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    data = db.Column(db.JSON, nullable=False, default=dict)
    channels = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)  # PENDING, SENDING, DELIVERED, FAILED
    email_sent = db.Column(db.Boolean, nullable=False, default=False)
    push_sent = db.Column(db.Boolean, nullable=False, default=False)
    errors = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "job_id": self.job_id,
            "user_id": self.user_id,
            "data": self.data,
            "channels": self.channels,
            "status": self.status,
            "email_sent": self.email_sent,
            "push_sent": self.push_sent,
            "errors": self.errors or [],
            "created_at": to_utc_z(self.created_at),
            "dispatched_at": to_utc_z(self.dispatched_at),
        }

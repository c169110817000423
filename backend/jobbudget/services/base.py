# Overview: Shared plumbing for services: injected session, transaction policy, and fire-and-forget side effects.

from __future__ import annotations

import logging

from .concurrency import run_in_transaction


logger = logging.getLogger(__name__)


class BaseService:
    """
    Every service receives its collaborators explicitly; nothing is looked up
    from module globals. `events` and `notifier` are optional so read-only
    services and unit tests can omit them.
    """

    def __init__(
        self,
        session,
        *,
        events=None,
        notifier=None,
        retry_attempts: int = 3,
        retry_backoff: float = 0.1,
    ):
        self.session = session
        self.events = events
        self.notifier = notifier
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def _transaction(self, func):
        return run_in_transaction(
            self.session,
            func,
            attempts=self.retry_attempts,
            backoff_base=self.retry_backoff,
        )

    def _emit(self, job_id: int | None, event, actor_id: int | None) -> None:
        """Record a domain event after commit. Never raises."""
        if self.events is None:
            return
        try:
            self.events.record_event(job_id, event, actor_id)
        except Exception:
            logger.exception("Event sink rejected %s for job %s", type(event).__name__, job_id)

    def _notify(self, kind: str, *, job_id: int | None, user_id: int | None, data: dict) -> None:
        """Enqueue a notification intent after commit. Never raises."""
        if self.notifier is None or user_id is None:
            return
        try:
            self.notifier.notify(kind, job_id=job_id, user_id=user_id, data=data)
        except Exception:
            logger.exception("Failed to enqueue %s notification for job %s", kind, job_id)

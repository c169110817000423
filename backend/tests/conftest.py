"""
Pytest fixtures for the budget core tests.

Provides the in-memory test database, seeded currencies, a freshly wired
service graph per test, and budget factories.
"""

from decimal import Decimal

import pytest

from jobbudget import build_services, create_app
from jobbudget.extensions import db
from jobbudget.services.notification_service import OutboxNotificationQueue


CLIENT_ID = 101
FREELANCER_ID = 202
ADMIN_ID = 1


class RecordingSink:
    """Event sink that keeps events in memory."""

    def __init__(self):
        self.events = []

    def record_event(self, job_id, event, actor_id):
        self.events.append((job_id, event, actor_id))

    def of_type(self, cls):
        return [e for (_, e, _) in self.events if isinstance(e, cls)]


class ExplodingSink:
    """Event sink whose every write fails."""

    def __init__(self):
        self.calls = 0

    def record_event(self, job_id, event, actor_id):
        self.calls += 1
        raise RuntimeError("event store unavailable")


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TRANSACTION_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def sink():
    return RecordingSink()


@pytest.fixture(scope='function')
def queue(db_session):
    return OutboxNotificationQueue(db_session)


@pytest.fixture(scope='function')
def services(app, db_session, sink, queue):
    """Service graph wired to a recording sink and the table-backed queue."""
    core = build_services(db_session, app.config, events=sink, queue=queue)
    core.currencies.seed_currencies()
    return core


@pytest.fixture(scope='function')
def eur_rate(services):
    services.rates.set_rate("USD", "EUR", "0.85", ADMIN_ID)
    return services


@pytest.fixture(scope='function')
def make_budget(services):
    """Factory: make_budget(job_id=1, amount="1000.00", milestones=[...], **fields)."""
    def _make(job_id=1, amount="1000.00", milestones=None, created_by=CLIENT_ID, **fields):
        data = {"type": fields.pop("type", "MILESTONE"), "amount": amount, **fields}
        if milestones is not None:
            data["milestones"] = milestones
        return services.budgets.create(job_id, data, created_by)
    return _make


@pytest.fixture(scope='function')
def two_milestone_budget(make_budget):
    """1000.00 USD budget with Design (400) and Build (600) milestones."""
    return make_budget(milestones=[
        {"name": "Design", "amount": "400.00", "percentage": 40},
        {"name": "Build", "amount": "600.00", "percentage": 60},
    ])


def complete_milestone(services, milestone_id, actor=CLIENT_ID):
    """Walk a milestone through the full chain."""
    services.milestones.update_status(milestone_id, "IN_PROGRESS", actor)
    return services.milestones.update_status(milestone_id, "COMPLETED", actor)


def money(value) -> Decimal:
    return Decimal(str(value))

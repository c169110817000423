# backend/jobbudget/__init__.py
from __future__ import annotations

from dataclasses import dataclass

from flask import Flask, current_app

from .config import Config
from .extensions import db, migrate


@dataclass
class BudgetCore:
    """Wired service graph; one per app, bound to the scoped db.session."""
    currencies: object
    rates: object
    conversions: object
    budgets: object
    milestones: object
    payments: object
    events: object
    queue: object
    notifier: object
    dispatcher: object


def build_services(session, config, *, events=None, queue=None, channel=None, directory=None) -> BudgetCore:
    """
    Wire every service with its collaborators.

    `config` is any mapping with the Config keys (app.config in practice).
    Pass `events`, `queue`, `channel` or `directory` to swap in other sinks.
    """
    from .services.budget_service import BudgetService
    from .services.conversion_service import ConversionService
    from .services.currency_service import CurrencyService
    from .services.event_service import JobEventLedger
    from .services.exchange_rate_service import ExchangeRateService
    from .services.milestone_service import MilestoneService
    from .services.notification_service import (
        LoggingChannel,
        NotificationDispatcher,
        Notifier,
        OutboxNotificationQueue,
        StaticRecipientDirectory,
        parse_recipients,
    )
    from .services.payment_service import PaymentService

    retry = {
        "retry_attempts": int(config.get("TRANSACTION_RETRY_ATTEMPTS", 3)),
        "retry_backoff": float(config.get("TRANSACTION_RETRY_BACKOFF", 0.1)),
    }

    events = events if events is not None else JobEventLedger(session)
    queue = queue if queue is not None else OutboxNotificationQueue(session, **retry)
    notifier = Notifier(queue, config.get("NOTIFICATION_CHANNELS", "email,push"))
    if directory is None:
        directory = StaticRecipientDirectory(parse_recipients(config.get("NOTIFICATION_RECIPIENTS")))

    common = {"events": events, "notifier": notifier, **retry}

    currencies = CurrencyService(session, **common)
    rates = ExchangeRateService(session, currencies, **common)
    budgets = BudgetService(
        session,
        currencies,
        max_amount=config.get("BUDGET_MAX_AMOUNT", "1000000"),
        **common,
    )

    return BudgetCore(
        currencies=currencies,
        rates=rates,
        conversions=ConversionService(session, rates, currencies, **common),
        budgets=budgets,
        milestones=MilestoneService(session, budgets, **common),
        payments=PaymentService(session, currencies, **common),
        events=events,
        queue=queue,
        notifier=notifier,
        dispatcher=NotificationDispatcher(
            queue,
            channel if channel is not None else LoggingChannel(),
            events=events,
            directory=directory,
        ),
    )


def get_services(app: Flask | None = None) -> BudgetCore:
    return (app or current_app).extensions["jobbudget"]


def create_app(config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    # Module loggers (jobbudget.services.*) propagate to app.logger
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    app.extensions["jobbudget"] = build_services(db.session, app.config)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app

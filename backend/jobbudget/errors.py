# Overview: Error kinds raised by the budget core; each carries an HTTP status hint for callers.

"""
Budget Core Error Kinds

Every operation raises one of these (or lets one propagate) synchronously.
Callers map them to responses using `http_status`; the core itself never
speaks HTTP.

    BudgetCoreError
    |-- NotFoundError ............ 404  (BudgetNotFound, MilestoneNotFound, PaymentNotFound)
    |-- RateNotFound ............. 404
    |-- InvalidTransition ........ 400
    |-- MilestoneNotCompleted .... 400
    |-- ValidationError .......... 400  (InvalidAmount, InvalidRate, InvalidCurrency)
    |-- BusinessRuleError ........ 409  (CannotDeleteCompleted, CannotModifyCompleted, BudgetAlreadyExists)
    `-- PersistenceFailure ....... 503  (retryable)

Event sink and notification failures are NOT represented here: they are
logged at the boundary and never raised.
"""

from __future__ import annotations


class BudgetCoreError(Exception):
    """Base class for all errors raised by the budget core."""

    http_status = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": type(self).__name__,
            "retryable": self.retryable,
        }


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(BudgetCoreError):
    """The referenced record does not exist."""
    http_status = 404


class BudgetNotFound(NotFoundError):
    pass


class MilestoneNotFound(NotFoundError):
    pass


class PaymentNotFound(NotFoundError):
    pass


class RateNotFound(BudgetCoreError):
    """No active, unexpired exchange rate exists for a currency pair."""
    http_status = 404


# =============================================================================
# CLIENT ERRORS
# =============================================================================

class InvalidTransition(BudgetCoreError):
    """Milestone status change would move backwards in the lifecycle."""
    http_status = 400


class MilestoneNotCompleted(BudgetCoreError):
    """Payment requested against a milestone that is not COMPLETED."""
    http_status = 400


class ValidationError(BudgetCoreError, ValueError):
    """400-level input problem."""
    http_status = 400


class InvalidAmount(ValidationError):
    pass


class InvalidRate(ValidationError):
    pass


class InvalidCurrency(ValidationError):
    pass


class BusinessRuleError(BudgetCoreError):
    """409-level business rule conflict."""
    http_status = 409


class CannotDeleteCompleted(BusinessRuleError):
    pass


class CannotModifyCompleted(BusinessRuleError):
    pass


class BudgetAlreadyExists(BusinessRuleError):
    pass


# =============================================================================
# SERVER ERRORS
# =============================================================================

class PersistenceFailure(BudgetCoreError):
    """Store-level failure (transaction abort, connectivity). Safe to retry."""
    http_status = 503
    retryable = True

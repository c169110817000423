from .enums import BudgetType, BudgetStatus, MilestoneStatus, PaymentType, PaymentStatus
from .budgets import Budget, Milestone, Payment
from .currencies import Currency, ExchangeRate
from .events import JobEvent, QueuedNotification

__all__ = [
    'BudgetType', 'BudgetStatus', 'MilestoneStatus', 'PaymentType', 'PaymentStatus',
    'Budget', 'Milestone', 'Payment',
    'Currency', 'ExchangeRate',
    'JobEvent', 'QueuedNotification',
]

from __future__ import annotations

from enum import Enum


class BudgetType(str, Enum):
    FIXED = "FIXED"
    HOURLY = "HOURLY"
    MILESTONE = "MILESTONE"
    HYBRID = "HYBRID"


class BudgetStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class MilestoneStatus(str, Enum):
    """Forward-only chain; declaration order is the lifecycle rank."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class PaymentType(str, Enum):
    MILESTONE = "MILESTONE"
    LUMP_SUM = "LUMP_SUM"
    ADVANCE = "ADVANCE"
    COMPLETION = "COMPLETION"
    REFUND = "REFUND"
    ADJUSTMENT = "ADJUSTMENT"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


RATE_SOURCE_MANUAL = "MANUAL"
RATE_SOURCE_SAME_CURRENCY = "SAME_CURRENCY"

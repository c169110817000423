# Overview: Service-layer operations for exchange rates; active-rate lookup, rate changes, and rate history.

"""
Exchange Rate Ledger

WHY: Budgets are priced in one currency but viewed and paid in others.
Rates change over time and the old ones must stay inspectable.

RULES:
1. Rates are directional: USD->EUR and EUR->USD are separate records
2. At most one ACTIVE record per (from, to) pair
3. Setting a rate deactivates the previous active record; nothing is overwritten
4. A rate is usable while effective_date <= now < expiry_date (no expiry = open-ended)
5. Same-currency lookups return 1 and never touch storage
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_

from ..errors import InvalidCurrency, InvalidRate, RateNotFound, ValidationError
from ..models import ExchangeRate
from ..models.budgets import money_str
from ..models.enums import RATE_SOURCE_MANUAL, RATE_SOURCE_SAME_CURRENCY
from ..time_utils import parse_iso_datetime, to_utc_z, utcnow
from ..validation import normalize_currency_code, to_decimal
from .base import BaseService
from .concurrency import lock_for_update


logger = logging.getLogger(__name__)

# Matches exchange_rates.rate NUMERIC(15, 6)
RATE_QUANTUM = Decimal("0.000001")


@dataclass(frozen=True)
class RateQuote:
    from_currency: str
    to_currency: str
    rate: Decimal
    effective_date: datetime
    source: str
    is_active: bool
    expiry_date: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "from_currency": self.from_currency,
            "to_currency": self.to_currency,
            "rate": money_str(self.rate),
            "effective_date": to_utc_z(self.effective_date),
            "expiry_date": to_utc_z(self.expiry_date),
            "source": self.source,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class RateChange:
    from_currency: str
    to_currency: str
    old_rate: Decimal | None
    new_rate: Decimal
    effective_date: datetime
    source: str

    def to_dict(self) -> dict:
        return {
            "from_currency": self.from_currency,
            "to_currency": self.to_currency,
            "old_rate": money_str(self.old_rate),
            "new_rate": money_str(self.new_rate),
            "effective_date": to_utc_z(self.effective_date),
            "source": self.source,
        }


class ExchangeRateService(BaseService):

    def __init__(self, session, currencies, **kwargs):
        super().__init__(session, **kwargs)
        self.currencies = currencies

    def _active_pair_query(self, from_code: str, to_code: str):
        return self.session.query(ExchangeRate).filter_by(
            from_currency=from_code,
            to_currency=to_code,
            is_active=True,
        )

    def get_rate(self, from_currency: str, to_currency: str) -> RateQuote:
        from_code = normalize_currency_code(from_currency)
        to_code = normalize_currency_code(to_currency)

        if from_code and from_code == to_code:
            return RateQuote(
                from_currency=from_code,
                to_currency=to_code,
                rate=Decimal("1"),
                effective_date=utcnow(),
                source=RATE_SOURCE_SAME_CURRENCY,
                is_active=True,
            )

        self.currencies.get_active_currency(from_currency)
        self.currencies.get_active_currency(to_currency)

        now = utcnow()
        record = (
            self._active_pair_query(from_code, to_code)
            .filter(
                ExchangeRate.effective_date <= now,
                or_(ExchangeRate.expiry_date.is_(None), ExchangeRate.expiry_date > now),
            )
            .order_by(ExchangeRate.effective_date.desc(), ExchangeRate.id.desc())
            .first()
        )
        if record is None:
            raise RateNotFound(f"No active exchange rate found for {from_code} to {to_code}")

        return RateQuote(
            from_currency=record.from_currency,
            to_currency=record.to_currency,
            rate=Decimal(record.rate),
            effective_date=record.effective_date,
            source=record.source,
            is_active=record.is_active,
            expiry_date=record.expiry_date,
        )

    def set_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate,
        set_by: int | None,
        *,
        source: str = RATE_SOURCE_MANUAL,
        expiry_date=None,
        notes: str | None = None,
    ) -> RateChange:
        """
        Replace the active rate for a currency pair.

        Deactivation of the old record and insertion of the new one commit
        together; the caller never observes zero or two active rates.
        """
        new_rate = to_decimal(rate, "rate", error=InvalidRate)
        if new_rate <= 0:
            raise InvalidRate("Exchange rate must be greater than 0")
        new_rate = new_rate.quantize(RATE_QUANTUM)
        if new_rate <= 0:
            raise InvalidRate(f"Exchange rate must be at least {RATE_QUANTUM}")

        from_code = self.currencies.get_active_currency(from_currency).code
        to_code = self.currencies.get_active_currency(to_currency).code
        if from_code == to_code:
            raise InvalidCurrency("Cannot set an exchange rate from a currency to itself")

        try:
            expiry = parse_iso_datetime(expiry_date)
        except ValueError:
            raise ValidationError("expiry_date must be an ISO-8601 datetime")

        def _op():
            now = utcnow()
            if expiry is not None and expiry <= now:
                raise ValidationError("expiry_date must be in the future")

            active = lock_for_update(
                self._active_pair_query(from_code, to_code)
                .order_by(ExchangeRate.effective_date.desc(), ExchangeRate.id.desc())
            ).all()
            old_rate = Decimal(active[0].rate) if active else None

            for row in active:
                row.is_active = False
            # Deactivations must hit the store before the new active row
            self.session.flush()

            record = ExchangeRate(
                from_currency=from_code,
                to_currency=to_code,
                rate=new_rate,
                effective_date=now,
                expiry_date=expiry,
                source=source or RATE_SOURCE_MANUAL,
                is_active=True,
                notes=notes,
                created_by_user_id=set_by,
            )
            self.session.add(record)
            self.session.flush()

            return RateChange(
                from_currency=from_code,
                to_currency=to_code,
                old_rate=old_rate,
                new_rate=new_rate,
                effective_date=now,
                source=record.source,
            )

        change = self._transaction(_op)
        logger.info(
            "Exchange rate %s->%s set to %s (was %s) by user %s",
            change.from_currency, change.to_currency, change.new_rate, change.old_rate, set_by,
        )
        return change

    def get_history(self, from_currency: str, to_currency: str, limit: int = 10) -> list[dict]:
        """Most recent rate records for the pair, active and inactive, newest first."""
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValidationError("limit must be a positive integer")

        rows = (
            self.session.query(ExchangeRate)
            .filter_by(
                from_currency=normalize_currency_code(from_currency),
                to_currency=normalize_currency_code(to_currency),
            )
            .order_by(ExchangeRate.effective_date.desc(), ExchangeRate.id.desc())
            .limit(limit)
            .all()
        )
        return [r.to_dict() for r in rows]

    def count_active(self, from_currency: str, to_currency: str) -> int:
        return self._active_pair_query(
            normalize_currency_code(from_currency),
            normalize_currency_code(to_currency),
        ).count()

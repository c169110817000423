# Overview: Service-layer operations for the currency registry; lookup, validation and display formatting.

"""
Currency Registry

WHY: Budgets, payments and exchange rates all carry an ISO 4217 code. This
service is the single authority on which codes are accepted and how many
minor units each one has.

- validate_currency() fails softly (returns a result object) so callers such
  as formatting can decide what to do.
- get_active_currency() is the strict variant used by mutating paths.
- Amounts are Decimal and rounded ROUND_HALF_UP to the currency's minor unit.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from ..errors import InvalidAmount, InvalidCurrency
from ..models import Currency
from ..validation import normalize_currency_code, to_decimal
from .base import BaseService


DEFAULT_DECIMAL_PLACES = 2

# (code, name, symbol, decimal_places, is_base)
DEFAULT_CURRENCIES = [
    ("USD", "US Dollar", "$", 2, True),
    ("EUR", "Euro", "€", 2, False),
    ("GBP", "Pound Sterling", "£", 2, False),
    ("JPY", "Japanese Yen", "¥", 0, False),
    ("CAD", "Canadian Dollar", "CA$", 2, False),
    ("AUD", "Australian Dollar", "A$", 2, False),
    ("CHF", "Swiss Franc", "CHF ", 2, False),
    ("CNY", "Chinese Yuan", "CN¥", 2, False),
    ("INR", "Indian Rupee", "₹", 2, False),
    ("BRL", "Brazilian Real", "R$", 2, False),
    ("MXN", "Mexican Peso", "MX$", 2, False),
    ("KRW", "South Korean Won", "₩", 0, False),
    ("SGD", "Singapore Dollar", "S$", 2, False),
    ("HKD", "Hong Kong Dollar", "HK$", 2, False),
    ("SEK", "Swedish Krona", "kr ", 2, False),
    ("NOK", "Norwegian Krone", "kr ", 2, False),
    ("DKK", "Danish Krone", "kr ", 2, False),
    ("PLN", "Polish Zloty", "zł ", 2, False),
    ("CZK", "Czech Koruna", "Kč ", 2, False),
    ("HUF", "Hungarian Forint", "Ft ", 2, False),
]


def quantum(decimal_places: int) -> Decimal:
    """Decimal exponent for quantize(): 2 -> Decimal('0.01'), 0 -> Decimal('1')."""
    return Decimal(1).scaleb(-int(decimal_places))


def round_to_places(amount: Decimal, decimal_places: int) -> Decimal:
    return Decimal(amount).quantize(quantum(decimal_places), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CurrencyValidation:
    is_valid: bool
    currency: dict | None = None
    error: str | None = None


class CurrencyService(BaseService):

    def _lookup(self, code: str) -> Currency | None:
        normalized = normalize_currency_code(code)
        if not normalized:
            return None
        return self.session.query(Currency).filter_by(code=normalized, is_active=True).first()

    def list_supported_currencies(self) -> list[dict]:
        """Active currencies, base currency first, then alphabetical."""
        rows = (
            self.session.query(Currency)
            .filter_by(is_active=True)
            .order_by(Currency.is_base.desc(), Currency.code.asc())
            .all()
        )
        return [c.to_dict() for c in rows]

    def validate_currency(self, code: str) -> CurrencyValidation:
        currency = self._lookup(code)
        if currency is None:
            return CurrencyValidation(is_valid=False, error=f"Currency {code} not found or inactive")

        return CurrencyValidation(
            is_valid=True,
            currency={
                "code": currency.code,
                "name": currency.name,
                "symbol": currency.symbol,
                "decimal_places": currency.decimal_places,
            },
        )

    def get_active_currency(self, code: str) -> Currency:
        currency = self._lookup(code)
        if currency is None:
            raise InvalidCurrency(f"Currency {code} not found or inactive")
        return currency

    def decimal_places(self, code: str) -> int:
        """Minor units for `code`; falls back to 2 for unknown codes."""
        validation = self.validate_currency(code)
        if not validation.is_valid:
            return DEFAULT_DECIMAL_PLACES
        return validation.currency["decimal_places"]

    def quantize(self, amount, code: str) -> Decimal:
        currency = self.get_active_currency(code)
        return round_to_places(to_decimal(amount), currency.decimal_places)

    def has_valid_precision(self, amount, code: str) -> bool:
        """True if `amount` needs no rounding in `code` (e.g. no cents for JPY)."""
        currency = self.get_active_currency(code)
        value = to_decimal(amount)
        return value == value.quantize(quantum(currency.decimal_places))

    def require_precision(self, amount, code: str, what: str = "Amount") -> None:
        if not self.has_valid_precision(amount, code):
            places = self.decimal_places(code)
            raise InvalidAmount(f"{what} {amount} has more than {places} decimal places for {code}")

    def format_amount(self, amount, code: str, with_symbol: bool = True) -> str:
        validation = self.validate_currency(code)
        if not validation.is_valid or not validation.currency:
            raise InvalidCurrency(validation.error or "Currency validation failed")

        currency = validation.currency
        rounded = round_to_places(to_decimal(amount), currency["decimal_places"])
        text = f"{rounded:f}"
        if with_symbol:
            return f"{currency['symbol']}{text}"
        return text

    def seed_currencies(self, rows=None) -> int:
        """
        Insert missing currencies (idempotent). Existing rows are left untouched.

        Returns the number of currencies created.
        """
        rows = DEFAULT_CURRENCIES if rows is None else rows

        def _op():
            created = 0
            for code, name, symbol, places, is_base in rows:
                if self.session.get(Currency, code) is not None:
                    continue
                self.session.add(Currency(
                    code=code,
                    name=name,
                    symbol=symbol,
                    decimal_places=places,
                    is_base=is_base,
                    is_active=True,
                ))
                created += 1
            return created

        return self._transaction(_op)

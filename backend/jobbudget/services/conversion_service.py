# Overview: Read-only currency conversion for amounts and whole budgets.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from ..errors import BudgetCoreError, BudgetNotFound, InvalidAmount
from ..models import Budget
from ..models.budgets import money_str
from ..time_utils import to_utc_z, utcnow
from ..validation import normalize_currency_code, to_decimal
from .base import BaseService
from .currency_service import round_to_places


@dataclass(frozen=True)
class Conversion:
    original_amount: Decimal
    original_currency: str
    converted_amount: Decimal
    target_currency: str
    exchange_rate: Decimal
    source: str
    conversion_date: datetime

    def to_dict(self) -> dict:
        return {
            "original_amount": money_str(self.original_amount),
            "original_currency": self.original_currency,
            "converted_amount": money_str(self.converted_amount),
            "target_currency": self.target_currency,
            "exchange_rate": money_str(self.exchange_rate),
            "source": self.source,
            "conversion_date": to_utc_z(self.conversion_date),
        }


class ConversionService(BaseService):
    """Pure reads; safe for callers to retry."""

    def __init__(self, session, rates, currencies, **kwargs):
        super().__init__(session, **kwargs)
        self.rates = rates
        self.currencies = currencies

    def convert(self, amount, from_currency: str, to_currency: str) -> Conversion:
        value = to_decimal(amount)
        if value <= 0:
            raise InvalidAmount("Amount must be greater than 0")

        quote = self.rates.get_rate(from_currency, to_currency)
        places = self.currencies.decimal_places(quote.to_currency)

        return Conversion(
            original_amount=value,
            original_currency=quote.from_currency,
            converted_amount=round_to_places(value * quote.rate, places),
            target_currency=quote.to_currency,
            exchange_rate=quote.rate,
            source=quote.source,
            conversion_date=utcnow(),
        )

    def budget_in_currencies(self, job_id: int, target_currencies: list[str]) -> dict:
        """
        Show a job's budget in several currencies at once.

        Each target converts independently: a missing rate or unknown code for
        one target lands in `errors` and the rest still convert. Targets equal
        to the budget's own currency are skipped.
        """
        budget = self.session.query(Budget).filter_by(job_id=job_id).first()
        if budget is None:
            raise BudgetNotFound(f"Budget not found for job {job_id}")

        base_amount = Decimal(budget.amount)
        converted = []
        errors = []
        seen = set()

        for target in target_currencies or []:
            code = normalize_currency_code(target) or str(target)
            if code == budget.currency or code in seen:
                continue
            seen.add(code)

            try:
                conversion = self.convert(base_amount, budget.currency, code)
                formatted = self.currencies.format_amount(conversion.converted_amount, code, True)
            except BudgetCoreError as exc:
                errors.append({"currency": code, "error": exc.message, "kind": type(exc).__name__})
                continue

            converted.append({
                "amount": money_str(conversion.converted_amount),
                "currency": conversion.target_currency,
                "exchange_rate": money_str(conversion.exchange_rate),
                "formatted_amount": formatted,
            })

        return {
            "base_budget": {
                "amount": money_str(base_amount),
                "currency": budget.currency,
                "formatted_amount": self.currencies.format_amount(base_amount, budget.currency, True),
            },
            "converted_budgets": converted,
            "errors": errors,
        }

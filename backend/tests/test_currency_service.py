from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from jobbudget.errors import InvalidAmount, InvalidCurrency
from jobbudget.models import Currency
from jobbudget.services.currency_service import DEFAULT_CURRENCIES, quantum, round_to_places


class TestRounding:
    def test_quantum_for_places(self):
        assert quantum(2) == Decimal("0.01")
        assert quantum(0) == Decimal("1")

    def test_round_half_up(self):
        assert round_to_places(Decimal("2.345"), 2) == Decimal("2.35")
        assert round_to_places(Decimal("2.344"), 2) == Decimal("2.34")
        assert round_to_places(Decimal("1234.5"), 0) == Decimal("1235")


class TestCurrencyRegistry:
    def test_seed_is_idempotent(self, services, db_session):
        assert db_session.query(Currency).count() == len(DEFAULT_CURRENCIES)
        assert services.currencies.seed_currencies() == 0
        assert db_session.query(Currency).count() == len(DEFAULT_CURRENCIES)

    def test_list_puts_base_first_then_alphabetical(self, services):
        codes = [c["code"] for c in services.currencies.list_supported_currencies()]
        assert codes[0] == "USD"
        assert codes[1:] == sorted(codes[1:])

    def test_list_excludes_inactive(self, services, db_session):
        db_session.get(Currency, "HUF").is_active = False
        db_session.commit()

        codes = [c["code"] for c in services.currencies.list_supported_currencies()]
        assert "HUF" not in codes

    def test_validate_known_currency(self, services):
        result = services.currencies.validate_currency("eur")
        assert result.is_valid
        assert result.currency["code"] == "EUR"
        assert result.currency["decimal_places"] == 2
        assert result.error is None

    def test_validate_unknown_currency_does_not_raise(self, services):
        result = services.currencies.validate_currency("XYZ")
        assert not result.is_valid
        assert result.currency is None
        assert "XYZ" in result.error

    def test_validate_inactive_currency(self, services, db_session):
        db_session.get(Currency, "GBP").is_active = False
        db_session.commit()

        assert not services.currencies.validate_currency("GBP").is_valid
        with pytest.raises(InvalidCurrency):
            services.currencies.get_active_currency("GBP")

    def test_decimal_places_falls_back_to_two(self, services):
        assert services.currencies.decimal_places("JPY") == 0
        assert services.currencies.decimal_places("NOPE") == 2


class TestFormatting:
    def test_format_with_symbol(self, services):
        assert services.currencies.format_amount(Decimal("1234.5"), "USD") == "$1234.50"

    def test_format_without_symbol(self, services):
        assert services.currencies.format_amount("99.999", "EUR", with_symbol=False) == "100.00"

    def test_format_zero_decimal_currency(self, services):
        assert services.currencies.format_amount("1234.5", "JPY") == "¥1235"

    def test_format_unknown_currency_raises(self, services):
        with pytest.raises(InvalidCurrency):
            services.currencies.format_amount("10", "XYZ")

    def test_precision_check(self, services):
        assert services.currencies.has_valid_precision("100", "JPY")
        assert not services.currencies.has_valid_precision("100.5", "JPY")
        assert services.currencies.has_valid_precision("100.50", "USD")
        assert not services.currencies.has_valid_precision("100.505", "USD")

    def test_require_precision(self, services):
        services.currencies.require_precision("100", "JPY")
        with pytest.raises(InvalidAmount):
            services.currencies.require_precision("100.5", "JPY", "Milestone amount")


class TestLookupFailures:
    def test_store_error_propagates_and_keeps_pending_writes(self, services, db_session, monkeypatch):
        pending = Currency(code="XTS", name="Testing Code", symbol="T", decimal_places=2)
        db_session.add(pending)

        def broken(code):
            raise OperationalError("SELECT currencies", {}, Exception("database is locked"))

        monkeypatch.setattr(services.currencies, "_lookup", broken)

        with pytest.raises(OperationalError):
            services.currencies.validate_currency("USD")

        assert pending in db_session.new

from datetime import timedelta
from decimal import Decimal

import pytest

from jobbudget.errors import InvalidCurrency, InvalidRate, RateNotFound, ValidationError
from jobbudget.models import Currency, ExchangeRate
from jobbudget.time_utils import utcnow

from conftest import ADMIN_ID


class TestGetRate:
    def test_same_currency_is_one_without_storage(self, services, db_session):
        quote = services.rates.get_rate("USD", "usd")

        assert quote.rate == Decimal("1")
        assert quote.source == "SAME_CURRENCY"
        assert quote.is_active
        assert db_session.query(ExchangeRate).count() == 0

    def test_missing_rate(self, services):
        with pytest.raises(RateNotFound):
            services.rates.get_rate("USD", "EUR")

    def test_unknown_currency(self, services):
        with pytest.raises(InvalidCurrency):
            services.rates.get_rate("USD", "XYZ")

    def test_rates_are_directional(self, eur_rate):
        assert eur_rate.rates.get_rate("USD", "EUR").rate == Decimal("0.85")
        with pytest.raises(RateNotFound):
            eur_rate.rates.get_rate("EUR", "USD")

    def test_expired_rate_is_not_used(self, eur_rate, db_session):
        row = db_session.query(ExchangeRate).filter_by(is_active=True).one()
        row.expiry_date = utcnow() - timedelta(minutes=1)
        db_session.commit()

        with pytest.raises(RateNotFound):
            eur_rate.rates.get_rate("USD", "EUR")


class TestSetRate:
    def test_first_rate_has_no_old_rate(self, services):
        change = services.rates.set_rate("USD", "EUR", "0.85", ADMIN_ID)

        assert change.old_rate is None
        assert change.new_rate == Decimal("0.85")
        assert change.source == "MANUAL"

    def test_replacing_keeps_exactly_one_active(self, eur_rate, db_session):
        change = eur_rate.rates.set_rate("USD", "EUR", "0.9", ADMIN_ID)

        assert change.old_rate == Decimal("0.85")
        assert change.new_rate == Decimal("0.9")
        assert eur_rate.rates.count_active("USD", "EUR") == 1
        assert db_session.query(ExchangeRate).count() == 2
        assert eur_rate.rates.get_rate("USD", "EUR").rate == Decimal("0.9")

    @pytest.mark.parametrize("rate", ["0", "-1.5", "abc", None])
    def test_rejects_non_positive_or_garbage(self, services, rate):
        with pytest.raises(InvalidRate):
            services.rates.set_rate("USD", "EUR", rate, ADMIN_ID)

    def test_rejects_same_currency(self, services):
        with pytest.raises(InvalidCurrency):
            services.rates.set_rate("USD", "USD", "1", ADMIN_ID)

    def test_rejects_inactive_currency(self, services, db_session):
        db_session.get(Currency, "EUR").is_active = False
        db_session.commit()

        with pytest.raises(InvalidCurrency):
            services.rates.set_rate("USD", "EUR", "0.85", ADMIN_ID)

    def test_rejects_past_expiry(self, services):
        with pytest.raises(ValidationError):
            services.rates.set_rate(
                "USD", "EUR", "0.85", ADMIN_ID,
                expiry_date=utcnow() - timedelta(days=1),
            )

    def test_failed_set_leaves_previous_rate_active(self, eur_rate):
        with pytest.raises(InvalidRate):
            eur_rate.rates.set_rate("USD", "EUR", "-1", ADMIN_ID)

        assert eur_rate.rates.get_rate("USD", "EUR").rate == Decimal("0.85")
        assert eur_rate.rates.count_active("USD", "EUR") == 1


class TestHistory:
    def test_newest_first_with_author(self, eur_rate):
        eur_rate.rates.set_rate("USD", "EUR", "0.86", 7)
        eur_rate.rates.set_rate("USD", "EUR", "0.87", 8)

        history = eur_rate.rates.get_history("USD", "EUR", limit=10)

        assert [h["rate"] for h in history] == ["0.870000", "0.860000", "0.850000"]
        assert [h["is_active"] for h in history] == [True, False, False]
        assert history[0]["created_by_user_id"] == 8

    def test_limit(self, eur_rate):
        eur_rate.rates.set_rate("USD", "EUR", "0.86", ADMIN_ID)
        assert len(eur_rate.rates.get_history("USD", "EUR", limit=1)) == 1

    def test_invalid_limit(self, services):
        with pytest.raises(ValidationError):
            services.rates.get_history("USD", "EUR", limit=0)

from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .budgets import money_str


class Currency(db.Model):
    """
    Reference data: one row per ISO 4217 currency the marketplace accepts.

    Inactive currencies are kept (history references them) but are rejected
    by every validation path.
    """
    __tablename__ = "currencies"

    code = db.Column(db.String(3), primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    symbol = db.Column(db.String(8), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    is_base = db.Column(db.Boolean, nullable=False, default=False)
    decimal_places = db.Column(db.Integer, nullable=False, default=2)
    description = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Currency {self.code}>"

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "symbol": self.symbol,
            "is_active": self.is_active,
            "is_base": self.is_base,
            "decimal_places": self.decimal_places,
            "description": self.description,
        }


class ExchangeRate(db.Model):
    """
    Directional exchange rate: 1 unit of from_currency = rate units of to_currency.

    Append-only history. At most one row per (from_currency, to_currency) is
    active; setting a new rate deactivates the previous one instead of
    overwriting it. The partial unique index backs that rule at the store.
    """
    __tablename__ = "exchange_rates"
    __table_args__ = (
        db.Index("ix_exchange_rates_pair_effective", "from_currency", "to_currency", "effective_date"),
        db.Index(
            "uq_exchange_rates_active_pair",
            "from_currency",
            "to_currency",
            unique=True,
            sqlite_where=db.text("is_active = 1"),
            postgresql_where=db.text("is_active"),
        ),
        db.CheckConstraint("rate > 0", name="ck_exchange_rates_rate_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_currency = db.Column(db.String(3), db.ForeignKey("currencies.code"), nullable=False)
    to_currency = db.Column(db.String(3), db.ForeignKey("currencies.code"), nullable=False)

    rate = db.Column(db.Numeric(15, 6), nullable=False)
    effective_date = db.Column(db.DateTime(timezone=True), nullable=False)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True)
    source = db.Column(db.String(32), nullable=False, default="MANUAL")
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    notes = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<ExchangeRate {self.from_currency}->{self.to_currency} {self.rate} active={self.is_active}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_currency": self.from_currency,
            "to_currency": self.to_currency,
            "rate": money_str(self.rate),
            "effective_date": to_utc_z(self.effective_date),
            "expiry_date": to_utc_z(self.expiry_date),
            "source": self.source,
            "is_active": self.is_active,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
        }

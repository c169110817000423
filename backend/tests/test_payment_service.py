from decimal import Decimal

import pytest

from jobbudget.errors import (
    BudgetNotFound,
    InvalidAmount,
    InvalidCurrency,
    MilestoneNotCompleted,
    MilestoneNotFound,
    PaymentNotFound,
    ValidationError,
)
from jobbudget.models import Payment
from jobbudget.services.event_service import PaymentCreated, PaymentStatusChanged

from conftest import ADMIN_ID, CLIENT_ID, complete_milestone


@pytest.fixture
def completed_design(services, two_milestone_budget):
    design = two_milestone_budget.milestones[0]
    complete_milestone(services, design.id)
    return design


class TestMilestonePayments:
    def test_pays_completed_milestone(self, services, completed_design, sink):
        payment = services.payments.process_for_milestone(completed_design.id, {"amount": "400.00"}, CLIENT_ID)

        assert payment.status == "PENDING"
        assert payment.payment_type == "MILESTONE"
        assert payment.milestone_id == completed_design.id
        assert payment.currency == "USD"
        assert payment.amount == Decimal("400.00")
        assert sink.of_type(PaymentCreated)[0].payment_id == payment.id

    def test_rejects_pending_milestone(self, services, two_milestone_budget, db_session):
        build = two_milestone_budget.milestones[1]

        with pytest.raises(MilestoneNotCompleted):
            services.payments.process_for_milestone(build.id, {"amount": "600.00"}, CLIENT_ID)

        assert db_session.query(Payment).count() == 0

    def test_missing_milestone(self, services):
        with pytest.raises(MilestoneNotFound):
            services.payments.process_for_milestone(999, {"amount": "1"}, CLIENT_ID)

    @pytest.mark.parametrize("amount", ["0", "-10"])
    def test_rejects_non_positive(self, services, completed_design, amount):
        with pytest.raises(InvalidAmount):
            services.payments.process_for_milestone(completed_design.id, {"amount": amount}, CLIENT_ID)

    def test_rejects_more_than_milestone_amount(self, services, completed_design, db_session):
        with pytest.raises(InvalidAmount):
            services.payments.process_for_milestone(completed_design.id, {"amount": "400.01"}, CLIENT_ID)

        assert db_session.query(Payment).count() == 0

    def test_rejects_unknown_currency(self, services, completed_design):
        with pytest.raises(InvalidCurrency):
            services.payments.process_for_milestone(
                completed_design.id, {"amount": "100", "currency": "XYZ"}, CLIENT_ID,
            )

    def test_explicit_currency(self, services, completed_design):
        payment = services.payments.process_for_milestone(
            completed_design.id, {"amount": "100", "currency": "eur", "reference": "INV-7"}, CLIENT_ID,
        )
        assert payment.currency == "EUR"
        assert payment.reference == "INV-7"

    def test_rejects_other_payment_type(self, services, completed_design):
        with pytest.raises(ValidationError):
            services.payments.process_for_milestone(
                completed_design.id, {"amount": "100", "payment_type": "ADVANCE"}, CLIENT_ID,
            )


class TestBudgetPayments:
    def test_defaults_to_lump_sum(self, services, make_budget):
        make_budget(job_id=3)

        payment = services.payments.process_for_budget(3, {"amount": "250"}, CLIENT_ID)

        assert payment.payment_type == "LUMP_SUM"
        assert payment.milestone_id is None
        assert payment.status == "PENDING"

    def test_advance(self, services, make_budget):
        make_budget(job_id=3)
        payment = services.payments.process_for_budget(3, {"amount": "100", "payment_type": "advance"}, CLIENT_ID)
        assert payment.payment_type == "ADVANCE"

    def test_milestone_type_rejected(self, services, make_budget):
        make_budget(job_id=3)
        with pytest.raises(ValidationError):
            services.payments.process_for_budget(3, {"amount": "100", "payment_type": "MILESTONE"}, CLIENT_ID)

    def test_unknown_job(self, services):
        with pytest.raises(BudgetNotFound):
            services.payments.process_for_budget(404, {"amount": "100"}, CLIENT_ID)

    def test_rejects_non_positive(self, services, make_budget):
        make_budget(job_id=3)
        with pytest.raises(InvalidAmount):
            services.payments.process_for_budget(3, {"amount": "0"}, CLIENT_ID)

    def test_rejects_fractional_yen(self, services, make_budget):
        make_budget(job_id=3, amount="100000", currency="JPY")
        with pytest.raises(InvalidAmount):
            services.payments.process_for_budget(3, {"amount": "10.5"}, CLIENT_ID)


class TestPaymentStatus:
    def test_complete_stamps_processed(self, services, make_budget, sink):
        make_budget(job_id=3)
        payment = services.payments.process_for_budget(3, {"amount": "100"}, CLIENT_ID)

        updated = services.payments.update_status(payment.id, "COMPLETED", ADMIN_ID)

        assert updated.status == "COMPLETED"
        assert updated.processed_at is not None
        assert updated.processed_by_user_id == ADMIN_ID
        change = sink.of_type(PaymentStatusChanged)[0]
        assert (change.old_status, change.new_status) == ("PENDING", "COMPLETED")

    def test_failed_records_reason(self, services, make_budget):
        make_budget(job_id=3)
        payment = services.payments.process_for_budget(3, {"amount": "100"}, CLIENT_ID)

        updated = services.payments.update_status(payment.id, "failed", ADMIN_ID, failure_reason="card declined")

        assert updated.status == "FAILED"
        assert updated.failure_reason == "card declined"
        assert updated.processed_at is None

    def test_back_to_pending_clears_stamps(self, services, make_budget):
        make_budget(job_id=3)
        payment = services.payments.process_for_budget(3, {"amount": "100"}, CLIENT_ID)
        services.payments.update_status(payment.id, "COMPLETED", ADMIN_ID)

        updated = services.payments.update_status(payment.id, "PENDING", ADMIN_ID)

        assert updated.processed_at is None
        assert updated.processed_by_user_id is None

    def test_unknown_status(self, services, make_budget):
        make_budget(job_id=3)
        payment = services.payments.process_for_budget(3, {"amount": "100"}, CLIENT_ID)
        with pytest.raises(ValidationError):
            services.payments.update_status(payment.id, "REVERSED", ADMIN_ID)

    def test_missing(self, services):
        with pytest.raises(PaymentNotFound):
            services.payments.update_status(999, "COMPLETED", ADMIN_ID)

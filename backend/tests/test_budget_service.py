from decimal import Decimal

import pytest

from jobbudget.errors import (
    BudgetAlreadyExists,
    BudgetNotFound,
    CannotDeleteCompleted,
    InvalidAmount,
    InvalidCurrency,
    ValidationError,
)
from jobbudget.models import Budget, Milestone, Payment
from jobbudget.services.event_service import BudgetCreated, BudgetDeleted, BudgetUpdated

from conftest import ADMIN_ID, CLIENT_ID, FREELANCER_ID, complete_milestone


class TestCreateBudget:
    def test_create_with_milestones(self, make_budget, sink):
        budget = make_budget(job_id=7, milestones=[
            {"name": "Design", "amount": "300.00", "percentage": 30},
            {"amount": "200.00"},
        ])

        assert budget.status == "ACTIVE"
        assert budget.currency == "USD"
        assert budget.approved_by_user_id == CLIENT_ID
        assert budget.approved_at is not None
        assert [m.name for m in budget.milestones] == ["Design", "Milestone 2"]
        assert all(m.status == "PENDING" for m in budget.milestones)

        created = sink.of_type(BudgetCreated)[0]
        assert created.milestone_count == 2
        assert created.amount == Decimal("1000.00")

    def test_one_budget_per_job(self, make_budget):
        make_budget(job_id=7)
        with pytest.raises(BudgetAlreadyExists):
            make_budget(job_id=7)

    @pytest.mark.parametrize("amount", ["0", "-1", "1000000.01"])
    def test_amount_bounds(self, make_budget, amount):
        with pytest.raises(InvalidAmount):
            make_budget(amount=amount)

    def test_unknown_type(self, make_budget):
        with pytest.raises(ValidationError):
            make_budget(type="RETAINER")

    def test_inactive_currency(self, make_budget):
        with pytest.raises(InvalidCurrency):
            make_budget(currency="XYZ")

    def test_currency_precision(self, make_budget):
        with pytest.raises(InvalidAmount):
            make_budget(amount="5000.50", currency="JPY")

    def test_hourly_needs_hours(self, make_budget):
        with pytest.raises(ValidationError):
            make_budget(type="HOURLY")
        assert make_budget(type="HOURLY", estimated_hours=40).estimated_hours == 40

    def test_hours_upper_bound(self, make_budget):
        with pytest.raises(ValidationError):
            make_budget(type="HOURLY", estimated_hours=10_001)

    def test_notes_length(self, make_budget):
        with pytest.raises(ValidationError):
            make_budget(notes="x" * 501)

    def test_milestones_cannot_exceed_amount(self, make_budget, db_session):
        with pytest.raises(ValidationError):
            make_budget(milestones=[{"name": "Too big", "amount": "1000.01"}])
        assert db_session.query(Budget).count() == 0


class TestGetBudget:
    def test_children_ordering(self, services, two_milestone_budget):
        job_id = two_milestone_budget.job_id
        first = services.payments.process_for_budget(job_id, {"amount": "10"}, CLIENT_ID)
        second = services.payments.process_for_budget(job_id, {"amount": "20"}, CLIENT_ID)

        budget = services.budgets.get_by_job(job_id)

        assert [m.name for m in budget.milestones] == ["Design", "Build"]
        assert [p.id for p in budget.payments] == [second.id, first.id]

    def test_detail_dict_has_metrics(self, services, two_milestone_budget):
        data = services.budgets.get_by_job(two_milestone_budget.job_id).to_dict(detail=True)

        assert len(data["milestones"]) == 2
        assert data["metrics"]["total_budget"] == "1000.00"
        assert data["metrics"]["milestone_progress"] == {"completed": 0, "total": 2, "percentage": "0.00"}

    def test_missing(self, services):
        with pytest.raises(BudgetNotFound):
            services.budgets.get_by_job(404)


class TestUpdateBudget:
    def test_update_fields(self, services, make_budget, sink):
        make_budget(job_id=8)

        budget = services.budgets.update(8, {"amount": "1500.00", "notes": "scope grew"}, CLIENT_ID)

        assert budget.amount == Decimal("1500.00")
        assert budget.notes == "scope grew"
        updated = sink.of_type(BudgetUpdated)[0]
        assert updated.changed_fields == ("amount", "notes")
        assert updated.milestones_replaced is False

    def test_amount_checked_against_new_currency(self, services, make_budget):
        make_budget(job_id=8)
        with pytest.raises(InvalidAmount):
            services.budgets.update(8, {"amount": "100.50", "currency": "JPY"}, CLIENT_ID)

    def test_currency_change_checks_existing_amount(self, services, make_budget):
        make_budget(job_id=8, amount="99.99")
        with pytest.raises(InvalidAmount):
            services.budgets.update(8, {"currency": "KRW"}, CLIENT_ID)

    def test_amount_cannot_drop_below_milestone_total(self, services, two_milestone_budget):
        job_id = two_milestone_budget.job_id

        with pytest.raises(ValidationError):
            services.budgets.update(job_id, {"amount": "100.00"}, CLIENT_ID)

        assert services.budgets.get_by_job(job_id).amount == Decimal("1000.00")

    def test_amount_can_shrink_to_milestone_total(self, services, two_milestone_budget):
        budget = services.budgets.update(two_milestone_budget.job_id, {"amount": "1000"}, CLIENT_ID)
        assert budget.amount == Decimal("1000.00")

    def test_currency_change_checks_kept_milestones(self, services, make_budget):
        make_budget(job_id=8, amount="1000", milestones=[{"name": "Deposit", "amount": "250.50"}])

        with pytest.raises(InvalidAmount):
            services.budgets.update(8, {"currency": "JPY"}, CLIENT_ID)

        assert services.budgets.get_by_job(8).currency == "USD"

    @pytest.mark.parametrize("amount", ["0.004", "12.345"])
    def test_milestone_amount_precision_on_create(self, make_budget, db_session, amount):
        with pytest.raises(InvalidAmount):
            make_budget(milestones=[{"name": "Tiny", "amount": amount}])
        assert db_session.query(Milestone).count() == 0

    def test_replacement_milestone_precision_follows_currency(self, services, make_budget):
        make_budget(job_id=8, amount="100000", currency="JPY")

        with pytest.raises(InvalidAmount):
            services.budgets.update(8, {"milestones": [{"name": "Half yen", "amount": "0.50"}]}, CLIENT_ID)

    def test_status_cannot_be_patched(self, services, make_budget):
        make_budget(job_id=8)
        with pytest.raises(ValidationError):
            services.budgets.update(8, {"status": "COMPLETED"}, CLIENT_ID)

    def test_missing(self, services):
        with pytest.raises(BudgetNotFound):
            services.budgets.update(404, {"notes": "x"}, CLIENT_ID)

    def test_replace_milestones(self, services, two_milestone_budget, db_session, sink):
        job_id = two_milestone_budget.job_id

        budget = services.budgets.update(job_id, {"milestones": [
            {"name": "Phase 1", "amount": "500.00", "percentage": 50},
            {"amount": "500.00", "percentage": 50},
        ]}, CLIENT_ID)

        assert [m.name for m in budget.milestones] == ["Phase 1", "Milestone 2"]
        assert db_session.query(Milestone).count() == 2
        assert sink.of_type(BudgetUpdated)[0].milestones_replaced is True

    def test_failed_replacement_keeps_old_set(self, services, two_milestone_budget, db_session):
        job_id = two_milestone_budget.job_id

        with pytest.raises(ValidationError):
            services.budgets.update(job_id, {
                "notes": "should not stick",
                "milestones": [
                    {"name": "Phase 1", "amount": "500.00"},
                    {"name": "Phase 2", "amount": "500.00", "percentage": 150},
                ],
            }, CLIENT_ID)

        budget = services.budgets.get_by_job(job_id)
        assert [m.name for m in budget.milestones] == ["Design", "Build"]
        assert budget.notes is None

    def test_replacement_cannot_drop_completed(self, services, two_milestone_budget):
        complete_milestone(services, two_milestone_budget.milestones[0].id)

        with pytest.raises(CannotDeleteCompleted):
            services.budgets.update(two_milestone_budget.job_id, {"milestones": []}, CLIENT_ID)

    def test_replacement_cannot_drop_paid(self, services, two_milestone_budget):
        design = two_milestone_budget.milestones[0]
        complete_milestone(services, design.id)
        services.payments.process_for_milestone(design.id, {"amount": "400.00"}, CLIENT_ID)

        with pytest.raises(ValidationError):
            services.budgets.update(two_milestone_budget.job_id, {"milestones": []}, CLIENT_ID)


class TestDeleteBudget:
    def test_delete_cascades(self, services, two_milestone_budget, db_session, sink):
        job_id = two_milestone_budget.job_id
        services.payments.process_for_budget(job_id, {"amount": "10"}, CLIENT_ID)

        services.budgets.delete(job_id, ADMIN_ID)

        assert db_session.query(Budget).count() == 0
        assert db_session.query(Milestone).count() == 0
        assert db_session.query(Payment).count() == 0
        assert sink.of_type(BudgetDeleted)[0].budget_id == two_milestone_budget.id

    def test_missing(self, services):
        with pytest.raises(BudgetNotFound):
            services.budgets.delete(404, ADMIN_ID)


class TestSummaries:
    def test_summary_totals_and_health(self, services, two_milestone_budget):
        job_id = two_milestone_budget.job_id
        design, build = two_milestone_budget.milestones
        services.milestones.update(build.id, {"due_date": "2026-11-30"}, CLIENT_ID)
        complete_milestone(services, design.id)

        paid = services.payments.process_for_milestone(design.id, {"amount": "400.00"}, CLIENT_ID)
        services.payments.update_status(paid.id, "COMPLETED", ADMIN_ID)
        services.payments.process_for_budget(job_id, {"amount": "100.00", "payment_type": "ADVANCE"}, CLIENT_ID)
        failed = services.payments.process_for_budget(job_id, {"amount": "50.00"}, CLIENT_ID)
        services.payments.update_status(failed.id, "FAILED", ADMIN_ID, failure_reason="bounced")

        summary = services.budgets.summary(job_id)

        assert summary.milestone_count == 2
        assert summary.completed_milestones == 1
        assert summary.total_paid == Decimal("400.00")
        assert summary.total_pending == Decimal("100.00")
        assert summary.remaining_amount == Decimal("600.00")
        assert summary.percent_paid == Decimal("40.00")
        assert summary.budget_health == "HEALTHY"
        assert summary.next_due_milestone["name"] == "Build"

    @pytest.mark.parametrize("paid,health", [
        ("800.00", "HEALTHY"),
        ("900.00", "WARNING"),
        ("950.00", "WARNING"),
        ("960.00", "CRITICAL"),
    ])
    def test_health_thresholds(self, services, make_budget, paid, health):
        make_budget(job_id=9)
        payment = services.payments.process_for_budget(9, {"amount": paid}, CLIENT_ID)
        services.payments.update_status(payment.id, "COMPLETED", ADMIN_ID)

        assert services.budgets.summary(9).budget_health == health

    def test_list_for_user_and_all(self, make_budget, services):
        make_budget(job_id=1, created_by=CLIENT_ID)
        make_budget(job_id=2, created_by=CLIENT_ID)
        make_budget(job_id=3, created_by=FREELANCER_ID)

        mine = services.budgets.list_for_user(CLIENT_ID)
        everything = services.budgets.list_all()

        assert sorted(s.job_id for s in mine) == [1, 2]
        assert sorted(s.job_id for s in everything) == [1, 2, 3]

    def test_summary_is_read_only(self, services, two_milestone_budget, db_session):
        before = db_session.get(Budget, two_milestone_budget.id).version_id

        services.budgets.summary(two_milestone_budget.job_id)
        services.budgets.list_all()

        assert db_session.get(Budget, two_milestone_budget.id).version_id == before

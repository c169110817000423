from jobbudget import build_services, get_services
from jobbudget.models import Currency


class TestCli:
    def test_seed_and_list_currencies(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["currencies", "seed"])
        assert result.exit_code == 0
        assert "PASS" in result.output
        assert db_session.query(Currency).count() == 20

        listing = runner.invoke(args=["currencies", "list"])
        assert listing.exit_code == 0
        assert "USD" in listing.output.splitlines()[4]

    def test_set_and_get_rate(self, app, db_session):
        runner = app.test_cli_runner()
        runner.invoke(args=["currencies", "seed"])

        set_result = runner.invoke(args=["rates", "set", "USD", "EUR", "0.85", "--user-id", "1"])
        assert set_result.exit_code == 0
        assert "none -> 0.850000" in set_result.output

        get_result = runner.invoke(args=["rates", "get", "USD", "EUR"])
        assert "USD->EUR: 0.850000" in get_result.output

    def test_domain_errors_exit_nonzero(self, app, db_session):
        runner = app.test_cli_runner()
        runner.invoke(args=["currencies", "seed"])

        result = runner.invoke(args=["rates", "set", "--", "USD", "EUR", "-1"])
        assert result.exit_code != 0
        assert "FAIL InvalidRate" in result.output

        missing = runner.invoke(args=["budgets", "summary", "404"])
        assert missing.exit_code != 0
        assert "FAIL BudgetNotFound" in missing.output

    def test_drain_notifications(self, app, db_session):
        runner = app.test_cli_runner()
        runner.invoke(args=["currencies", "seed"])

        # Intents written by a separately wired graph reach the command
        producer = build_services(db_session, app.config)
        producer.budgets.create(1, {"type": "FIXED", "amount": "100"}, 5)
        producer.budgets.update(1, {"notes": "scope agreed"}, 5)

        result = runner.invoke(args=["notifications", "drain", "--limit", "1"])
        assert result.exit_code == 0
        assert "Delivered 1 notification(s)" in result.output

        rest = runner.invoke(args=["notifications", "drain"])
        assert "Delivered 1 notification(s)" in rest.output
        assert len(get_services(app).queue) == 0

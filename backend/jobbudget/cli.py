# Overview: Flask CLI command groups for currency bootstrap, rate maintenance, and budget inspection.

# backend/jobbudget/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Currency registry:
# - python -m flask currencies seed
#   Idempotent: insert the 20 default ISO currencies (USD is the base).
# - python -m flask currencies list
#   List active currencies, base currency first.
#
# Exchange rates:
# - python -m flask rates set USD EUR 0.85 --user-id 1
#   Replace the active USD->EUR rate (the old one stays in history).
# - python -m flask rates get USD EUR
#   Show the active rate for a pair.
# - python -m flask rates history USD EUR --limit 10
#   Show recent rate records for a pair, newest first.
#
# Budgets:
# - python -m flask budgets summary 42
#   Show totals and health for the budget of job 42.
# - python -m flask budgets list [--user-id 1] [--status ACTIVE]
#   List budget summaries.
#
# Notifications:
# - python -m flask notifications drain [--limit 100]
#   Deliver queued notifications through the configured channel.

import click
from flask.cli import with_appcontext

from . import get_services
from .errors import BudgetCoreError


def _fail(exc: BudgetCoreError):
    raise click.ClickException(f"FAIL {type(exc).__name__}: {exc.message}")


@click.group('currencies')
def currencies_group():
    """Currency registry commands."""


@currencies_group.command('seed')
@with_appcontext
def seed_currencies_cli():
    """Insert the default currencies (existing rows are left alone)."""
    created = get_services().currencies.seed_currencies()
    click.echo(f"PASS Currencies seeded ({created} created)")


@currencies_group.command('list')
@with_appcontext
def list_currencies_cli():
    """List active currencies."""
    rows = get_services().currencies.list_supported_currencies()
    if not rows:
        click.echo("No currencies found. Run 'python -m flask currencies seed' first.")
        return

    click.echo("\n" + "=" * 60)
    click.echo(f"{'Code':<6} {'Name':<28} {'Symbol':<8} {'Places':<7} {'Base'}")
    click.echo("=" * 60)
    for c in rows:
        click.echo(
            f"{c['code']:<6} {c['name']:<28} {c['symbol']:<8} {c['decimal_places']:<7} "
            f"{'yes' if c['is_base'] else ''}"
        )
    click.echo("=" * 60 + "\n")


@click.group('rates')
def rates_group():
    """Exchange rate commands."""


@rates_group.command('set')
@click.argument('from_currency')
@click.argument('to_currency')
@click.argument('rate')
@click.option('--user-id', type=int, default=None, help='User recorded as the rate author')
@click.option('--notes', default=None, help='Free-text note stored with the rate')
@with_appcontext
def set_rate_cli(from_currency, to_currency, rate, user_id, notes):
    """
    Set the active exchange rate for a currency pair.

    Example:
        flask rates set USD EUR 0.85 --user-id 1
    """
    try:
        change = get_services().rates.set_rate(from_currency, to_currency, rate, user_id, notes=notes)
    except BudgetCoreError as exc:
        _fail(exc)

    old = change.old_rate if change.old_rate is not None else "none"
    click.echo(f"PASS {change.from_currency}->{change.to_currency}: {old} -> {change.new_rate}")


@rates_group.command('get')
@click.argument('from_currency')
@click.argument('to_currency')
@with_appcontext
def get_rate_cli(from_currency, to_currency):
    """Show the active rate for a currency pair."""
    try:
        quote = get_services().rates.get_rate(from_currency, to_currency)
    except BudgetCoreError as exc:
        _fail(exc)

    click.echo(
        f"{quote.from_currency}->{quote.to_currency}: {quote.rate} "
        f"(source {quote.source}, effective {quote.to_dict()['effective_date']})"
    )


@rates_group.command('history')
@click.argument('from_currency')
@click.argument('to_currency')
@click.option('--limit', type=int, default=10, show_default=True)
@with_appcontext
def rate_history_cli(from_currency, to_currency, limit):
    """Show recent rate records for a pair, newest first."""
    try:
        rows = get_services().rates.get_history(from_currency, to_currency, limit)
    except BudgetCoreError as exc:
        _fail(exc)

    if not rows:
        click.echo("No rate history found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<6} {'Rate':<14} {'Active':<8} {'Source':<10} {'Effective':<22} {'By'}")
    click.echo("=" * 80)
    for r in rows:
        click.echo(
            f"{r['id']:<6} {r['rate']:<14} {'yes' if r['is_active'] else 'no':<8} "
            f"{r['source']:<10} {r['effective_date']:<22} {r['created_by_user_id'] or '-'}"
        )
    click.echo("=" * 80 + "\n")


@click.group('budgets')
def budgets_group():
    """Budget inspection commands."""


@budgets_group.command('summary')
@click.argument('job_id', type=int)
@with_appcontext
def budget_summary_cli(job_id):
    """Show the summary for the budget of JOB_ID."""
    try:
        summary = get_services().budgets.summary(job_id)
    except BudgetCoreError as exc:
        _fail(exc)

    data = summary.to_dict()
    click.echo(f"\nJob {data['job_id']} budget #{data['budget_id']} ({data['type']}, {data['status']})")
    click.echo(f"  Amount:     {data['amount']} {data['currency']}")
    click.echo(f"  Paid:       {data['total_paid']} ({data['percent_paid']}%, {data['budget_health']})")
    click.echo(f"  Pending:    {data['total_pending']}")
    click.echo(f"  Remaining:  {data['remaining_amount']}")
    click.echo(f"  Milestones: {data['completed_milestones']}/{data['milestone_count']} completed")
    next_due = data["next_due_milestone"]
    if next_due:
        click.echo(f"  Next due:   {next_due['name']} on {next_due['due_date']}")
    click.echo("")


@budgets_group.command('list')
@click.option('--user-id', type=int, help='Only budgets created by this user')
@click.option('--status', help='ACTIVE or COMPLETED')
@with_appcontext
def list_budgets_cli(user_id, status):
    """List budget summaries."""
    budgets = get_services().budgets
    try:
        if user_id is not None:
            rows = budgets.list_for_user(user_id)
            if status:
                rows = [r for r in rows if r.status == status.strip().upper()]
        else:
            rows = budgets.list_all(status=status)
    except BudgetCoreError as exc:
        _fail(exc)

    if not rows:
        click.echo("No budgets found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'Job':<8} {'Type':<10} {'Status':<10} {'Amount':<16} {'Paid %':<8} {'Health':<9} {'Milestones'}")
    click.echo("=" * 90)
    for s in rows:
        d = s.to_dict()
        click.echo(
            f"{d['job_id']:<8} {d['type']:<10} {d['status']:<10} "
            f"{d['amount'] + ' ' + d['currency']:<16} {d['percent_paid']:<8} {d['budget_health']:<9} "
            f"{d['completed_milestones']}/{d['milestone_count']}"
        )
    click.echo("=" * 90 + "\n")


@click.group('notifications')
def notifications_group():
    """Notification queue commands."""


@notifications_group.command('drain')
@click.option('--limit', type=int, default=None, help='Deliver at most this many')
@with_appcontext
def drain_notifications_cli(limit):
    """Deliver queued notifications through the configured channel."""
    reports = get_services().dispatcher.drain(limit)
    failed = [r for r in reports if r.errors]
    click.echo(f"PASS Delivered {len(reports)} notification(s), {len(failed)} with errors")
    for r in failed:
        click.echo(f"  WARN {'; '.join(r.errors)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(currencies_group)
    app.cli.add_command(rates_group)
    app.cli.add_command(budgets_group)
    app.cli.add_command(notifications_group)

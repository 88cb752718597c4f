"""Command line entry points for Ledgerwise."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional

import click

from .config import BaseConfig
from .context import create_app_context
from .domain.money import format_money
from .logging_config import setup_logging
from .services.invoices import days_until_due
from .services.recurrence import upcoming_billings


def _context(ctx: click.Context):
    if ctx.obj is None:
        config = BaseConfig()
        setup_logging(config)
        ctx.obj = create_app_context(config)
    return ctx.obj


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Ledgerwise: accounts, cards, invoices and recurring payments."""


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the database schema and the local ledger owner."""

    app = _context(ctx)
    click.echo(f"Database ready: {app.config.DATABASE_URL}")


@cli.command("run-due")
@click.option("--date", "run_date", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Process as of this day (YYYY-MM-DD) instead of today.")
@click.pass_context
def run_due(ctx: click.Context, run_date: Optional[datetime]) -> None:
    """Charge due subscriptions, book expected incomes and roll ended budget periods."""

    app = _context(ctx)
    summary = app.ledger.run_scheduler_tick(run_date.date() if run_date else None)
    subs = summary["subscriptions"]
    click.echo(
        f"Subscriptions: {len(subs['processed'])} processed, "
        f"{len(subs['skipped'])} skipped, {len(subs['failed'])} failed"
    )
    if summary["incomes"] is not None:
        click.echo(f"Incomes: {len(summary['incomes']['processed'])} booked")
    click.echo(f"Invoices marked overdue: {summary['invoices_marked_overdue']}")
    if summary["budgets"] is not None:
        click.echo(f"Budgets: {len(summary['budgets']['processed'])} rolled over")
    for subscription_id, code in subs["failed"].items():
        click.echo(f"  subscription {subscription_id}: {code}", err=True)
    if subs["failed"]:
        ctx.exit(1)


@cli.command("mark-overdue")
@click.option("--date", "run_date", type=click.DateTime(formats=["%Y-%m-%d"]), default=None)
@click.pass_context
def mark_overdue(ctx: click.Context, run_date: Optional[datetime]) -> None:
    """Refresh the stored status of unpaid invoices."""

    app = _context(ctx)
    count = app.invoices.mark_overdue_invoices(run_date.date() if run_date else None)
    click.echo(f"{count} invoice(s) marked overdue")


@cli.command("upcoming")
@click.option("--days", type=click.IntRange(min=0), default=None, help="Window size; defaults to the reminder window.")
@click.pass_context
def upcoming(ctx: click.Context, days: Optional[int]) -> None:
    """List subscription billings and invoices due in the next days."""

    app = _context(ctx)
    today: date = app.clock.today()
    window = app.config.REMINDER_DAYS if days is None else days
    end = today + timedelta(days=window)
    user_id = app.require_user_id()

    billings = upcoming_billings(app.subscription_repo.list_all(user_id=user_id, active_only=True), today, end)
    invoices = app.invoice_repo.list_due_between(today, end, user_id=user_id)
    if not billings and not invoices:
        click.echo(f"Nothing due in the next {window} day(s)")
        return
    for billing in billings:
        click.echo(f"{billing.billing_date.isoformat()}  subscription  {billing.name:<30} "
                   f"{format_money(billing.amount, billing.currency)}")
    for invoice in invoices:
        label = invoice.creditor_name or invoice.invoice_number or f"#{invoice.id}"
        click.echo(f"{invoice.due_date.isoformat()}  invoice       {label:<30} "
                   f"{format_money(invoice.amount, invoice.currency)}  (in {days_until_due(invoice, today)} d)")


@cli.command("scheduler")
@click.pass_context
def scheduler(ctx: click.Context) -> None:
    """Run the daily billing scheduler in the foreground."""

    from .scheduler import BillingScheduler

    app = _context(ctx)
    click.echo(
        f"Billing run scheduled daily at {app.config.SCHEDULER_HOUR:02d}:{app.config.SCHEDULER_MINUTE:02d}"
    )
    runner = BillingScheduler(app)
    try:
        runner.start(blocking=True)
    except (KeyboardInterrupt, SystemExit):
        runner.stop()


if __name__ == "__main__":  # pragma: no cover
    cli()

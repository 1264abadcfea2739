"""CLI entry point for YNAB statement reconciliation."""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from ynab_reconcile.engine.executor import ExecutionOptions
from ynab_reconcile.engine.models import MatchingConfig
from ynab_reconcile.engine.money import amount_to_milliunits, currency_symbol, format_amount
from ynab_reconcile.ledger.client import InMemoryLedger, LedgerError
from ynab_reconcile.parsers.csv_format import CSVFormat, DEFAULT_DATE_FORMAT, column_ref
from ynab_reconcile.reports.excel_report import ExcelReportGenerator
from ynab_reconcile.service import (
    ReconcileRequest,
    ReconciliationInProgressError,
    reconcile_account,
)

logger = logging.getLogger(__name__)


def validate_non_negative(ctx, param, value):
    if value < 0:
        raise click.BadParameter(f"{param.name.replace('_', ' ').capitalize()} must be non-negative.")
    return value


def validate_percentage(ctx, param, value):
    if value < 0 or value > 100:
        raise click.BadParameter("Threshold must be between 0 and 100.")
    return value


def validate_money(ctx, param, value):
    """Parse a major-unit amount such as -921.24 or "(1,200.00)" into milliunits."""
    if value is None:
        return None
    try:
        return amount_to_milliunits(value)
    except ValueError as e:
        raise click.BadParameter(str(e))


def validate_delimiter(ctx, param, value):
    if value is None:
        return None
    if value in ("\\t", "tab"):
        return "\t"
    if len(value) != 1:
        raise click.BadParameter("Delimiter must be a single character.")
    return value


def build_csv_format(
    delimiter: Optional[str],
    no_header: bool,
    date_column: Optional[str],
    amount_column: Optional[str],
    description_column: Optional[str],
    debit_column: Optional[str],
    credit_column: Optional[str],
    date_format: Optional[str],
) -> Optional[CSVFormat]:
    """Build an explicit CSVFormat, or None to auto-detect."""
    given = (delimiter, date_column, amount_column, description_column, debit_column, credit_column, date_format)
    if not no_header and all(value is None for value in given):
        return None

    if (debit_column is None) != (credit_column is None):
        raise ValueError("--debit-column and --credit-column must be given together")

    positional = no_header
    uses_debit_credit = debit_column is not None

    return CSVFormat(
        delimiter=delimiter or ",",
        has_header=not no_header,
        date_column=column_ref(date_column if date_column is not None else (0 if positional else "Date")),
        amount_column=(
            None if uses_debit_credit
            else column_ref(amount_column if amount_column is not None else (1 if positional else "Amount"))
        ),
        description_column=column_ref(
            description_column if description_column is not None else (2 if positional else "Description")
        ),
        debit_column=column_ref(debit_column) if uses_debit_credit else None,
        credit_column=column_ref(credit_column) if uses_debit_credit else None,
        date_format=date_format or DEFAULT_DATE_FORMAT,
    )


@click.command()
@click.option(
    "--csv", "-c", "csv_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Path to the bank statement CSV export.",
)
@click.option(
    "--ledger", "-l",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Path to the JSON ledger file.",
)
@click.option("--account", "-a", default=None, help="Account id in the ledger (default: first account).")
@click.option(
    "--statement-balance", "-s",
    required=True,
    callback=validate_money,
    help="Ending balance on the statement, e.g. -921.24.",
)
@click.option(
    "--statement-date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Statement closing date (YYYY-MM-DD); enables the balance check.",
)
@click.option(
    "--since",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Only consider ledger transactions on or after this date.",
)
@click.option("--output", "-o", type=click.Path(), default=None, help="Path for an Excel report.")
@click.option(
    "--date-tolerance", "-d",
    default=2,
    type=int,
    callback=validate_non_negative,
    help="Maximum days between bank and ledger dates (default: 2).",
)
@click.option(
    "--amount-tolerance-cents",
    default=1,
    type=int,
    callback=validate_non_negative,
    help="Maximum amount difference in cents (default: 1).",
)
@click.option("--auto-match-threshold", default=90, type=int, callback=validate_percentage,
              help="Score at or above which a match is automatic (default: 90).")
@click.option("--suggestion-threshold", default=60, type=int, callback=validate_percentage,
              help="Score at or above which a match is suggested (default: 60).")
@click.option("--auto-create/--no-auto-create", default=False,
              help="Create ledger transactions for bank-only rows.")
@click.option("--update-cleared/--no-update-cleared", default=False,
              help="Mark auto-matched ledger transactions as cleared.")
@click.option("--unclear-missing/--no-unclear-missing", default=True,
              help="Unclear cleared ledger transactions missing from the statement.")
@click.option("--adjust-dates/--no-adjust-dates", default=False,
              help="Move auto-matched ledger dates to the bank date.")
@click.option("--apply", is_flag=True, default=False, help="Apply changes (default is a dry run).")
@click.option("--write-back", is_flag=True, default=False,
              help="Save the modified ledger back to its file after --apply.")
@click.option("--delimiter", default=None, callback=validate_delimiter, help="CSV delimiter (auto-detected).")
@click.option("--no-header", is_flag=True, default=False, help="The CSV has no header row.")
@click.option("--date-column", default=None, help="Date column name or 0-based index.")
@click.option("--amount-column", default=None, help="Amount column name or index.")
@click.option("--description-column", default=None, help="Description column name or index.")
@click.option("--debit-column", default=None, help="Debit column name or index.")
@click.option("--credit-column", default=None, help="Credit column name or index.")
@click.option("--date-format", default=None, help="Date format, e.g. MM/DD/YYYY or YYYY-MM-DD.")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def main(
    csv_path: str,
    ledger: str,
    account: Optional[str],
    statement_balance: int,
    statement_date,
    since,
    output: Optional[str],
    date_tolerance: int,
    amount_tolerance_cents: int,
    auto_match_threshold: int,
    suggestion_threshold: int,
    auto_create: bool,
    update_cleared: bool,
    unclear_missing: bool,
    adjust_dates: bool,
    apply: bool,
    write_back: bool,
    delimiter: Optional[str],
    no_header: bool,
    date_column: Optional[str],
    amount_column: Optional[str],
    description_column: Optional[str],
    debit_column: Optional[str],
    credit_column: Optional[str],
    date_format: Optional[str],
    verbose: bool,
) -> None:
    """
    YNAB Statement Reconciliation

    Matches a bank CSV export against a YNAB account ledger, explains any
    cleared-balance discrepancy, and optionally applies the fixes.

    Example:
        ynab-reconcile --csv statement.csv --ledger ledger.json --statement-balance -921.24
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    click.echo("=" * 60)
    click.echo("  YNAB STATEMENT RECONCILIATION")
    click.echo("=" * 60)

    try:
        matching = MatchingConfig(
            date_tolerance_days=date_tolerance,
            amount_tolerance_cents=amount_tolerance_cents,
            auto_match_threshold=auto_match_threshold,
            suggestion_threshold=suggestion_threshold,
        )
        csv_format = build_csv_format(
            delimiter, no_header, date_column, amount_column,
            description_column, debit_column, credit_column, date_format,
        )

        click.echo(f"\n  Loading ledger: {ledger}...")
        client = InMemoryLedger.from_json(ledger)
        account_id = account or next(iter(client.account_ids), None)
        if account_id is None:
            raise ValueError("Ledger file contains no accounts")

        request = ReconcileRequest(
            budget_id=client.budget_id,
            account_id=account_id,
            statement_balance=statement_balance,
            csv_file_path=Path(csv_path),
            csv_format=csv_format,
            statement_start_date=since.date() if since else None,
            lookback_days=None,
            matching=matching,
            execution=ExecutionOptions(
                auto_create_transactions=auto_create,
                auto_update_cleared_status=update_cleared,
                auto_unclear_missing=unclear_missing,
                auto_adjust_dates=adjust_dates,
                dry_run=not apply,
                statement_balance=statement_balance,
                statement_date=statement_date.date() if statement_date else None,
            ),
        )

        click.echo(f"\n  Reconciling {csv_path} against account {account_id}...")
        outcome = reconcile_account(client, request)
        analysis = outcome.analysis
        summary = analysis.summary
        symbol = currency_symbol(outcome.currency_code)

        click.echo("\n" + "=" * 60)
        click.echo("  RECONCILIATION SUMMARY")
        click.echo("=" * 60)
        click.echo(f"  Statement Period:     {summary.statement_date_range}")
        click.echo(f"  Match Rate:           {summary.match_rate:.1f}%")
        click.echo(f"  Auto Matched:         {summary.auto_matched}")
        click.echo(f"  Suggested:            {summary.suggested_matches}")
        click.echo(f"  Unmatched (Bank):     {summary.unmatched_bank}")
        click.echo(f"  Unmatched (YNAB):     {summary.unmatched_ynab}")
        click.echo(f"  Cleared Balance:      {format_amount(summary.current_cleared_balance, symbol)}")
        click.echo(f"  Statement Balance:    {format_amount(summary.target_statement_balance, symbol)}")
        click.echo(f"  Discrepancy:          {format_amount(summary.discrepancy, symbol)}")
        click.echo(f"  Status:               {summary.discrepancy_explanation}")
        click.echo("=" * 60)

        for insight in analysis.insights:
            click.echo(f"  [{insight.severity.value.upper()}] {insight.title}")

        click.echo("\n  Next steps:")
        for step in analysis.next_steps:
            click.echo(f"   - {step}")

        execution = outcome.execution
        if execution is not None:
            mode = "DRY RUN" if execution.summary.dry_run else "APPLIED"
            click.echo(f"\n  Actions ({mode}):")
            for action in execution.actions_taken:
                click.echo(f"   - {action.reason}")
            for recommendation in execution.recommendations:
                click.echo(f"   * {recommendation}")
            if execution.balance_reconciliation is not None:
                click.echo(f"\n  Balance check: {execution.balance_reconciliation.status.value}")

        if output:
            report_path = ExcelReportGenerator().generate(
                analysis, output, execution=execution, currency_code=outcome.currency_code
            )
            click.echo(f"\n  Report saved to: {report_path.absolute()}")

        if write_back:
            if apply:
                client.save(ledger)
                click.echo(f"\n  Ledger saved to: {ledger}")
            else:
                click.echo("\n  --write-back ignored without --apply")

    except (FileNotFoundError, ValueError, LedgerError, ReconciliationInProgressError) as e:
        click.echo(f"\n  ERROR: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error during reconciliation")
        click.echo(f"\n  UNEXPECTED ERROR: {e}", err=True)
        sys.exit(2)


if __name__ == "__main__":
    main()

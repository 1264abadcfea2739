"""Excel workbook rendering of a reconciliation analysis and execution."""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Union

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from ynab_reconcile.engine.executor import ExecutionResult
from ynab_reconcile.engine.models import (
    BankTransaction,
    InsightSeverity,
    LedgerTransaction,
    ReconciliationAnalysis,
    TransactionMatch,
)
from ynab_reconcile.engine.money import currency_symbol, format_amount, from_milli

logger = logging.getLogger(__name__)

AMOUNT_FORMAT = "#,##0.00"


class ExcelReportGenerator:
    """Write one sheet per result bucket, plus Insights and (optionally) Actions."""

    HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
    HEADER_FONT = Font(name="Calibri", size=11, bold=True, color="FFFFFF")
    MATCHED_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
    UNMATCHED_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
    SUGGESTED_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
    TITLE_FONT = Font(name="Calibri", size=16, bold=True, color="1F4E79")
    SUBTITLE_FONT = Font(name="Calibri", size=12, bold=True, color="1F4E79")
    KPI_FONT = Font(name="Calibri", size=14, bold=True)
    THIN_BORDER = Border(
        left=Side(style="thin"),
        right=Side(style="thin"),
        top=Side(style="thin"),
        bottom=Side(style="thin"),
    )
    SEVERITY_FILLS = {
        InsightSeverity.INFO: MATCHED_FILL,
        InsightSeverity.WARNING: SUGGESTED_FILL,
        InsightSeverity.CRITICAL: UNMATCHED_FILL,
    }

    def generate(
        self,
        analysis: ReconciliationAnalysis,
        output_path: Union[str, Path],
        execution: Optional[ExecutionResult] = None,
        currency_code: str = "USD",
    ) -> Path:
        """
        Args:
            analysis: Result of the analysis phase.
            output_path: Destination .xlsx path; parent directories are created.
            execution: When given, an Actions sheet is added.
            currency_code: Used for the balance figures on the Summary sheet.

        Returns:
            Path to the generated report.
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        wb = Workbook()
        self._create_summary_tab(wb, analysis, currency_code)
        self._create_auto_matches_tab(wb, analysis.auto_matches)
        self._create_suggested_tab(wb, analysis.suggested_matches)
        self._create_bank_only_tab(wb, analysis.unmatched_bank)
        self._create_ledger_only_tab(wb, analysis.unmatched_ynab)
        self._create_insights_tab(wb, analysis)
        if execution is not None:
            self._create_actions_tab(wb, execution)

        wb.save(str(output_path))
        logger.info("Report written to %s", output_path)
        return output_path

    def _create_summary_tab(self, wb: Workbook, analysis: ReconciliationAnalysis, currency_code: str) -> None:
        ws = wb.active
        ws.title = "Summary"
        ws.sheet_properties.tabColor = "1F4E79"
        summary = analysis.summary
        balances = analysis.balance_info
        symbol = currency_symbol(currency_code)

        ws.merge_cells("A1:F1")
        ws["A1"] = "YNAB Reconciliation Report"
        ws["A1"].font = self.TITLE_FONT
        ws["A1"].alignment = Alignment(horizontal="center")

        ws.merge_cells("A2:F2")
        ws["A2"] = (
            f"Statement: {summary.statement_date_range} | "
            f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
        )
        ws["A2"].alignment = Alignment(horizontal="center")

        counts = [
            ("Match Rate", f"{summary.match_rate:.1f}%"),
            ("Bank Transactions", summary.bank_transactions_count),
            ("YNAB Transactions", summary.ynab_transactions_count),
            ("Auto Matched", summary.auto_matched),
            ("Suggested Matches", summary.suggested_matches),
            ("Unmatched (Bank)", summary.unmatched_bank),
            ("Unmatched (YNAB)", summary.unmatched_ynab),
        ]

        ws["A4"] = "Matching"
        ws["A4"].font = self.SUBTITLE_FONT
        row = 5
        for label, value in counts:
            ws[f"A{row}"] = label
            ws[f"A{row}"].font = Font(bold=True)
            ws[f"B{row}"] = value
            ws[f"B{row}"].font = self.KPI_FONT
            if label.startswith("Unmatched") and value:
                ws[f"B{row}"].fill = self.UNMATCHED_FILL
            row += 1

        row += 1
        ws[f"A{row}"] = "Balances"
        ws[f"A{row}"].font = self.SUBTITLE_FONT
        row += 1

        figures = [
            ("Cleared Balance", balances.current_cleared),
            ("Uncleared Balance", balances.current_uncleared),
            ("Total Balance", balances.current_total),
            ("Statement Balance", balances.target_statement),
            ("Discrepancy", balances.discrepancy),
        ]
        for label, milli in figures:
            ws[f"A{row}"] = label
            ws[f"A{row}"].font = Font(bold=True)
            ws[f"B{row}"] = _amount(milli)
            ws[f"B{row}"].number_format = AMOUNT_FORMAT
            ws[f"C{row}"] = format_amount(milli, symbol)
            row += 1

        ws[f"A{row}"] = "Status"
        ws[f"A{row}"].font = Font(bold=True)
        ws[f"B{row}"] = summary.discrepancy_explanation
        ws[f"B{row}"].fill = self.MATCHED_FILL if balances.on_track else self.UNMATCHED_FILL
        row += 2

        ws[f"A{row}"] = "Next Steps"
        ws[f"A{row}"].font = self.SUBTITLE_FONT
        for step in analysis.next_steps:
            row += 1
            ws[f"A{row}"] = step

        ws.column_dimensions["A"].width = 25
        ws.column_dimensions["B"].width = 20
        ws.column_dimensions["C"].width = 20

    def _create_auto_matches_tab(self, wb: Workbook, matches: Sequence[TransactionMatch]) -> None:
        ws = wb.create_sheet("Auto Matches")
        ws.sheet_properties.tabColor = "00B050"

        headers = [
            "CSV Row", "Bank Date", "Bank Amount", "Bank Payee",
            "YNAB Date", "YNAB Amount", "YNAB Payee", "YNAB Status",
            "Confidence", "Reason",
        ]
        self._write_headers(ws, headers)

        for i, match in enumerate(matches, start=2):
            bank = match.bank_transaction
            ledger = match.ledger_transaction
            values = [
                bank.original_csv_row,
                bank.date.isoformat(),
                _amount(bank.amount),
                bank.payee[:50],
                ledger.date.isoformat(),
                _amount(ledger.amount),
                (ledger.payee_name or "")[:50],
                ledger.cleared.value,
                match.confidence_score,
                match.match_reason,
            ]
            self._write_row(ws, i, values, self.MATCHED_FILL, amount_columns=(3, 6))

        self._auto_width(ws, headers)

    def _create_suggested_tab(self, wb: Workbook, matches: Sequence[TransactionMatch]) -> None:
        ws = wb.create_sheet("Suggested")
        ws.sheet_properties.tabColor = "FFC000"

        headers = [
            "CSV Row", "Bank Date", "Bank Amount", "Bank Payee",
            "Rank", "YNAB Date", "YNAB Amount", "YNAB Payee", "Confidence", "Explanation",
        ]
        self._write_headers(ws, headers)

        row = 2
        for match in matches:
            bank = match.bank_transaction
            for rank, candidate in enumerate(match.candidates, start=1):
                ledger = candidate.ledger_transaction
                values = [
                    bank.original_csv_row,
                    bank.date.isoformat(),
                    _amount(bank.amount),
                    bank.payee[:50],
                    rank,
                    ledger.date.isoformat(),
                    _amount(ledger.amount),
                    (ledger.payee_name or "")[:50],
                    candidate.confidence_score,
                    candidate.explanation,
                ]
                self._write_row(ws, row, values, self.SUGGESTED_FILL, amount_columns=(3, 7))
                row += 1

        self._auto_width(ws, headers)

    def _create_bank_only_tab(self, wb: Workbook, transactions: Sequence[BankTransaction]) -> None:
        ws = wb.create_sheet("Bank Only")
        ws.sheet_properties.tabColor = "FF0000"

        headers = ["CSV Row", "Date", "Amount", "Payee"]
        self._write_headers(ws, headers)

        for i, txn in enumerate(transactions, start=2):
            values = [txn.original_csv_row, txn.date.isoformat(), _amount(txn.amount), txn.payee[:80]]
            self._write_row(ws, i, values, self.UNMATCHED_FILL, amount_columns=(3,))

        self._auto_width(ws, headers)

    def _create_ledger_only_tab(self, wb: Workbook, transactions: Sequence[LedgerTransaction]) -> None:
        ws = wb.create_sheet("YNAB Only")
        ws.sheet_properties.tabColor = "FF0000"

        headers = ["Id", "Date", "Amount", "Payee", "Category", "Status", "Memo"]
        self._write_headers(ws, headers)

        for i, txn in enumerate(transactions, start=2):
            values = [
                txn.id,
                txn.date.isoformat(),
                _amount(txn.amount),
                (txn.payee_name or "")[:80],
                txn.category_name or "",
                txn.cleared.value,
                txn.memo or "",
            ]
            self._write_row(ws, i, values, self.UNMATCHED_FILL, amount_columns=(3,))

        self._auto_width(ws, headers)

    def _create_insights_tab(self, wb: Workbook, analysis: ReconciliationAnalysis) -> None:
        ws = wb.create_sheet("Insights")
        ws.sheet_properties.tabColor = "7030A0"

        headers = ["Severity", "Type", "Title", "Description"]
        self._write_headers(ws, headers)

        for i, insight in enumerate(analysis.insights, start=2):
            values = [insight.severity.value, insight.type.value, insight.title, insight.description]
            self._write_row(ws, i, values, self.SEVERITY_FILLS[insight.severity])

        self._auto_width(ws, headers)

    def _create_actions_tab(self, wb: Workbook, execution: ExecutionResult) -> None:
        ws = wb.create_sheet("Actions")
        ws.sheet_properties.tabColor = "0070C0"

        headers = ["#", "Type", "Reason"]
        self._write_headers(ws, headers)

        row = 2
        for number, action in enumerate(execution.actions_taken, start=1):
            ws[f"A{row}"] = number
            ws[f"B{row}"] = action.type
            ws[f"C{row}"] = action.reason
            row += 1

        row += 1
        ws[f"A{row}"] = "Recommendations"
        ws[f"A{row}"].font = self.SUBTITLE_FONT
        for recommendation in execution.recommendations:
            row += 1
            ws[f"C{row}"] = recommendation

        self._auto_width(ws, headers)
        ws.column_dimensions["C"].width = 80

    def _write_row(
        self,
        ws: Worksheet,
        row: int,
        values: List,
        fill: PatternFill,
        amount_columns: Sequence[int] = (),
    ) -> None:
        for col_idx, value in enumerate(values, start=1):
            cell = ws.cell(row=row, column=col_idx, value=value)
            cell.fill = fill
            if col_idx in amount_columns:
                cell.number_format = AMOUNT_FORMAT

    def _write_headers(self, ws: Worksheet, headers: List[str]) -> None:
        for col_idx, header in enumerate(headers, start=1):
            cell = ws.cell(row=1, column=col_idx, value=header)
            cell.font = self.HEADER_FONT
            cell.fill = self.HEADER_FILL
            cell.alignment = Alignment(horizontal="center")
            cell.border = self.THIN_BORDER

        ws.freeze_panes = "A2"
        ws.auto_filter.ref = f"A1:{get_column_letter(len(headers))}1"

    def _auto_width(self, ws: Worksheet, headers: List[str]) -> None:
        for col_idx, header in enumerate(headers, start=1):
            col_letter = get_column_letter(col_idx)
            ws.column_dimensions[col_letter].width = min(len(header) + 4, 35)


def _amount(milli: int) -> float:
    return float(from_milli(milli))

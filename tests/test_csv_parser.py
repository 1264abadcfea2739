"""Tests for the bank CSV parser."""

from datetime import date
from pathlib import Path

import pytest

from ynab_reconcile.parsers.csv_format import ByIndex, ByName, CSVFormat
from ynab_reconcile.parsers.csv_parser import BankCSVParser, RowError, parse_date


@pytest.fixture
def sample_csv(tmp_path) -> Path:
    """Create a sample bank export for testing."""
    csv_content = """Date,Amount,Description
10/15/2025,-45.23,Shell Gas Station
10/16/2025,"1,200.00",Payroll Deposit
10/17/2025,(12.34),Coffee Shop
"""
    csv_file = tmp_path / "statement.csv"
    csv_file.write_text(csv_content)
    return csv_file


class TestBankCSVParser:
    """Test CSV parsing functionality."""

    def test_parse_standard_csv(self, sample_csv):
        result = BankCSVParser().parse_file(sample_csv)

        assert result.total_rows == 3
        assert result.valid_rows == 3
        assert result.errors == []
        assert [t.amount for t in result.transactions] == [-45230, 1200000, -12340]
        assert result.transactions[0].date == date(2025, 10, 15)
        assert result.transactions[0].payee == "Shell Gas Station"
        assert result.transactions[0].memo == ""

    def test_row_numbers_are_header_aware(self, sample_csv):
        result = BankCSVParser().parse_file(sample_csv)
        assert [t.original_csv_row for t in result.transactions] == [2, 3, 4]

    def test_debit_credit_columns(self):
        content = "Date,Description,Debit,Credit\n09/15/2023,Test,123.45,\n09/16/2023,Test2,,67.89"
        result = BankCSVParser().parse(content)

        assert [t.amount for t in result.transactions] == [-123450, 67890]
        assert [t.payee for t in result.transactions] == ["Test", "Test2"]

    def test_debit_written_as_negative_is_still_outflow(self):
        content = "Date,Description,Debit,Credit\n09/15/2023,Fee,-5.00,\n"
        result = BankCSVParser().parse(content)
        assert result.transactions[0].amount == -5000

    def test_headerless_rows_start_at_one(self):
        result = BankCSVParser().parse("10/15/2025,-1.00,Coffee\n10/16/2025,-2.00,Tea\n")

        assert [t.original_csv_row for t in result.transactions] == [1, 2]
        assert [t.payee for t in result.transactions] == ["Coffee", "Tea"]

    def test_unquoted_month_dates(self):
        content = "Date,Description,Amount\nSep 18, 2025,Coffee Shop,-4.50\nSep 19, 2025,Gas,-30.00\n"
        result = BankCSVParser().parse(content)

        assert [t.date for t in result.transactions] == [date(2025, 9, 18), date(2025, 9, 19)]
        assert [t.amount for t in result.transactions] == [-4500, -30000]

    def test_semicolon_export(self):
        content = "Date;Amount;Description\n2025-10-15;-45.23;Shell\n"
        result = BankCSVParser().parse(content)
        assert result.transactions[0].amount == -45230
        assert result.transactions[0].date == date(2025, 10, 15)

    def test_bad_rows_are_skipped(self):
        content = (
            "Date,Amount,Description\n"
            "10/15/2025,-1.00,A\n"
            "not-a-date,-2.00,B\n"
            "10/17/2025,abc,C\n"
            "10/18/2025,,D\n"
            "10/19/2025,-5.00,E\n"
        )
        result = BankCSVParser().parse(content)

        assert [t.payee for t in result.transactions] == ["A", "E"]
        assert [e.row_number for e in result.errors] == [3, 4, 5]
        assert all(isinstance(e, RowError) for e in result.errors)
        assert result.total_rows == 5

    def test_ragged_rows_are_skipped(self):
        content = (
            "Date,Amount,Description\n"
            "10/15/2025,-1.00,A\n"
            "10/16/2025,-2.00,B\n"
            "10/17/2025,-3.00,C,extra\n"
            "10/18/2025,-4.00,D\n"
        )
        result = BankCSVParser().parse(content)

        assert [t.payee for t in result.transactions] == ["A", "B", "D"]
        assert [t.original_csv_row for t in result.transactions] == [2, 3, 5]
        assert result.errors == [RowError(4, "more fields than the header")]

    def test_row_numbers_survive_blank_and_ragged_lines(self):
        content = (
            "Date,Amount,Description\n"
            "10/15/2025,-1.00,A\n"
            "10/16/2025,-2.00,C,extra\n"
            "\n"
            "10/18/2025,-4.00,D\n"
            "\n"
        )
        result = BankCSVParser().parse(content)

        assert [(t.payee, t.original_csv_row) for t in result.transactions] == [("A", 2), ("D", 5)]
        assert [e.row_number for e in result.errors] == [3, 4]
        assert result.errors[1].reason == "blank line"
        assert result.total_rows == 4

    def test_ids_are_unique_and_stable(self, sample_csv):
        first = BankCSVParser().parse_file(sample_csv)
        second = BankCSVParser().parse_file(sample_csv)

        ids = [t.id for t in first.transactions]
        assert len(set(ids)) == len(ids)
        assert ids == [t.id for t in second.transactions]

    def test_identical_rows_get_distinct_ids(self):
        content = "Date,Amount,Description\n10/15/2025,-22.22,Parking\n10/15/2025,-22.22,Parking\n"
        result = BankCSVParser().parse(content)
        assert result.transactions[0].id != result.transactions[1].id

    def test_explicit_format_by_index(self):
        fmt = CSVFormat(
            delimiter="|",
            has_header=False,
            date_column=ByIndex(2),
            amount_column=ByIndex(0),
            description_column=ByIndex(1),
            date_format="YYYY-MM-DD",
        )
        result = BankCSVParser(fmt).parse("-9.99|Netflix|2025-10-01\n")

        txn = result.transactions[0]
        assert (txn.amount, txn.payee, txn.date) == (-9990, "Netflix", date(2025, 10, 1))

    def test_custom_id_factory(self):
        parser = BankCSVParser(id_factory=lambda row, d, amount, payee: f"row-{row}")
        result = parser.parse("Date,Amount,Description\n10/15/2025,-1.00,A\n")
        assert result.transactions[0].id == "row-2"

    def test_missing_required_columns(self):
        fmt = CSVFormat(date_column=ByName("Posted"))
        with pytest.raises(ValueError, match="Missing required columns"):
            BankCSVParser(fmt).parse("Date,Amount,Description\n10/15/2025,-1.00,A\n")

    def test_no_amount_configuration_yields_nothing(self):
        fmt = CSVFormat(amount_column=None)
        result = BankCSVParser(fmt).parse("Date,Amount,Description\n10/15/2025,-1.00,A\n")

        assert result.transactions == []
        assert result.errors == []

    def test_file_not_found(self):
        with pytest.raises(FileNotFoundError):
            BankCSVParser().parse_file("/nonexistent/statement.csv")

    def test_byte_order_mark(self, tmp_path):
        csv_file = tmp_path / "bom.csv"
        csv_file.write_text("\ufeffDate,Amount,Description\n10/15/2025,-1.00,A\n", encoding="utf-8")

        result = BankCSVParser().parse_file(csv_file)
        assert result.valid_rows == 1

    def test_empty_content(self):
        with pytest.raises(ValueError, match="empty"):
            BankCSVParser().parse("")


class TestParseDate:

    @pytest.mark.parametrize("value,fmt,expected", [
        ("10/15/2025", "MM/DD/YYYY", date(2025, 10, 15)),
        ("15/10/2025", "DD/MM/YYYY", date(2025, 10, 15)),
        ("2025-10-15", "YYYY-MM-DD", date(2025, 10, 15)),
        ("10-15-2025", "MM-DD-YYYY", date(2025, 10, 15)),
        ("Oct 15, 2025", "MMM dd, yyyy", date(2025, 10, 15)),
    ])
    def test_known_formats(self, value, fmt, expected):
        assert parse_date(value, fmt) == expected

    def test_falls_back_to_generic_parsing(self):
        assert parse_date("2025-10-15", "MM/DD/YYYY") == date(2025, 10, 15)

    def test_unparseable(self):
        with pytest.raises(ValueError, match="Unable to parse date"):
            parse_date("someday", "MM/DD/YYYY")

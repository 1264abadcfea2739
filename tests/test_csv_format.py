"""Tests for CSV format auto-detection."""

import pandas as pd
import pytest

from ynab_reconcile.parsers.csv_format import (
    ByIndex,
    ByName,
    CSVFormat,
    column_ref,
    detect_date_format,
    detect_delimiter,
    detect_format,
    quote_split_month_dates,
    resolve_column,
    split_line,
)


class TestColumnRef:

    def test_coercion(self):
        assert column_ref("Amount") == ByName("Amount")
        assert column_ref("3") == ByIndex(3)
        assert column_ref(2) == ByIndex(2)
        assert column_ref(ByName("Date")) == ByName("Date")

    def test_resolve_by_name(self):
        row = pd.Series({"Date": " 10/15/2025 ", "Amount": "-1.00"})
        assert resolve_column(ByName("Date"), row) == "10/15/2025"
        assert resolve_column(ByName("Memo"), row) == ""

    def test_resolve_by_index(self):
        row = pd.Series(["10/15/2025", "-1.00"])
        assert resolve_column(ByIndex(1), row) == "-1.00"
        assert resolve_column(ByIndex(5), row) == ""
        assert resolve_column(None, row) == ""

    def test_resolve_missing_value(self):
        row = pd.Series(["10/15/2025", float("nan")])
        assert resolve_column(ByIndex(1), row) == ""


class TestDelimiter:

    def test_comma(self):
        assert detect_delimiter(["Date,Amount,Description", "10/15/2025,-1.00,Coffee"]) == ","

    def test_semicolon(self):
        assert detect_delimiter(["Date;Amount;Description", "2025-10-15;-1,00;Coffee"]) == ";"

    def test_tab(self):
        assert detect_delimiter(["Date\tAmount\tDescription", "10/15/2025\t-1.00\tCoffee"]) == "\t"

    def test_pipe(self):
        assert detect_delimiter(["Date|Amount|Description", "10/15/2025|-1.00|Coffee"]) == "|"

    def test_quoted_delimiters_are_not_separators(self):
        lines = ['Date,Description,Amount', '10/15/2025,"ACME, INC",-5.00']
        assert detect_delimiter(lines) == ","
        assert split_line(lines[1], ",") == (["10/15/2025", "ACME, INC", "-5.00"], True)


class TestDateFormat:

    @pytest.mark.parametrize("value,expected", [
        ("10/15/2025", "MM/DD/YYYY"),
        ("1/5/2025", "MM/DD/YYYY"),
        ("2025-10-15", "YYYY-MM-DD"),
        ("10-15-2025", "MM-DD-YYYY"),
        ("Sep 18, 2025", "MMM dd, yyyy"),
        ("yesterday", "MM/DD/YYYY"),
        (None, "MM/DD/YYYY"),
    ])
    def test_detect(self, value, expected):
        assert detect_date_format(value) == expected

    def test_requote_split_month_date(self):
        assert quote_split_month_dates("Sep 18, 2025,Coffee,-4.50") == '"Sep 18, 2025",Coffee,-4.50'
        assert quote_split_month_dates("09/18/2025,Coffee,-4.50") == "09/18/2025,Coffee,-4.50"


class TestDetectFormat:

    def test_standard_header(self):
        fmt = detect_format("Date,Amount,Description\n10/15/2025,-45.23,Shell Gas Station\n")

        assert fmt == CSVFormat(
            delimiter=",",
            has_header=True,
            date_column=ByName("Date"),
            amount_column=ByName("Amount"),
            description_column=ByName("Description"),
            date_format="MM/DD/YYYY",
        )

    def test_header_synonyms(self):
        fmt = detect_format("Transaction Date,Merchant,Dollar Amount\n2025-10-15,Shell,-45.23\n")

        assert fmt.date_column == ByName("Transaction Date")
        assert fmt.amount_column == ByName("Dollar Amount")
        assert fmt.description_column == ByName("Merchant")
        assert fmt.date_format == "YYYY-MM-DD"

    def test_header_fallback_to_positions(self):
        fmt = detect_format("When,How Much,What\n10/15/2025,-1.00,Coffee\n")

        assert fmt.date_column == ByName("When")
        assert fmt.amount_column == ByName("How Much")
        assert fmt.description_column == ByName("What")

    def test_debit_credit_header_preferred(self):
        fmt = detect_format("Date,Description,Debit,Credit\n09/15/2023,Test,123.45,\n09/16/2023,Test2,,67.89")

        assert fmt.uses_debit_credit
        assert fmt.amount_column is None
        assert fmt.debit_column == ByName("Debit")
        assert fmt.credit_column == ByName("Credit")
        assert fmt.description_column == ByName("Description")

    def test_withdrawal_deposit_synonyms(self):
        fmt = detect_format("Posting Date,Payee,Withdrawals,Deposits\n10/15/2025,Rent,1500.00,\n")

        assert fmt.debit_column == ByName("Withdrawals")
        assert fmt.credit_column == ByName("Deposits")

    def test_no_header(self):
        fmt = detect_format("10/15/2025,-45.23,Shell\n10/16/2025,-5.00,Coffee\n")

        assert not fmt.has_header
        assert fmt.date_column == ByIndex(0)
        assert fmt.amount_column == ByIndex(1)
        assert fmt.description_column == ByIndex(2)

    def test_no_header_debit_credit(self):
        fmt = detect_format("10/15/2025,Coffee,4.50,\n10/16/2025,Refund,,10.00\n")

        assert not fmt.has_header
        assert fmt.uses_debit_credit
        assert fmt.debit_column == ByIndex(2)
        assert fmt.credit_column == ByIndex(3)

    def test_no_header_unquoted_month_dates(self):
        fmt = detect_format("Sep 18, 2025,-4.50,Coffee Shop\nSep 19, 2025,-30.00,Gas\n")

        assert not fmt.has_header
        assert fmt.date_format == "MMM dd, yyyy"
        assert fmt.amount_column == ByIndex(1)

    def test_semicolon_file(self):
        fmt = detect_format("Date;Amount;Description\n2025-10-15;-45.23;Shell\n")

        assert fmt.delimiter == ";"
        assert fmt.date_format == "YYYY-MM-DD"

    def test_bom_is_ignored(self):
        fmt = detect_format("\ufeffDate,Amount,Description\n10/15/2025,-1.00,Coffee\n")
        assert fmt.date_column == ByName("Date")

    @pytest.mark.parametrize("content", ["", "   \n  "])
    def test_empty_content(self, content):
        with pytest.raises(ValueError, match="empty"):
            detect_format(content)

    def test_empty_first_line(self):
        with pytest.raises(ValueError, match="empty first line"):
            detect_format("\nDate,Amount,Description\n10/15/2025,-1.00,Coffee")

"""Contract tests for the Tastytrade transaction history CSV format.

These pin the parser's behaviour against real-shaped export files in
tests/fixtures/csv.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from broker_ledger.lib.csv_models import MoneyMovementSubType, TradeSubType
from broker_ledger.lib.errors import ParseErrorType
from broker_ledger.services.csv_parser import (
    TastytradeCSVParser,
    detect_broker_format,
    parse_decimal,
    parse_expiration_date,
    parse_tastytrade_date,
)


DEPOSIT_ROW = "2024-05-01T10:00:00+0000,Money Movement,Deposit,,,,Wire deposit,100.00,0,,0.00,0.00,,,,,,,,USD"


@pytest.fixture
def parser():
    return TastytradeCSVParser()


@pytest.mark.contract
class TestTastytradeSampleFile:
    """Parsing tests/fixtures/csv/tastytrade_sample.csv."""

    def test_counts(self, parser, csv_dir):
        result = parser.parse_file(csv_dir / "tastytrade_sample.csv")

        assert result.success
        assert result.total_rows == 8
        assert result.processed_count == 8
        assert result.skipped_count == 0
        assert len(result.transactions) == 8

    def test_option_row_fields(self, parser, csv_dir):
        txn = parser.parse_file(csv_dir / "tastytrade_sample.csv").transactions[1]

        assert txn.line_number == 3
        assert txn.date == datetime(2024, 5, 2, 14, 30, tzinfo=timezone.utc)
        assert txn.symbol == "PLTR  240531P00020000"
        assert txn.is_option
        assert txn.value == Decimal("100.00")
        assert txn.quantity == Decimal("2")
        assert txn.commissions == Decimal("-2.00")
        assert txn.fees == Decimal("-0.28")
        assert txn.expiration_date == date(2024, 5, 31)
        assert txn.strike_price == Decimal("20")
        assert txn.call_or_put == "PUT"
        assert txn.order_number == "1001"
        assert txn.tag.trade_sub_type == TradeSubType.SELL_TO_OPEN
        assert txn.raw_line.startswith("2024-05-02T14:30:00+0000,Trade,Sell to Open")

    def test_thousands_separator_and_dashes(self, parser, csv_dir):
        """Quoted "5,000.00" parses; "--" commissions are zero."""
        transactions = parser.parse_file(csv_dir / "tastytrade_sample.csv").transactions

        assert transactions[0].value == Decimal("5000.00")
        assert transactions[2].value == Decimal("-1800.00")
        assert transactions[3].commissions == Decimal("0")
        assert transactions[3].fees == Decimal("0")

    def test_tags(self, parser, csv_dir):
        transactions = parser.parse_file(csv_dir / "tastytrade_sample.csv").transactions

        assert transactions[0].tag.movement_sub_type == MoneyMovementSubType.DEPOSIT
        assert transactions[3].tag.movement_sub_type == MoneyMovementSubType.DIVIDEND
        assert transactions[6].tag.movement_sub_type == MoneyMovementSubType.BALANCE_ADJUSTMENT
        assert transactions[7].tag.movement_sub_type == MoneyMovementSubType.CREDIT_INTEREST

    def test_description_keeps_inner_quotes(self, parser, csv_dir):
        header = (csv_dir / "tastytrade_sample.csv").read_text().splitlines()[0]
        row = '2024-05-01T10:00:00+0000,Money Movement,Deposit,,,,Wire from "Main",100.00,0,,0.00,0.00,,,,,,,,USD'

        result = parser.parse_content(f"{header}\n{row}\n")

        assert result.transactions[0].description == 'Wire from "Main"'


@pytest.mark.contract
class TestTastytradeErrors:
    """Row and file level failures."""

    def test_missing_header_fails_whole_file(self, parser, csv_dir):
        result = parser.parse_file(csv_dir / "tastytrade_missing_header.csv")

        assert result.transactions == []
        assert result.processed_count == 0
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.line_number == 1
        assert error.detail == "Headers"
        assert error.error_type == ParseErrorType.MISSING_REQUIRED_FIELD
        assert error.message == "Expected 20 columns, found 19"

    def test_reordered_header_is_rejected(self, parser):
        content = (
            "Type,Date,Sub Type,Action,Symbol,Instrument Type,Description,Value,Quantity,"
            "Average Price,Commissions,Fees,Multiplier,Root Symbol,Underlying Symbol,"
            "Expiration Date,Strike Price,Call or Put,Order #,Currency\n"
        )

        result = parser.parse_content(content)

        assert "Header mismatch" in result.errors[0].message
        assert "column 1: expected 'Date', found 'Type'" in result.errors[0].message

    def test_bad_rows_fail_individually(self, parser, csv_dir):
        """An invalid date and an unknown type fail their rows; the rest parse."""
        result = parser.parse_file(csv_dir / "tastytrade_with_errors.csv")

        assert result.total_rows == 5
        assert result.processed_count == 3
        assert result.skipped_count == 2
        assert [e.line_number for e in result.errors] == [4, 5]
        assert result.errors[0].error_type == ParseErrorType.INVALID_DATE_FORMAT
        assert result.errors[0].detail == "Date"
        assert result.errors[0].raw_line.startswith("31/05/2024")
        assert result.errors[1].error_type == ParseErrorType.INVALID_TRANSACTION_TYPE
        assert [t.line_number for t in result.transactions] == [2, 3, 6]

    def test_bad_number_is_row_error(self, parser, csv_dir):
        header = (csv_dir / "tastytrade_sample.csv").read_text().splitlines()[0]
        row = "2024-05-01T10:00:00+0000,Money Movement,Deposit,,,,Wire,abc,0,,0.00,0.00,,,,,,,,USD"

        result = parser.parse_content(f"{header}\n{row}\n")

        assert result.errors[0].error_type == ParseErrorType.INVALID_NUMERIC_VALUE
        assert result.errors[0].detail == "Value"

    def test_oversized_row_fails_alone(self, parser, csv_dir):
        """A row with more fields than the reader accepts is one row error."""
        header = (csv_dir / "tastytrade_sample.csv").read_text().splitlines()[0]
        content = "\n".join([header, DEPOSIT_ROW, "x" + "," * 80, DEPOSIT_ROW]) + "\n"

        result = parser.parse_content(content)

        assert result.total_rows == 3
        assert result.processed_count == 2
        assert result.skipped_count == 1
        assert [e.line_number for e in result.errors] == [3]
        assert result.errors[0].message == "Row has 81 fields, more than 64"
        assert result.errors[0].error_type == ParseErrorType.INVALID_DATA_FORMAT
        assert [t.line_number for t in result.transactions] == [2, 4]

    def test_unterminated_quote_fails_alone(self, parser, csv_dir):
        """An open quote does not swallow the lines after it."""
        header = (csv_dir / "tastytrade_sample.csv").read_text().splitlines()[0]
        broken = DEPOSIT_ROW.replace("Wire deposit", '"Wire deposit')
        content = "\n".join([header, DEPOSIT_ROW, broken, DEPOSIT_ROW, DEPOSIT_ROW]) + "\n"

        result = parser.parse_content(content)

        assert result.processed_count == 3
        assert [e.line_number for e in result.errors] == [3]
        assert result.errors[0].message == "Unterminated quoted field"
        assert result.errors[0].raw_line == broken
        assert [t.line_number for t in result.transactions] == [2, 4, 5]

    def test_extra_fields_are_row_error(self, parser, csv_dir):
        header = (csv_dir / "tastytrade_sample.csv").read_text().splitlines()[0]

        result = parser.parse_content(f"{header}\n{DEPOSIT_ROW},extra\n{DEPOSIT_ROW}\n")

        assert result.processed_count == 1
        assert result.errors[0].message == "Expected 20 fields, found 21"
        assert result.errors[0].detail == "All fields"

    def test_empty_content(self, parser):
        result = parser.parse_content("")

        assert result.success
        assert result.total_rows == 0

    def test_missing_file(self, parser, tmp_path):
        result = parser.parse_file(tmp_path / "nope.csv")

        assert result.errors[0].line_number == 0
        assert result.errors[0].detail == "File access"


@pytest.mark.contract
class TestFieldParsers:
    """Field-level parsing helpers."""

    def test_date_with_offset(self):
        parsed = parse_tastytrade_date("2024-05-31T14:42:13+0100")

        assert parsed.utcoffset() == timedelta(hours=1)
        assert parsed.hour == 14

    @pytest.mark.parametrize(
        "value,expected",
        [("5/31/24", date(2024, 5, 31)), ("05/31/24", date(2024, 5, 31)), ("5/31/2024", date(2024, 5, 31))],
    )
    def test_expiration_formats(self, value, expected):
        assert parse_expiration_date(value) == expected

    def test_blank_expiration(self):
        assert parse_expiration_date("") is None

    @pytest.mark.parametrize(
        "value,expected",
        [("1,234.56", Decimal("1234.56")), ("--", Decimal("0")), ("", Decimal("0")), ("-0.14", Decimal("-0.14"))],
    )
    def test_decimal(self, value, expected):
        assert parse_decimal(value, "Value") == expected


@pytest.mark.contract
class TestDetectBrokerFormat:
    def test_formats(self, csv_dir):
        assert detect_broker_format(csv_dir / "tastytrade_sample.csv") == "tastytrade"
        assert detect_broker_format(csv_dir / "ibkr_sample.csv") == "ibkr"

    def test_unknown(self, tmp_path):
        path = tmp_path / "other.csv"
        path.write_text("a,b,c\n1,2,3\n")

        assert detect_broker_format(path) is None
        assert detect_broker_format(tmp_path / "missing.csv") is None

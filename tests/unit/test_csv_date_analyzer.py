"""Unit tests for CSV date range analysis."""

from datetime import datetime

import pytest

from broker_ledger.services.csv_date_analyzer import (
    analyze_content,
    analyze_file,
    analyze_files,
    calculate_content_hash,
    extract_date_from_filename,
    parse_date_field,
)


@pytest.mark.unit
class TestParseDateField:
    """Test suite for parse_date_field."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2024-05-31T14:42:13+0100", datetime(2024, 5, 31, 13, 42, 13)),
            ("2025-10-01, 09:30:00", datetime(2025, 10, 1, 9, 30)),
            ("2025-10-01", datetime(2025, 10, 1)),
            ("20251031", datetime(2025, 10, 31)),
            ("10/15/2025", datetime(2025, 10, 15)),
        ],
    )
    def test_date_shapes(self, value, expected):
        assert parse_date_field(value) == expected

    @pytest.mark.parametrize("value", ["100", "1,800.00", "AAPL", "", "1999-12-31", "5/31/24"])
    def test_non_dates(self, value):
        """Numbers, text, implausible years and short years are ignored."""
        assert parse_date_field(value) is None


@pytest.mark.unit
class TestExtractDateFromFilename:
    def test_ibkr_statement_name(self):
        assert extract_date_from_filename("U7654321_20251031.csv") == datetime(2025, 10, 31)

    def test_tastytrade_range_name(self):
        assert extract_date_from_filename("tastytrade_240601_to_240615.csv") == datetime(2024, 6, 1)

    def test_no_date(self):
        assert extract_date_from_filename("transactions.csv") is None


@pytest.mark.unit
class TestAnalyzeFile:
    """Test suite for single-file analysis."""

    def test_tastytrade_sample(self, csv_dir):
        metadata = analyze_file(csv_dir / "tastytrade_sample.csv")

        assert metadata.record_count == 8
        assert metadata.earliest_date == datetime(2024, 5, 1, 10, 0)
        assert metadata.latest_date == datetime(2024, 5, 31, 21, 0)
        assert len(metadata.content_hash) == 64

    def test_filename_fallback(self, tmp_path):
        """Without dates in the rows the filename date is used."""
        path = tmp_path / "U1234567_20240131.csv"
        content = "Statement,Header,Field Name,Field Value\nStatement,Data,BrokerName,IB\n"

        metadata = analyze_content(path, content)

        assert metadata.earliest_date == metadata.latest_date == datetime(2024, 1, 31)
        assert metadata.record_count == 1

    def test_hash_is_content_based(self):
        assert calculate_content_hash("a,b\n") == calculate_content_hash("a,b\n")
        assert calculate_content_hash("a,b\n") != calculate_content_hash("a,c\n")


@pytest.mark.unit
class TestAnalyzeFiles:
    """Test suite for multi-file ordering."""

    def test_orders_chronologically_and_reports_gap(self, csv_dir):
        later = csv_dir / "tastytrade_240616_to_240630.csv"
        earlier = csv_dir / "tastytrade_240601_to_240615.csv"

        analysis = analyze_files([later, earlier])

        assert [f.path for f in analysis.files] == [earlier, later]
        assert len(analysis.gaps) == 1
        assert analysis.gaps[0].days == 14
        assert analysis.warnings == ["Date gap of 14 day(s) between 2024-06-03 and 2024-06-17"]
        assert analysis.total_records == 2
        assert analysis.date_range == (datetime(2024, 6, 3, 14, 0), datetime(2024, 6, 17, 14, 0))

    def test_overlap_is_reported(self, tmp_path):
        header = "Date,Value\n"
        first = tmp_path / "a.csv"
        second = tmp_path / "b.csv"
        first.write_text(header + "2024-06-01T10:00:00+0000,1\n2024-06-02T10:00:00+0000,2\n")
        second.write_text(header + "2024-06-02T10:00:00+0000,2\n2024-06-03T10:00:00+0000,3\n")

        analysis = analyze_files([second, first])

        assert [f.path for f in analysis.files] == [first, second]
        assert len(analysis.overlaps) == 1
        assert analysis.gaps == []
        assert "both contain 2024-06-02 10:00:00" in analysis.warnings[0]

    def test_missing_file_sorted_last(self, csv_dir, tmp_path):
        missing = tmp_path / "missing.csv"
        sample = csv_dir / "tastytrade_sample.csv"

        analysis = analyze_files([missing, sample])

        assert [f.path for f in analysis.files] == [sample, missing]
        assert analysis.files[1].content_hash == ""

"""Date range analysis for broker CSV files.

Before a multi-file import the files are ordered chronologically, so FIFO
matching sees openings before closings even when the user passes the
files in any order. Gaps and overlaps between consecutive files are
reported as warnings.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from dateutil import parser as date_parser

from broker_ledger.lib.config import DATE_GAP_WARNING_DAYS
from broker_ledger.lib.records import normalize_timestamp
from broker_ledger.services.csv_parser import read_raw_rows

logger = logging.getLogger(__name__)

# Only fields shaped like a date are handed to dateutil; its fuzzy matching
# would otherwise read plain numbers such as quantities as dates.
DATE_FIELD_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{4}|\d{8})([ T;,].*)?$")
FILENAME_FULL_DATE_PATTERN = re.compile(r"(?<!\d)(\d{8})(?!\d)")  # U1234567_20240131.csv
FILENAME_RANGE_PATTERN = re.compile(r"_(\d{6})_to_\d{6}")  # tastytrade_240101_to_240131.csv
MIN_PLAUSIBLE_YEAR = 2000


@dataclass
class CsvFileMetadata:
    """Date information for one CSV file."""

    path: Path
    earliest_date: datetime | None
    latest_date: datetime | None
    record_count: int
    content_hash: str
    dates: list[datetime] = field(default_factory=list)

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass
class DateGap:
    previous_end: datetime
    next_start: datetime
    days: int


@dataclass
class DateOverlap:
    previous_file: str
    next_file: str
    date: datetime


@dataclass
class MultiFileAnalysis:
    """Files in processing order plus sequence diagnostics."""

    files: list[CsvFileMetadata] = field(default_factory=list)
    gaps: list[DateGap] = field(default_factory=list)
    overlaps: list[DateOverlap] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def total_records(self) -> int:
        return sum(f.record_count for f in self.files)

    @property
    def date_range(self) -> tuple[datetime, datetime] | None:
        dates = [d for f in self.files for d in f.dates]
        if not dates:
            return None
        return (min(dates), max(dates))


def calculate_content_hash(content: str) -> str:
    """SHA-256 of the file text, hex encoded."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def parse_date_field(value: str) -> datetime | None:
    """Parse a CSV field as a date if it looks like one and is after 2000."""
    value = value.strip()
    if not DATE_FIELD_PATTERN.match(value):
        return None
    try:
        if len(value) == 8 and value.isdigit():
            parsed = datetime.strptime(value, "%Y%m%d")
        else:
            parsed = date_parser.parse(value.replace(";", " ").replace(", ", " "))
    except (ValueError, OverflowError):
        return None

    parsed = normalize_timestamp(parsed)
    if parsed.year <= MIN_PLAUSIBLE_YEAR:
        return None
    return parsed


def extract_date_from_filename(filename: str) -> datetime | None:
    """
    Date embedded in a broker export filename.

    Examples:
        >>> extract_date_from_filename("U1234567_20240131.csv")
        datetime.datetime(2024, 1, 31, 0, 0)
        >>> extract_date_from_filename("tastytrade_transactions_240101_to_240131.csv")
        datetime.datetime(2024, 1, 1, 0, 0)
    """
    match = FILENAME_FULL_DATE_PATTERN.search(filename)
    if match:
        try:
            return datetime.strptime(match.group(1), "%Y%m%d")
        except ValueError:
            return None

    match = FILENAME_RANGE_PATTERN.search(filename)
    if match:
        try:
            return datetime.strptime(match.group(1), "%y%m%d")
        except ValueError:
            return None
    return None


def analyze_content(path: Path, content: str) -> CsvFileMetadata:
    """Analyze already-read file content; the first row is treated as a header."""
    rows = read_raw_rows(content).rows if content.strip() else []
    data_rows = [row for row in rows[1:] if row]

    dates: set[datetime] = set()
    for row in data_rows:
        for value in row:
            parsed = parse_date_field(value)
            if parsed is not None:
                dates.add(parsed)
                break

    ordered = sorted(dates)
    if ordered:
        earliest, latest = ordered[0], ordered[-1]
    else:
        earliest = latest = extract_date_from_filename(path.name)

    return CsvFileMetadata(
        path=path,
        earliest_date=earliest,
        latest_date=latest,
        record_count=len(data_rows),
        content_hash=calculate_content_hash(content),
        dates=ordered,
    )


def analyze_file(path: Path) -> CsvFileMetadata:
    """
    Earliest and latest dates, record count and content hash of a CSV file.

    Dates come from the file content; the filename is only used when no row
    carries a parseable date.

    Raises:
        OSError: If the file cannot be read
    """
    content = path.read_text(encoding="utf-8-sig")
    return analyze_content(path, content)


def _sort_key(metadata: CsvFileMetadata) -> tuple[int, datetime, str]:
    # Files without any date go last, in name order
    if metadata.earliest_date is None:
        return (1, datetime.max, metadata.filename)
    return (0, metadata.earliest_date, metadata.filename)


def detect_gaps(files: list[CsvFileMetadata]) -> list[DateGap]:
    gaps = []
    for previous, following in zip(files, files[1:]):
        if previous.latest_date is None or following.earliest_date is None:
            continue
        days = (following.earliest_date.date() - previous.latest_date.date()).days
        if days > DATE_GAP_WARNING_DAYS:
            gaps.append(DateGap(previous.latest_date, following.earliest_date, days))
    return gaps


def detect_overlaps(files: list[CsvFileMetadata]) -> list[DateOverlap]:
    overlaps = []
    for previous, following in zip(files, files[1:]):
        if previous.latest_date is None or following.earliest_date is None:
            continue
        if previous.latest_date < following.earliest_date:
            continue
        shared = set(previous.dates) & set(following.dates)
        overlaps.extend(
            DateOverlap(previous.filename, following.filename, d) for d in sorted(shared)
        )
    return overlaps


def analyze_files(paths: list[Path]) -> MultiFileAnalysis:
    """
    Order files chronologically and report gaps and overlaps.

    Unreadable or malformed files are kept (sorted last) so the importer can report them
    as file failures.
    """
    files = []
    for path in paths:
        try:
            files.append(analyze_file(path))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not analyze {path.name}: {e}")
            files.append(
                CsvFileMetadata(
                    path=path, earliest_date=None, latest_date=None, record_count=0, content_hash=""
                )
            )

    files.sort(key=_sort_key)
    analysis = MultiFileAnalysis(files=files)
    analysis.gaps = detect_gaps(files)
    analysis.overlaps = detect_overlaps(files)

    for gap in analysis.gaps:
        analysis.warnings.append(
            f"Date gap of {gap.days} day(s) between {gap.previous_end:%Y-%m-%d} "
            f"and {gap.next_start:%Y-%m-%d}"
        )
    for overlap in analysis.overlaps:
        analysis.warnings.append(
            f"{overlap.previous_file} and {overlap.next_file} both contain {overlap.date:%Y-%m-%d %H:%M:%S}"
        )

    if len(files) > 1:
        logger.info(
            f"Ordered {len(files)} file(s): {len(analysis.gaps)} gap(s), "
            f"{len(analysis.overlaps)} overlap(s)"
        )
    return analysis

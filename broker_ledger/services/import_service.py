"""Import service for broker statement CSV imports.

Runs each file through parse, convert, match and aggregate, then hands the
results to the persistence collaborator. Files of a batch are processed
one at a time in chronological order; imports into the same account are
serialized with a per-account lock.
"""

import asyncio
import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from broker_ledger.lib.broker_mappings import IBKR_OPTION_CATEGORIES, IBKR_STOCK_CATEGORIES
from broker_ledger.lib.errors import (
    ImportCancelledError,
    ImportErrorType,
    ImportWarningType,
    InvalidOptionSymbolError,
    ParseErrorType,
    RowError,
)
from broker_ledger.lib.ibkr_models import IBKRStatementData
from broker_ledger.lib.option_symbols import parse_ibkr_option_symbol
from broker_ledger.lib.records import ConvertedRecords, OptionType
from broker_ledger.lib.validators import validate_broker
from broker_ledger.models import ImportBatchStatus
from broker_ledger.services.adjustment_detector import apply_adjustments, get_adjustment_summary
from broker_ledger.services.csv_date_analyzer import CsvFileMetadata, analyze_files
from broker_ledger.services.csv_parser import ParseResult, TastytradeCSVParser, detect_broker_format
from broker_ledger.services.data_converter import ConversionResult, TastytradeConverter
from broker_ledger.services.ibkr_converter import IBKRConverter
from broker_ledger.services.ibkr_parser import IBKRParseResult, IBKRStatementParser
from broker_ledger.services.option_lot_service import check_option_states, match_fifo
from broker_ledger.services.persistence_service import ImportRecord, PersistenceService
from broker_ledger.services.snapshot_service import OptionMarkKey, SnapshotAggregator
from broker_ledger.services.strategy_detector import DetectedStrategy

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, float], None]


class ImportStatus(str, enum.Enum):
    """Processing state of one file."""

    PENDING = "Pending"
    PARSING = "Parsing"
    CONVERTING = "Converting"
    MATCHING = "Matching"
    AGGREGATING = "Aggregating"
    DONE = "Done"
    FAILED = "Failed"


class CancellationToken:
    """Cooperative cancellation, checked by the importer between files."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class ImportErrorEntry:
    """An error reported in an ImportResult."""

    error_message: str
    error_type: ImportErrorType
    filename: str
    row_number: int | None = None
    raw_data: str | None = None


@dataclass
class ImportWarningEntry:
    """A warning reported in an ImportResult."""

    warning_message: str
    warning_type: ImportWarningType
    row_number: int | None = None
    raw_data: str | None = None


@dataclass
class ImportedDataSummary:
    """Counts of records written by a batch."""

    trades: int = 0
    broker_movements: int = 0
    dividends: int = 0
    option_trades: int = 0
    new_tickers: int = 0


@dataclass
class FileImportResult:
    """Outcome of one file."""

    filename: str
    broker: str
    status: ImportStatus = ImportStatus.PENDING
    total_rows: int = 0
    processed_records: int = 0
    skipped_records: int = 0
    reference_records: int = 0
    errors: list[RowError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skipped_sections: list[str] = field(default_factory=list)
    strategies: list[DetectedStrategy] = field(default_factory=list)
    adjustment_summary: dict = field(default_factory=dict)
    records: ConvertedRecords = field(default_factory=ConvertedRecords)
    new_tickers: list[str] = field(default_factory=list)
    batch_id: int | None = None
    duplicate_of: int | None = None
    processing_time_ms: int = 0

    @property
    def success(self) -> bool:
        return self.status == ImportStatus.DONE and not self.errors and self.duplicate_of is None


@dataclass
class ImportResult:
    """Outcome of an import batch.

    success is False when any file or row produced an error, even if other
    rows were imported; check processed_records and errors to tell a
    partial import from a failed one.
    """

    success: bool
    processed_files: int
    processed_records: int
    skipped_records: int
    total_records: int
    processing_time_ms: int
    reference_records: int = 0
    errors: list[ImportErrorEntry] = field(default_factory=list)
    warnings: list[ImportWarningEntry] = field(default_factory=list)
    imported_data: ImportedDataSummary = field(default_factory=ImportedDataSummary)
    file_results: list[FileImportResult] = field(default_factory=list)


def _file_error(message: str, detail: str) -> RowError:
    return RowError(
        line_number=0,
        message=message,
        raw_line="",
        error_type=ParseErrorType.VALIDATION_ERROR,
        detail=detail,
    )


def market_prices(data: IBKRStatementData) -> tuple[dict[str, Decimal], dict[OptionMarkKey, Decimal]]:
    """Stock close prices and option marks from the Open Positions section."""
    stock_prices: dict[str, Decimal] = {}
    option_marks: dict[OptionMarkKey, Decimal] = {}
    for position in data.open_positions:
        if position.asset_category in IBKR_STOCK_CATEGORIES:
            stock_prices[position.symbol] = position.close_price
        elif position.asset_category in IBKR_OPTION_CATEGORIES:
            try:
                parsed = parse_ibkr_option_symbol(position.symbol)
            except InvalidOptionSymbolError as e:
                logger.debug(f"Open position line {position.line_number} skipped: {e.message}")
                continue
            key = (parsed.ticker, OptionType.from_broker(parsed.option_type), parsed.strike, parsed.expiration)
            option_marks[key] = position.close_price
    return stock_prices, option_marks


class ImportService:
    """Service for importing broker statement CSV files.

    Share one instance per process: the per-account locks live on it.
    """

    def __init__(self, persistence: PersistenceService):
        """Initialize import service.

        Args:
            persistence: Storage collaborator for records, snapshots and history
        """
        self.persistence = persistence
        self.parsers = {
            "tastytrade": TastytradeCSVParser(),
            "ibkr": IBKRStatementParser(),
        }
        self._account_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        if account_id not in self._account_locks:
            self._account_locks[account_id] = asyncio.Lock()
        return self._account_locks[account_id]

    async def import_files(
        self,
        paths: list[Path],
        broker: str,
        account_name: str,
        progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ImportResult:
        """
        Import a batch of CSV files from one broker into one account.

        Args:
            paths: CSV files, any order; they are processed chronologically
            broker: 'tastytrade' or 'ibkr'
            account_name: Broker account name, created on first import
            progress: Called after each file with (filename, fraction done)
            cancellation: Checked before each file

        Returns:
            ImportResult for the whole batch

        Raises:
            ValidationError: broker not supported
        """
        broker = validate_broker(broker)

        start = time.perf_counter()
        account = await self.persistence.resolve_or_create_account(broker, account_name)
        result = ImportResult(
            success=False,
            processed_files=0,
            processed_records=0,
            skipped_records=0,
            total_records=0,
            processing_time_ms=0,
        )

        async with self._lock_for(account.id):
            analysis = analyze_files(list(paths))
            for message in analysis.warnings:
                result.warnings.append(
                    ImportWarningEntry(message, ImportWarningType.DATE_ADJUSTMENT)
                )

            total = len(analysis.files)
            for index, metadata in enumerate(analysis.files):
                if cancellation is not None and cancellation.cancelled:
                    cancelled = ImportCancelledError(index, total)
                    logger.warning(cancelled.message)
                    result.errors.append(
                        ImportErrorEntry(
                            error_message=cancelled.message,
                            error_type=ImportErrorType.VALIDATION_ERROR,
                            filename=metadata.filename,
                        )
                    )
                    break

                file_result = await self.import_file(metadata, broker, account.id)
                self._merge(result, file_result)
                if progress is not None:
                    progress(metadata.filename, (index + 1) / total)

        result.success = not result.errors and result.processed_files > 0
        result.processing_time_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"Import finished: {result.processed_files} file(s), {result.processed_records} record(s), "
            f"{len(result.errors)} error(s), {len(result.warnings)} warning(s) "
            f"in {result.processing_time_ms} ms"
        )
        return result

    @staticmethod
    def _merge(result: ImportResult, file_result: FileImportResult) -> None:
        result.file_results.append(file_result)
        result.processed_files += 1
        result.processed_records += file_result.processed_records
        result.skipped_records += file_result.skipped_records
        result.reference_records += file_result.reference_records
        result.total_records += file_result.total_rows

        if file_result.duplicate_of is not None:
            result.errors.append(
                ImportErrorEntry(
                    error_message=(
                        f"{file_result.filename} was already imported (batch {file_result.duplicate_of})"
                    ),
                    error_type=ImportErrorType.DUPLICATE_RECORD,
                    filename=file_result.filename,
                )
            )
        for error in file_result.errors:
            result.errors.append(
                ImportErrorEntry(
                    error_message=error.message,
                    error_type=ImportErrorType.from_parse_error(error.error_type),
                    filename=file_result.filename,
                    row_number=error.line_number or None,
                    raw_data=error.raw_line or None,
                )
            )
        for message in file_result.warnings:
            result.warnings.append(ImportWarningEntry(message, ImportWarningType.DATA_FORMAT_WARNING))
        for symbol in file_result.new_tickers:
            result.warnings.append(
                ImportWarningEntry(f"Ticker {symbol} was not known and has been created", ImportWarningType.TICKER_NOT_FOUND)
            )

        if file_result.status == ImportStatus.DONE:
            records = file_result.records
            summary = result.imported_data
            summary.trades += len(records.equity_trades)
            summary.broker_movements += len(records.movements)
            summary.dividends += len(records.dividends) + len(records.dividend_taxes)
            summary.option_trades += len(records.option_trades)
            summary.new_tickers += len(file_result.new_tickers)

    async def import_file(self, metadata: CsvFileMetadata, broker: str, account_id: str) -> FileImportResult:
        """Import one file; failures are captured in the result, never raised."""
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        file_result = FileImportResult(filename=metadata.filename, broker=broker)

        try:
            await self._process(metadata, broker, account_id, file_result, started_at)
        except Exception as e:
            logger.exception(f"Import of {metadata.filename} failed")
            file_result.status = ImportStatus.FAILED
            file_result.errors.append(_file_error(f"Unexpected error: {e}", type(e).__name__))
            if file_result.batch_id is None:
                await self._record_failure(file_result, metadata, account_id, started_at)

        file_result.processing_time_ms = int((time.perf_counter() - start) * 1000)
        return file_result

    async def _process(
        self,
        metadata: CsvFileMetadata,
        broker: str,
        account_id: str,
        file_result: FileImportResult,
        started_at: datetime,
    ) -> None:
        if metadata.content_hash:
            previous_batch = await self.persistence.find_import_by_hash(account_id, metadata.content_hash)
            if previous_batch is not None:
                logger.warning(f"{metadata.filename} was already imported as batch {previous_batch}")
                file_result.status = ImportStatus.FAILED
                file_result.duplicate_of = previous_batch
                return

        detected = detect_broker_format(metadata.path)
        if detected is not None and detected != broker:
            file_result.warnings.append(
                f"{metadata.filename} appears to be an export from {detected}, not {broker}"
            )

        # Parsing
        file_result.status = ImportStatus.PARSING
        parse_result = self.parsers[broker].parse_file(metadata.path)
        file_result.total_rows = parse_result.total_rows
        file_result.skipped_records = parse_result.skipped_count
        file_result.reference_records = parse_result.reference_count
        file_result.skipped_sections = parse_result.skipped_sections
        file_result.warnings.extend(parse_result.warnings)
        file_result.errors.extend(parse_result.errors)

        if parse_result.errors and not parse_result.transactions:
            file_result.status = ImportStatus.FAILED
            await self._record(file_result, metadata, account_id, started_at, ImportBatchStatus.FAILED)
            return

        # Classifying/Converting
        file_result.status = ImportStatus.CONVERTING
        conversion, stock_prices, option_marks = self._convert(parse_result, account_id)
        file_result.errors.extend(conversion.errors)
        file_result.warnings.extend(conversion.warnings)
        file_result.strategies = conversion.strategies
        file_result.adjustment_summary = get_adjustment_summary(conversion.adjustments)
        file_result.records = conversion.records
        file_result.processed_records = parse_result.processed_count - len(conversion.errors)
        file_result.skipped_records += len(conversion.errors)

        # Matching
        file_result.status = ImportStatus.MATCHING
        stored_units = await self.persistence.load_open_option_units(account_id)
        before = {u.id: (u.is_open, u.strike) for u in stored_units}
        if conversion.adjustments:
            apply_adjustments(stored_units, conversion.adjustments)
        match = match_fifo([*stored_units, *conversion.records.option_trades])
        file_result.warnings.extend(match.warnings)
        file_result.warnings.extend(check_option_states([*stored_units, *conversion.records.option_trades]))
        changed_units = [u for u in stored_units if before[u.id] != (u.is_open, u.strike)]

        # Aggregating
        file_result.status = ImportStatus.AGGREGATING
        aggregator = SnapshotAggregator(
            previous=await self.persistence.latest_snapshots(account_id),
            stock_prices=stock_prices,
            option_marks=option_marks,
        )
        aggregator.seed(stored_units, await self.persistence.load_equity_trades(account_id))
        snapshots = aggregator.aggregate(conversion.records)
        file_result.warnings.extend(aggregator.warnings)

        # Persisting
        for symbol in sorted(conversion.records.tickers):
            resolved = await self.persistence.resolve_or_create_ticker(symbol)
            if resolved.created:
                file_result.new_tickers.append(symbol)
        for code in sorted(conversion.records.currencies):
            await self.persistence.resolve_or_create_currency(code)

        status = ImportBatchStatus.NEEDS_REVIEW if file_result.errors else ImportBatchStatus.COMPLETED
        record = self._import_record(file_result, metadata, account_id, started_at, status)
        file_result.batch_id = await self.persistence.save_import(
            record, conversion.records, changed_units, snapshots
        )

        file_result.status = ImportStatus.DONE
        logger.info(
            f"Imported {metadata.filename}: {file_result.processed_records} record(s), "
            f"{len(file_result.errors)} error(s), {len(snapshots)} snapshot(s)"
        )

    def _convert(
        self, parse_result: ParseResult, account_id: str
    ) -> tuple[ConversionResult, dict[str, Decimal], dict[OptionMarkKey, Decimal]]:
        if isinstance(parse_result, IBKRParseResult):
            stock_prices, option_marks = market_prices(parse_result.data)
            return IBKRConverter(account_id).convert(parse_result.data), stock_prices, option_marks
        return TastytradeConverter(account_id).convert(parse_result.transactions), {}, {}

    async def _record(
        self,
        file_result: FileImportResult,
        metadata: CsvFileMetadata,
        account_id: str,
        started_at: datetime,
        status: ImportBatchStatus,
    ) -> int:
        """Store a batch row for a file whose records are not saved."""
        record = self._import_record(file_result, metadata, account_id, started_at, status)
        file_result.batch_id = await self.persistence.record_import(record)
        return file_result.batch_id

    async def _record_failure(
        self,
        file_result: FileImportResult,
        metadata: CsvFileMetadata,
        account_id: str,
        started_at: datetime,
    ) -> None:
        """Leave a FAILED batch in history; its records were rolled back, so a retry is allowed."""
        file_result.records = ConvertedRecords()
        file_result.processed_records = 0
        try:
            await self._record(file_result, metadata, account_id, started_at, ImportBatchStatus.FAILED)
        except Exception:
            logger.exception(f"Could not record the failed import of {metadata.filename}")

    @staticmethod
    def _import_record(
        file_result: FileImportResult,
        metadata: CsvFileMetadata,
        account_id: str,
        started_at: datetime,
        status: ImportBatchStatus,
    ) -> ImportRecord:
        return ImportRecord(
            account_id=account_id,
            broker=file_result.broker,
            filename=metadata.filename,
            status=status,
            started_at=started_at,
            content_hash=metadata.content_hash or None,
            total_rows=file_result.total_rows,
            successful_count=file_result.processed_records,
            skipped_count=file_result.skipped_records,
            warning_count=len(file_result.warnings),
            duration_seconds=(datetime.now(timezone.utc) - started_at).total_seconds(),
            error_message=file_result.errors[-1].message if status == ImportBatchStatus.FAILED else None,
            errors=list(file_result.errors),
        )

"""Logging configuration with account-number redaction."""

import logging
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any


class AccountRedactionFilter(logging.Filter):
    """Filter to redact broker account numbers and secrets from log messages."""

    # Patterns to match sensitive data
    SENSITIVE_PATTERNS = [
        (re.compile(r"\b(U|DU|F)\d{6,8}\b"), "[ACCOUNT]"),  # IBKR account ids
        (re.compile(r"\b5W[A-Z0-9]{6}\b"), "[ACCOUNT]"),  # Tastytrade account ids
        (
            re.compile(r"(account_number|password|token|secret)=([^&\s]+)", re.IGNORECASE),
            r"\1=[REDACTED]",
        ),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Filter log record to redact sensitive information.

        Args:
            record: Log record to filter

        Returns:
            True to keep the record, False to drop it
        """
        if isinstance(record.msg, str):
            record.msg = self._redact_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = self._redact_dict(record.args)
            elif isinstance(record.args, (list, tuple)):
                record.args = tuple(self._redact_value(arg) for arg in record.args)

        return True

    def _redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        """Redact sensitive keys from dictionary."""
        sensitive_keys = {"account_number", "password", "token", "secret"}
        return {
            k: "[REDACTED]" if k.lower() in sensitive_keys else self._redact_value(v)
            for k, v in data.items()
        }

    def _redact_value(self, value: Any) -> Any:
        """Redact sensitive data from any value type."""
        if isinstance(value, str):
            for pattern, replacement in self.SENSITIVE_PATTERNS:
                value = pattern.sub(replacement, value)
        elif isinstance(value, dict):
            value = self._redact_dict(value)
        elif isinstance(value, (list, tuple)):
            value = type(value)(self._redact_value(item) for item in value)
        return value


def setup_logging(level: int = logging.INFO, log_file: str | None = None) -> None:
    """
    Configure logging with redaction filters and file rotation.

    Args:
        level: Logging level (default: INFO)
        log_file: Path to log file (default: ~/.broker-ledger/broker-ledger.log)
                 Pass an empty string to disable file logging

    Example:
        >>> from broker_ledger.lib.logging_config import setup_logging
        >>> setup_logging(logging.DEBUG, log_file="")
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    redaction_filter = AccountRedactionFilter()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )

    if not root_logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(redaction_filter)
        root_logger.addHandler(console_handler)

        if log_file is None:
            log_file = os.getenv(
                "LOG_FILE", str(Path.home() / ".broker-ledger" / "broker-ledger.log")
            )

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            # Rotating file handler: 10MB per file, keep 5 backup files
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(redaction_filter)
            root_logger.addHandler(file_handler)
    else:
        for handler in root_logger.handlers:
            handler.addFilter(redaction_filter)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with account redaction enabled.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Importing U1234567")  # Logs: Importing [ACCOUNT]
    """
    logger = logging.getLogger(name)

    if not any(isinstance(f, AccountRedactionFilter) for f in logger.filters):
        logger.addFilter(AccountRedactionFilter())

    return logger

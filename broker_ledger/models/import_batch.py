"""
Import batch model for tracking broker statement imports.

One row per imported file, with counts, status and timing.
"""

import enum
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import TIMESTAMP, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from broker_ledger.lib.db import Base

if TYPE_CHECKING:
    from broker_ledger.models.broker import BrokerAccount
    from broker_ledger.models.import_error import ImportError


class ImportBatchStatus(str, enum.Enum):
    """Final state of an imported file."""

    COMPLETED = "completed"
    NEEDS_REVIEW = "needs_review"
    FAILED = "failed"


class ImportBatch(Base):  # type: ignore[misc,valid-type]
    """
    Represents one imported broker statement.

    Attributes:
        id: Unique identifier for the batch
        account_id: Broker account the file was imported into
        broker_source: Broker name ('tastytrade' or 'ibkr')
        filename: Original CSV filename
        content_hash: SHA-256 of the file content
        status: completed, needs_review (row errors), failed or cancelled
        total_rows: Data rows in the file
        successful_count: Rows converted into records
        skipped_count: Rows skipped on purpose (unsupported sections, totals)
        error_count: Rows with errors
        warning_count: Warnings raised while importing
        duration_seconds: Time taken for the file
        started_at: Timestamp when import started
        completed_at: Timestamp when import finished
        error_message: File-level failure, if any
    """

    __tablename__ = "import_batches"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    account_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("broker_accounts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    broker_source: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
    )

    filename: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )

    content_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    status: Mapped[ImportBatchStatus] = mapped_column(
        Enum(ImportBatchStatus),
        nullable=False,
        default=ImportBatchStatus.COMPLETED,
        index=True,
    )

    # Statistics
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    successful_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    warning_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    duration_seconds: Mapped[float | None] = mapped_column(
        Numeric(10, 2),
        nullable=True,
    )

    # Timing
    started_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP,
        nullable=True,
    )

    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Relationships
    account: Mapped["BrokerAccount | None"] = relationship(
        "BrokerAccount",
        back_populates="import_batches",
    )

    errors: Mapped[list["ImportError"]] = relationship(
        "ImportError",
        back_populates="batch",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        """Return string representation of import batch."""
        return (
            f"<ImportBatch(id={self.id}, "
            f"broker={self.broker_source!r}, "
            f"status={self.status.value}, "
            f"successful={self.successful_count}, "
            f"errors={self.error_count})>"
        )

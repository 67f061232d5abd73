"""
Import error model for rows that failed during a broker statement import.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import TIMESTAMP, Enum, ForeignKey, Integer, Text
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from broker_ledger.lib.db import Base
from broker_ledger.lib.errors import ImportErrorType

if TYPE_CHECKING:
    from broker_ledger.models.import_batch import ImportBatch


class ImportError(Base):  # type: ignore[misc,valid-type]
    """
    Represents one failed row of an import.

    Attributes:
        id: Unique identifier for the error
        batch_id: Reference to the import batch
        row_number: Line number in the CSV file (1-indexed, 0 for file-level failures)
        error_type: Import error category
        error_message: Human-readable error message
        original_data: Raw CSV line and detail as JSON
        created_at: Timestamp when error was recorded
    """

    __tablename__ = "import_errors"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    batch_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("import_batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    row_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    error_type: Mapped[ImportErrorType] = mapped_column(
        Enum(ImportErrorType),
        nullable=False,
        index=True,
    )

    error_message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    original_data: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    batch: Mapped["ImportBatch"] = relationship(
        "ImportBatch",
        back_populates="errors",
    )

    def __repr__(self) -> str:
        """Return string representation of import error."""
        return (
            f"<ImportError(id={self.id}, "
            f"batch_id={self.batch_id}, "
            f"row={self.row_number}, "
            f"type={self.error_type.value})>"
        )

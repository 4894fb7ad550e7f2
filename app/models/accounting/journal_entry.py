"""Journal Entry and Journal Line models."""

import datetime as dt
from datetime import datetime
from decimal import Decimal
from uuid import uuid4, UUID
from sqlalchemy import (
    String, Date, DateTime, Enum, ForeignKey, Integer, Numeric, CheckConstraint, Index,
    UniqueConstraint, Uuid,
)
from sqlalchemy.orm import mapped_column, Mapped, relationship

from app.models.base import Base
from app.domain.accounting.enums import SourceModule, JournalStatus


class JournalEntry(Base):
    """Journal Entry model."""

    __tablename__ = "journal_entries"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    source_module: Mapped[SourceModule] = mapped_column(
        Enum(SourceModule),
        default=SourceModule.MANUAL,
        nullable=False
    )
    source_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    status: Mapped[JournalStatus] = mapped_column(
        Enum(JournalStatus),
        default=JournalStatus.DRAFT,
        nullable=False
    )

    # Set on the compensating entry, pointing at the entry it neutralizes
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("journal_entries.id"),
        nullable=True,
        unique=True,
    )

    posted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(100), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    lines: Mapped[list["JournalLine"]] = relationship(
        "JournalLine",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="JournalLine.line_no",
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("organization_id", "idempotency_key", name="uq_journal_entries_idempotency"),
        Index("idx_journal_entries_org_date", "organization_id", "date"),
    )

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit for line in self.lines), Decimal("0"))

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit for line in self.lines), Decimal("0"))


class JournalLine(Base):
    """Journal Line model."""

    __tablename__ = "journal_lines"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    journal_entry_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False
    )
    line_no: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationship
    entry: Mapped[JournalEntry] = relationship("JournalEntry", back_populates="lines")

    account_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("chart_of_accounts.id"),
        nullable=False
    )

    narration: Mapped[str | None] = mapped_column(String(500), nullable=True)

    debit: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0, nullable=False)
    credit: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("debit >= 0", name="check_debit_non_negative"),
        CheckConstraint("credit >= 0", name="check_credit_non_negative"),
        Index("idx_journal_lines_account", "account_id"),
    )

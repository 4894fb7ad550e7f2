"""Business transaction (expense, bill, invoice) and payment models."""

import datetime as dt
from datetime import datetime
from decimal import Decimal
from uuid import uuid4, UUID
from sqlalchemy import (
    String, Date, Enum, ForeignKey, Integer, Numeric, CheckConstraint, Index, UniqueConstraint, Uuid,
)
from sqlalchemy.orm import mapped_column, Mapped, relationship

from app.models.base import Base
from app.domain.accounting.enums import TransactionKind, TransactionStatus, PaymentMode


class BusinessTransaction(Base):
    """A business document that produces ledger impact when posted."""

    __tablename__ = "business_transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    kind: Mapped[TransactionKind] = mapped_column(Enum(TransactionKind), nullable=False)

    reference: Mapped[str] = mapped_column(String(100), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    due_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    contact_id: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus),
        default=TransactionStatus.DRAFT,
        nullable=False
    )
    payment_mode: Mapped[PaymentMode] = mapped_column(
        Enum(PaymentMode),
        default=PaymentMode.CREDIT,
        nullable=False
    )

    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    taxable_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    tax_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    total_paid: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0, nullable=False)

    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    account_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    offset_account_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    narration: Mapped[str | None] = mapped_column(String(500), nullable=True)

    journal_entry_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("journal_entries.id"),
        nullable=True,
        unique=True,
    )
    # Offset account used at posting; settlements reuse it
    offset_account_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("chart_of_accounts.id"),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    items: Mapped[list["TransactionItem"]] = relationship(
        "TransactionItem",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionItem.line_no",
    )
    payments: Mapped[list["PaymentApplication"]] = relationship(
        "PaymentApplication",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="PaymentApplication.created_at",
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
        CheckConstraint("total_amount >= 0", name="check_total_non_negative"),
        CheckConstraint("total_paid <= total_amount", name="check_paid_within_total"),
        Index("idx_business_transactions_org_kind", "organization_id", "kind", "status"),
    )

    @property
    def payment_due(self) -> Decimal:
        """Amount still to be settled."""
        return self.total_amount - (self.total_paid or Decimal("0"))


class TransactionItem(Base):
    """Line item contributing to a transaction total."""

    __tablename__ = "transaction_items"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    transaction_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("business_transactions.id", ondelete="CASCADE"),
        nullable=False
    )
    line_no: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    transaction: Mapped[BusinessTransaction] = relationship("BusinessTransaction", back_populates="items")

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    account_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_item_amount_non_negative"),
    )


class PaymentApplication(Base):
    """Append-only settlement record against a posted transaction."""

    __tablename__ = "payment_applications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    transaction_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("business_transactions.id", ondelete="CASCADE"),
        nullable=False
    )

    transaction: Mapped[BusinessTransaction] = relationship("BusinessTransaction", back_populates="payments")

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    mode: Mapped[PaymentMode] = mapped_column(Enum(PaymentMode), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Settlement entry, when the transaction was posted against a non-cash account
    journal_entry_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("journal_entries.id"),
        nullable=True
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_payment_amount_positive"),
        UniqueConstraint("transaction_id", "idempotency_key", name="uq_payment_idempotency"),
    )

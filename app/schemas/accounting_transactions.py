"""Expense, bill and invoice schemas."""

import datetime as dt
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.domain.accounting.enums import PaymentMode, TransactionKind, TransactionStatus


class TransactionItemInput(BaseModel):
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[str] = Field(default=None, max_length=100)
    account_code: Optional[str] = Field(default=None, max_length=50)
    amount: Decimal


class TransactionCreate(BaseModel):
    """
    Schema for creating a draft transaction.

    total_amount may be omitted when items are given; it is then derived
    from them. When both are given they must agree.
    """
    reference: str = Field(..., min_length=1, max_length=100)
    date: dt.date
    contact_id: str = Field(..., min_length=1, max_length=100)
    total_amount: Optional[Decimal] = None
    taxable_amount: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    payment_mode: PaymentMode = PaymentMode.CREDIT
    due_date: Optional[dt.date] = None
    category: Optional[str] = Field(default=None, max_length=100)
    account_code: Optional[str] = Field(default=None, max_length=50)
    offset_account_code: Optional[str] = Field(default=None, max_length=50)
    narration: Optional[str] = Field(default=None, max_length=500)
    items: List[TransactionItemInput] = Field(default_factory=list)


class TransactionUpdate(BaseModel):
    """Draft-only changes; only the fields sent are applied."""
    reference: Optional[str] = Field(default=None, min_length=1, max_length=100)
    date: Optional[dt.date] = None
    contact_id: Optional[str] = Field(default=None, min_length=1, max_length=100)
    total_amount: Optional[Decimal] = None
    taxable_amount: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    payment_mode: Optional[PaymentMode] = None
    due_date: Optional[dt.date] = None
    category: Optional[str] = Field(default=None, max_length=100)
    account_code: Optional[str] = Field(default=None, max_length=50)
    offset_account_code: Optional[str] = Field(default=None, max_length=50)
    narration: Optional[str] = Field(default=None, max_length=500)
    items: Optional[List[TransactionItemInput]] = None


class TransactionItemResponse(BaseModel):
    id: UUID
    line_no: int
    description: Optional[str] = None
    category: Optional[str] = None
    account_code: Optional[str] = None
    amount: Decimal

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    id: UUID
    amount: Decimal
    date: dt.date
    mode: PaymentMode
    reference: Optional[str] = None
    notes: Optional[str] = None
    journal_entry_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TransactionResponse(BaseModel):
    id: UUID
    organization_id: UUID
    kind: TransactionKind
    reference: str
    date: dt.date
    due_date: Optional[dt.date] = None
    contact_id: str
    status: TransactionStatus
    payment_mode: PaymentMode
    total_amount: Decimal
    taxable_amount: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    total_paid: Decimal
    payment_due: Decimal
    category: Optional[str] = None
    account_code: Optional[str] = None
    offset_account_code: Optional[str] = None
    narration: Optional[str] = None
    journal_entry_id: Optional[UUID] = None
    offset_account_id: Optional[UUID] = None
    version: int
    items: List[TransactionItemResponse] = Field(default_factory=list)
    payments: List[PaymentResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PaymentCreate(BaseModel):
    amount: Decimal
    mode: Optional[PaymentMode] = None
    date: Optional[dt.date] = None
    reference: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=500)


class CancelRequest(BaseModel):
    allow_posted: Optional[bool] = None


class TransactionImportRequest(BaseModel):
    """JSON import: rows use the same keys as the CSV template."""
    rows: List[dict]
    upsert: bool = False

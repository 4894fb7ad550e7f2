"""Journal entry schemas."""

import datetime as dt
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.domain.accounting.enums import JournalStatus, SourceModule


class JournalLineInput(BaseModel):
    """One debit or credit line; exactly one side must be non-zero."""
    account_id: UUID
    debit: Decimal = Field(default=Decimal("0"), ge=0)
    credit: Decimal = Field(default=Decimal("0"), ge=0)
    narration: Optional[str] = Field(default=None, max_length=500)


class JournalEntryCreate(BaseModel):
    date: dt.date
    reference: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    lines: List[JournalLineInput]


class JournalEntryUpdate(BaseModel):
    """Draft-only changes; omitted fields are left as they are."""
    date: Optional[dt.date] = None
    reference: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    lines: Optional[List[JournalLineInput]] = None


class JournalLineResponse(BaseModel):
    id: UUID
    line_no: int
    account_id: UUID
    narration: Optional[str] = None
    debit: Decimal
    credit: Decimal

    class Config:
        from_attributes = True


class JournalEntryResponse(BaseModel):
    id: UUID
    organization_id: UUID
    date: dt.date
    reference: Optional[str] = None
    description: Optional[str] = None
    source_module: SourceModule
    source_id: Optional[UUID] = None
    status: JournalStatus
    reversal_of_id: Optional[UUID] = None
    posted_at: Optional[datetime] = None
    total_debit: Decimal
    total_credit: Decimal
    lines: List[JournalLineResponse]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PostEntryRequest(BaseModel):
    idempotency_key: Optional[str] = Field(default=None, max_length=100)


class ReverseEntryRequest(BaseModel):
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=500)


class BatchEntryRequest(BaseModel):
    ids: List[UUID]


class BatchFailure(BaseModel):
    id: UUID
    kind: str
    message: str


class BatchPostResponse(BaseModel):
    posted: List[JournalEntryResponse]
    failed: List[BatchFailure]


class BatchReverseResponse(BaseModel):
    reversed: List[JournalEntryResponse]
    failed: List[BatchFailure]


class ValidateLinesRequest(BaseModel):
    lines: List[JournalLineInput]


class ValidateLinesResponse(BaseModel):
    is_valid: bool
    errors: List[str]
    total_debit: Decimal
    total_credit: Decimal

"""Chart of Accounts schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from app.domain.accounting.enums import AccountType, NormalBalance
from app.schemas.accounting_journal import JournalEntryResponse
from app.schemas.common import Pagination


class AccountCreate(BaseModel):
    """Schema for creating an account. normal_balance defaults from the type."""
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    account_type: AccountType = Field(..., validation_alias=AliasChoices("account_type", "type"))
    normal_balance: Optional[NormalBalance] = None
    parent_code: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    opening_balance: Decimal = Decimal("0")
    is_cash: bool = False


class AccountUpdate(BaseModel):
    """Full replacement (PUT): code, name and type are required."""
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    account_type: AccountType = Field(..., validation_alias=AliasChoices("account_type", "type"))
    normal_balance: Optional[NormalBalance] = None
    parent_code: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    is_cash: Optional[bool] = None


class AccountPatch(BaseModel):
    """Partial update (PATCH)."""
    code: Optional[str] = Field(default=None, min_length=1, max_length=50)
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    account_type: Optional[AccountType] = Field(default=None, validation_alias=AliasChoices("account_type", "type"))
    normal_balance: Optional[NormalBalance] = None
    parent_code: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    is_cash: Optional[bool] = None


class AccountMove(BaseModel):
    """New parent code; null makes the account a root."""
    parent_code: Optional[str] = None


class AccountResponse(BaseModel):
    id: UUID
    organization_id: UUID
    code: str
    name: str
    description: Optional[str] = None
    account_type: AccountType
    normal_balance: NormalBalance
    parent_code: Optional[str] = None
    level: int
    opening_balance: Decimal
    current_balance: Decimal
    is_cash: bool
    is_system: bool
    is_active: bool
    version: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AccountTreeNode(AccountResponse):
    children: List["AccountTreeNode"] = Field(default_factory=list)


class AccountLevelResponse(BaseModel):
    account_id: UUID
    code: str
    level: int


class AccountStatistics(BaseModel):
    total: int
    by_type: Dict[str, int]
    root_count: int
    leaf_count: int


class TemplateAccount(BaseModel):
    code: str
    name: str
    type: AccountType
    normal_balance: Optional[NormalBalance] = None
    parent_code: Optional[str] = None
    description: Optional[str] = None
    is_cash: bool = False
    is_system: bool = False


class TemplateApplyRequest(BaseModel):
    """Either an industry name or an explicit list of template accounts."""
    industry: Optional[str] = None
    accounts: Optional[List[TemplateAccount]] = None


class TemplateResponse(BaseModel):
    industry: str
    accounts: List[TemplateAccount]


class AccountJournalEntriesResponse(BaseModel):
    account: AccountResponse
    descendant_accounts: List[AccountResponse]
    journal_entries: List[JournalEntryResponse]
    pagination: Pagination

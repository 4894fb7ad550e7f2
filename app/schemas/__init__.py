"""Pydantic schemas for API requests and responses."""

from .common import (
    Pagination,
    Paginated,
    Envelope,
    ErrorBody,
    ErrorResponse,
    ImportRowError,
    ImportResponse,
    MessageResponse,
)
from .accounting_coa import (
    AccountCreate,
    AccountUpdate,
    AccountPatch,
    AccountMove,
    AccountResponse,
    AccountTreeNode,
    AccountStatistics,
    TemplateApplyRequest,
)
from .accounting_journal import (
    JournalLineInput,
    JournalEntryCreate,
    JournalEntryUpdate,
    JournalEntryResponse,
)
from .accounting_transactions import (
    TransactionCreate,
    TransactionUpdate,
    TransactionResponse,
    PaymentCreate,
)

__all__ = [
    "Pagination",
    "Paginated",
    "Envelope",
    "ErrorBody",
    "ErrorResponse",
    "ImportRowError",
    "ImportResponse",
    "MessageResponse",
    "AccountCreate",
    "AccountUpdate",
    "AccountPatch",
    "AccountMove",
    "AccountResponse",
    "AccountTreeNode",
    "AccountStatistics",
    "TemplateApplyRequest",
    "JournalLineInput",
    "JournalEntryCreate",
    "JournalEntryUpdate",
    "JournalEntryResponse",
    "TransactionCreate",
    "TransactionUpdate",
    "TransactionResponse",
    "PaymentCreate",
]

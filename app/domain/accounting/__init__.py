"""Accounting domain module."""

from .enums import (
    AccountType,
    NormalBalance,
    SourceModule,
    JournalStatus,
    TransactionKind,
    TransactionStatus,
    PaymentMode,
)
from .errors import (
    LedgerError,
    ValidationError,
    InvalidAmountError,
    TemplateError,
    ConflictError,
    NotFoundError,
    UnbalancedEntryError,
    AlreadyPostedError,
    AlreadyReversedError,
    CycleError,
    NotPostableStateError,
)

__all__ = [
    "AccountType",
    "NormalBalance",
    "SourceModule",
    "JournalStatus",
    "TransactionKind",
    "TransactionStatus",
    "PaymentMode",
    "LedgerError",
    "ValidationError",
    "InvalidAmountError",
    "TemplateError",
    "ConflictError",
    "NotFoundError",
    "UnbalancedEntryError",
    "AlreadyPostedError",
    "AlreadyReversedError",
    "CycleError",
    "NotPostableStateError",
]

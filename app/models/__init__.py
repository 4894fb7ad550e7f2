"""Database models."""

from .base import Base
from .accounting import (
    ChartOfAccount,
    JournalEntry,
    JournalLine,
    BusinessTransaction,
    TransactionItem,
    PaymentApplication,
)

__all__ = [
    "Base",
    "ChartOfAccount",
    "JournalEntry",
    "JournalLine",
    "BusinessTransaction",
    "TransactionItem",
    "PaymentApplication",
]

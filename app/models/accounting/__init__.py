"""Accounting models."""

from .chart_of_accounts import ChartOfAccount
from .journal_entry import JournalEntry, JournalLine
from .transaction import BusinessTransaction, TransactionItem, PaymentApplication

__all__ = [
    "ChartOfAccount",
    "JournalEntry",
    "JournalLine",
    "BusinessTransaction",
    "TransactionItem",
    "PaymentApplication",
]

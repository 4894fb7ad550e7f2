"""Accounting domain enums."""

from enum import Enum as PyEnum


class AccountType(str, PyEnum):
    """Chart of Accounts account types."""
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class NormalBalance(str, PyEnum):
    """Side on which an account naturally increases."""
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


NORMAL_BALANCE_BY_TYPE: dict[AccountType, NormalBalance] = {
    AccountType.ASSET: NormalBalance.DEBIT,
    AccountType.EXPENSE: NormalBalance.DEBIT,
    AccountType.LIABILITY: NormalBalance.CREDIT,
    AccountType.EQUITY: NormalBalance.CREDIT,
    AccountType.INCOME: NormalBalance.CREDIT,
}


class SourceModule(str, PyEnum):
    """Source module for journal entries."""
    MANUAL = "MANUAL"  # Manual entry
    EXPENSE = "EXPENSE"
    BILL = "BILL"
    INVOICE = "INVOICE"
    PAYMENT = "PAYMENT"  # Settlement of a transaction
    REVERSAL = "REVERSAL"  # Compensating entry
    IMPORT = "IMPORT"  # Journal CSV import


class JournalStatus(str, PyEnum):
    """Journal entry status."""
    DRAFT = "DRAFT"
    POSTED = "POSTED"
    REVERSED = "REVERSED"


class TransactionKind(str, PyEnum):
    """Business document kinds."""
    EXPENSE = "EXPENSE"
    BILL = "BILL"
    INVOICE = "INVOICE"

    @property
    def is_receivable(self) -> bool:
        return self is TransactionKind.INVOICE


class TransactionStatus(str, PyEnum):
    """Business transaction status."""
    DRAFT = "DRAFT"
    POSTED = "POSTED"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class PaymentMode(str, PyEnum):
    """How a transaction is (or will be) settled."""
    CASH = "CASH"
    ONLINE = "ONLINE"
    CREDIT = "CREDIT"

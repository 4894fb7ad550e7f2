"""Business transaction lifecycle: expenses, bills and invoices.

DRAFT -> POSTED -> PARTIAL -> PAID, or DRAFT/POSTED (no payments) -> CANCELLED.

Posting rules:
- EXPENSE / BILL: Debit Expense account(s), Credit offset (Payable or Cash)
- INVOICE: Debit offset (Receivable or Cash), Credit Income account(s)

Settlement rules (when the offset is not already a cash account):
- EXPENSE / BILL payment: Debit offset, Credit Cash
- INVOICE receipt: Debit Cash, Credit offset
"""

import logging
import datetime as dt
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models.accounting import (
    BusinessTransaction,
    ChartOfAccount,
    PaymentApplication,
    TransactionItem,
)
from app.domain.accounting.amounts import ZERO, to_amount, total
from app.domain.accounting.enums import (
    AccountType,
    PaymentMode,
    SourceModule,
    TransactionKind,
    TransactionStatus,
)
from app.domain.accounting.errors import (
    AlreadyPostedError,
    ConflictError,
    InvalidAmountError,
    NotFoundError,
    NotPostableStateError,
    ValidationError,
)
from app.domain.accounting.coa_service import find_account_by_type_and_name
from app.domain.accounting.gl_service import create_journal_entry, get_entry, reverse_entry
from app.domain.accounting.persistence import (
    apply_sort,
    bounded_text,
    commit_or_conflict,
    flush_or_conflict,
    paginate,
)
from app.services.ledger_csv import write_csv

logger = logging.getLogger(__name__)

TRANSACTION_SORT_FIELDS = ("date", "reference", "total_amount", "status", "due_date", "created_at")

EDITABLE_FIELDS = (
    "reference", "date", "due_date", "contact_id", "payment_mode", "category",
    "account_code", "offset_account_code", "narration", "taxable_amount", "tax_amount",
)

TEXT_LIMITS = {
    "reference": 100,
    "contact_id": 100,
    "category": 100,
    "account_code": 50,
    "offset_account_code": 50,
    "narration": 500,
}

_SOURCE_BY_KIND = {
    TransactionKind.EXPENSE: SourceModule.EXPENSE,
    TransactionKind.BILL: SourceModule.BILL,
    TransactionKind.INVOICE: SourceModule.INVOICE,
}


# ============================================
# Totals
# ============================================

def resolve_total(total_amount: Any, items: Optional[List[Dict[str, Any]]]) -> Decimal:
    """
    Apply the total/items policy.

    - items present, total omitted: total is the sum of item amounts
    - items present, total given: they must agree
    - no items: total is required

    Raises:
        ValidationError: Missing or conflicting total, malformed items, or a
            negative amount
    """
    items = _check_items(items)
    if items:
        item_amounts = []
        for index, item in enumerate(items, start=1):
            amount = to_amount(item.get("amount"), field="items.amount")
            if item.get("amount") in (None, ""):
                raise ValidationError(f"Item {index}: amount is required", field="items.amount", item=index)
            if amount < ZERO:
                raise ValidationError(f"Item {index}: amount cannot be negative", field="items.amount", item=index)
            item_amounts.append(amount)
        derived = total(item_amounts)
        if total_amount in (None, ""):
            return derived
        explicit = to_amount(total_amount, field="total_amount")
        if explicit != derived:
            raise ValidationError(
                f"total_amount {explicit} does not match the sum of items {derived}",
                field="total_amount",
                total_amount=explicit,
                items_total=derived,
            )
        return explicit

    if total_amount in (None, ""):
        raise ValidationError("total_amount is required when no items are given", field="total_amount")
    explicit = to_amount(total_amount, field="total_amount")
    if explicit < ZERO:
        raise ValidationError("total_amount cannot be negative", field="total_amount")
    return explicit


def _check_items(items: Any) -> List[Dict[str, Any]]:
    if items in (None, ""):
        return []
    if not isinstance(items, list):
        raise ValidationError("items must be a list", field="items")
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValidationError(f"Item {index} must be an object with an amount", field="items", item=index)
    return items


def _coerce_kind(kind: Any) -> TransactionKind:
    try:
        return kind if isinstance(kind, TransactionKind) else TransactionKind(str(kind).upper())
    except ValueError:
        raise ValidationError(f"Unknown transaction kind '{kind}'", field="kind")


def _coerce_mode(mode: Any, default: PaymentMode = PaymentMode.CREDIT) -> PaymentMode:
    if mode in (None, ""):
        return default
    try:
        return mode if isinstance(mode, PaymentMode) else PaymentMode(str(mode).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Invalid payment mode '{mode}'. Allowed: {[m.value for m in PaymentMode]}",
            field="payment_mode",
        )


def _optional_amount(value: Any, field: str) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    amount = to_amount(value, field=field)
    if amount < ZERO:
        raise ValidationError(f"{field} cannot be negative", field=field)
    return amount


def _build_items(items: Optional[List[Dict[str, Any]]]) -> List[TransactionItem]:
    return [
        TransactionItem(
            line_no=line_no,
            description=bounded_text(item.get("description"), "items.description", 500),
            category=bounded_text(item.get("category"), "items.category", 100),
            account_code=bounded_text(item.get("account_code"), "items.account_code", 50),
            amount=to_amount(item.get("amount"), field="items.amount"),
        )
        for line_no, item in enumerate(_check_items(items), start=1)
    ]


# ============================================
# Lookups
# ============================================

def get_transaction(
    db: Session,
    organization_id: UUID,
    transaction_id: UUID,
    kind: TransactionKind | None = None,
    lock: bool = False,
) -> BusinessTransaction:
    query = db.query(BusinessTransaction).filter(
        BusinessTransaction.organization_id == organization_id,
        BusinessTransaction.id == transaction_id,
    )
    if kind is not None:
        query = query.filter(BusinessTransaction.kind == kind)
    if lock:
        query = query.with_for_update().populate_existing()
    transaction = query.first()
    if not transaction:
        label = kind.value.lower() if kind else "transaction"
        raise NotFoundError(f"{label.capitalize()} {transaction_id} not found", transaction_id=transaction_id)
    return transaction


def list_transactions(
    db: Session,
    organization_id: UUID,
    kind: TransactionKind,
    status: TransactionStatus | None = None,
    contact_id: str | None = None,
    category: str | None = None,
    date_from: dt.date | None = None,
    date_to: dt.date | None = None,
    payment_due_by: dt.date | None = None,
    page: int | None = None,
    limit: int | None = None,
    sort: str | None = None,
    order: str | None = None,
    paginated: bool = True,
):
    """
    List transactions of one kind.

    payment_due_by keeps open (POSTED/PARTIAL) documents due on or before
    the given date.
    """
    query = db.query(BusinessTransaction).filter(
        BusinessTransaction.organization_id == organization_id,
        BusinessTransaction.kind == kind,
    )
    if status:
        query = query.filter(BusinessTransaction.status == status)
    if contact_id:
        query = query.filter(BusinessTransaction.contact_id == contact_id)
    if category:
        query = query.filter(BusinessTransaction.category == category)
    if date_from:
        query = query.filter(BusinessTransaction.date >= date_from)
    if date_to:
        query = query.filter(BusinessTransaction.date <= date_to)
    if payment_due_by:
        query = query.filter(
            BusinessTransaction.due_date.isnot(None),
            BusinessTransaction.due_date <= payment_due_by,
            BusinessTransaction.status.in_([TransactionStatus.POSTED, TransactionStatus.PARTIAL]),
        )
    query = apply_sort(query, BusinessTransaction, sort, order or "desc", TRANSACTION_SORT_FIELDS, default="date")
    if not paginated:
        return query.all()
    return paginate(query, page, limit)


# ============================================
# Drafts
# ============================================

def create_transaction(
    db: Session,
    organization_id: UUID,
    kind: TransactionKind | str,
    data: Dict[str, Any],
    commit: bool = True,
) -> BusinessTransaction:
    """
    Create a DRAFT transaction. No ledger impact.

    Args:
        data: reference, date, contact_id, total_amount?, items?, and the
            optional fields in EDITABLE_FIELDS

    Raises:
        ValidationError: Missing fields or total/items disagreement
    """
    kind = _coerce_kind(kind)
    for required in ("reference", "date", "contact_id"):
        if data.get(required) in (None, ""):
            raise ValidationError(f"{required} is required", field=required)

    items = data.get("items") or []
    total_amount = resolve_total(data.get("total_amount"), items)

    transaction = BusinessTransaction(
        organization_id=organization_id,
        kind=kind,
        reference=bounded_text(data["reference"], "reference", TEXT_LIMITS["reference"], required=True),
        date=data["date"],
        due_date=data.get("due_date"),
        contact_id=bounded_text(data["contact_id"], "contact_id", TEXT_LIMITS["contact_id"], required=True),
        payment_mode=_coerce_mode(data.get("payment_mode")),
        total_amount=total_amount,
        taxable_amount=_optional_amount(data.get("taxable_amount"), "taxable_amount"),
        tax_amount=_optional_amount(data.get("tax_amount"), "tax_amount"),
        total_paid=ZERO,
        category=bounded_text(data.get("category"), "category", TEXT_LIMITS["category"]),
        account_code=bounded_text(data.get("account_code"), "account_code", TEXT_LIMITS["account_code"]),
        offset_account_code=bounded_text(
            data.get("offset_account_code"), "offset_account_code", TEXT_LIMITS["offset_account_code"],
        ),
        narration=bounded_text(data.get("narration"), "narration", TEXT_LIMITS["narration"]),
        status=TransactionStatus.DRAFT,
    )
    transaction.items = _build_items(items)
    db.add(transaction)
    flush_or_conflict(db, f"{kind.value.lower()} {transaction.reference}")

    if commit:
        commit_or_conflict(db, f"{kind.value.lower()} {transaction.reference}")
        db.refresh(transaction)
        logger.info(f"Created {kind.value.lower()} {transaction.id} with reference {transaction.reference}")
    return transaction


def _require_draft(transaction: BusinessTransaction) -> None:
    if transaction.status != TransactionStatus.DRAFT:
        raise AlreadyPostedError(
            f"{transaction.kind.value.capitalize()} {transaction.id} is {transaction.status.value}; "
            f"only drafts can be changed",
            transaction_id=transaction.id,
            status=transaction.status.value,
        )


def update_transaction(
    db: Session,
    organization_id: UUID,
    transaction_id: UUID,
    changes: Dict[str, Any],
    kind: TransactionKind | None = None,
    commit: bool = True,
) -> BusinessTransaction:
    """
    Update a DRAFT transaction.

    Raises:
        AlreadyPostedError: If the transaction is no longer a draft
        ValidationError: Total/items disagreement
    """
    transaction = get_transaction(db, organization_id, transaction_id, kind=kind, lock=True)
    _require_draft(transaction)

    for key in EDITABLE_FIELDS:
        if key not in changes:
            continue
        value = changes[key]
        if key == "payment_mode":
            value = _coerce_mode(value, transaction.payment_mode)
        elif key in ("taxable_amount", "tax_amount"):
            value = _optional_amount(value, key)
        elif key == "date" and value in (None, ""):
            raise ValidationError("date cannot be empty", field=key)
        elif key in TEXT_LIMITS:
            value = bounded_text(value, key, TEXT_LIMITS[key], required=key in ("reference", "contact_id"))
        setattr(transaction, key, value)

    if "items" in changes or "total_amount" in changes:
        if "items" in changes:
            items = changes.get("items") or []
        else:
            items = [{"amount": item.amount} for item in transaction.items]
        explicit = changes.get("total_amount") if "total_amount" in changes else (
            None if items else transaction.total_amount
        )
        transaction.total_amount = resolve_total(explicit, items)
        if "items" in changes:
            transaction.items = _build_items(items)

    flush_or_conflict(db, f"transaction {transaction.id}")
    if commit:
        commit_or_conflict(db, f"transaction {transaction.id}")
        db.refresh(transaction)
        logger.info(f"Updated draft {transaction.kind.value.lower()} {transaction.id}")
    return transaction


def delete_transaction(
    db: Session,
    organization_id: UUID,
    transaction_id: UUID,
    kind: TransactionKind | None = None,
) -> None:
    """
    Delete a DRAFT transaction.

    Raises:
        AlreadyPostedError: If the transaction is not a draft
    """
    transaction = get_transaction(db, organization_id, transaction_id, kind=kind, lock=True)
    _require_draft(transaction)
    db.delete(transaction)
    commit_or_conflict(db, f"transaction {transaction_id}")
    logger.info(f"Deleted draft transaction {transaction_id}")


# ============================================
# Account resolution for posting templates
# ============================================

def _account_by_code(db: Session, organization_id: UUID, code: str, field: str) -> ChartOfAccount:
    account = db.query(ChartOfAccount).filter(
        ChartOfAccount.organization_id == organization_id,
        ChartOfAccount.code == code,
    ).first()
    if not account:
        raise ValidationError(f"Account {code} not found", field=field, code=code)
    return account


def _cash_account(db: Session, organization_id: UUID) -> ChartOfAccount:
    settings = get_settings()
    if settings.default_cash_code:
        return _account_by_code(db, organization_id, settings.default_cash_code, "offset_account_code")

    cash_account = db.query(ChartOfAccount).filter(
        ChartOfAccount.organization_id == organization_id,
        ChartOfAccount.is_cash == True,
        ChartOfAccount.is_active == True
    ).order_by(ChartOfAccount.code).first()

    if not cash_account:
        raise ValidationError(
            f"Could not find Cash account for organization {organization_id}",
            field="offset_account_code",
        )
    return cash_account


def _control_account(db: Session, organization_id: UUID, receivable: bool) -> ChartOfAccount:
    """Accounts Receivable (asset) or Accounts Payable (liability)."""
    settings = get_settings()
    explicit = settings.default_receivable_code if receivable else settings.default_payable_code
    if explicit:
        return _account_by_code(db, organization_id, explicit, "offset_account_code")

    account_type = AccountType.ASSET if receivable else AccountType.LIABILITY
    noun = "Receivable" if receivable else "Payable"
    # Exact control-account name first, then any leaf containing the noun
    account = None
    for name_pattern in (f"Accounts {noun}", noun):
        account = find_account_by_type_and_name(
            db=db,
            organization_id=organization_id,
            account_type=account_type,
            name_pattern=name_pattern,
            field="offset_account_code",
        )
        if account:
            break
    if not account:
        label = "Accounts Receivable" if receivable else "Accounts Payable"
        raise ValidationError(
            f"Could not find {label} account for organization {organization_id}",
            field="offset_account_code",
        )
    return account


def _offset_account(db: Session, transaction: BusinessTransaction) -> ChartOfAccount:
    if transaction.offset_account_code:
        return _account_by_code(db, transaction.organization_id, transaction.offset_account_code, "offset_account_code")
    if transaction.payment_mode in (PaymentMode.CASH, PaymentMode.ONLINE):
        return _cash_account(db, transaction.organization_id)
    return _control_account(db, transaction.organization_id, transaction.kind.is_receivable)


def _posted_offset_account(db: Session, transaction: BusinessTransaction) -> ChartOfAccount:
    """The offset account the transaction's journal entry actually used."""
    offset = None
    if transaction.offset_account_id:
        offset = db.query(ChartOfAccount).filter(
            ChartOfAccount.organization_id == transaction.organization_id,
            ChartOfAccount.id == transaction.offset_account_id,
        ).first()
    if offset is None:
        raise ValidationError(
            f"{transaction.kind.value.capitalize()} {transaction.id} has no posted offset account",
            field="offset_account_code",
            transaction_id=transaction.id,
        )
    return offset


def _category_account(
    db: Session,
    organization_id: UUID,
    account_type: AccountType,
    account_code: str | None,
    category: str | None,
) -> ChartOfAccount:
    """Expense/income side: explicit code, then category as code, then the single leaf of the type."""
    if account_code:
        return _account_by_code(db, organization_id, account_code, "account_code")
    if category:
        by_category = db.query(ChartOfAccount).filter(
            ChartOfAccount.organization_id == organization_id,
            ChartOfAccount.code == category,
        ).first()
        if by_category:
            return by_category

    account = find_account_by_type_and_name(db=db, organization_id=organization_id, account_type=account_type)
    if not account:
        raise ValidationError(
            f"Could not find {account_type.value.capitalize()} account for organization {organization_id}",
            field="account_code",
        )
    return account


def build_posting_lines(
    db: Session,
    transaction: BusinessTransaction,
    offset: ChartOfAccount | None = None,
) -> List[Dict[str, Any]]:
    """
    Journal lines for a transaction per its kind's template.

    Items are grouped by resolved account so each account appears once.
    The offset account is resolved here unless the caller already did.
    """
    receivable = transaction.kind.is_receivable
    category_type = AccountType.INCOME if receivable else AccountType.EXPENSE

    amounts: "OrderedDict[UUID, Decimal]" = OrderedDict()
    accounts: Dict[UUID, ChartOfAccount] = {}
    sources = transaction.items or [None]
    for item in sources:
        account = _category_account(
            db,
            transaction.organization_id,
            category_type,
            (item.account_code if item else None) or transaction.account_code,
            (item.category if item else None) or transaction.category,
        )
        amount = item.amount if item else transaction.total_amount
        accounts[account.id] = account
        amounts[account.id] = amounts.get(account.id, ZERO) + amount

    if offset is None:
        offset = _offset_account(db, transaction)
    label = f"{transaction.kind.value.capitalize()} {transaction.reference}"

    category_lines = [
        {
            "account_id": account_id,
            "debit": ZERO if receivable else amount,
            "credit": amount if receivable else ZERO,
            "narration": f"{accounts[account_id].name} - {label}",
        }
        for account_id, amount in amounts.items()
        if amount > ZERO
    ]
    offset_line = {
        "account_id": offset.id,
        "debit": transaction.total_amount if receivable else ZERO,
        "credit": ZERO if receivable else transaction.total_amount,
        "narration": f"{offset.name} - {label}",
    }
    return [offset_line] + category_lines if receivable else category_lines + [offset_line]


# ============================================
# Lifecycle
# ============================================

def post_transaction(
    db: Session,
    organization_id: UUID,
    transaction_id: UUID,
    kind: TransactionKind | None = None,
    idempotency_key: str | None = None,
) -> BusinessTransaction:
    """
    Post a DRAFT transaction, generating exactly one journal entry.

    On any failure the session is rolled back and the transaction stays DRAFT.

    Raises:
        AlreadyPostedError: If not in DRAFT (unless replaying the same key)
        ValidationError: If the posting template cannot resolve its accounts
            or the total is zero
    """
    transaction = get_transaction(db, organization_id, transaction_id, kind=kind, lock=True)

    if transaction.status != TransactionStatus.DRAFT:
        if idempotency_key and transaction.journal_entry_id:
            entry = get_entry(db, organization_id, transaction.journal_entry_id)
            if entry.idempotency_key == idempotency_key:
                logger.warning(f"Replayed post of transaction {transaction.id} with key {idempotency_key}")
                return transaction
        raise AlreadyPostedError(
            f"{transaction.kind.value.capitalize()} {transaction.id} is already {transaction.status.value}",
            transaction_id=transaction.id,
            status=transaction.status.value,
        )

    if transaction.total_amount <= ZERO:
        raise ValidationError(
            f"{transaction.kind.value.capitalize()} {transaction.id} has a zero total and cannot be posted",
            field="total_amount",
            transaction_id=transaction.id,
        )

    try:
        offset = _offset_account(db, transaction)
        lines_list = build_posting_lines(db, transaction, offset)
        journal_entry = create_journal_entry(
            db=db,
            organization_id=organization_id,
            entry_date=transaction.date,
            description=f"{transaction.kind.value.capitalize()} {transaction.reference} - {transaction.total_amount}",
            source_module=_SOURCE_BY_KIND[transaction.kind],
            source_id=transaction.id,
            lines_list=lines_list,
            reference=transaction.reference,
            idempotency_key=idempotency_key,
            commit=False,
        )

        transaction.journal_entry_id = journal_entry.id
        transaction.offset_account_id = offset.id
        transaction.status = TransactionStatus.POSTED
        commit_or_conflict(db, f"transaction {transaction.id}")
    except Exception:
        db.rollback()
        raise

    db.refresh(transaction)
    logger.info(f"Posted {transaction.kind.value.lower()} {transaction.id} as journal entry {journal_entry.id}")
    return transaction


def _settlement_status(transaction: BusinessTransaction) -> TransactionStatus:
    if transaction.total_paid >= transaction.total_amount:
        return TransactionStatus.PAID
    if transaction.total_paid > ZERO:
        return TransactionStatus.PARTIAL
    return TransactionStatus.POSTED


def record_payment(
    db: Session,
    organization_id: UUID,
    transaction_id: UUID,
    amount: Any,
    mode: PaymentMode | str | None = None,
    payment_date: dt.date | None = None,
    reference: str | None = None,
    notes: str | None = None,
    kind: TransactionKind | None = None,
    idempotency_key: str | None = None,
) -> BusinessTransaction:
    """
    Apply a payment to a POSTED or PARTIAL transaction.

    Each call appends one PaymentApplication. When the transaction was
    posted against a non-cash offset account, a settlement entry moves the
    amount between that same account and cash in the same unit.

    Raises:
        InvalidAmountError: amount <= 0, or cumulative paid would exceed total
            (so any payment on a PAID transaction)
        NotPostableStateError: Transaction is DRAFT or CANCELLED
    """
    transaction = get_transaction(db, organization_id, transaction_id, kind=kind, lock=True)

    if idempotency_key:
        replay = db.query(PaymentApplication.id).filter(
            PaymentApplication.transaction_id == transaction.id,
            PaymentApplication.idempotency_key == idempotency_key,
        ).first()
        if replay:
            logger.warning(f"Replayed payment on transaction {transaction.id} with key {idempotency_key}")
            return transaction

    if transaction.status in (TransactionStatus.DRAFT, TransactionStatus.CANCELLED):
        raise NotPostableStateError(
            f"Cannot record a payment on a {transaction.status.value} {transaction.kind.value.lower()}",
            transaction_id=transaction.id,
            status=transaction.status.value,
        )

    amount = to_amount(amount, field="amount")
    if amount <= ZERO:
        raise InvalidAmountError(
            f"Payment amount must be positive, got {amount}",
            field="amount",
            transaction_id=transaction.id,
        )
    if transaction.total_paid + amount > transaction.total_amount:
        raise InvalidAmountError(
            f"Payment of {amount} exceeds the amount due {transaction.payment_due}",
            field="amount",
            transaction_id=transaction.id,
            status=transaction.status.value,
            payment_due=transaction.payment_due,
        )

    mode = _coerce_mode(mode, transaction.payment_mode)
    payment_date = payment_date or dt.date.today()

    try:
        payment = PaymentApplication(
            transaction_id=transaction.id,
            amount=amount,
            date=payment_date,
            mode=mode,
            reference=bounded_text(reference, "reference", 100),
            notes=bounded_text(notes, "notes", 500),
            idempotency_key=bounded_text(idempotency_key, "idempotency_key", 100),
        )

        offset = _posted_offset_account(db, transaction)
        if not offset.is_cash:
            cash = _cash_account(db, organization_id)
            receivable = transaction.kind.is_receivable
            label = reference or transaction.reference
            settlement = create_journal_entry(
                db=db,
                organization_id=organization_id,
                entry_date=payment_date,
                description=f"Payment {label} on {transaction.kind.value.lower()} {transaction.reference}",
                source_module=SourceModule.PAYMENT,
                source_id=transaction.id,
                lines_list=[
                    {
                        "account_id": cash.id if receivable else offset.id,
                        "debit": amount,
                        "credit": ZERO,
                        "narration": f"Payment {label}",
                    },
                    {
                        "account_id": offset.id if receivable else cash.id,
                        "debit": ZERO,
                        "credit": amount,
                        "narration": f"Payment {label}",
                    },
                ],
                reference=reference,
                commit=False,
            )
            payment.journal_entry_id = settlement.id

        transaction.payments.append(payment)
        transaction.total_paid = transaction.total_paid + amount
        transaction.status = _settlement_status(transaction)
        commit_or_conflict(db, f"payment on transaction {transaction.id}")
    except Exception:
        db.rollback()
        raise

    db.refresh(transaction)
    logger.info(
        f"Recorded payment of {amount} on {transaction.kind.value.lower()} {transaction.id}, "
        f"paid={transaction.total_paid}, status={transaction.status.value}"
    )
    return transaction


def cancel_transaction(
    db: Session,
    organization_id: UUID,
    transaction_id: UUID,
    kind: TransactionKind | None = None,
    allow_posted: bool | None = None,
) -> BusinessTransaction:
    """
    Cancel a DRAFT transaction, or a POSTED one with no payments when permitted.

    Cancelling a POSTED transaction reverses its journal entry in the same unit.

    Raises:
        ConflictError: If any payment exists
        NotPostableStateError: Terminal state, or POSTED without permission
    """
    transaction = get_transaction(db, organization_id, transaction_id, kind=kind, lock=True)

    if transaction.payments or transaction.total_paid > ZERO:
        raise ConflictError(
            f"{transaction.kind.value.capitalize()} {transaction.id} has payments and cannot be cancelled",
            retryable=False,
            transaction_id=transaction.id,
            status=transaction.status.value,
        )
    if transaction.status == TransactionStatus.CANCELLED:
        raise NotPostableStateError(
            f"{transaction.kind.value.capitalize()} {transaction.id} is already cancelled",
            transaction_id=transaction.id,
            status=transaction.status.value,
        )

    if allow_posted is None:
        allow_posted = get_settings().allow_cancel_posted

    try:
        if transaction.status == TransactionStatus.POSTED:
            if not allow_posted:
                raise NotPostableStateError(
                    f"{transaction.kind.value.capitalize()} {transaction.id} is posted; "
                    f"cancelling it requires explicit permission",
                    transaction_id=transaction.id,
                    status=transaction.status.value,
                )
            reverse_entry(
                db,
                organization_id,
                transaction.journal_entry_id,
                description=f"Cancellation of {transaction.kind.value.lower()} {transaction.reference}",
                commit=False,
            )
        elif transaction.status != TransactionStatus.DRAFT:
            raise NotPostableStateError(
                f"Cannot cancel a {transaction.status.value} {transaction.kind.value.lower()}",
                transaction_id=transaction.id,
                status=transaction.status.value,
            )

        transaction.status = TransactionStatus.CANCELLED
        commit_or_conflict(db, f"transaction {transaction.id}")
    except Exception:
        db.rollback()
        raise

    db.refresh(transaction)
    logger.info(f"Cancelled {transaction.kind.value.lower()} {transaction.id}")
    return transaction


# ============================================
# Export
# ============================================

EXPORT_FIELDS = [
    "id", "kind", "reference", "date", "due_date", "contact_id", "status", "payment_mode",
    "total_amount", "taxable_amount", "tax_amount", "total_paid", "payment_due",
    "category", "account_code", "offset_account_code", "narration", "journal_entry_id",
]


def transaction_to_row(transaction: BusinessTransaction) -> Dict[str, Any]:
    """Flat, string-friendly view of a transaction for export."""
    row: Dict[str, Any] = {}
    for name in EXPORT_FIELDS:
        value = getattr(transaction, name)
        if isinstance(value, (TransactionKind, TransactionStatus, PaymentMode)):
            value = value.value
        elif isinstance(value, (dt.date, Decimal, UUID)):
            value = str(value)
        row[name] = value
    return row


def export_transactions_json(db: Session, organization_id: UUID, kind: TransactionKind, **filters) -> List[Dict[str, Any]]:
    """All transactions matching the list filters, unpaginated."""
    transactions = list_transactions(db, organization_id, kind, paginated=False, **filters)
    rows = []
    for transaction in transactions:
        row = transaction_to_row(transaction)
        row["items"] = [
            {
                "line_no": item.line_no,
                "description": item.description,
                "category": item.category,
                "account_code": item.account_code,
                "amount": str(item.amount),
            }
            for item in transaction.items
        ]
        rows.append(row)
    return rows


def export_transactions_csv(db: Session, organization_id: UUID, kind: TransactionKind, **filters) -> str:
    """CSV export of the list filters' result, one row per transaction."""
    transactions = list_transactions(db, organization_id, kind, paginated=False, **filters)
    logger.info(f"Exporting {len(transactions)} {kind.value.lower()} transactions as CSV")
    return write_csv(EXPORT_FIELDS, (transaction_to_row(t) for t in transactions))

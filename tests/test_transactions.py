"""Tests for the expense, bill and invoice lifecycle."""

import csv
import io
import json

import pytest
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from app.models.accounting import BusinessTransaction, ChartOfAccount, JournalEntry, PaymentApplication
from app.domain.accounting.coa_service import account_balance_check, create_account, get_account_by_code
from app.domain.accounting.enums import (
    JournalStatus,
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
from app.domain.accounting.transaction_service import (
    EXPORT_FIELDS,
    cancel_transaction,
    create_transaction,
    delete_transaction,
    export_transactions_csv,
    export_transactions_json,
    get_transaction,
    list_transactions,
    post_transaction,
    record_payment,
    resolve_total,
    update_transaction,
)


def balance(db: Session, account: ChartOfAccount) -> Decimal:
    db.refresh(account)
    return account.current_balance


def new_expense(db: Session, organization_id: UUID, **overrides):
    data = {
        "reference": "EXP-001",
        "date": date(2024, 2, 1),
        "contact_id": "C1",
        "total_amount": "1000.00",
        "account_code": "5100",
        "payment_mode": "CASH",
    }
    data.update(overrides)
    return create_transaction(db, organization_id, TransactionKind.EXPENSE, data)


def new_bill(db: Session, organization_id: UUID, **overrides):
    data = {
        "reference": "BILL-001",
        "date": date(2024, 2, 1),
        "due_date": date(2024, 3, 1),
        "contact_id": "V1",
        "total_amount": "1000.00",
    }
    data.update(overrides)
    return create_transaction(db, organization_id, TransactionKind.BILL, data)


def new_invoice(db: Session, organization_id: UUID, **overrides):
    data = {
        "reference": "INV-001",
        "date": date(2024, 2, 1),
        "due_date": date(2024, 3, 1),
        "contact_id": "C9",
        "total_amount": "3000.00",
    }
    data.update(overrides)
    return create_transaction(db, organization_id, TransactionKind.INVOICE, data)


# ============================================
# Totals
# ============================================

def test_resolve_total_policy():
    assert resolve_total(None, [{"amount": "300"}, {"amount": "200.50"}]) == Decimal("500.50")
    assert resolve_total("500.50", [{"amount": "300"}, {"amount": "200.50"}]) == Decimal("500.50")
    assert resolve_total("75", []) == Decimal("75.00")

    with pytest.raises(ValidationError):
        resolve_total("400", [{"amount": "300"}, {"amount": "200"}])

    with pytest.raises(ValidationError):
        resolve_total(None, [])

    with pytest.raises(ValidationError):
        resolve_total(None, [{"amount": "-1"}])

    with pytest.raises(ValidationError):
        resolve_total("-5", None)

    with pytest.raises(ValidationError) as exc:
        resolve_total(None, "oops")
    assert exc.value.field == "items"

    with pytest.raises(ValidationError) as exc:
        resolve_total(None, [{"amount": "10"}, "20"])
    assert exc.value.field == "items"

    with pytest.raises(ValidationError) as exc:
        resolve_total(None, [{"amount": "10.001"}])
    assert exc.value.field == "items.amount"


def test_create_draft_has_no_ledger_impact(db: Session, organization_id: UUID, chart_of_accounts):
    expense = new_expense(db, organization_id, total_amount=None, items=[
        {"description": "Paper", "amount": "600"},
        {"description": "Ink", "amount": "400"},
    ])

    assert expense.status == TransactionStatus.DRAFT
    assert expense.total_amount == Decimal("1000.00")
    assert expense.total_paid == Decimal("0.00")
    assert expense.payment_due == Decimal("1000.00")
    assert [item.line_no for item in expense.items] == [1, 2]
    assert expense.journal_entry_id is None
    assert db.query(JournalEntry).count() == 0


def test_create_requires_reference_date_and_contact(db: Session, organization_id: UUID, chart_of_accounts):
    for missing in ("reference", "date", "contact_id"):
        with pytest.raises(ValidationError) as exc:
            new_expense(db, organization_id, **{missing: None})
        assert exc.value.field == missing


def test_create_rejects_text_longer_than_its_column(db: Session, organization_id: UUID, chart_of_accounts):
    for field, limit in (("reference", 100), ("contact_id", 100), ("narration", 500)):
        with pytest.raises(ValidationError) as exc:
            new_expense(db, organization_id, **{field: "x" * (limit + 1)})
        assert exc.value.field == field

    with pytest.raises(ValidationError) as exc:
        new_expense(db, organization_id, total_amount=None, items=[{"amount": "5", "description": "d" * 501}])
    assert exc.value.field == "items.description"

    with pytest.raises(ValidationError) as exc:
        new_expense(db, organization_id, total_amount=None, items="oops")
    assert exc.value.field == "items"
    assert db.query(BusinessTransaction).count() == 0


# ============================================
# Posting
# ============================================

def test_expense_paid_in_cash_then_settled(db: Session, organization_id: UUID, chart_of_accounts):
    """Post, pay 600 (PARTIAL), pay 400 (PAID); any further payment is an overpayment."""
    cash, expense_account = chart_of_accounts["1100"], chart_of_accounts["5100"]
    expense = new_expense(db, organization_id)

    posted = post_transaction(db, organization_id, expense.id)
    assert posted.status == TransactionStatus.POSTED
    entry = db.get(JournalEntry, posted.journal_entry_id)
    assert entry.status == JournalStatus.POSTED
    assert entry.source_module == SourceModule.EXPENSE
    assert entry.source_id == expense.id
    assert [(line.account_id, line.debit, line.credit) for line in entry.lines] == [
        (expense_account.id, Decimal("1000.00"), Decimal("0.00")),
        (cash.id, Decimal("0.00"), Decimal("1000.00")),
    ]
    assert balance(db, expense_account) == Decimal("1000.00")
    assert balance(db, cash) == Decimal("-1000.00")

    partial = record_payment(db, organization_id, expense.id, amount="600")
    assert partial.status == TransactionStatus.PARTIAL
    assert partial.total_paid == Decimal("600.00")
    assert partial.payment_due == Decimal("400.00")

    paid = record_payment(db, organization_id, expense.id, amount="400")
    assert paid.status == TransactionStatus.PAID
    assert paid.payment_due == Decimal("0.00")
    assert len(paid.payments) == 2

    with pytest.raises(InvalidAmountError):
        record_payment(db, organization_id, expense.id, amount="1")

    # Offset was already cash, so no settlement entries were generated
    assert db.query(JournalEntry).count() == 1
    assert all(payment.journal_entry_id is None for payment in paid.payments)
    assert account_balance_check(db, organization_id) == {}


def test_bill_on_credit_posts_to_payable_and_settles(db: Session, organization_id: UUID, chart_of_accounts):
    cash, payable, expense_account = chart_of_accounts["1100"], chart_of_accounts["2100"], chart_of_accounts["5100"]
    bill = new_bill(db, organization_id)
    assert bill.payment_mode == PaymentMode.CREDIT

    post_transaction(db, organization_id, bill.id)
    assert balance(db, expense_account) == Decimal("1000.00")
    assert balance(db, payable) == Decimal("1000.00")

    bill = record_payment(db, organization_id, bill.id, amount="300", mode="ONLINE", reference="CHQ-1")
    assert bill.status == TransactionStatus.PARTIAL
    payment = bill.payments[0]
    assert payment.mode == PaymentMode.ONLINE
    settlement = db.get(JournalEntry, payment.journal_entry_id)
    assert settlement.source_module == SourceModule.PAYMENT
    assert [(line.account_id, line.debit, line.credit) for line in settlement.lines] == [
        (payable.id, Decimal("300.00"), Decimal("0.00")),
        (cash.id, Decimal("0.00"), Decimal("300.00")),
    ]
    assert balance(db, payable) == Decimal("700.00")
    assert balance(db, cash) == Decimal("-300.00")


def test_invoice_mirrors_bill(db: Session, organization_id: UUID, chart_of_accounts):
    cash, receivable, sales = chart_of_accounts["1100"], chart_of_accounts["1200"], chart_of_accounts["4100"]
    invoice = new_invoice(db, organization_id)

    invoice = post_transaction(db, organization_id, invoice.id)
    entry = db.get(JournalEntry, invoice.journal_entry_id)
    assert entry.source_module == SourceModule.INVOICE
    assert [(line.account_id, line.debit, line.credit) for line in entry.lines] == [
        (receivable.id, Decimal("3000.00"), Decimal("0.00")),
        (sales.id, Decimal("0.00"), Decimal("3000.00")),
    ]

    record_payment(db, organization_id, invoice.id, amount="500", payment_date=date(2024, 2, 20))
    assert balance(db, receivable) == Decimal("2500.00")
    assert balance(db, cash) == Decimal("500.00")
    assert balance(db, sales) == Decimal("3000.00")

    invoice = record_payment(db, organization_id, invoice.id, amount="2500")
    assert invoice.status == TransactionStatus.PAID
    assert balance(db, receivable) == Decimal("0.00")
    assert account_balance_check(db, organization_id) == {}


def test_items_are_grouped_by_account(db: Session, organization_id: UUID, chart_of_accounts):
    expense = new_expense(db, organization_id, total_amount=None, account_code=None, items=[
        {"description": "Taxi", "amount": "40", "account_code": "5100"},
        {"description": "Train", "amount": "60", "account_code": "5100"},
    ])

    posted = post_transaction(db, organization_id, expense.id)
    entry = db.get(JournalEntry, posted.journal_entry_id)
    assert len(entry.lines) == 2
    assert entry.lines[0].debit == Decimal("100.00")


def test_explicit_offset_account_wins(db: Session, organization_id: UUID, chart_of_accounts):
    bank = chart_of_accounts["1110"]
    expense = new_expense(db, organization_id, payment_mode="CREDIT", offset_account_code="1110")

    post_transaction(db, organization_id, expense.id)
    assert balance(db, bank) == Decimal("-1000.00")


def test_settlement_uses_the_account_posted_against(db: Session, organization_id: UUID, chart_of_accounts):
    cash, payable = chart_of_accounts["1100"], chart_of_accounts["2100"]
    bill = post_transaction(db, organization_id, new_bill(db, organization_id).id)
    assert bill.offset_account_id == payable.id

    # A second payable leaf makes name lookup ambiguous from here on
    vendors = create_account(db, organization_id, code="2110", name="Accounts Payable - Vendors",
                             account_type="LIABILITY", parent_code="2000")

    bill = record_payment(db, organization_id, bill.id, amount="300")
    assert bill.status == TransactionStatus.PARTIAL
    settlement = db.get(JournalEntry, bill.payments[0].journal_entry_id)
    assert [line.account_id for line in settlement.lines] == [payable.id, cash.id]
    assert balance(db, payable) == Decimal("700.00")
    assert balance(db, vendors) == Decimal("0.00")
    assert balance(db, cash) == Decimal("-300.00")


def test_ambiguous_control_account_blocks_posting(db: Session, organization_id: UUID, chart_of_accounts):
    create_account(db, organization_id, code="2110", name="Accounts Payable - Vendors",
                   account_type="LIABILITY", parent_code="2000")
    bill = new_bill(db, organization_id)

    with pytest.raises(ValidationError) as exc:
        post_transaction(db, organization_id, bill.id)
    assert exc.value.field == "offset_account_code"

    db.refresh(bill)
    assert bill.status == TransactionStatus.DRAFT
    assert bill.offset_account_id is None
    assert db.query(JournalEntry).count() == 0

    # Naming the account explicitly resolves it
    bill = update_transaction(db, organization_id, bill.id, {"offset_account_code": "2110"})
    bill = post_transaction(db, organization_id, bill.id)
    assert bill.offset_account_id == get_account_by_code(db, organization_id, "2110").id


def test_failed_posting_leaves_transaction_draft(db: Session, organization_id: UUID, chart_of_accounts):
    expense = new_expense(db, organization_id, account_code="9999")

    with pytest.raises(ValidationError) as exc:
        post_transaction(db, organization_id, expense.id)
    assert exc.value.field == "account_code"

    db.refresh(expense)
    assert expense.status == TransactionStatus.DRAFT
    assert expense.journal_entry_id is None
    assert db.query(JournalEntry).count() == 0
    assert all(balance(db, account) == Decimal("0.00") for account in chart_of_accounts.values())


def test_zero_total_cannot_be_posted(db: Session, organization_id: UUID, chart_of_accounts):
    expense = new_expense(db, organization_id, total_amount="0")
    with pytest.raises(ValidationError):
        post_transaction(db, organization_id, expense.id)


def test_post_twice_and_idempotent_replay(db: Session, organization_id: UUID, chart_of_accounts):
    bill = new_bill(db, organization_id)
    first = post_transaction(db, organization_id, bill.id, idempotency_key="bill-post-1")
    again = post_transaction(db, organization_id, bill.id, idempotency_key="bill-post-1")

    assert again.journal_entry_id == first.journal_entry_id
    assert db.query(JournalEntry).count() == 1

    with pytest.raises(AlreadyPostedError):
        post_transaction(db, organization_id, bill.id)


def test_idempotent_payment_replay(db: Session, organization_id: UUID, chart_of_accounts):
    bill = new_bill(db, organization_id)
    post_transaction(db, organization_id, bill.id)

    record_payment(db, organization_id, bill.id, amount="250", idempotency_key="pay-1")
    bill = record_payment(db, organization_id, bill.id, amount="250", idempotency_key="pay-1")

    assert bill.total_paid == Decimal("250.00")
    assert db.query(PaymentApplication).count() == 1


def test_payment_rules(db: Session, organization_id: UUID, chart_of_accounts):
    bill = new_bill(db, organization_id)

    with pytest.raises(NotPostableStateError):
        record_payment(db, organization_id, bill.id, amount="10")

    post_transaction(db, organization_id, bill.id)

    with pytest.raises(InvalidAmountError):
        record_payment(db, organization_id, bill.id, amount="0")

    with pytest.raises(InvalidAmountError):
        record_payment(db, organization_id, bill.id, amount="1000.01")

    db.refresh(bill)
    assert bill.status == TransactionStatus.POSTED
    assert bill.total_paid == Decimal("0.00")


# ============================================
# Drafts and cancellation
# ============================================

def test_update_and_delete_only_drafts(db: Session, organization_id: UUID, chart_of_accounts):
    expense = new_expense(db, organization_id)

    updated = update_transaction(db, organization_id, expense.id, {"total_amount": "1200", "narration": "Revised"})
    assert updated.total_amount == Decimal("1200.00")
    assert updated.narration == "Revised"

    updated = update_transaction(db, organization_id, expense.id, {"items": [{"amount": "5"}, {"amount": "7"}]})
    assert updated.total_amount == Decimal("12.00")

    with pytest.raises(ValidationError):
        update_transaction(db, organization_id, expense.id, {"reference": ""})

    post_transaction(db, organization_id, expense.id)
    with pytest.raises(AlreadyPostedError):
        update_transaction(db, organization_id, expense.id, {"narration": "Too late"})
    with pytest.raises(AlreadyPostedError):
        delete_transaction(db, organization_id, expense.id)

    draft = new_expense(db, organization_id, reference="EXP-002")
    delete_transaction(db, organization_id, draft.id)
    with pytest.raises(NotFoundError):
        get_transaction(db, organization_id, draft.id)


def test_kind_scopes_lookups(db: Session, organization_id: UUID, chart_of_accounts):
    bill = new_bill(db, organization_id)
    with pytest.raises(NotFoundError):
        get_transaction(db, organization_id, bill.id, kind=TransactionKind.INVOICE)
    with pytest.raises(NotFoundError):
        get_transaction(db, uuid4(), bill.id)


def test_cancel_draft(db: Session, organization_id: UUID, chart_of_accounts):
    bill = new_bill(db, organization_id)
    cancelled = cancel_transaction(db, organization_id, bill.id)
    assert cancelled.status == TransactionStatus.CANCELLED

    with pytest.raises(NotPostableStateError):
        cancel_transaction(db, organization_id, bill.id)
    with pytest.raises(NotPostableStateError):
        record_payment(db, organization_id, bill.id, amount="1")


def test_cancel_posted_requires_permission_and_reverses(db: Session, organization_id: UUID, chart_of_accounts):
    payable, expense_account = chart_of_accounts["2100"], chart_of_accounts["5100"]
    bill = post_transaction(db, organization_id, new_bill(db, organization_id).id)

    with pytest.raises(NotPostableStateError):
        cancel_transaction(db, organization_id, bill.id, allow_posted=False)
    db.refresh(bill)
    assert bill.status == TransactionStatus.POSTED

    cancelled = cancel_transaction(db, organization_id, bill.id, allow_posted=True)
    assert cancelled.status == TransactionStatus.CANCELLED
    original = db.get(JournalEntry, cancelled.journal_entry_id)
    db.refresh(original)
    assert original.status == JournalStatus.REVERSED
    assert balance(db, payable) == Decimal("0.00")
    assert balance(db, expense_account) == Decimal("0.00")


def test_cancel_with_payments_is_a_conflict(db: Session, organization_id: UUID, chart_of_accounts):
    bill = post_transaction(db, organization_id, new_bill(db, organization_id).id)
    record_payment(db, organization_id, bill.id, amount="100")

    with pytest.raises(ConflictError) as exc:
        cancel_transaction(db, organization_id, bill.id, allow_posted=True)
    assert exc.value.retryable is False
    db.refresh(bill)
    assert bill.status == TransactionStatus.PARTIAL


# ============================================
# Listing and export
# ============================================

def test_list_filters(db: Session, organization_id: UUID, chart_of_accounts):
    early = new_bill(db, organization_id, reference="B-1", due_date=date(2024, 2, 10))
    new_bill(db, organization_id, reference="B-2", due_date=date(2024, 4, 10))
    new_bill(db, organization_id, reference="B-3", due_date=date(2024, 2, 5), contact_id="V2")
    post_transaction(db, organization_id, early.id)

    due, pagination = list_transactions(db, organization_id, TransactionKind.BILL, payment_due_by=date(2024, 2, 28))
    assert [t.reference for t in due] == ["B-1"]
    assert pagination["total"] == 1

    drafts, _ = list_transactions(db, organization_id, TransactionKind.BILL, status=TransactionStatus.DRAFT,
                                  sort="reference", order="asc")
    assert [t.reference for t in drafts] == ["B-2", "B-3"]

    by_contact, _ = list_transactions(db, organization_id, TransactionKind.BILL, contact_id="V2")
    assert [t.reference for t in by_contact] == ["B-3"]

    invoices, _ = list_transactions(db, organization_id, TransactionKind.INVOICE)
    assert invoices == []


def test_export_csv_and_json(db: Session, organization_id: UUID, chart_of_accounts):
    new_expense(db, organization_id, reference="E-1", total_amount=None, items=[{"amount": "10"}])
    new_expense(db, organization_id, reference="E-2", total_amount="20")

    content = export_transactions_csv(db, organization_id, TransactionKind.EXPENSE, sort="reference", order="asc")
    rows = list(csv.DictReader(io.StringIO(content)))
    assert content.splitlines()[0] == ",".join(EXPORT_FIELDS)
    assert [(row["reference"], row["total_amount"], row["status"]) for row in rows] == [
        ("E-1", "10.00", "DRAFT"),
        ("E-2", "20.00", "DRAFT"),
    ]

    exported = export_transactions_json(db, organization_id, TransactionKind.EXPENSE, sort="reference", order="asc")
    json.dumps(exported)
    assert exported[0]["items"][0]["amount"] == "10.00"
    assert exported[1]["items"] == []

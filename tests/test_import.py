"""Tests for row-by-row bulk import."""

import pytest
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import DataError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models.accounting import BusinessTransaction, ChartOfAccount, JournalEntry
from app.domain.accounting import transaction_service
from app.domain.accounting.enums import JournalStatus, SourceModule, TransactionKind, TransactionStatus
from app.domain.accounting.errors import ValidationError
from app.domain.accounting.transaction_service import post_transaction
from app.services.ledger_csv import read_rows
from app.services.ledger_import import LedgerImportService

ACCOUNTS_CSV = b"""Code,Name,Type,Parent Code,Opening Balance,Is Cash
1000,Assets,ASSET,,,
1000,Duplicate Assets,ASSET,,,
1100,Cash,ASSET,1000,"$1,250.00",yes
"""


def test_account_import_reports_failing_rows(db: Session, organization_id: UUID):
    """Row 2 duplicates row 1; rows 1 and 3 still land."""
    rows = read_rows(ACCOUNTS_CSV).rows
    summary = LedgerImportService(db, organization_id).import_accounts(rows)

    assert summary.created == 2
    assert summary.updated == 0
    assert [(e.row, e.field) for e in summary.errors] == [(2, "code")]
    assert summary.message == "Imported 2 created, 0 updated, 1 failed"

    cash = db.query(ChartOfAccount).filter(ChartOfAccount.code == "1100").one()
    assert cash.parent_code == "1000"
    assert cash.level == 1
    assert cash.is_cash is True
    assert cash.current_balance == Decimal("1250.00")


def test_account_import_rows_see_earlier_rows(db: Session, organization_id: UUID):
    rows = [
        {"code": "5100", "name": "Rent", "type": "EXPENSE", "parent_code": "5000"},
        {"code": "5000", "name": "Expenses", "type": "EXPENSE"},
        {"code": "5100", "name": "Rent", "type": "EXPENSE", "parent_code": "5000"},
        {"code": "5200", "name": "Bad", "type": "EXPENSE", "normal_balance": "CREDIT"},
    ]
    summary = LedgerImportService(db, organization_id).import_accounts(rows)

    assert summary.created == 2
    assert [(e.row, e.field) for e in summary.errors] == [(1, "parent_code"), (4, "normal_balance")]
    assert db.query(ChartOfAccount).count() == 2


def test_import_rejects_oversized_batches(db: Session, organization_id: UUID, monkeypatch):
    monkeypatch.setattr(get_settings(), "max_import_rows", 2)
    rows = [{"code": str(code), "name": "A", "type": "ASSET"} for code in range(3)]

    with pytest.raises(ValidationError):
        LedgerImportService(db, organization_id).import_accounts(rows)
    assert db.query(ChartOfAccount).count() == 0


def test_transaction_import_creates_drafts(db: Session, organization_id: UUID, chart_of_accounts):
    content = (
        "reference,date,contact_id,total_amount,category,payment_mode,due_date\n"
        "BILL-1,2024-01-10,V1,\"1,200.00\",5100,CREDIT,2024-02-09\n"
        "BILL-2,not-a-date,V1,50,5100,CREDIT,\n"
        "BILL-3,10/01/2024,V2,75.5,5100,BARTER,\n"
        "BILL-4,2024-01-12,V3,(20.00),5100,CREDIT,\n"
        "BILL-5,2024-01-12,,20.00,5100,CREDIT,\n"
    )
    summary = LedgerImportService(db, organization_id).import_transactions(
        TransactionKind.BILL, read_rows(content).rows,
    )

    assert summary.created == 1
    assert [(e.row, e.field) for e in summary.errors] == [
        (2, "date"),
        (3, "payment_mode"),
        (4, "total_amount"),
        (5, "contact_id"),
    ]
    bill = summary.imported[0]
    assert bill.status == TransactionStatus.DRAFT
    assert bill.total_amount == Decimal("1200.00")
    assert bill.due_date.isoformat() == "2024-02-09"
    assert db.query(JournalEntry).count() == 0


def test_transaction_import_duplicate_reference_and_upsert(db: Session, organization_id: UUID, chart_of_accounts):
    service = LedgerImportService(db, organization_id)
    first = [{"reference": "INV-1", "date": "2024-01-05", "contact_id": "C1", "total_amount": "100"}]
    service.import_transactions("invoice", first)

    again = [{"reference": "INV-1", "date": "2024-01-06", "contact_id": "C1", "total_amount": "150"}]
    summary = service.import_transactions("invoice", again)
    assert summary.created == 0
    assert [(e.row, e.field) for e in summary.errors] == [(1, "reference")]

    summary = service.import_transactions("invoice", again, upsert=True)
    assert summary.updated == 1
    invoice = db.query(BusinessTransaction).filter(BusinessTransaction.reference == "INV-1").one()
    db.refresh(invoice)
    assert invoice.total_amount == Decimal("150.00")
    assert invoice.date.isoformat() == "2024-01-06"

    post_transaction(db, organization_id, invoice.id)
    summary = service.import_transactions("invoice", again, upsert=True)
    assert summary.updated == 0
    assert summary.errors[0].field == "reference"
    assert db.query(BusinessTransaction).count() == 1


def test_journal_import_groups_rows_by_date_and_reference(db: Session, organization_id: UUID, chart_of_accounts):
    content = (
        "date,reference,description,account_code,debit,credit,narration\n"
        "2024-01-31,JV-1,Rent,5100,1500,,January rent\n"
        "2024-01-31,JV-1,Rent,1110,,1500,\n"
        "2024-01-31,JV-2,Broken,5100,100,,\n"
        "2024-01-31,JV-2,Broken,1110,,90,\n"
        "2024-02-01,JV-3,Missing account,9999,10,,\n"
        "2024-02-01,JV-3,Missing account,1100,,10,\n"
    )
    summary = LedgerImportService(db, organization_id).import_journal_rows(read_rows(content).rows, post=True)

    assert summary.created == 1
    assert [(e.row, e.field) for e in summary.errors] == [(3, None), (5, "account_code")]

    entry = summary.imported[0]
    assert entry.status == JournalStatus.POSTED
    assert entry.source_module == SourceModule.IMPORT
    assert entry.reference == "JV-1"
    assert len(entry.lines) == 2
    assert entry.lines[0].narration == "January rent"
    db.refresh(chart_of_accounts["5100"])
    assert chart_of_accounts["5100"].current_balance == Decimal("1500.00")


def test_journal_import_as_drafts(db: Session, organization_id: UUID, chart_of_accounts):
    rows = [
        {"date": "2024-01-31", "reference": "JV-9", "account_code": "5100", "debit": "10", "credit": ""},
        {"date": "2024-01-31", "reference": "JV-9", "account_code": "1100", "debit": "", "credit": "10"},
    ]
    summary = LedgerImportService(db, organization_id).import_journal_rows(rows)

    assert summary.created == 1
    assert summary.imported[0].status == JournalStatus.DRAFT
    db.refresh(chart_of_accounts["5100"])
    assert chart_of_accounts["5100"].current_balance == Decimal("0.00")


def test_transaction_import_rejects_malformed_items(db: Session, organization_id: UUID, chart_of_accounts):
    rows = [
        {"reference": "EXP-1", "date": "2024-01-05", "contact_id": "C1", "total_amount": "10"},
        {"reference": "EXP-2", "date": "2024-01-05", "contact_id": "C1", "total_amount": "20", "items": "oops"},
        {"reference": "EXP-3", "date": "2024-01-05", "contact_id": "C1", "items": [{"amount": "5"}, 7]},
        {"reference": "EXP-4", "date": "2024-01-05", "contact_id": "C1", "total_amount": "40"},
    ]
    summary = LedgerImportService(db, organization_id).import_transactions(TransactionKind.EXPENSE, rows)

    assert summary.created == 2
    assert [(e.row, e.field) for e in summary.errors] == [(2, "items"), (3, "items")]
    assert [t.reference for t in summary.imported] == ["EXP-1", "EXP-4"]


def test_transaction_import_isolates_database_errors(
    db: Session, organization_id: UUID, chart_of_accounts, monkeypatch,
):
    """A row the database rejects after flushing is rolled back alone."""
    create = transaction_service.create_transaction

    def create_then_fail(db, organization_id, kind, data, commit=True):
        transaction = create(db, organization_id, kind, data, commit=commit)
        if transaction.reference == "EXP-2":
            raise DataError("INSERT INTO business_transactions", {}, Exception("value too long"))
        return transaction

    monkeypatch.setattr(transaction_service, "create_transaction", create_then_fail)
    rows = [
        {"reference": f"EXP-{n}", "date": "2024-01-05", "contact_id": "C1", "total_amount": "10"}
        for n in (1, 2, 3)
    ]
    summary = LedgerImportService(db, organization_id).import_transactions(TransactionKind.EXPENSE, rows)

    assert summary.created == 2
    assert [(e.row, e.field) for e in summary.errors] == [(2, None)]
    assert "value too long" in summary.errors[0].reason
    references = sorted(t.reference for t in db.query(BusinessTransaction).all())
    assert references == ["EXP-1", "EXP-3"]

"""Bulk import of accounts, transactions and journal lines.

Every row (or, for journals, every entry group) is an independent unit:
it runs the same validation as the single-create path, commits on success,
and on failure is recorded as ``{row, field, reason}`` without aborting the
rest of the batch. Row numbers are 1-based positions of data rows.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models.accounting import BusinessTransaction, ChartOfAccount, JournalEntry
from app.domain.accounting import coa_service, gl_service, transaction_service
from app.domain.accounting.enums import SourceModule, TransactionKind, TransactionStatus
from app.domain.accounting.errors import LedgerError, ValidationError
from app.services.ledger_csv import parse_amount, parse_bool, parse_date

logger = structlog.get_logger()

TRANSACTION_FIELDS = (
    "reference", "contact_id", "category", "account_code", "offset_account_code",
    "payment_mode", "narration",
)


@dataclass
class RowError:
    row: int
    reason: str
    field: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"row": self.row, "field": self.field, "reason": self.reason}


@dataclass
class ImportSummary:
    """Outcome of a batch; lets the caller reconcile rows by index."""
    created: int = 0
    updated: int = 0
    errors: List[RowError] = field(default_factory=list)
    imported: List[Any] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"Imported {self.created} created, {self.updated} updated, {len(self.errors)} failed"


def _required_date(row: Dict[str, Any], key: str = "date"):
    value = row.get(key)
    if value in (None, ""):
        raise ValidationError(f"{key} is required", field=key)
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(f"{key} '{value}' is not a recognised date", field=key)
    return parsed


def _optional_date(row: Dict[str, Any], key: str):
    if row.get(key) in (None, ""):
        return None
    return _required_date(row, key)


def _amount(row: Dict[str, Any], key: str):
    """Tolerant amount: currency symbols and separators are dropped; blank stays None."""
    value = row.get(key)
    if value in (None, ""):
        return None
    parsed = parse_amount(value)
    if parsed is None:
        raise ValidationError(f"{key} '{value}' is not a valid amount", field=key)
    return parsed


class LedgerImportService:
    """Row-by-row import into the account registry, lifecycle manager and journal."""

    def __init__(self, db: Session, organization_id: UUID):
        self.db = db
        self.organization_id = organization_id
        self.settings = get_settings()

    def _check_size(self, rows: List[Dict[str, Any]]) -> None:
        if len(rows) > self.settings.max_import_rows:
            raise ValidationError(
                f"Import of {len(rows)} rows exceeds the limit of {self.settings.max_import_rows}",
                field="rows",
                limit=self.settings.max_import_rows,
            )

    def _apply(self, summary: ImportSummary, row_no: int, action: Callable[[], Tuple[Any, bool]]) -> None:
        """Run one row in its own savepoint and commit it; record failures."""
        savepoint = self.db.begin_nested()
        try:
            entity, created = action()
            savepoint.commit()
            self.db.commit()
        except LedgerError as e:
            if savepoint.is_active:
                savepoint.rollback()
            self.db.rollback()
            summary.errors.append(RowError(row=row_no, field=e.field, reason=e.message))
            logger.warning("Import row rejected", row=row_no, kind=e.kind, reason=e.message)
            return
        except SQLAlchemyError as e:
            if savepoint.is_active:
                savepoint.rollback()
            self.db.rollback()
            reason = f"Database rejected row: {getattr(e, 'orig', None) or e}"
            summary.errors.append(RowError(row=row_no, reason=reason))
            logger.warning("Import row rejected", row=row_no, kind=type(e).__name__, reason=reason)
            return

        if created:
            summary.created += 1
        else:
            summary.updated += 1
        summary.imported.append(entity)

    # ============================================
    # Accounts
    # ============================================

    def import_accounts(self, rows: List[Dict[str, Any]]) -> ImportSummary:
        """
        Create accounts row by row.

        Parents must exist already or appear in an earlier row.
        """
        self._check_size(rows)
        summary = ImportSummary()

        for row_no, row in enumerate(rows, start=1):
            def action(row=row) -> Tuple[ChartOfAccount, bool]:
                opening_balance = _amount(row, "opening_balance")
                account = coa_service.create_account(
                    self.db,
                    self.organization_id,
                    code=row.get("code"),
                    name=row.get("name"),
                    account_type=row.get("type") or row.get("account_type"),
                    normal_balance=row.get("normal_balance") or None,
                    parent_code=row.get("parent_code") or None,
                    description=row.get("description") or None,
                    opening_balance=opening_balance if opening_balance is not None else 0,
                    is_cash=bool(parse_bool(row.get("is_cash"))),
                    commit=False,
                )
                return account, True

            self._apply(summary, row_no, action)

        logger.info(
            "Account import finished",
            organization_id=str(self.organization_id),
            rows=len(rows),
            created=summary.created,
            errors=len(summary.errors),
        )
        return summary

    # ============================================
    # Transactions
    # ============================================

    def _transaction_data(self, row: Dict[str, Any]) -> Dict[str, Any]:
        data: Dict[str, Any] = {key: row.get(key) or None for key in TRANSACTION_FIELDS if key in row}
        data["date"] = _required_date(row)
        if "due_date" in row:
            data["due_date"] = _optional_date(row, "due_date")
        for key in ("total_amount", "taxable_amount", "tax_amount"):
            if key in row:
                data[key] = _amount(row, key)
        if row.get("items"):
            data["items"] = row["items"]
        return data

    def import_transactions(
        self,
        kind: TransactionKind | str,
        rows: List[Dict[str, Any]],
        upsert: bool = False,
    ) -> ImportSummary:
        """
        Create draft transactions row by row.

        With upsert, a row whose reference matches an existing DRAFT of the
        same kind updates it instead; a non-draft match is a row error.
        """
        kind = TransactionKind(kind.upper()) if isinstance(kind, str) else kind
        self._check_size(rows)
        summary = ImportSummary()

        for row_no, row in enumerate(rows, start=1):
            def action(row=row) -> Tuple[BusinessTransaction, bool]:
                data = self._transaction_data(row)
                reference = str(data.get("reference") or "").strip()
                existing = None
                if reference:
                    existing = self.db.query(BusinessTransaction).filter(
                        BusinessTransaction.organization_id == self.organization_id,
                        BusinessTransaction.kind == kind,
                        BusinessTransaction.reference == reference,
                    ).first()

                if existing is None:
                    transaction = transaction_service.create_transaction(
                        self.db, self.organization_id, kind, data, commit=False,
                    )
                    return transaction, True

                if not upsert:
                    raise ValidationError(
                        f"{kind.value.capitalize()} with reference {reference} already exists",
                        field="reference",
                        transaction_id=existing.id,
                    )
                if existing.status != TransactionStatus.DRAFT:
                    raise ValidationError(
                        f"{kind.value.capitalize()} {reference} is {existing.status.value}; only drafts can be updated",
                        field="reference",
                        transaction_id=existing.id,
                        status=existing.status.value,
                    )
                transaction = transaction_service.update_transaction(
                    self.db, self.organization_id, existing.id, data, kind=kind, commit=False,
                )
                return transaction, False

            self._apply(summary, row_no, action)

        logger.info(
            "Transaction import finished",
            organization_id=str(self.organization_id),
            kind=kind.value,
            rows=len(rows),
            created=summary.created,
            updated=summary.updated,
            errors=len(summary.errors),
        )
        return summary

    # ============================================
    # Journal
    # ============================================

    def _group_journal_rows(self, rows: List[Dict[str, Any]]) -> List[Tuple[int, List[Dict[str, Any]]]]:
        """Rows sharing date and reference form one entry, in first-appearance order."""
        groups: Dict[Tuple[str, str], Tuple[int, List[Dict[str, Any]]]] = {}
        for row_no, row in enumerate(rows, start=1):
            key = (str(row.get("date") or "").strip(), str(row.get("reference") or "").strip())
            if key not in groups:
                groups[key] = (row_no, [])
            groups[key][1].append(row)
        return list(groups.values())

    def import_journal_rows(self, rows: List[Dict[str, Any]], post: bool = False) -> ImportSummary:
        """
        Draft (and optionally post) one journal entry per date+reference group.

        A failing group is reported against its first row.
        """
        self._check_size(rows)
        summary = ImportSummary()

        for first_row, group in self._group_journal_rows(rows):
            def action(group=group) -> Tuple[JournalEntry, bool]:
                head = group[0]
                entry_date = _required_date(head)
                lines_list = []
                for row in group:
                    code = str(row.get("account_code") or "").strip()
                    if not code:
                        raise ValidationError("account_code is required", field="account_code")
                    account = self.db.query(ChartOfAccount).filter(
                        ChartOfAccount.organization_id == self.organization_id,
                        ChartOfAccount.code == code,
                    ).first()
                    if not account:
                        raise ValidationError(f"Account {code} not found", field="account_code", code=code)
                    lines_list.append({
                        "account_id": account.id,
                        "debit": _amount(row, "debit"),
                        "credit": _amount(row, "credit"),
                        "narration": row.get("narration") or None,
                    })

                entry = gl_service.draft_entry(
                    self.db,
                    self.organization_id,
                    entry_date=entry_date,
                    lines_list=lines_list,
                    reference=head.get("reference") or None,
                    description=head.get("description") or None,
                    source_module=SourceModule.IMPORT,
                    commit=False,
                )
                if post:
                    entry = gl_service.post_entry(self.db, self.organization_id, entry.id, commit=False)
                return entry, True

            self._apply(summary, first_row, action)

        logger.info(
            "Journal import finished",
            organization_id=str(self.organization_id),
            rows=len(rows),
            entries=summary.created,
            posted=post,
            errors=len(summary.errors),
        )
        return summary

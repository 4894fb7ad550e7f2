"""General Ledger service: journal entry drafting, posting and reversal."""

import logging
import datetime as dt
from datetime import datetime
from decimal import Decimal
from typing import List, Dict, Any, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.accounting import (
    JournalEntry,
    JournalLine,
    ChartOfAccount,
)
from app.domain.accounting.amounts import ZERO, to_amount, total
from app.domain.accounting.enums import (
    NormalBalance,
    SourceModule,
    JournalStatus,
)
from app.domain.accounting.errors import (
    AlreadyPostedError,
    AlreadyReversedError,
    LedgerError,
    NotFoundError,
    NotPostableStateError,
    UnbalancedEntryError,
    ValidationError,
)
from app.domain.accounting.persistence import (
    apply_sort,
    bounded_text,
    commit_or_conflict,
    flush_or_conflict,
    paginate,
)

logger = logging.getLogger(__name__)

ENTRY_SORT_FIELDS = ("date", "reference", "status", "created_at", "posted_at")


# ============================================
# Line validation
# ============================================

def normalize_lines(lines_list: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Structural validation of journal lines.

    Each line must carry an account_id and exactly one non-zero side;
    amounts may not be finer than the minor unit or negative.

    Raises:
        ValidationError: On the first malformed line
    """
    normalized = []
    for index, line in enumerate(lines_list, start=1):
        account_id = line.get("account_id")
        if not account_id:
            raise ValidationError(f"Line {index}: account_id is required", field="account_id", line=index)
        if not isinstance(account_id, UUID):
            try:
                account_id = UUID(str(account_id))
            except ValueError:
                raise ValidationError(
                    f"Line {index}: account_id {account_id!r} is not a valid id",
                    field="account_id", line=index,
                )

        debit = to_amount(line.get("debit"), field="debit")
        credit = to_amount(line.get("credit"), field="credit")
        if debit < ZERO or credit < ZERO:
            raise ValidationError(f"Line {index}: amounts cannot be negative", field="amount", line=index)
        if (debit > ZERO) == (credit > ZERO):
            raise ValidationError(
                f"Line {index}: exactly one of debit or credit must be non-zero",
                field="amount", line=index,
            )

        normalized.append({
            "account_id": account_id,
            "debit": debit,
            "credit": credit,
            "narration": bounded_text(line.get("narration") or line.get("description"), "narration", 500),
        })

    if not normalized:
        raise ValidationError("A journal entry needs at least one line", field="lines")
    return normalized


def _resolve_accounts(
    db: Session,
    organization_id: UUID,
    account_ids: Iterable[UUID],
    lock: bool = False,
) -> Dict[UUID, ChartOfAccount]:
    """
    Load every referenced account, optionally under FOR UPDATE.

    Rows are locked in ascending id order so two postings touching the same
    accounts always acquire locks in the same sequence.

    Raises:
        ValidationError: If any account does not resolve in the organization
    """
    wanted = sorted(set(account_ids), key=str)
    query = db.query(ChartOfAccount).filter(
        ChartOfAccount.organization_id == organization_id,
        ChartOfAccount.id.in_(wanted),
    ).order_by(ChartOfAccount.id)
    if lock:
        query = query.with_for_update().populate_existing()
    accounts = {account.id: account for account in query.all()}

    missing = [str(account_id) for account_id in wanted if account_id not in accounts]
    if missing:
        raise ValidationError(
            f"Account(s) {', '.join(missing)} not found for organization {organization_id}",
            field="account_id",
            account_ids=",".join(missing),
        )
    return accounts


def signed_delta(normal_balance: NormalBalance, debit: Decimal, credit: Decimal) -> Decimal:
    """Balance change for one line under the account's normal balance."""
    if normal_balance == NormalBalance.DEBIT:
        return debit - credit
    return credit - debit


def validate_lines(db: Session, organization_id: UUID, lines_list: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Dry-run validation of a set of lines; nothing is persisted.

    Returns:
        Dict with is_valid, errors, total_debit, total_credit
    """
    errors: List[str] = []
    total_debit = total_credit = ZERO
    try:
        lines = normalize_lines(lines_list)
        _resolve_accounts(db, organization_id, (line["account_id"] for line in lines))
        total_debit = total(line["debit"] for line in lines)
        total_credit = total(line["credit"] for line in lines)
        if total_debit != total_credit:
            errors.append(f"Journal entry is not balanced: debits={total_debit}, credits={total_credit}")
    except ValidationError as e:
        errors.append(e.message)

    return {
        "is_valid": not errors,
        "errors": errors,
        "total_debit": total_debit,
        "total_credit": total_credit,
    }


# ============================================
# Drafts
# ============================================

def draft_entry(
    db: Session,
    organization_id: UUID,
    entry_date: dt.date,
    lines_list: List[Dict[str, Any]],
    reference: str | None = None,
    description: str | None = None,
    source_module: SourceModule = SourceModule.MANUAL,
    source_id: UUID | None = None,
    commit: bool = True,
) -> JournalEntry:
    """
    Create a DRAFT journal entry with lines.

    Structural validation only: balances are untouched and the entry may
    still be unbalanced.

    Args:
        db: Database session
        organization_id: Organization UUID
        entry_date: Journal entry date
        lines_list: List of line dictionaries with:
            - account_id: UUID
            - debit: Decimal, float or numeric string
            - credit: Decimal, float or numeric string
            - narration: Optional string
        reference: Optional reference
        description: Entry description
        source_module: Source module (EXPENSE, INVOICE, MANUAL, etc.)
        source_id: ID of source record

    Raises:
        ValidationError: Malformed line or unresolved account
    """
    if entry_date is None:
        raise ValidationError("date is required", field="date")
    lines = normalize_lines(lines_list)
    _resolve_accounts(db, organization_id, (line["account_id"] for line in lines))

    journal_entry = JournalEntry(
        organization_id=organization_id,
        date=entry_date,
        reference=bounded_text(reference, "reference", 100),
        description=bounded_text(description, "description", 500),
        source_module=source_module,
        source_id=source_id,
        status=JournalStatus.DRAFT,
    )
    journal_entry.lines = [
        JournalLine(
            line_no=line_no,
            account_id=line["account_id"],
            narration=line["narration"],
            debit=line["debit"],
            credit=line["credit"],
        )
        for line_no, line in enumerate(lines, start=1)
    ]
    db.add(journal_entry)
    flush_or_conflict(db, "journal entry")

    if commit:
        commit_or_conflict(db, f"journal entry {journal_entry.id}")
        db.refresh(journal_entry)
        logger.info(
            f"Drafted journal entry {journal_entry.id} for {source_module.value} "
            f"source_id={source_id} with {len(lines)} lines"
        )

    return journal_entry


def get_entry(db: Session, organization_id: UUID, entry_id: UUID, lock: bool = False) -> JournalEntry:
    query = db.query(JournalEntry).filter(
        JournalEntry.organization_id == organization_id,
        JournalEntry.id == entry_id,
    )
    if lock:
        query = query.with_for_update().populate_existing()
    entry = query.first()
    if not entry:
        raise NotFoundError(f"Journal entry {entry_id} not found", entry_id=entry_id)
    return entry


def _require_draft(entry: JournalEntry) -> None:
    if entry.status != JournalStatus.DRAFT:
        raise AlreadyPostedError(
            f"Journal entry {entry.id} is {entry.status.value}; only drafts can be changed",
            entry_id=entry.id,
            status=entry.status.value,
        )


def update_draft_entry(
    db: Session,
    organization_id: UUID,
    entry_id: UUID,
    changes: Dict[str, Any],
) -> JournalEntry:
    """
    Update date, reference, description or lines of a DRAFT entry.

    Raises:
        AlreadyPostedError: If the entry is no longer a draft
    """
    entry = get_entry(db, organization_id, entry_id, lock=True)
    _require_draft(entry)

    if changes.get("lines") is not None:
        lines = normalize_lines(changes["lines"])
        _resolve_accounts(db, organization_id, (line["account_id"] for line in lines))
        entry.lines = [
            JournalLine(
                line_no=line_no,
                account_id=line["account_id"],
                narration=line["narration"],
                debit=line["debit"],
                credit=line["credit"],
            )
            for line_no, line in enumerate(lines, start=1)
        ]
    if changes.get("date") is not None:
        entry.date = changes["date"]
    for key, max_length in (("reference", 100), ("description", 500)):
        if key in changes:
            setattr(entry, key, bounded_text(changes[key], key, max_length))

    commit_or_conflict(db, f"journal entry {entry.id}")
    db.refresh(entry)
    logger.info(f"Updated draft journal entry {entry.id}")
    return entry


def delete_draft_entry(db: Session, organization_id: UUID, entry_id: UUID) -> None:
    """
    Delete a DRAFT entry.

    Raises:
        AlreadyPostedError: If the entry is posted or reversed
    """
    entry = get_entry(db, organization_id, entry_id, lock=True)
    _require_draft(entry)
    db.delete(entry)
    commit_or_conflict(db, f"journal entry {entry_id}")
    logger.info(f"Deleted draft journal entry {entry_id}")


# ============================================
# Posting
# ============================================

def post_entry(
    db: Session,
    organization_id: UUID,
    entry_id: UUID,
    idempotency_key: str | None = None,
    commit: bool = True,
) -> JournalEntry:
    """
    Post a DRAFT entry and apply its lines to account balances.

    Balance rule: DEBIT-normal accounts move by (debit - credit),
    CREDIT-normal accounts by (credit - debit). All touched accounts are
    locked and updated as one unit; on any failure nothing is applied.

    Raises:
        AlreadyPostedError: If the entry is not a draft (unless the
            idempotency key matches the one it was posted with)
        UnbalancedEntryError: If total debits differ from total credits
        ValidationError: If an account no longer resolves
    """
    idempotency_key = bounded_text(idempotency_key, "idempotency_key", 100)
    entry = get_entry(db, organization_id, entry_id, lock=True)

    if entry.status != JournalStatus.DRAFT:
        if idempotency_key and entry.idempotency_key == idempotency_key:
            logger.warning(f"Replayed post of journal entry {entry.id} with key {idempotency_key}")
            return entry
        raise AlreadyPostedError(
            f"Journal entry {entry.id} is already {entry.status.value}",
            entry_id=entry.id,
            status=entry.status.value,
        )

    if not entry.lines:
        raise ValidationError(f"Journal entry {entry.id} has no lines", field="lines", entry_id=entry.id)

    total_debit = total(line.debit for line in entry.lines)
    total_credit = total(line.credit for line in entry.lines)
    if total_debit != total_credit:
        raise UnbalancedEntryError(
            f"Journal entry is not balanced: debits={total_debit}, credits={total_credit}",
            entry_id=entry.id,
            total_debit=total_debit,
            total_credit=total_credit,
        )

    accounts = _resolve_accounts(db, organization_id, (line.account_id for line in entry.lines), lock=True)

    # Compute every new balance before touching any account
    new_balances: Dict[UUID, Decimal] = {
        account_id: Decimal(account.current_balance) for account_id, account in accounts.items()
    }
    for line in entry.lines:
        account = accounts[line.account_id]
        new_balances[line.account_id] += signed_delta(account.normal_balance, line.debit, line.credit)

    for account_id, balance in new_balances.items():
        accounts[account_id].current_balance = to_amount(balance)

    entry.status = JournalStatus.POSTED
    entry.posted_at = datetime.utcnow()
    entry.idempotency_key = idempotency_key

    flush_or_conflict(db, f"journal entry {entry.id}")
    if commit:
        commit_or_conflict(db, f"journal entry {entry.id}")
        db.refresh(entry)
        logger.info(
            f"Posted journal entry {entry.id} ({entry.source_module.value}) "
            f"touching {len(accounts)} accounts for {total_debit}"
        )

    return entry


def create_journal_entry(
    db: Session,
    organization_id: UUID,
    entry_date: dt.date,
    description: str,
    source_module: SourceModule,
    source_id: UUID | None,
    lines_list: List[Dict[str, Any]],
    reference: str | None = None,
    idempotency_key: str | None = None,
    commit: bool = True,
) -> JournalEntry:
    """
    Draft and post an entry in one unit (used by the transaction lifecycle).

    Raises:
        UnbalancedEntryError: If debits don't equal credits
        ValidationError: Malformed line or unresolved account
    """
    entry = draft_entry(
        db,
        organization_id,
        entry_date=entry_date,
        lines_list=lines_list,
        reference=reference,
        description=description,
        source_module=source_module,
        source_id=source_id,
        commit=False,
    )
    return post_entry(db, organization_id, entry.id, idempotency_key=idempotency_key, commit=commit)


def reverse_entry(
    db: Session,
    organization_id: UUID,
    entry_id: UUID,
    reversal_date: dt.date | None = None,
    description: str | None = None,
    commit: bool = True,
) -> JournalEntry:
    """
    Neutralize a POSTED entry with a compensating entry.

    Every line is mirrored with debit and credit swapped, posted, and
    linked back through reversal_of_id. The original keeps its lines and
    amounts; only its status moves to REVERSED.

    Returns:
        The compensating (reversal) entry

    Raises:
        AlreadyReversedError: If the entry already has a reversal
        NotPostableStateError: If the entry is still a draft
    """
    original = get_entry(db, organization_id, entry_id, lock=True)

    existing = db.query(JournalEntry.id).filter(JournalEntry.reversal_of_id == original.id).first()
    if original.status == JournalStatus.REVERSED or existing:
        raise AlreadyReversedError(
            f"Journal entry {original.id} has already been reversed",
            entry_id=original.id,
            reversal_id=existing[0] if existing else None,
        )
    if original.status != JournalStatus.POSTED:
        raise NotPostableStateError(
            f"Only posted entries can be reversed; {original.id} is {original.status.value}",
            entry_id=original.id,
            status=original.status.value,
        )

    lines_list = [
        {
            "account_id": line.account_id,
            "debit": line.credit,
            "credit": line.debit,
            "narration": f"Reversal: {line.narration}" if line.narration else "Reversal",
        }
        for line in original.lines
    ]

    reversal = draft_entry(
        db,
        organization_id,
        entry_date=reversal_date or dt.date.today(),
        lines_list=lines_list,
        reference=f"REV-{original.reference}"[:100] if original.reference else None,
        description=description or f"Reversal of journal entry {original.id}",
        source_module=SourceModule.REVERSAL,
        source_id=original.id,
        commit=False,
    )
    reversal.reversal_of_id = original.id
    flush_or_conflict(db, f"journal entry {reversal.id}")
    post_entry(db, organization_id, reversal.id, commit=False)

    original.status = JournalStatus.REVERSED
    flush_or_conflict(db, f"journal entry {original.id}")

    if commit:
        commit_or_conflict(db, f"reversal of journal entry {original.id}")
        db.refresh(reversal)
        logger.info(f"Reversed journal entry {original.id} with {reversal.id}")

    return reversal


def _run_batch(db: Session, entry_ids: List[UUID], action) -> tuple[List[JournalEntry], List[Dict[str, Any]]]:
    done: List[JournalEntry] = []
    failed: List[Dict[str, Any]] = []
    for entry_id in entry_ids:
        try:
            done.append(action(entry_id))
        except LedgerError as e:
            db.rollback()
            failed.append({"id": entry_id, "kind": e.kind, "message": e.message})
    return done, failed


def post_entries(db: Session, organization_id: UUID, entry_ids: List[UUID]) -> Dict[str, Any]:
    """Post several drafts; each id is its own atomic unit."""
    posted, failed = _run_batch(db, entry_ids, lambda entry_id: post_entry(db, organization_id, entry_id))
    logger.info(f"Batch post: {len(posted)} posted, {len(failed)} failed")
    return {"posted": posted, "failed": failed}


def reverse_entries(db: Session, organization_id: UUID, entry_ids: List[UUID]) -> Dict[str, Any]:
    """Reverse several posted entries; each id is its own atomic unit."""
    reversed_, failed = _run_batch(db, entry_ids, lambda entry_id: reverse_entry(db, organization_id, entry_id))
    logger.info(f"Batch reverse: {len(reversed_)} reversed, {len(failed)} failed")
    return {"reversed": reversed_, "failed": failed}


def list_entries(
    db: Session,
    organization_id: UUID,
    reference: str | None = None,
    description: str | None = None,
    status: JournalStatus | None = None,
    date_from: dt.date | None = None,
    date_to: dt.date | None = None,
    page: int | None = None,
    limit: int | None = None,
    sort: str | None = None,
    order: str | None = None,
) -> tuple[List[JournalEntry], Dict[str, int]]:
    query = db.query(JournalEntry).filter(JournalEntry.organization_id == organization_id)
    if reference:
        query = query.filter(JournalEntry.reference.ilike(f"%{reference}%"))
    if description:
        query = query.filter(JournalEntry.description.ilike(f"%{description}%"))
    if status:
        query = query.filter(JournalEntry.status == status)
    if date_from:
        query = query.filter(JournalEntry.date >= date_from)
    if date_to:
        query = query.filter(JournalEntry.date <= date_to)
    query = apply_sort(query, JournalEntry, sort, order or "desc", ENTRY_SORT_FIELDS, default="date")
    return paginate(query, page, limit)

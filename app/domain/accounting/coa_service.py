"""Account registry: Chart of Accounts creation, hierarchy and bookkeeping.

The hierarchy is stored as parent pointers only. Every walk below loads the
organization's accounts into an arena keyed by code and performs a bounded
walk that fails with CycleError instead of looping if the stored pointers
were ever corrupted.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.accounting import ChartOfAccount, JournalEntry, JournalLine
from app.domain.accounting.amounts import ZERO, to_amount
from app.domain.accounting.enums import (
    AccountType,
    JournalStatus,
    NormalBalance,
    NORMAL_BALANCE_BY_TYPE,
)
from app.domain.accounting.errors import (
    ConflictError,
    CycleError,
    LedgerError,
    NotFoundError,
    TemplateError,
    ValidationError,
)
from app.domain.accounting.persistence import (
    apply_sort,
    bounded_text,
    commit_or_conflict,
    flush_or_conflict,
    paginate,
)
from app.domain.accounting import templates

logger = logging.getLogger(__name__)

ACCOUNT_SORT_FIELDS = ("code", "name", "account_type", "created_at")


@dataclass
class AccountNode:
    """An account with its children, for tree projections."""
    account: ChartOfAccount
    children: List["AccountNode"] = field(default_factory=list)


# ============================================
# Validation helpers
# ============================================

def coerce_account_type(value: Any) -> AccountType:
    try:
        return value if isinstance(value, AccountType) else AccountType(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Invalid account type '{value}'. Allowed: {[t.value for t in AccountType]}",
            field="type",
        )


def coerce_normal_balance(value: Any) -> NormalBalance:
    try:
        return value if isinstance(value, NormalBalance) else NormalBalance(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Invalid normal balance '{value}'. Allowed: DEBIT, CREDIT",
            field="normal_balance",
        )


def resolve_normal_balance(account_type: AccountType, normal_balance: Any = None) -> NormalBalance:
    """
    Return the canonical normal balance for a type.

    Raises:
        ValidationError: If an explicit normal balance disagrees with the type
    """
    canonical = NORMAL_BALANCE_BY_TYPE[account_type]
    if normal_balance is None or normal_balance == "":
        return canonical
    requested = coerce_normal_balance(normal_balance)
    if requested != canonical:
        raise ValidationError(
            f"{account_type.value} accounts have a {canonical.value} normal balance, not {requested.value}",
            field="normal_balance",
        )
    return requested


def _clean_code(code: Any, field_name: str = "code") -> str:
    cleaned = str(code).strip() if code is not None else ""
    if not cleaned:
        raise ValidationError(f"{field_name} is required", field=field_name)
    if len(cleaned) > 50:
        raise ValidationError(f"{field_name} must be at most 50 characters", field=field_name)
    return cleaned


def _clean_name(name: Any) -> str:
    return bounded_text(name, "name", 200, required=True)


# ============================================
# Arena and bounded walks
# ============================================

def _load_arena(db: Session, organization_id: UUID) -> Dict[str, ChartOfAccount]:
    accounts = db.query(ChartOfAccount).filter(ChartOfAccount.organization_id == organization_id).all()
    return {account.code: account for account in accounts}


def _children_index(arena: Dict[str, ChartOfAccount]) -> Dict[str, List[ChartOfAccount]]:
    index: Dict[str, List[ChartOfAccount]] = {}
    for account in arena.values():
        if account.parent_code is not None:
            index.setdefault(account.parent_code, []).append(account)
    for children in index.values():
        children.sort(key=lambda a: a.code)
    return index


def _walk_ancestors(arena: Dict[str, ChartOfAccount], account: ChartOfAccount) -> List[ChartOfAccount]:
    """
    Return ancestors nearest-first.

    Raises:
        CycleError: If the parent chain revisits an account
    """
    ancestors: List[ChartOfAccount] = []
    seen = {account.code}
    parent_code = account.parent_code
    # A well-formed chain can never be longer than the arena
    for _ in range(len(arena) + 1):
        if parent_code is None:
            return ancestors
        if parent_code in seen:
            raise CycleError(
                f"Cycle detected in the parent chain of account {account.code} at {parent_code}",
                code=account.code,
                parent_code=parent_code,
            )
        parent = arena.get(parent_code)
        if parent is None:
            # Dangling pointer; treat the chain as ending here
            logger.warning(f"Account {account.code} has unresolved ancestor {parent_code}")
            return ancestors
        seen.add(parent_code)
        ancestors.append(parent)
        parent_code = parent.parent_code
    raise CycleError(f"Parent chain of account {account.code} does not terminate", code=account.code)


def _walk_descendants(
    arena: Dict[str, ChartOfAccount],
    account: ChartOfAccount,
    index: Optional[Dict[str, List[ChartOfAccount]]] = None,
) -> List[tuple[ChartOfAccount, int]]:
    """
    Return (descendant, depth below account) pairs in pre-order.

    Raises:
        CycleError: If a node is reached twice
    """
    index = index if index is not None else _children_index(arena)
    result: List[tuple[ChartOfAccount, int]] = []
    seen = {account.code}
    stack = [(child, 1) for child in reversed(index.get(account.code, []))]
    while stack:
        node, depth = stack.pop()
        if node.code in seen or len(seen) > len(arena):
            raise CycleError(
                f"Cycle detected below account {account.code} at {node.code}",
                code=account.code,
                at=node.code,
            )
        seen.add(node.code)
        result.append((node, depth))
        stack.extend((child, depth + 1) for child in reversed(index.get(node.code, [])))
    return result


def _has_posted_lines(db: Session, account_id: UUID) -> bool:
    return db.query(JournalLine.id).join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id).filter(
        JournalLine.account_id == account_id,
        JournalEntry.status.in_([JournalStatus.POSTED, JournalStatus.REVERSED]),
    ).first() is not None


def _has_any_lines(db: Session, account_id: UUID) -> bool:
    return db.query(JournalLine.id).filter(JournalLine.account_id == account_id).first() is not None


# ============================================
# Lookups
# ============================================

def get_account(db: Session, organization_id: UUID, account_id: UUID) -> ChartOfAccount:
    account = db.query(ChartOfAccount).filter(
        ChartOfAccount.organization_id == organization_id,
        ChartOfAccount.id == account_id,
    ).first()
    if not account:
        raise NotFoundError(f"Account {account_id} not found", account_id=account_id)
    return account


def get_account_by_code(db: Session, organization_id: UUID, code: str) -> ChartOfAccount:
    account = db.query(ChartOfAccount).filter(
        ChartOfAccount.organization_id == organization_id,
        ChartOfAccount.code == code,
    ).first()
    if not account:
        raise NotFoundError(f"Account with code {code} not found", code=code)
    return account


def lock_account(db: Session, organization_id: UUID, account_id: UUID) -> ChartOfAccount:
    """Fetch an account row under SELECT ... FOR UPDATE."""
    account = db.query(ChartOfAccount).filter(
        ChartOfAccount.organization_id == organization_id,
        ChartOfAccount.id == account_id,
    ).with_for_update().populate_existing().first()
    if not account:
        raise NotFoundError(f"Account {account_id} not found", account_id=account_id)
    return account


def find_account_by_type_and_name(
    db: Session,
    organization_id: UUID,
    account_type: AccountType,
    code_pattern: str | None = None,
    name_pattern: str | None = None,
    raise_on_multiple: bool = True,
    field: str = "account_code",
) -> ChartOfAccount | None:
    """
    Find a leaf account by type and optional code/name patterns.

    Group accounts (those with children) are skipped so that a template
    header like "Expenses" never absorbs postings meant for its children.

    Raises:
        ValidationError: If multiple matches found and raise_on_multiple=True
    """
    query = db.query(ChartOfAccount).filter(
        ChartOfAccount.organization_id == organization_id,
        ChartOfAccount.account_type == account_type,
        ChartOfAccount.is_active == True
    )

    if code_pattern:
        query = query.filter(ChartOfAccount.code.ilike(f"%{code_pattern}%"))

    if name_pattern:
        query = query.filter(ChartOfAccount.name.ilike(f"%{name_pattern}%"))

    parent_codes = {
        code for (code,) in db.query(ChartOfAccount.parent_code).filter(
            ChartOfAccount.organization_id == organization_id,
            ChartOfAccount.parent_code.isnot(None),
        )
    }
    results = [a for a in query.order_by(ChartOfAccount.code).all() if a.code not in parent_codes]

    if len(results) > 1 and raise_on_multiple:
        raise ValidationError(
            f"Multiple accounts found for type={account_type.value}, "
            f"code_pattern={code_pattern}, name_pattern={name_pattern}. "
            f"Found {len(results)} accounts: {[a.code for a in results]}",
            field=field,
        )

    return results[0] if results else None


def list_accounts(
    db: Session,
    organization_id: UUID,
    name: str | None = None,
    code: str | None = None,
    account_type: AccountType | str | None = None,
    page: int | None = None,
    limit: int | None = None,
    sort: str | None = None,
    order: str | None = None,
) -> tuple[List[ChartOfAccount], Dict[str, int]]:
    """List accounts with substring filters on name/code, paginated."""
    query = db.query(ChartOfAccount).filter(ChartOfAccount.organization_id == organization_id)
    if name:
        query = query.filter(ChartOfAccount.name.ilike(f"%{name}%"))
    if code:
        query = query.filter(ChartOfAccount.code.ilike(f"%{code}%"))
    if account_type:
        query = query.filter(ChartOfAccount.account_type == coerce_account_type(account_type))
    if sort == "type":
        sort = "account_type"
    query = apply_sort(query, ChartOfAccount, sort, order, ACCOUNT_SORT_FIELDS, default="code")
    return paginate(query, page, limit)


# ============================================
# Mutations
# ============================================

def create_account(
    db: Session,
    organization_id: UUID,
    code: str,
    name: str,
    account_type: AccountType | str,
    normal_balance: NormalBalance | str | None = None,
    parent_code: str | None = None,
    description: str | None = None,
    opening_balance: Any = ZERO,
    is_cash: bool = False,
    is_system: bool = False,
    commit: bool = True,
) -> ChartOfAccount:
    """
    Create a Chart of Accounts entry.

    Args:
        db: Database session
        organization_id: Organization UUID
        code: Unique human-assigned code
        name: Display name
        account_type: ASSET, LIABILITY, EQUITY, INCOME or EXPENSE
        normal_balance: Optional; derived from the type when omitted
        parent_code: Optional parent account code
        commit: When False the account is only flushed (batch callers)

    Returns:
        Created ChartOfAccount

    Raises:
        ValidationError: Duplicate code, unresolved parent, cycle, or a
            normal balance that disagrees with the type
    """
    code = _clean_code(code)
    name = _clean_name(name)
    account_type = coerce_account_type(account_type)
    normal_balance = resolve_normal_balance(account_type, normal_balance)
    opening = to_amount(opening_balance, field="opening_balance")

    existing = db.query(ChartOfAccount.id).filter(
        ChartOfAccount.organization_id == organization_id,
        ChartOfAccount.code == code,
    ).first()
    if existing:
        raise ValidationError(f"Account code {code} already exists", field="code", code=code)

    level = 0
    if parent_code not in (None, ""):
        parent_code = _clean_code(parent_code, "parent_code")
        if parent_code == code:
            raise ValidationError(f"Account {code} cannot be its own parent", field="parent_code", code=code)
        arena = _load_arena(db, organization_id)
        parent = arena.get(parent_code)
        if parent is None:
            raise ValidationError(
                f"Parent account {parent_code} not found",
                field="parent_code",
                parent_code=parent_code,
            )
        try:
            level = len(_walk_ancestors(arena, parent)) + 1
        except CycleError as e:
            raise ValidationError(e.message, field="parent_code", parent_code=parent_code)
    else:
        parent_code = None

    account = ChartOfAccount(
        organization_id=organization_id,
        code=code,
        name=name,
        description=bounded_text(description, "description", 500),
        account_type=account_type,
        normal_balance=normal_balance,
        parent_code=parent_code,
        level=level,
        opening_balance=opening,
        current_balance=opening,
        is_cash=bool(is_cash),
        is_system=bool(is_system),
    )
    db.add(account)
    flush_or_conflict(db, f"account {code}")

    if commit:
        commit_or_conflict(db, f"account {code}")
        db.refresh(account)
        logger.info(f"Created account {account.code} ({account.account_type.value}) for org {organization_id}")

    return account


def move_account(
    db: Session,
    organization_id: UUID,
    account_id: UUID,
    new_parent_code: str | None,
    commit: bool = True,
) -> ChartOfAccount:
    """
    Re-parent an account and recompute the depth of its subtree.

    Raises:
        CycleError: If the new parent is the account itself or one of its descendants
        ValidationError: If the new parent does not resolve
    """
    account = lock_account(db, organization_id, account_id)
    arena = _load_arena(db, organization_id)

    if new_parent_code in ("",):
        new_parent_code = None

    subtree = _walk_descendants(arena, account)

    new_level = 0
    if new_parent_code is not None:
        if new_parent_code == account.code:
            raise CycleError(
                f"Account {account.code} cannot be moved under itself",
                code=account.code,
                parent_code=new_parent_code,
            )
        if new_parent_code in {node.code for node, _ in subtree}:
            raise CycleError(
                f"Account {account.code} cannot be moved under its descendant {new_parent_code}",
                code=account.code,
                parent_code=new_parent_code,
            )
        new_parent = arena.get(new_parent_code)
        if new_parent is None:
            raise ValidationError(
                f"Parent account {new_parent_code} not found",
                field="parent_code",
                parent_code=new_parent_code,
            )
        new_level = len(_walk_ancestors(arena, new_parent)) + 1

    old_parent = account.parent_code
    account.parent_code = new_parent_code
    account.level = new_level
    for node, depth in subtree:
        node.level = new_level + depth

    flush_or_conflict(db, f"account {account.code}")
    if commit:
        commit_or_conflict(db, f"account {account.code}")
        db.refresh(account)
        logger.info(
            f"Moved account {account.code} from parent {old_parent} to {new_parent_code} "
            f"({len(subtree)} descendants re-levelled)"
        )
    return account


def update_account(
    db: Session,
    organization_id: UUID,
    account_id: UUID,
    changes: Dict[str, Any],
    partial: bool = True,
    commit: bool = True,
) -> ChartOfAccount:
    """
    Update an account (PUT when partial=False, PATCH otherwise).

    Name and description are superficial and always editable, except that
    system accounts cannot be renamed. Code, type and normal balance can
    only change while no posted journal line references the account.

    Raises:
        ValidationError: Invalid values or duplicate code
        ConflictError: Structural change on a posted or system account
        CycleError: Parent change that would create a cycle
    """
    if not partial:
        missing = [key for key in ("code", "name", "account_type") if changes.get(key) in (None, "")]
        if missing:
            raise ValidationError(f"Full update requires {', '.join(missing)}", field=missing[0])

    account = lock_account(db, organization_id, account_id)

    new_code = _clean_code(changes["code"]) if changes.get("code") not in (None, "") else account.code
    new_name = _clean_name(changes["name"]) if changes.get("name") not in (None, "") else account.name
    new_type = coerce_account_type(changes["account_type"]) if changes.get("account_type") else account.account_type
    if changes.get("normal_balance"):
        new_normal = resolve_normal_balance(new_type, changes["normal_balance"])
    else:
        new_normal = resolve_normal_balance(new_type)

    structural = (
        new_code != account.code
        or new_type != account.account_type
        or new_normal != account.normal_balance
    )
    if account.is_system and (new_code != account.code or new_name != account.name):
        raise ConflictError(
            f"System account {account.code} cannot be renamed",
            retryable=False,
            code=account.code,
            field="name" if new_code == account.code else "code",
        )
    if structural and _has_posted_lines(db, account.id):
        raise ConflictError(
            f"Account {account.code} has posted journal lines; code and type are frozen",
            retryable=False,
            code=account.code,
            field="code" if new_code != account.code else "type",
        )

    if new_code != account.code:
        clash = db.query(ChartOfAccount.id).filter(
            ChartOfAccount.organization_id == organization_id,
            ChartOfAccount.code == new_code,
        ).first()
        if clash:
            raise ValidationError(f"Account code {new_code} already exists", field="code", code=new_code)
        children = db.query(ChartOfAccount).filter(
            ChartOfAccount.organization_id == organization_id,
            ChartOfAccount.parent_code == account.code,
        ).all()
        for child in children:
            child.parent_code = new_code
        account.code = new_code

    account.name = new_name
    account.account_type = new_type
    account.normal_balance = new_normal
    if "description" in changes:
        account.description = bounded_text(changes["description"], "description", 500)
    elif not partial:
        account.description = None
    if changes.get("is_cash") is not None:
        account.is_cash = bool(changes["is_cash"])

    flush_or_conflict(db, f"account {account.code}")

    if "parent_code" in changes and (changes["parent_code"] or None) != account.parent_code:
        move_account(db, organization_id, account.id, changes["parent_code"] or None, commit=False)

    if commit:
        commit_or_conflict(db, f"account {account.code}")
        db.refresh(account)
        logger.info(f"Updated account {account.code} for org {organization_id}")
    return account


def delete_account(db: Session, organization_id: UUID, account_id: UUID) -> None:
    """
    Delete a leaf account with zero balance and no journal references.

    Raises:
        ConflictError: If the account is system-flagged, has children,
            a non-zero balance, or any journal line reference
    """
    account = lock_account(db, organization_id, account_id)

    if account.is_system:
        raise ConflictError(
            f"System account {account.code} cannot be deleted",
            retryable=False, code=account.code, field="is_system",
        )

    has_children = db.query(ChartOfAccount.id).filter(
        ChartOfAccount.organization_id == organization_id,
        ChartOfAccount.parent_code == account.code,
    ).first() is not None
    if has_children:
        raise ConflictError(
            f"Account {account.code} has child accounts",
            retryable=False, code=account.code, field="children",
        )

    if account.current_balance != ZERO:
        raise ConflictError(
            f"Account {account.code} has a non-zero balance of {account.current_balance}",
            retryable=False, code=account.code, field="current_balance",
        )

    if _has_any_lines(db, account.id):
        raise ConflictError(
            f"Account {account.code} is referenced by journal lines",
            retryable=False, code=account.code, field="journal_lines",
        )

    code = account.code
    db.delete(account)
    commit_or_conflict(db, f"account {code}")
    logger.info(f"Deleted account {code} for org {organization_id}")


def apply_template(
    db: Session,
    organization_id: UUID,
    accounts: Sequence[Dict[str, Any]] | str,
) -> List[ChartOfAccount]:
    """
    Bulk-create accounts from a template, all or nothing.

    ``accounts`` is either a list of template entries (code, name, type,
    normal_balance?, parent_code?, description?) or an industry name.
    Entries are created parent-before-child regardless of input order.

    Raises:
        TemplateError: Naming the first offending code; nothing is created
    """
    entries = templates.get_template(accounts) if isinstance(accounts, str) else list(accounts)
    ordered = _order_parent_first(entries)

    created: List[ChartOfAccount] = []
    try:
        for entry in ordered:
            created.append(create_account(
                db,
                organization_id,
                code=entry.get("code"),
                name=entry.get("name"),
                account_type=entry.get("type") or entry.get("account_type"),
                normal_balance=entry.get("normal_balance"),
                parent_code=entry.get("parent_code"),
                description=entry.get("description"),
                opening_balance=entry.get("opening_balance") or ZERO,
                is_cash=entry.get("is_cash", False),
                is_system=entry.get("is_system", False),
                commit=False,
            ))
    except LedgerError as e:
        db.rollback()
        offending = entry.get("code")
        raise TemplateError(
            f"Template entry {offending} rejected: {e.message}",
            code=offending,
            field=e.field,
        )

    commit_or_conflict(db, "account template")
    logger.info(f"Applied template of {len(created)} accounts for org {organization_id}")
    return created


def _order_parent_first(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Stable topological order: an entry comes after its parent when the
    parent is part of the same template.

    Raises:
        TemplateError: If template entries form a parent cycle
    """
    by_code = {}
    for entry in entries:
        by_code.setdefault(str(entry.get("code") or "").strip(), entry)

    ordered: List[Dict[str, Any]] = []
    placed: set[int] = set()
    visiting: set[str] = set()

    def place(entry: Dict[str, Any]) -> None:
        if id(entry) in placed:
            return
        code = str(entry.get("code") or "").strip()
        if code in visiting:
            raise TemplateError(f"Template entries form a cycle at {code}", code=code, field="parent_code")
        visiting.add(code)
        parent = by_code.get(str(entry.get("parent_code") or "").strip())
        if parent is not None and parent is not entry:
            place(parent)
        visiting.discard(code)
        placed.add(id(entry))
        ordered.append(entry)

    for entry in entries:
        place(entry)
    return ordered


# ============================================
# Tree projections
# ============================================

def get_children(db: Session, organization_id: UUID, account_id: UUID) -> List[ChartOfAccount]:
    account = get_account(db, organization_id, account_id)
    return db.query(ChartOfAccount).filter(
        ChartOfAccount.organization_id == organization_id,
        ChartOfAccount.parent_code == account.code,
    ).order_by(ChartOfAccount.code).all()


def get_ancestors(db: Session, organization_id: UUID, account_id: UUID) -> List[ChartOfAccount]:
    """Ancestors from the root down to the direct parent."""
    account = get_account(db, organization_id, account_id)
    arena = _load_arena(db, organization_id)
    return list(reversed(_walk_ancestors(arena, account)))


def get_descendants(db: Session, organization_id: UUID, account_id: UUID) -> List[ChartOfAccount]:
    """All descendants in pre-order."""
    account = get_account(db, organization_id, account_id)
    arena = _load_arena(db, organization_id)
    return [node for node, _ in _walk_descendants(arena, account)]


def get_path(db: Session, organization_id: UUID, account_id: UUID) -> List[ChartOfAccount]:
    """Root-to-node path, including the node."""
    account = get_account(db, organization_id, account_id)
    arena = _load_arena(db, organization_id)
    return list(reversed(_walk_ancestors(arena, account))) + [account]


def get_level(db: Session, organization_id: UUID, account_id: UUID) -> int:
    """Depth of the account; roots are level 0."""
    return len(get_ancestors(db, organization_id, account_id))


def get_roots(db: Session, organization_id: UUID) -> List[ChartOfAccount]:
    return db.query(ChartOfAccount).filter(
        ChartOfAccount.organization_id == organization_id,
        ChartOfAccount.parent_code.is_(None),
    ).order_by(ChartOfAccount.code).all()


def get_leaves(db: Session, organization_id: UUID) -> List[ChartOfAccount]:
    arena = _load_arena(db, organization_id)
    index = _children_index(arena)
    return sorted((a for a in arena.values() if a.code not in index), key=lambda a: a.code)


def get_tree(db: Session, organization_id: UUID) -> List[AccountNode]:
    """
    Full tree built from the roots.

    Raises:
        CycleError: If some accounts are unreachable from any root, which
            only happens when parent pointers form a cycle
    """
    arena = _load_arena(db, organization_id)
    index = _children_index(arena)
    roots = sorted(
        (a for a in arena.values() if a.parent_code is None or a.parent_code not in arena),
        key=lambda a: a.code,
    )

    reached = 0
    tree: List[AccountNode] = []
    for root in roots:
        node = AccountNode(account=root)
        nodes = {root.code: node}
        for descendant, _ in _walk_descendants(arena, root, index):
            child = AccountNode(account=descendant)
            nodes[descendant.code] = child
            nodes[descendant.parent_code].children.append(child)
        reached += len(nodes)
        tree.append(node)

    if reached != len(arena):
        stranded = sorted(set(arena) - _codes(tree))
        raise CycleError(
            f"Accounts {stranded} are not reachable from any root; parent pointers form a cycle",
            codes=",".join(stranded),
        )
    return tree


def _codes(tree: List[AccountNode]) -> set[str]:
    codes: set[str] = set()
    stack = list(tree)
    while stack:
        node = stack.pop()
        codes.add(node.account.code)
        stack.extend(node.children)
    return codes


def get_statistics(db: Session, organization_id: UUID) -> Dict[str, Any]:
    """Counts by type plus root and leaf counts."""
    arena = _load_arena(db, organization_id)
    index = _children_index(arena)
    by_type = {t.value: 0 for t in AccountType}
    for account in arena.values():
        by_type[account.account_type.value] += 1
    return {
        "total": len(arena),
        "by_type": by_type,
        "root_count": sum(1 for a in arena.values() if a.parent_code is None),
        "leaf_count": sum(1 for code in arena if code not in index),
    }


def get_account_journal_entries(
    db: Session,
    organization_id: UUID,
    account_id: UUID,
    status: JournalStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int | None = None,
    limit: int | None = None,
) -> Dict[str, Any]:
    """Journal entries touching an account or any of its descendants."""
    account = get_account(db, organization_id, account_id)
    arena = _load_arena(db, organization_id)
    descendants = [node for node, _ in _walk_descendants(arena, account)]
    account_ids = [account.id] + [d.id for d in descendants]

    entry_ids = db.query(JournalLine.journal_entry_id).filter(JournalLine.account_id.in_(account_ids))
    query = db.query(JournalEntry).filter(
        JournalEntry.organization_id == organization_id,
        JournalEntry.id.in_(entry_ids),
    )
    if status:
        query = query.filter(JournalEntry.status == status)
    if date_from:
        query = query.filter(JournalEntry.date >= date_from)
    if date_to:
        query = query.filter(JournalEntry.date <= date_to)
    query = query.order_by(JournalEntry.date.desc(), JournalEntry.created_at.desc())

    entries, pagination = paginate(query, page, limit)
    return {
        "account": account,
        "descendant_accounts": descendants,
        "journal_entries": entries,
        "pagination": pagination,
    }


def account_balance_check(db: Session, organization_id: UUID) -> Dict[str, Decimal]:
    """
    Recompute each account's balance from its opening balance and posted
    lines; returns codes whose stored balance disagrees, with the expected value.
    """
    sums = dict(
        (account_id, (debit or ZERO, credit or ZERO))
        for account_id, debit, credit in db.query(
            JournalLine.account_id, func.sum(JournalLine.debit), func.sum(JournalLine.credit)
        ).join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id).filter(
            JournalEntry.organization_id == organization_id,
            JournalEntry.status.in_([JournalStatus.POSTED, JournalStatus.REVERSED]),
        ).group_by(JournalLine.account_id)
    )
    mismatches: Dict[str, Decimal] = {}
    for account in _load_arena(db, organization_id).values():
        debit, credit = sums.get(account.id, (ZERO, ZERO))
        debit, credit = Decimal(debit), Decimal(credit)
        delta = debit - credit if account.normal_balance == NormalBalance.DEBIT else credit - debit
        expected = to_amount(account.opening_balance + delta)
        if to_amount(account.current_balance) != expected:
            mismatches[account.code] = expected
    return mismatches

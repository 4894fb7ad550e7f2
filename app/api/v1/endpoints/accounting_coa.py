"""Chart of Accounts API endpoints."""

import logging
import datetime as dt
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status
from sqlalchemy.orm import Session

from app.api.dependencies import get_organization_id
from app.db.dependencies import get_db
from app.domain.accounting import coa_service, templates
from app.domain.accounting.coa_service import AccountNode
from app.domain.accounting.enums import AccountType, JournalStatus
from app.domain.accounting.errors import ValidationError
from app.schemas.accounting_coa import (
    AccountCreate,
    AccountJournalEntriesResponse,
    AccountLevelResponse,
    AccountMove,
    AccountPatch,
    AccountResponse,
    AccountStatistics,
    AccountTreeNode,
    AccountUpdate,
    TemplateApplyRequest,
    TemplateResponse,
)
from app.schemas.accounting_journal import JournalEntryResponse
from app.schemas.common import ImportResponse, MessageResponse, Paginated
from app.services.ledger_csv import read_rows, template_csv
from app.services.ledger_import import LedgerImportService

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_tree(node: AccountNode) -> AccountTreeNode:
    return AccountTreeNode(
        **AccountResponse.model_validate(node.account).model_dump(),
        children=[_to_tree(child) for child in node.children],
    )


def _accounts(accounts) -> List[AccountResponse]:
    return [AccountResponse.model_validate(account) for account in accounts]


# ============================================
# Collection
# ============================================

@router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def create_account(
    account_data: AccountCreate,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
) -> AccountResponse:
    """Create an account. normal_balance defaults from the account type."""
    account = coa_service.create_account(
        db,
        organization_id,
        code=account_data.code,
        name=account_data.name,
        account_type=account_data.account_type,
        normal_balance=account_data.normal_balance,
        parent_code=account_data.parent_code,
        description=account_data.description,
        opening_balance=account_data.opening_balance,
        is_cash=account_data.is_cash,
    )
    return AccountResponse.model_validate(account)


@router.get("", response_model=Paginated[AccountResponse])
def list_accounts(
    name: Optional[str] = None,
    code: Optional[str] = None,
    type: Optional[AccountType] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    sort: Optional[str] = None,
    order: Optional[str] = Query(None, pattern="^(asc|desc)$"),
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """List accounts filtered by name, code substring or type."""
    accounts, pagination = coa_service.list_accounts(
        db, organization_id, name=name, code=code, account_type=type,
        page=page, limit=limit, sort=sort, order=order,
    )
    return {"data": _accounts(accounts), "pagination": pagination}


# ============================================
# Tree projections and statistics
# ============================================

@router.get("/tree/all", response_model=List[AccountTreeNode])
def get_tree(
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    return [_to_tree(node) for node in coa_service.get_tree(db, organization_id)]


@router.get("/tree/roots", response_model=List[AccountResponse])
def get_roots(
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    return _accounts(coa_service.get_roots(db, organization_id))


@router.get("/tree/leaves", response_model=List[AccountResponse])
def get_leaves(
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    return _accounts(coa_service.get_leaves(db, organization_id))


@router.get("/statistics/overview", response_model=AccountStatistics)
def get_statistics(
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    return coa_service.get_statistics(db, organization_id)


# ============================================
# Templates and import
# ============================================

@router.get("/templates", response_model=List[str])
def list_templates():
    """Available industry templates."""
    return templates.list_templates()


@router.get("/templates/{industry}", response_model=TemplateResponse)
def get_template(industry: str):
    return TemplateResponse(industry=industry, accounts=templates.get_template(industry))


@router.post("/template", response_model=List[AccountResponse], status_code=status.HTTP_201_CREATED)
def apply_template(
    request: TemplateApplyRequest,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """
    Bulk-create accounts from an industry template or an explicit list.

    All or nothing: a failing entry is reported by code and nothing is created.
    """
    if request.accounts:
        source = [account.model_dump() for account in request.accounts]
    elif request.industry:
        source = request.industry
    else:
        raise ValidationError("Provide either industry or accounts", field="industry")
    accounts = coa_service.apply_template(db, organization_id, source)
    return _accounts(accounts)


@router.get("/import/template")
def download_import_template():
    """CSV template for account import."""
    return Response(
        content=template_csv("accounts"),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="accounts_template.csv"'},
    )


@router.post("/import", response_model=ImportResponse)
async def import_accounts(
    file: UploadFile = File(...),
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
) -> ImportResponse:
    """Import accounts from CSV; each row succeeds or fails on its own."""
    content = await file.read()
    parsed = read_rows(content)
    logger.info(f"Importing {len(parsed.rows)} account rows from {file.filename}")
    summary = LedgerImportService(db, organization_id).import_accounts(parsed.rows)
    return ImportResponse.from_summary(summary, AccountResponse.model_validate)


# ============================================
# Single account
# ============================================

@router.get("/code/{code}", response_model=AccountResponse)
def get_account_by_code(
    code: str,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    return AccountResponse.model_validate(coa_service.get_account_by_code(db, organization_id, code))


@router.get("/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: UUID,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    return AccountResponse.model_validate(coa_service.get_account(db, organization_id, account_id))


@router.put("/{account_id}", response_model=AccountResponse)
def replace_account(
    account_id: UUID,
    account_data: AccountUpdate,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """Full update: code, name and type are required."""
    account = coa_service.update_account(
        db, organization_id, account_id, account_data.model_dump(), partial=False,
    )
    return AccountResponse.model_validate(account)


@router.patch("/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: UUID,
    account_data: AccountPatch,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """Partial update: only the fields sent are changed."""
    account = coa_service.update_account(
        db, organization_id, account_id, account_data.model_dump(exclude_unset=True), partial=True,
    )
    return AccountResponse.model_validate(account)


@router.delete("/{account_id}", response_model=MessageResponse)
def delete_account(
    account_id: UUID,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    coa_service.delete_account(db, organization_id, account_id)
    return MessageResponse(message=f"Account {account_id} deleted")


@router.patch("/{account_id}/move", response_model=AccountResponse)
def move_account(
    account_id: UUID,
    move: AccountMove,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """Re-parent an account; moving under its own descendant is rejected."""
    account = coa_service.move_account(db, organization_id, account_id, move.parent_code)
    return AccountResponse.model_validate(account)


@router.get("/{account_id}/children", response_model=List[AccountResponse])
def get_children(
    account_id: UUID,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    return _accounts(coa_service.get_children(db, organization_id, account_id))


@router.get("/{account_id}/ancestors", response_model=List[AccountResponse])
def get_ancestors(
    account_id: UUID,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """Ancestors ordered from the root down to the direct parent."""
    return _accounts(coa_service.get_ancestors(db, organization_id, account_id))


@router.get("/{account_id}/descendants", response_model=List[AccountResponse])
def get_descendants(
    account_id: UUID,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    return _accounts(coa_service.get_descendants(db, organization_id, account_id))


@router.get("/{account_id}/path", response_model=List[AccountResponse])
def get_path(
    account_id: UUID,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    return _accounts(coa_service.get_path(db, organization_id, account_id))


@router.get("/{account_id}/level", response_model=AccountLevelResponse)
def get_level(
    account_id: UUID,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    account = coa_service.get_account(db, organization_id, account_id)
    return AccountLevelResponse(
        account_id=account.id,
        code=account.code,
        level=coa_service.get_level(db, organization_id, account_id),
    )


@router.get("/{account_id}/journal-entries", response_model=AccountJournalEntriesResponse)
def get_account_journal_entries(
    account_id: UUID,
    status_filter: Optional[JournalStatus] = Query(None, alias="status"),
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """Journal entries touching the account or any of its descendants."""
    result = coa_service.get_account_journal_entries(
        db,
        organization_id,
        account_id,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return AccountJournalEntriesResponse(
        account=AccountResponse.model_validate(result["account"]),
        descendant_accounts=_accounts(result["descendant_accounts"]),
        journal_entries=[JournalEntryResponse.model_validate(e) for e in result["journal_entries"]],
        pagination=result["pagination"],
    )

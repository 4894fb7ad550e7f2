"""Journal entry API endpoints."""

import logging
import datetime as dt
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status
from sqlalchemy.orm import Session

from app.api.dependencies import get_idempotency_key, get_organization_id
from app.db.dependencies import get_db
from app.domain.accounting import gl_service
from app.domain.accounting.enums import JournalStatus
from app.schemas.accounting_journal import (
    BatchEntryRequest,
    BatchPostResponse,
    BatchReverseResponse,
    JournalEntryCreate,
    JournalEntryResponse,
    JournalEntryUpdate,
    PostEntryRequest,
    ReverseEntryRequest,
    ValidateLinesRequest,
    ValidateLinesResponse,
)
from app.schemas.common import ImportResponse, MessageResponse, Paginated
from app.services.ledger_csv import read_rows, template_csv
from app.services.ledger_import import LedgerImportService

logger = logging.getLogger(__name__)

router = APIRouter()


def _batch_failures(failed):
    return [{"id": f["id"], "kind": f["kind"], "message": f["message"]} for f in failed]


@router.post("", response_model=JournalEntryResponse, status_code=status.HTTP_201_CREATED)
def create_entry(
    entry_data: JournalEntryCreate,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
) -> JournalEntryResponse:
    """
    Create a DRAFT journal entry.

    Lines are validated structurally; balances are untouched until posting.
    """
    entry = gl_service.draft_entry(
        db,
        organization_id,
        entry_date=entry_data.date,
        lines_list=[line.model_dump() for line in entry_data.lines],
        reference=entry_data.reference,
        description=entry_data.description,
    )
    return JournalEntryResponse.model_validate(entry)


@router.get("", response_model=Paginated[JournalEntryResponse])
def list_entries(
    reference: Optional[str] = None,
    description: Optional[str] = None,
    status_filter: Optional[JournalStatus] = Query(None, alias="status"),
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    sort: Optional[str] = None,
    order: Optional[str] = Query(None, pattern="^(asc|desc)$"),
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    entries, pagination = gl_service.list_entries(
        db, organization_id,
        reference=reference, description=description, status=status_filter,
        date_from=date_from, date_to=date_to,
        page=page, limit=limit, sort=sort, order=order,
    )
    return {"data": [JournalEntryResponse.model_validate(e) for e in entries], "pagination": pagination}


@router.post("/validate", response_model=ValidateLinesResponse)
def validate_lines(
    request: ValidateLinesRequest,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """Dry-run validation of lines; nothing is stored."""
    return gl_service.validate_lines(db, organization_id, [line.model_dump() for line in request.lines])


@router.post("/post", response_model=BatchPostResponse)
def post_entries(
    request: BatchEntryRequest,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """Post several drafts; each one succeeds or fails independently."""
    result = gl_service.post_entries(db, organization_id, request.ids)
    return BatchPostResponse(
        posted=[JournalEntryResponse.model_validate(e) for e in result["posted"]],
        failed=_batch_failures(result["failed"]),
    )


@router.post("/reverse", response_model=BatchReverseResponse)
def reverse_entries(
    request: BatchEntryRequest,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """Reverse several posted entries; each one succeeds or fails independently."""
    result = gl_service.reverse_entries(db, organization_id, request.ids)
    return BatchReverseResponse(
        reversed=[JournalEntryResponse.model_validate(e) for e in result["reversed"]],
        failed=_batch_failures(result["failed"]),
    )


@router.get("/template")
def download_import_template():
    """CSV template for journal import: one row per line."""
    return Response(
        content=template_csv("journal"),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="journal_template.csv"'},
    )


@router.post("/import", response_model=ImportResponse)
async def import_journal(
    file: UploadFile = File(...),
    post: bool = Query(False),
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
) -> ImportResponse:
    """
    Import journal lines from CSV.

    Rows sharing date and reference become one entry; a failing entry is
    reported against its first row.
    """
    content = await file.read()
    parsed = read_rows(content)
    logger.info(f"Importing {len(parsed.rows)} journal rows from {file.filename} (post={post})")
    summary = LedgerImportService(db, organization_id).import_journal_rows(parsed.rows, post=post)
    return ImportResponse.from_summary(summary, JournalEntryResponse.model_validate)


@router.get("/{entry_id}", response_model=JournalEntryResponse)
def get_entry(
    entry_id: UUID,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    return JournalEntryResponse.model_validate(gl_service.get_entry(db, organization_id, entry_id))


def _update(db: Session, organization_id: UUID, entry_id: UUID, entry_data: JournalEntryUpdate):
    changes = entry_data.model_dump(exclude_unset=True)
    entry = gl_service.update_draft_entry(db, organization_id, entry_id, changes)
    return JournalEntryResponse.model_validate(entry)


@router.put("/{entry_id}", response_model=JournalEntryResponse)
def replace_entry(
    entry_id: UUID,
    entry_data: JournalEntryUpdate,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """Update a DRAFT entry."""
    return _update(db, organization_id, entry_id, entry_data)


@router.patch("/{entry_id}", response_model=JournalEntryResponse)
def update_entry(
    entry_id: UUID,
    entry_data: JournalEntryUpdate,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """Update a DRAFT entry."""
    return _update(db, organization_id, entry_id, entry_data)


@router.delete("/{entry_id}", response_model=MessageResponse)
def delete_entry(
    entry_id: UUID,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """Delete a DRAFT entry."""
    gl_service.delete_draft_entry(db, organization_id, entry_id)
    return MessageResponse(message=f"Journal entry {entry_id} deleted")


@router.post("/{entry_id}/post", response_model=JournalEntryResponse)
def post_entry(
    entry_id: UUID,
    request: Optional[PostEntryRequest] = None,
    header_key: Optional[str] = Depends(get_idempotency_key),
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """
    Post a DRAFT entry and update account balances.

    An Idempotency-Key header (or body field) makes retries safe: replaying
    the key of an already posted entry returns it unchanged.
    """
    idempotency_key = header_key or (request.idempotency_key if request else None)
    entry = gl_service.post_entry(db, organization_id, entry_id, idempotency_key=idempotency_key)
    return JournalEntryResponse.model_validate(entry)


@router.post("/{entry_id}/reverse", response_model=JournalEntryResponse, status_code=status.HTTP_201_CREATED)
def reverse_entry(
    entry_id: UUID,
    request: Optional[ReverseEntryRequest] = None,
    organization_id: UUID = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """Post a compensating entry; returns the new reversal entry."""
    reversal = gl_service.reverse_entry(
        db,
        organization_id,
        entry_id,
        reversal_date=request.date if request else None,
        description=request.description if request else None,
    )
    return JournalEntryResponse.model_validate(reversal)

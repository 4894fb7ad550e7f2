"""Expense, bill and invoice API endpoints.

The three kinds share one lifecycle, so each router is built from the same
factory. Single-entity responses are wrapped as ``{success, data}``.
"""

import logging
import datetime as dt
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.dependencies import get_idempotency_key, get_organization_id
from app.db.dependencies import get_db
from app.domain.accounting import transaction_service
from app.domain.accounting.enums import TransactionKind, TransactionStatus
from app.schemas.accounting_transactions import (
    CancelRequest,
    PaymentCreate,
    TransactionCreate,
    TransactionImportRequest,
    TransactionResponse,
    TransactionUpdate,
)
from app.schemas.common import Envelope, ImportResponse, MessageResponse, Paginated
from app.services.ledger_csv import read_rows, template_csv
from app.services.ledger_import import LedgerImportService

logger = logging.getLogger(__name__)


class TransactionFilters:
    """Query filters shared by list and export."""

    def __init__(
        self,
        status: Optional[TransactionStatus] = None,
        contact_id: Optional[str] = None,
        category: Optional[str] = None,
        date_from: Optional[dt.date] = None,
        date_to: Optional[dt.date] = None,
        payment_due_by: Optional[dt.date] = None,
        sort: Optional[str] = None,
        order: Optional[str] = Query(None, pattern="^(asc|desc)$"),
    ):
        self.status = status
        self.contact_id = contact_id
        self.category = category
        self.date_from = date_from
        self.date_to = date_to
        self.payment_due_by = payment_due_by
        self.sort = sort
        self.order = order

    def as_kwargs(self) -> dict:
        return dict(vars(self))


def _envelope(transaction) -> Envelope[TransactionResponse]:
    return Envelope[TransactionResponse](data=TransactionResponse.model_validate(transaction))


def build_router(kind: TransactionKind, plural: str) -> APIRouter:
    """Router for one transaction kind, mounted at /business/transactions/{plural}."""
    router = APIRouter()
    label = kind.value.lower()

    @router.post("", response_model=Envelope[TransactionResponse], status_code=status.HTTP_201_CREATED)
    def create_transaction(
        data: TransactionCreate,
        organization_id: UUID = Depends(get_organization_id),
        db: Session = Depends(get_db),
    ):
        """Create a DRAFT document; no ledger impact until posted."""
        transaction = transaction_service.create_transaction(db, organization_id, kind, data.model_dump())
        return _envelope(transaction)

    @router.get("", response_model=Paginated[TransactionResponse])
    def list_transactions(
        filters: TransactionFilters = Depends(),
        page: int = Query(1, ge=1),
        limit: Optional[int] = Query(None, ge=1),
        organization_id: UUID = Depends(get_organization_id),
        db: Session = Depends(get_db),
    ):
        transactions, pagination = transaction_service.list_transactions(
            db, organization_id, kind, page=page, limit=limit, **filters.as_kwargs(),
        )
        return {
            "data": [TransactionResponse.model_validate(t) for t in transactions],
            "pagination": pagination,
        }

    @router.get("/export/csv")
    def export_csv(
        filters: TransactionFilters = Depends(),
        organization_id: UUID = Depends(get_organization_id),
        db: Session = Depends(get_db),
    ):
        content = transaction_service.export_transactions_csv(db, organization_id, kind, **filters.as_kwargs())
        return Response(
            content=content,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{plural}.csv"'},
        )

    @router.get("/export/json")
    def export_json(
        filters: TransactionFilters = Depends(),
        organization_id: UUID = Depends(get_organization_id),
        db: Session = Depends(get_db),
    ):
        rows = transaction_service.export_transactions_json(db, organization_id, kind, **filters.as_kwargs())
        return JSONResponse(
            content=rows,
            headers={"Content-Disposition": f'attachment; filename="{plural}.json"'},
        )

    @router.get("/template")
    def download_import_template():
        return Response(
            content=template_csv(plural),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{plural}_template.csv"'},
        )

    @router.post("/import", response_model=ImportResponse)
    async def import_transactions(
        file: UploadFile = File(...),
        upsert: bool = Query(False),
        organization_id: UUID = Depends(get_organization_id),
        db: Session = Depends(get_db),
    ) -> ImportResponse:
        """Import drafts from CSV; with upsert, matching draft references are updated."""
        content = await file.read()
        parsed = read_rows(content)
        logger.info(f"Importing {len(parsed.rows)} {label} rows from {file.filename} (upsert={upsert})")
        summary = LedgerImportService(db, organization_id).import_transactions(kind, parsed.rows, upsert=upsert)
        return ImportResponse.from_summary(summary, TransactionResponse.model_validate)

    @router.post("/import/json", response_model=ImportResponse)
    def import_transactions_json(
        request: TransactionImportRequest,
        organization_id: UUID = Depends(get_organization_id),
        db: Session = Depends(get_db),
    ) -> ImportResponse:
        summary = LedgerImportService(db, organization_id).import_transactions(
            kind, request.rows, upsert=request.upsert,
        )
        return ImportResponse.from_summary(summary, TransactionResponse.model_validate)

    @router.get("/{transaction_id}", response_model=Envelope[TransactionResponse])
    def get_transaction(
        transaction_id: UUID,
        organization_id: UUID = Depends(get_organization_id),
        db: Session = Depends(get_db),
    ):
        return _envelope(transaction_service.get_transaction(db, organization_id, transaction_id, kind=kind))

    @router.put("/{transaction_id}", response_model=Envelope[TransactionResponse])
    def update_transaction(
        transaction_id: UUID,
        data: TransactionUpdate,
        organization_id: UUID = Depends(get_organization_id),
        db: Session = Depends(get_db),
    ):
        """Update a DRAFT document; only the fields sent are changed."""
        changes = data.model_dump(exclude_unset=True)
        transaction = transaction_service.update_transaction(
            db, organization_id, transaction_id, changes, kind=kind,
        )
        return _envelope(transaction)

    @router.delete("/{transaction_id}", response_model=MessageResponse)
    def delete_transaction(
        transaction_id: UUID,
        organization_id: UUID = Depends(get_organization_id),
        db: Session = Depends(get_db),
    ):
        transaction_service.delete_transaction(db, organization_id, transaction_id, kind=kind)
        return MessageResponse(message=f"{kind.value.capitalize()} {transaction_id} deleted")

    @router.post("/{transaction_id}/post", response_model=Envelope[TransactionResponse])
    def post_transaction(
        transaction_id: UUID,
        idempotency_key: Optional[str] = Depends(get_idempotency_key),
        organization_id: UUID = Depends(get_organization_id),
        db: Session = Depends(get_db),
    ):
        """
        Post a DRAFT document, generating its journal entry.

        If the accounts cannot be resolved the document stays DRAFT.
        """
        transaction = transaction_service.post_transaction(
            db, organization_id, transaction_id, kind=kind, idempotency_key=idempotency_key,
        )
        return _envelope(transaction)

    @router.post("/{transaction_id}/pay", response_model=Envelope[TransactionResponse])
    def record_payment(
        transaction_id: UUID,
        payment: PaymentCreate,
        idempotency_key: Optional[str] = Depends(get_idempotency_key),
        organization_id: UUID = Depends(get_organization_id),
        db: Session = Depends(get_db),
    ):
        """Apply a payment; status moves to PARTIAL or PAID."""
        transaction = transaction_service.record_payment(
            db,
            organization_id,
            transaction_id,
            amount=payment.amount,
            mode=payment.mode,
            payment_date=payment.date,
            reference=payment.reference,
            notes=payment.notes,
            kind=kind,
            idempotency_key=idempotency_key,
        )
        return _envelope(transaction)

    @router.post("/{transaction_id}/cancel", response_model=Envelope[TransactionResponse])
    def cancel_transaction(
        transaction_id: UUID,
        request: Optional[CancelRequest] = None,
        organization_id: UUID = Depends(get_organization_id),
        db: Session = Depends(get_db),
    ):
        """Cancel a DRAFT, or a POSTED document with no payments when allowed."""
        transaction = transaction_service.cancel_transaction(
            db,
            organization_id,
            transaction_id,
            kind=kind,
            allow_posted=request.allow_posted if request else None,
        )
        return _envelope(transaction)

    return router


expenses_router = build_router(TransactionKind.EXPENSE, "expenses")
bills_router = build_router(TransactionKind.BILL, "bills")
invoices_router = build_router(TransactionKind.INVOICE, "invoices")

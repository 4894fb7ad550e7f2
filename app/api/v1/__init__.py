from fastapi import APIRouter

from .endpoints import health, accounting_coa, accounting_journal, transactions

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(accounting_coa.router, prefix="/accounting/coa", tags=["chart-of-accounts"])
api_router.include_router(accounting_journal.router, prefix="/accounting/journal", tags=["journal"])
api_router.include_router(transactions.expenses_router, prefix="/business/transactions/expenses", tags=["expenses"])
api_router.include_router(transactions.bills_router, prefix="/business/transactions/bills", tags=["bills"])
api_router.include_router(transactions.invoices_router, prefix="/business/transactions/invoices", tags=["invoices"])

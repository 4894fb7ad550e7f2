"""HTTP client for the ledger API."""

from .ledger_client import (
    LedgerApiError,
    LedgerClient,
    LedgerClientError,
    LedgerNetworkError,
    normalize_page,
    unwrap,
)

__all__ = [
    "LedgerApiError",
    "LedgerClient",
    "LedgerClientError",
    "LedgerNetworkError",
    "normalize_page",
    "unwrap",
]

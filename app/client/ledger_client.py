"""Typed client for the ledger API.

Responses may come back bare or wrapped as ``{success, data}``; every call
unwraps them so callers always see the entity itself. Transport failures
(timeouts, refused connections) raise LedgerNetworkError and are never
confused with domain rejections, which raise LedgerApiError.
"""

import math
from typing import Any, Dict, List, Optional
from uuid import UUID

import httpx
import structlog
from pydantic_core import to_jsonable_python

logger = structlog.get_logger()

TRANSACTION_PATHS = {
    "EXPENSE": "/business/transactions/expenses",
    "BILL": "/business/transactions/bills",
    "INVOICE": "/business/transactions/invoices",
}


class LedgerClientError(Exception):
    """Base class for client-side failures."""


class LedgerNetworkError(LedgerClientError):
    """The request never produced an HTTP response (timeout, connection error)."""

    def __init__(self, message: str, *, timeout: bool = False):
        super().__init__(message)
        self.message = message
        self.timeout = timeout
        self.retryable = True


class LedgerApiError(LedgerClientError):
    """The server rejected the request."""

    def __init__(
        self,
        kind: str,
        message: str,
        status_code: int,
        retryable: bool = False,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(f"{kind}: {message}")
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.retryable = retryable
        self.context = context or {}


def unwrap(payload: Any, key: Optional[str] = None) -> Any:
    """
    Return the entity from a bare or enveloped payload.

    ``{success, data}`` yields ``data``; when ``key`` is given and ``data``
    is keyed by it (``{data: {expense: {...}}}``), the inner value is returned.
    """
    data = payload
    if isinstance(payload, dict) and "data" in payload and ("success" in payload or len(payload) == 1):
        data = payload["data"]
    if key and isinstance(data, dict) and key in data:
        data = data[key]
    return data


def normalize_page(payload: Any, page: int = 1, limit: Optional[int] = None) -> Dict[str, Any]:
    """
    Coerce a list response into ``{data, pagination}``.

    Accepts a bare list, ``{data}`` without pagination, or a full page with
    either ``totalPages`` or ``total_pages``.
    """
    if isinstance(payload, list):
        items, pagination = payload, None
    else:
        items = payload.get("data") or []
        pagination = payload.get("pagination")

    if pagination is None:
        total = len(items)
        limit = limit or total or 1
        return {
            "data": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit) if total else 0,
            },
        }

    total_pages = pagination.get("totalPages", pagination.get("total_pages"))
    if total_pages is None:
        total_pages = math.ceil(pagination["total"] / pagination["limit"]) if pagination.get("total") else 0
    return {
        "data": items,
        "pagination": {
            "page": pagination.get("page", page),
            "limit": pagination.get("limit", limit),
            "total": pagination.get("total", len(items)),
            "totalPages": total_pages,
        },
    }


def _params(**kwargs) -> Dict[str, Any]:
    return {key: to_jsonable_python(value) for key, value in kwargs.items() if value is not None}


class LedgerClient:
    """Synchronous client scoped to one organization."""

    def __init__(
        self,
        base_url: str,
        organization_id: UUID | str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.organization_id = str(organization_id)
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"X-Organization-Id": self.organization_id},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "LedgerClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ============================================
    # Transport
    # ============================================

    def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        files: Any = None,
        idempotency_key: Optional[str] = None,
    ) -> httpx.Response:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            response = self._client.request(
                method,
                path,
                json=to_jsonable_python(json) if json is not None else None,
                params=params,
                files=files,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            logger.warning("Ledger request timed out", method=method, path=path)
            raise LedgerNetworkError(f"{method} {path} timed out: {e}", timeout=True) from e
        except httpx.TransportError as e:
            logger.warning("Ledger request failed", method=method, path=path, error=str(e))
            raise LedgerNetworkError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise self._api_error(response)
        return response

    @staticmethod
    def _api_error(response: httpx.Response) -> LedgerApiError:
        try:
            body = response.json()
        except ValueError:
            body = {}

        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return LedgerApiError(
                kind=error.get("kind", "Error"),
                message=error.get("message", response.text),
                status_code=response.status_code,
                retryable=bool(error.get("retryable")),
                context=error.get("context"),
            )

        detail = body.get("detail") if isinstance(body, dict) else None
        return LedgerApiError(
            kind="HttpError",
            message=str(detail or response.text or response.reason_phrase),
            status_code=response.status_code,
            retryable=response.status_code in (409, 429, 502, 503, 504),
        )

    def _json(self, method: str, path: str, key: Optional[str] = None, **kwargs) -> Any:
        response = self._request(method, path, **kwargs)
        return unwrap(response.json(), key)

    # ============================================
    # Chart of Accounts
    # ============================================

    def create_account(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._json("POST", "/accounting/coa", key="account", json=data)

    def list_accounts(self, page: int = 1, limit: Optional[int] = None, **filters) -> Dict[str, Any]:
        response = self._request("GET", "/accounting/coa", params=_params(page=page, limit=limit, **filters))
        return normalize_page(response.json(), page, limit)

    def get_account(self, account_id: UUID | str) -> Dict[str, Any]:
        return self._json("GET", f"/accounting/coa/{account_id}", key="account")

    def get_account_by_code(self, code: str) -> Dict[str, Any]:
        return self._json("GET", f"/accounting/coa/code/{code}", key="account")

    def update_account(self, account_id: UUID | str, data: Dict[str, Any], partial: bool = True) -> Dict[str, Any]:
        return self._json("PATCH" if partial else "PUT", f"/accounting/coa/{account_id}", key="account", json=data)

    def delete_account(self, account_id: UUID | str) -> None:
        self._request("DELETE", f"/accounting/coa/{account_id}")

    def move_account(self, account_id: UUID | str, parent_code: Optional[str]) -> Dict[str, Any]:
        return self._json("PATCH", f"/accounting/coa/{account_id}/move", json={"parent_code": parent_code})

    def get_tree(self) -> List[Dict[str, Any]]:
        return self._json("GET", "/accounting/coa/tree/all")

    def get_ancestors(self, account_id: UUID | str) -> List[Dict[str, Any]]:
        return self._json("GET", f"/accounting/coa/{account_id}/ancestors")

    def get_descendants(self, account_id: UUID | str) -> List[Dict[str, Any]]:
        return self._json("GET", f"/accounting/coa/{account_id}/descendants")

    def get_statistics(self) -> Dict[str, Any]:
        return self._json("GET", "/accounting/coa/statistics/overview")

    def apply_template(self, industry: Optional[str] = None, accounts: Optional[List[Dict[str, Any]]] = None):
        return self._json("POST", "/accounting/coa/template", json={"industry": industry, "accounts": accounts})

    def import_accounts(self, csv_content: bytes, filename: str = "accounts.csv") -> Dict[str, Any]:
        files = {"file": (filename, csv_content, "text/csv")}
        return self._json("POST", "/accounting/coa/import", files=files)

    # ============================================
    # Journal
    # ============================================

    def create_entry(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._json("POST", "/accounting/journal", key="entry", json=data)

    def get_entry(self, entry_id: UUID | str) -> Dict[str, Any]:
        return self._json("GET", f"/accounting/journal/{entry_id}", key="entry")

    def list_entries(self, page: int = 1, limit: Optional[int] = None, **filters) -> Dict[str, Any]:
        response = self._request("GET", "/accounting/journal", params=_params(page=page, limit=limit, **filters))
        return normalize_page(response.json(), page, limit)

    def post_entry(self, entry_id: UUID | str, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        return self._json("POST", f"/accounting/journal/{entry_id}/post", key="entry", idempotency_key=idempotency_key)

    def reverse_entry(self, entry_id: UUID | str, description: Optional[str] = None) -> Dict[str, Any]:
        return self._json(
            "POST", f"/accounting/journal/{entry_id}/reverse", key="entry", json={"description": description},
        )

    def validate_lines(self, lines: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self._json("POST", "/accounting/journal/validate", json={"lines": lines})

    # ============================================
    # Transactions
    # ============================================

    def _transaction_path(self, kind: str) -> str:
        try:
            return TRANSACTION_PATHS[kind.upper()]
        except KeyError:
            raise ValueError(f"Unknown transaction kind {kind!r}; expected one of {sorted(TRANSACTION_PATHS)}")

    def create_transaction(self, kind: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._json("POST", self._transaction_path(kind), key=kind.lower(), json=data)

    def get_transaction(self, kind: str, transaction_id: UUID | str) -> Dict[str, Any]:
        return self._json("GET", f"{self._transaction_path(kind)}/{transaction_id}", key=kind.lower())

    def list_transactions(self, kind: str, page: int = 1, limit: Optional[int] = None, **filters) -> Dict[str, Any]:
        response = self._request(
            "GET", self._transaction_path(kind), params=_params(page=page, limit=limit, **filters),
        )
        return normalize_page(response.json(), page, limit)

    def update_transaction(self, kind: str, transaction_id: UUID | str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._json("PUT", f"{self._transaction_path(kind)}/{transaction_id}", key=kind.lower(), json=data)

    def delete_transaction(self, kind: str, transaction_id: UUID | str) -> None:
        self._request("DELETE", f"{self._transaction_path(kind)}/{transaction_id}")

    def post_transaction(
        self, kind: str, transaction_id: UUID | str, idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self._json(
            "POST",
            f"{self._transaction_path(kind)}/{transaction_id}/post",
            key=kind.lower(),
            idempotency_key=idempotency_key,
        )

    def record_payment(
        self,
        kind: str,
        transaction_id: UUID | str,
        amount: Any,
        mode: Optional[str] = None,
        date: Any = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = {"amount": amount, "mode": mode, "date": date, "reference": reference, "notes": notes}
        return self._json(
            "POST",
            f"{self._transaction_path(kind)}/{transaction_id}/pay",
            key=kind.lower(),
            json={k: v for k, v in payload.items() if v is not None},
            idempotency_key=idempotency_key,
        )

    def cancel_transaction(
        self, kind: str, transaction_id: UUID | str, allow_posted: Optional[bool] = None,
    ) -> Dict[str, Any]:
        return self._json(
            "POST",
            f"{self._transaction_path(kind)}/{transaction_id}/cancel",
            key=kind.lower(),
            json={"allow_posted": allow_posted},
        )

    def export_transactions(self, kind: str, fmt: str = "csv", **filters) -> bytes:
        """Raw export body (CSV text or JSON array) as bytes."""
        if fmt not in ("csv", "json"):
            raise ValueError(f"Unsupported export format {fmt!r}")
        response = self._request("GET", f"{self._transaction_path(kind)}/export/{fmt}", params=_params(**filters))
        return response.content

    def download_template(self, kind: str) -> bytes:
        return self._request("GET", f"{self._transaction_path(kind)}/template").content

    def import_transactions(
        self, kind: str, csv_content: bytes, upsert: bool = False, filename: str = "import.csv",
    ) -> Dict[str, Any]:
        files = {"file": (filename, csv_content, "text/csv")}
        return self._json(
            "POST",
            f"{self._transaction_path(kind)}/import",
            files=files,
            params={"upsert": str(upsert).lower()},
        )

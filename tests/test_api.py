"""Tests for the ledger HTTP API."""

import pytest
from uuid import uuid4

from fastapi.testclient import TestClient

from app.main import app

COA = "/api/v1/accounting/coa"
JOURNAL = "/api/v1/accounting/journal"
EXPENSES = "/api/v1/business/transactions/expenses"
BILLS = "/api/v1/business/transactions/bills"


@pytest.fixture
def accounts(client: TestClient):
    """Apply the general template through the API; returns accounts by code."""
    response = client.post(f"{COA}/template", json={"industry": "general"})
    assert response.status_code == 201
    return {account["code"]: account for account in response.json()}


def test_health(client: TestClient):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "healthy", "ledger": "healthy"}
    assert client.get("/api/v1/health/ready").json() == {"status": "ready"}


def test_create_account_and_error_body(client: TestClient):
    response = client.post(COA, json={"code": "1000", "name": "Assets", "type": "ASSET"})
    assert response.status_code == 201
    account = response.json()
    assert account["code"] == "1000"
    assert account["account_type"] == "ASSET"
    assert account["normal_balance"] == "DEBIT"
    assert account["level"] == 0

    duplicate = client.post(COA, json={"code": "1000", "name": "Again", "type": "ASSET"})
    assert duplicate.status_code == 400
    body = duplicate.json()
    assert body["success"] is False
    assert body["error"]["kind"] == "ValidationError"
    assert body["error"]["retryable"] is False
    assert body["error"]["context"]["field"] == "code"


def test_request_validation_uses_error_body(client: TestClient):
    response = client.post(COA, json={"code": "1000", "name": "Assets", "type": "REVENUE"})
    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["error"]["kind"] == "ValidationError"


def test_organization_header_is_required(client: TestClient):
    response = TestClient(app).get(COA)
    assert response.status_code == 422

    response = client.get(COA, headers={"X-Organization-Id": "not-a-uuid"})
    assert response.status_code == 400
    assert response.json()["error"]["context"]["field"] == "X-Organization-Id"


def test_organizations_are_isolated(client: TestClient, accounts):
    response = client.get(COA, headers={"X-Organization-Id": str(uuid4())})
    assert response.status_code == 200
    assert response.json()["data"] == []

    response = client.get(f"{COA}/{accounts['1100']['id']}", headers={"X-Organization-Id": str(uuid4())})
    assert response.status_code == 404


def test_list_accounts_pagination(client: TestClient, accounts):
    response = client.get(COA, params={"limit": 5, "page": 3})
    assert response.status_code == 200
    body = response.json()
    assert body["pagination"] == {"page": 3, "limit": 5, "total": 14, "totalPages": 3}
    assert [a["code"] for a in body["data"]] == ["4000", "4100", "5000", "5100"]

    response = client.get(COA, params={"type": "EXPENSE"})
    assert [a["code"] for a in response.json()["data"]] == ["5000", "5100"]


def test_tree_and_projections(client: TestClient, accounts):
    tree = client.get(f"{COA}/tree/all").json()
    assert [node["code"] for node in tree] == ["1000", "2000", "3000", "4000", "5000"]
    assert [child["code"] for child in tree[0]["children"]] == ["1100", "1110", "1200"]

    cash_id = accounts["1100"]["id"]
    assert [a["code"] for a in client.get(f"{COA}/{cash_id}/ancestors").json()] == ["1000"]
    assert [a["code"] for a in client.get(f"{COA}/{cash_id}/path").json()] == ["1000", "1100"]
    assert client.get(f"{COA}/{cash_id}/level").json()["level"] == 1
    assert client.get(f"{COA}/code/1100").json()["id"] == cash_id

    stats = client.get(f"{COA}/statistics/overview").json()
    assert stats["total"] == 14
    assert stats["leaf_count"] == 9


def test_move_into_descendant_is_rejected(client: TestClient, accounts):
    response = client.patch(f"{COA}/{accounts['1000']['id']}/move", json={"parent_code": "1100"})
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "CycleError"


def test_deleting_system_account_is_a_conflict(client: TestClient, accounts):
    response = client.delete(f"{COA}/{accounts['1100']['id']}")
    assert response.status_code == 409
    assert response.json()["error"]["kind"] == "ConflictError"
    assert response.json()["error"]["retryable"] is False

    response = client.delete(f"{COA}/{accounts['1110']['id']}")
    assert response.status_code == 200
    assert response.json()["success"] is True


def test_missing_account_is_404(client: TestClient):
    response = client.get(f"{COA}/{uuid4()}")
    assert response.status_code == 404
    assert response.json()["error"]["kind"] == "NotFoundError"


def test_journal_post_and_reverse(client: TestClient, accounts):
    lines = [
        {"account_id": accounts["5100"]["id"], "debit": "250.00"},
        {"account_id": accounts["1100"]["id"], "credit": "250.00"},
    ]
    response = client.post(JOURNAL, json={"date": "2024-05-01", "reference": "JV-1", "lines": lines})
    assert response.status_code == 201
    entry = response.json()
    assert entry["status"] == "DRAFT"
    assert entry["total_debit"] == entry["total_credit"]

    posted = client.post(f"{JOURNAL}/{entry['id']}/post", headers={"Idempotency-Key": "jv-1"})
    assert posted.status_code == 200
    assert posted.json()["status"] == "POSTED"

    replay = client.post(f"{JOURNAL}/{entry['id']}/post", headers={"Idempotency-Key": "jv-1"})
    assert replay.status_code == 200

    again = client.post(f"{JOURNAL}/{entry['id']}/post")
    assert again.status_code == 400
    assert again.json()["error"]["kind"] == "AlreadyPostedError"

    cash = client.get(f"{COA}/code/1100").json()
    assert cash["current_balance"] == "-250.00"

    reversal = client.post(f"{JOURNAL}/{entry['id']}/reverse", json={"description": "Wrong month"})
    assert reversal.status_code == 201
    assert reversal.json()["reversal_of_id"] == entry["id"]
    assert client.get(f"{JOURNAL}/{entry['id']}").json()["status"] == "REVERSED"
    assert client.get(f"{COA}/code/1100").json()["current_balance"] == "0.00"

    twice = client.post(f"{JOURNAL}/{entry['id']}/reverse")
    assert twice.status_code == 400
    assert twice.json()["error"]["kind"] == "AlreadyReversedError"

    touching = client.get(f"{COA}/{accounts['1000']['id']}/journal-entries").json()
    assert touching["pagination"]["total"] == 2
    assert [a["code"] for a in touching["descendant_accounts"]] == ["1100", "1110", "1200"]


def test_unbalanced_journal_post(client: TestClient, accounts):
    lines = [
        {"account_id": accounts["5100"]["id"], "debit": "10.00"},
        {"account_id": accounts["1100"]["id"], "credit": "9.00"},
    ]
    validation = client.post(f"{JOURNAL}/validate", json={"lines": lines}).json()
    assert validation["is_valid"] is False

    entry = client.post(JOURNAL, json={"date": "2024-05-01", "lines": lines}).json()
    response = client.post(f"{JOURNAL}/{entry['id']}/post")
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "UnbalancedEntryError"


def test_expense_lifecycle_envelope(client: TestClient, accounts):
    response = client.post(EXPENSES, json={
        "reference": "EXP-1",
        "date": "2024-05-02",
        "contact_id": "C1",
        "total_amount": "1000.00",
        "account_code": "5100",
        "payment_mode": "CASH",
    })
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    expense = body["data"]
    assert expense["status"] == "DRAFT"
    assert expense["kind"] == "EXPENSE"

    posted = client.post(f"{EXPENSES}/{expense['id']}/post").json()["data"]
    assert posted["status"] == "POSTED"
    assert posted["journal_entry_id"] is not None

    partial = client.post(f"{EXPENSES}/{expense['id']}/pay", json={"amount": "600"}).json()["data"]
    assert partial["status"] == "PARTIAL"
    assert partial["payment_due"] == "400.00"

    paid = client.post(f"{EXPENSES}/{expense['id']}/pay", json={"amount": "400"}).json()["data"]
    assert paid["status"] == "PAID"
    assert len(paid["payments"]) == 2

    over = client.post(f"{EXPENSES}/{expense['id']}/pay", json={"amount": "1"})
    assert over.status_code == 400
    assert over.json()["error"]["kind"] == "InvalidAmountError"

    cancel = client.post(f"{EXPENSES}/{expense['id']}/cancel", json={"allow_posted": True})
    assert cancel.status_code == 409

    # The expense is not visible as a bill
    assert client.get(f"{BILLS}/{expense['id']}").status_code == 404


def test_transaction_list_and_export(client: TestClient, accounts):
    for reference, amount in (("B-1", "10.00"), ("B-2", "20.00"), ("B-3", "30.00")):
        client.post(BILLS, json={"reference": reference, "date": "2024-05-01", "contact_id": "V1",
                                 "total_amount": amount})

    page = client.get(BILLS, params={"limit": 2, "sort": "reference", "order": "asc"}).json()
    assert [b["reference"] for b in page["data"]] == ["B-1", "B-2"]
    assert page["pagination"]["totalPages"] == 2

    export = client.get(f"{BILLS}/export/csv")
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert len(export.text.splitlines()) == 4

    exported = client.get(f"{BILLS}/export/json").json()
    assert sorted(row["reference"] for row in exported) == ["B-1", "B-2", "B-3"]

    template = client.get(f"{BILLS}/template")
    assert template.text.splitlines()[0].startswith("reference,date,contact_id")


def test_transaction_total_must_match_items(client: TestClient, accounts):
    response = client.post(BILLS, json={
        "reference": "B-9", "date": "2024-05-01", "contact_id": "V1", "total_amount": "50",
        "items": [{"amount": "20"}, {"amount": "20"}],
    })
    assert response.status_code == 400
    assert response.json()["error"]["context"]["field"] == "total_amount"


def test_account_csv_import(client: TestClient):
    content = b"code,name,type,parent_code\n1000,Assets,ASSET,\n1000,Assets again,ASSET,\n1100,Cash,ASSET,1000\n"
    response = client.post(f"{COA}/import", files={"file": ("accounts.csv", content, "text/csv")})
    assert response.status_code == 200
    body = response.json()
    assert body["created"] == 2
    assert body["errors"] == [{"row": 2, "field": "code", "reason": "Account code 1000 already exists"}]
    assert [a["code"] for a in body["imported"]] == ["1000", "1100"]


def test_journal_csv_import_and_template(client: TestClient, accounts):
    template = client.get(f"{JOURNAL}/template")
    assert template.text.splitlines()[0] == "date,reference,description,account_code,debit,credit,narration"

    content = (
        b"date,reference,description,account_code,debit,credit\n"
        b"2024-05-31,JV-5,Accrual,5100,75,\n"
        b"2024-05-31,JV-5,Accrual,2100,,75\n"
    )
    response = client.post(f"{JOURNAL}/import", params={"post": "true"},
                           files={"file": ("journal.csv", content, "text/csv")})
    assert response.status_code == 200
    body = response.json()
    assert body["created"] == 1
    assert body["imported"][0]["status"] == "POSTED"


def test_expense_json_import_reports_malformed_rows(client: TestClient, accounts):
    rows = [
        {"reference": "EXP-J1", "date": "2024-06-01", "contact_id": "C1", "total_amount": "10"},
        {"reference": "EXP-J2", "date": "2024-06-01", "contact_id": "C1", "total_amount": "20", "items": "oops"},
        {"reference": "R" * 101, "date": "2024-06-01", "contact_id": "C1", "total_amount": "30"},
        {"reference": "EXP-J4", "date": "2024-06-01", "contact_id": "C1", "items": [{"amount": "40"}]},
    ]
    response = client.post(f"{EXPENSES}/import/json", json={"rows": rows})
    assert response.status_code == 200
    body = response.json()
    assert body["created"] == 2
    assert [(e["row"], e["field"]) for e in body["errors"]] == [(2, "items"), (3, "reference")]
    assert [t["reference"] for t in body["imported"]] == ["EXP-J1", "EXP-J4"]

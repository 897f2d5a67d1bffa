import uuid

import pytest

pytest.importorskip("httpx")

USER_DATE = {"userDate": "2024-03-15", "userYear": 2024, "userMonth": 3}


def _headers(prefix: str = "api") -> dict:
    return {"X-User-Email": f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"}


def _create_budget(api_client, headers, name: str = "Home") -> dict:
    resp = api_client.post("/api/budgets", json={"name": name, **USER_DATE}, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


def _create_account(api_client, headers, budget_id: str, name: str, account_type: str = "CASH", balance=0) -> dict:
    resp = api_client.post(
        f"/api/budgets/{budget_id}/accounts",
        json={"name": name, "account_type": account_type, "balance": balance, **USER_DATE},
        headers=headers,
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def _categories(api_client, headers, budget_id: str) -> dict:
    resp = api_client.get(
        f"/api/budgets/{budget_id}/categories", params={"year": 2024, "month": 3}, headers=headers
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    by_name = {c["name"]: c for c in body["categories"]}
    balances = {b["category_id"]: b for b in body["category_balances"]}
    return {name: {**c, "balance": balances.get(c["id"])} for name, c in by_name.items()}


def test_budget_crud(api_client):
    headers = _headers("crud")
    budget = _create_budget(api_client, headers, "Family")
    assert budget["currency"] == "USD"
    assert budget["currency_placement"] == "BEFORE"

    patched = api_client.patch(
        f"/api/budgets/{budget['id']}", json={"name": "Family 2024", "currency": "EUR"}, headers=headers
    )
    assert patched.status_code == 200
    assert patched.json()["name"] == "Family 2024"
    assert patched.json()["currency"] == "EUR"

    listed = api_client.get("/api/budgets", headers=headers)
    assert [b["id"] for b in listed.json()] == [budget["id"]]

    groups = api_client.get(f"/api/budgets/{budget['id']}/category-groups", headers=headers).json()
    system = {g["system_kind"] for g in groups if g["is_system_group"]}
    assert system == {"credit_card_payments", "hidden"}


def test_inflow_spend_and_assign_over_http(api_client):
    headers = _headers("flow")
    budget = _create_budget(api_client, headers)
    account = _create_account(api_client, headers, budget["id"], "Checking")["account"]
    groceries = _categories(api_client, headers, budget["id"])["Groceries"]

    resp = api_client.post(
        "/api/transactions",
        json={"account_id": account["id"], "date": "2024-03-01", "amount": 1000, "payee": "Employer", **USER_DATE},
        headers=headers,
    )
    assert resp.status_code == 200, resp.text

    resp = api_client.post(
        "/api/transactions",
        json={
            "account_id": account["id"],
            "date": "2024-03-10",
            "amount": -300,
            "payee": "Market",
            "category_id": groceries["id"],
            **USER_DATE,
        },
        headers=headers,
    )
    body = resp.json()
    assert body["account"]["working_balance"] == 700.0
    assert body["category_balances"][0]["available"] == -300.0

    resp = api_client.patch(
        f"/api/categories/{groceries['id']}", json={"assigned": 500, **USER_DATE}, headers=headers
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["category_balances"][0]["assigned"] == 500.0
    assert resp.json()["category_balances"][0]["available"] == 200.0
    assert resp.json()["ready_to_assign"] == 500.0


def test_overassignment_goes_negative(api_client):
    headers = _headers("over")
    budget = _create_budget(api_client, headers)
    _create_account(api_client, headers, budget["id"], "Checking", balance=50)
    groceries = _categories(api_client, headers, budget["id"])["Groceries"]

    resp = api_client.post(
        f"/api/categories/{groceries['id']}/pull-from-ready-to-assign",
        json={"amount": 80, **USER_DATE},
        headers=headers,
    )

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["ready_to_assign"] == -30.0
    assert body["category_balances"][0]["assigned"] == 80.0
    assert body["category_balances"][0]["available"] == 80.0


def test_transfer_round_trip_over_http(api_client):
    headers = _headers("transfer")
    budget = _create_budget(api_client, headers)
    a = _create_account(api_client, headers, budget["id"], "A")["account"]
    b = _create_account(api_client, headers, budget["id"], "B")["account"]

    resp = api_client.post(
        "/api/transactions",
        json={"account_id": a["id"], "date": "2024-03-05", "amount": 50, "payee": "Transfer : B", **USER_DATE},
        headers=headers,
    )
    body = resp.json()
    assert body["source_account"]["working_balance"] == -50.0
    assert body["target_account"]["working_balance"] == 50.0
    assert body["transaction"]["transfer_id"] == body["linked_transaction"]["transfer_id"]
    assert body["ready_to_assign"] == 0.0

    resp = api_client.delete(f"/api/transactions/{body['transaction']['id']}", params=USER_DATE, headers=headers)
    assert resp.status_code == 200, resp.text

    accounts = api_client.get(f"/api/budgets/{budget['id']}/accounts", headers=headers).json()
    assert {acct["name"]: acct["working_balance"] for acct in accounts} == {"A": 0.0, "B": 0.0}
    listed = api_client.get(f"/api/budgets/{budget['id']}/transactions", headers=headers).json()
    assert listed == []


def test_reconcile_over_http(api_client):
    headers = _headers("reconcile")
    budget = _create_budget(api_client, headers)
    account = _create_account(api_client, headers, budget["id"], "Checking")["account"]
    api_client.post(
        "/api/transactions",
        json={
            "account_id": account["id"],
            "date": "2024-03-02",
            "amount": 100,
            "payee": "Deposit",
            "is_cleared": True,
            **USER_DATE,
        },
        headers=headers,
    )

    resp = api_client.post(
        f"/api/accounts/{account['id']}/reconcile", json={"actual_balance": 97, **USER_DATE}, headers=headers
    )

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["adjustment"]["amount"] == -3.0
    assert body["account"]["account_balance"] == 97.0
    assert body["account"]["cleared_balance"] == 97.0

    audit = api_client.get(f"/api/budgets/{budget['id']}/audit", params=USER_DATE, headers=headers)
    assert audit.status_code == 200
    assert audit.json()["ok"] is True


def test_main_data_rolls_into_new_month(api_client):
    headers = _headers("main")
    budget = _create_budget(api_client, headers)
    _create_account(api_client, headers, budget["id"], "Checking", balance=300)
    rent = _categories(api_client, headers, budget["id"])["Rent"]
    api_client.post(
        f"/api/categories/{rent['id']}/pull-from-ready-to-assign",
        json={"amount": 120, **USER_DATE},
        headers=headers,
    )

    april = {"userDate": "2024-04-02", "userYear": 2024, "userMonth": 4}
    resp = api_client.get(f"/api/budgets/{budget['id']}/main-data", params=april, headers=headers)

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert (body["current_year"], body["current_month"]) == (2024, 4)
    assert body["budget"]["id"] == budget["id"]
    rent_april = next(b for b in body["category_balances"] if b["category_id"] == rent["id"])
    assert (rent_april["assigned"], rent_april["activity"], rent_april["available"]) == (0.0, 0.0, 120.0)
    assert body["ready_to_assign"] == 180.0
    assert len(body["accounts"]) == 1

    again = api_client.get(f"/api/budgets/{budget['id']}/main-data", params=april, headers=headers).json()
    assert len(again["category_balances"]) == len(body["category_balances"])


def test_missing_identity_is_unauthorized(api_client):
    resp = api_client.get("/api/budgets")
    assert resp.status_code == 401
    assert resp.json()["kind"] == "unauthorized"


def test_unknown_budget_is_not_found(api_client):
    resp = api_client.get("/api/budgets/does-not-exist", headers=_headers("missing"))
    assert resp.status_code == 404
    assert resp.json() == {"kind": "not_found", "message": "budget not found"}


def test_other_users_budget_is_forbidden(api_client):
    owner = _headers("owner")
    budget = _create_budget(api_client, owner)
    resp = api_client.get(f"/api/budgets/{budget['id']}/accounts", headers=_headers("intruder"))
    assert resp.status_code == 403
    assert resp.json()["kind"] == "forbidden"


def test_duplicate_budget_name_conflicts(api_client):
    headers = _headers("dupe")
    _create_budget(api_client, headers, "Shared")
    resp = api_client.post("/api/budgets", json={"name": "shared"}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["kind"] == "conflict"


def test_invalid_payloads_are_validation_errors(api_client):
    headers = _headers("invalid")
    budget = _create_budget(api_client, headers)
    cash = _create_account(api_client, headers, budget["id"], "Checking", balance=100)["account"]
    card = _create_account(api_client, headers, budget["id"], "Visa", account_type="CREDIT")["account"]

    resp = api_client.post(
        f"/api/accounts/{card['id']}/credit-card-payment",
        json={"amount": -5, "from_account_id": cash["id"], **USER_DATE},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["kind"] == "validation"

    resp = api_client.post(
        "/api/transactions",
        json={"account_id": cash["id"], "date": "2024-03-20", "amount": -5, "payee": "Later", **USER_DATE},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json() == {"kind": "validation", "message": "transaction date cannot be in the future"}


def test_credit_card_payment_over_http(api_client):
    headers = _headers("card")
    budget = _create_budget(api_client, headers)
    cash = _create_account(api_client, headers, budget["id"], "Checking", balance=200)["account"]
    created = _create_account(api_client, headers, budget["id"], "Visa", account_type="CREDIT")
    card, payment = created["account"], created["payment_category"]
    dining = _categories(api_client, headers, budget["id"])["Dining Out"]
    api_client.post(
        f"/api/budgets/{budget['id']}/categories/batch-assign",
        json={"assignments": [{"category_id": dining["id"], "amount": 60}], **USER_DATE},
        headers=headers,
    )
    api_client.post(
        "/api/transactions",
        json={
            "account_id": card["id"],
            "date": "2024-03-08",
            "amount": -45,
            "payee": "Bistro",
            "category_id": dining["id"],
            **USER_DATE,
        },
        headers=headers,
    )

    resp = api_client.post(
        f"/api/accounts/{card['id']}/credit-card-payment",
        json={"amount": 45, "from_account_id": cash["id"], "payment_date": "2024-03-12", **USER_DATE},
        headers=headers,
    )

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["payment_category_balance"]["category_id"] == payment["id"]
    assert body["payment_category_balance"]["available"] == 0.0
    assert body["target_account"]["working_balance"] == 0.0
    assert body["source_account"]["working_balance"] == 155.0
    assert body["ready_to_assign"] == 140.0


def test_auto_assign_configuration_flow(api_client):
    headers = _headers("preset")
    budget = _create_budget(api_client, headers)
    _create_account(api_client, headers, budget["id"], "Checking", balance=500)
    cats = _categories(api_client, headers, budget["id"])
    rent, groceries = cats["Rent"], cats["Groceries"]
    base = f"/api/budgets/{budget['id']}/auto-assign"

    created = api_client.post(
        base,
        json={"name": "Payday", "items": [{"category_id": rent["id"], "amount": 300}]},
        headers=headers,
    )
    assert created.status_code == 200, created.text
    assert [i["amount"] for i in created.json()["items"]] == [300.0]

    dupe = api_client.post(
        base, json={"name": "Payday", "items": [{"category_id": groceries["id"], "amount": 1}]}, headers=headers
    )
    assert dupe.status_code == 409

    patched = api_client.patch(
        f"{base}/Payday",
        json={"items": [{"category_id": rent["id"], "amount": 300}, {"category_id": groceries["id"], "amount": 50}]},
        headers=headers,
    )
    assert patched.status_code == 200, patched.text
    assert len(patched.json()["items"]) == 2

    applied = api_client.post(f"{base}/Payday/apply", json=USER_DATE, headers=headers)
    assert applied.status_code == 200, applied.text
    assert applied.json()["success_count"] == 2
    assert applied.json()["ready_to_assign"] == 150.0

    main = api_client.get(f"/api/budgets/{budget['id']}/main-data", params=USER_DATE, headers=headers).json()
    assert [(c["name"], c["item_count"], c["total_amount"]) for c in main["auto_assign_configurations"]] == [
        ("Payday", 2, 350.0)
    ]

    assert api_client.delete(f"{base}/Payday", headers=headers).status_code == 200
    assert api_client.get(f"{base}/Payday", headers=headers).status_code == 404
    assert api_client.get(base, headers=headers).json() == []

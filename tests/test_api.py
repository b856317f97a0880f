from datetime import date, timedelta
from decimal import Decimal

from conftest import login
from pocketledger.config import settings


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_register_login_and_me(client):
    headers = login(client, email="Ana@Example.com", currency="CAD")
    me = client.get("/auth/me", headers=headers)
    assert me.status_code == 200
    body = me.json()
    assert body["email"] == "ana@example.com"
    assert body["default_currency"] == "CAD"
    assert body["total_expenses"] == 0


def test_duplicate_registration_conflicts(client):
    payload = {"email": "ana@example.com", "password": "secret123"}
    assert client.post("/auth/register", json=payload).status_code == 201
    assert client.post("/auth/register", json=payload).status_code == 409


def test_login_sets_cookie_that_authenticates(client):
    client.post("/auth/register", json={"email": "ana@example.com", "password": "secret123"})
    resp = client.post("/auth/login", json={"email": "ana@example.com", "password": "secret123"})
    assert resp.status_code == 200
    assert "access_token" in resp.cookies
    assert client.get("/auth/me").status_code == 200


def test_bad_credentials_and_missing_token(client):
    client.post("/auth/register", json={"email": "ana@example.com", "password": "secret123"})
    resp = client.post("/auth/token", data={"username": "ana@example.com", "password": "wrong123"})
    assert resp.status_code == 401
    assert client.get("/expenses").status_code == 401
    assert client.get("/expenses", headers={"Authorization": "Bearer nonsense"}).status_code == 401


def test_expense_flows_into_budget(client, auth_headers):
    resp = client.post(
        "/budgets",
        json={"name": "Everything", "category": "total", "amount": "1000", "alert_thresholds": [50, 90, 100]},
        headers=auth_headers,
    )
    assert resp.status_code == 201, resp.text
    budget = resp.json()
    assert budget["category"] == "total"
    assert budget["status"] == "good"

    resp = client.post(
        "/expenses",
        json={"amount": "600", "description": "Flights", "category": "travel"},
        headers=auth_headers,
    )
    assert resp.status_code == 201, resp.text
    expense = resp.json()

    budget = client.get(f"/budgets/{budget['id']}", headers=auth_headers).json()
    assert Decimal(budget["spent"]) == Decimal("600")
    assert budget["percentage_used"] == 60.0
    assert budget["status"] == "moderate"
    assert {t["percentage"]: t["triggered"] for t in budget["thresholds"]} == {50: True, 90: False, 100: False}

    alerts = client.get("/budgets/alerts", headers=auth_headers).json()
    assert [a["threshold"] for a in alerts if a["type"] == "threshold"] == [50]

    assert client.delete(f"/expenses/{expense['id']}", headers=auth_headers).status_code == 204
    budget = client.get(f"/budgets/{budget['id']}", headers=auth_headers).json()
    assert Decimal(budget["spent"]) == Decimal("0")

    budget = client.post(f"/budgets/{budget['id']}/recalculate", headers=auth_headers).json()
    assert not any(t["triggered"] for t in budget["thresholds"])


def test_budget_errors(client, auth_headers):
    payload = {"name": "Food", "category": "food", "amount": "300"}
    assert client.post("/budgets", json=payload, headers=auth_headers).status_code == 201
    resp = client.post("/budgets", json=payload, headers=auth_headers)
    assert resp.status_code == 409
    assert "food" in resp.json()["detail"]

    bad = client.post("/budgets", json={**payload, "category": "yachts"}, headers=auth_headers)
    assert bad.status_code == 400

    other = login(client, email="bo@example.com")
    mine = client.get("/budgets", headers=auth_headers).json()[0]
    assert client.get(f"/budgets/{mine['id']}", headers=other).status_code == 404


def test_budget_summary_and_duplicate(client, auth_headers):
    budget = client.post(
        "/budgets", json={"name": "Food", "category": "food", "amount": "300"}, headers=auth_headers
    ).json()
    summary = client.get("/budgets/summary", headers=auth_headers).json()
    assert summary["budget_count"] == 1
    assert Decimal(summary["total_budget"]) == Decimal("300")

    start = date.fromisoformat(budget["end_date"]) + timedelta(days=1)
    resp = client.post(
        f"/budgets/{budget['id']}/duplicate",
        json={"start_date": start.isoformat(), "end_date": (start + timedelta(days=29)).isoformat()},
        headers=auth_headers,
    )
    assert resp.status_code == 201
    assert resp.json()["category"] == "food"


def test_expense_listing_and_validation(client, auth_headers):
    for amount, category in (("12.50", "food"), ("40", "bills"), ("7.25", "food")):
        client.post(
            "/expenses",
            json={"amount": amount, "description": f"{category} stuff", "category": category},
            headers=auth_headers,
        )
    page = client.get("/expenses", params={"category": "food", "sort_by": "amount", "order": "asc"}, headers=auth_headers)
    body = page.json()
    assert body["total"] == 2
    assert [Decimal(e["amount"]) for e in body["items"]] == [Decimal("7.25"), Decimal("12.50")]

    total = client.get(
        "/expenses/total",
        params={"start_date": "2000-01-01", "end_date": date.today().isoformat()},
        headers=auth_headers,
    ).json()
    assert Decimal(total["total"]) == Decimal("59.75")

    assert client.post("/expenses", json={"amount": "0", "description": "x"}, headers=auth_headers).status_code == 422
    future = (date.today() + timedelta(days=2)).isoformat()
    resp = client.post(
        "/expenses", json={"amount": "5", "description": "later", "expense_date": future}, headers=auth_headers
    )
    assert resp.status_code == 400

    me = client.get("/auth/me", headers=auth_headers).json()
    assert me["total_expenses"] == 3


def test_goal_contribution_is_clamped(client, auth_headers):
    deadline = (date.today() + timedelta(days=365)).isoformat()
    goal = client.post(
        "/goals", json={"name": "Camera", "target_amount": "1000", "deadline": deadline}, headers=auth_headers
    ).json()

    first = client.post(f"/goals/{goal['id']}/contribute", json={"amount": "700"}, headers=auth_headers).json()
    assert first["is_completed"] is False
    second = client.post(f"/goals/{goal['id']}/contribute", json={"amount": "500"}, headers=auth_headers).json()
    assert Decimal(second["current_amount"]) == Decimal("1000")
    assert second["is_completed"] is True
    assert second["status"] == "completed"

    detail = client.get(f"/goals/{goal['id']}", headers=auth_headers).json()
    assert [Decimal(c["amount"]) for c in detail["contributions"]] == [Decimal("700"), Decimal("300")]

    again = client.post(f"/goals/{goal['id']}/contribute", json={"amount": "1"}, headers=auth_headers)
    assert again.status_code == 400


def test_income_endpoints_and_analysis(client, auth_headers):
    resp = client.post(
        "/income",
        json={"source": "Payroll", "type": "salary", "amount": "5000", "frequency": "monthly"},
        headers=auth_headers,
    )
    assert resp.status_code == 201, resp.text
    assert Decimal(resp.json()["monthly_amount"]) == Decimal("5000")
    client.post(
        "/income",
        json={"source": "Tutoring", "type": "freelance", "amount": "1000", "frequency": "weekly"},
        headers=auth_headers,
    )

    summary = client.get("/income/summary", headers=auth_headers).json()
    assert Decimal(summary["total_annual"]) == Decimal("112000")
    assert summary["source_count"] == 2

    me = client.get("/auth/me", headers=auth_headers).json()
    assert Decimal(me["current_income_annual"]) == Decimal("112000")

    client.post("/expenses", json={"amount": "500", "description": "Rent", "category": "bills"}, headers=auth_headers)
    analysis = client.get("/income/analytics/vs-expenses", headers=auth_headers).json()
    assert Decimal(analysis["avg_monthly_expenses"]) == Decimal("500")
    assert analysis["savings"]["no_income"] is False
    assert analysis["insights"][0]["type"] == "success"


def test_combined_insights_without_income(client, auth_headers):
    insights = client.get("/insights", headers=auth_headers).json()
    assert insights[0]["priority"] == "high"
    assert "No income sources" in insights[0]["message"]


def test_jobs_require_token_when_configured(client, monkeypatch):
    assert client.post("/jobs/auto-save").json() == []
    monkeypatch.setattr(settings, "jobs_token", "s3cret")
    assert client.post("/jobs/reconcile-budgets").status_code == 403
    resp = client.post("/jobs/reconcile-budgets", headers={"X-Job-Token": "s3cret"})
    assert resp.status_code == 200

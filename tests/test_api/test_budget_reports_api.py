"""
Tests for the budget and report API endpoints
"""
import pytest
from fastapi.testclient import TestClient

from famledger.api.deps import get_db, get_lock_table
from famledger.application.ledger_locks import KeyedLockTable
from famledger.main import create_app

FAMILY = {"X-Family-Id": "1"}
OTHER_FAMILY = {"X-Family-Id": "2"}


@pytest.fixture
def client(db_session):
    app = create_app()
    locks = KeyedLockTable(timeout=1.0)
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_lock_table] = lambda: locks
    return TestClient(app)


def _category(client, name, pct="0"):
    response = client.post("/api/v1/budget/categories", headers=FAMILY, json={
        "name": name, "target_percentage": pct,
    })
    assert response.status_code == 201
    return response.json()


def _template(client):
    needs = _category(client, "Needs")
    savings = _category(client, "Savings")
    wants = _category(client, "Wants")
    response = client.post("/api/v1/budget/templates", headers=FAMILY, json={
        "name": "50/30/20",
        "allocations": [
            {"budget_category_id": needs["id"], "percentage": "50"},
            {"budget_category_id": savings["id"], "percentage": "20"},
            {"budget_category_id": wants["id"], "percentage": "30"},
        ],
    })
    assert response.status_code == 201
    return response.json()


class TestBudget:
    def test_resolve(self, client):
        template = _template(client)

        response = client.get(
            f"/api/v1/budget/templates/{template['id']}/resolve", headers=FAMILY,
            params={"income_amount": "4000.00"},
        )

        assert response.status_code == 200
        body = response.json()
        assert [t["target_amount"] for t in body["targets"]] == ["2000.00", "800.00", "1200.00"]
        assert body["residual"] == "0.00"

    def test_resolve_negative_income(self, client):
        template = _template(client)

        response = client.get(
            f"/api/v1/budget/templates/{template['id']}/resolve", headers=FAMILY,
            params={"income_amount": "-5"},
        )

        assert response.status_code == 422
        assert response.json()["field"] == "income_amount"

    def test_other_family_template(self, client):
        template = _template(client)

        response = client.get(
            f"/api/v1/budget/templates/{template['id']}/resolve", headers=OTHER_FAMILY,
            params={"income_amount": "4000"},
        )

        assert response.status_code == 404
        assert response.json()["error"] == "template_not_found"

    def test_template_over_100(self, client):
        a = _category(client, "A")
        b = _category(client, "B")

        response = client.post("/api/v1/budget/templates", headers=FAMILY, json={
            "name": "Too much",
            "allocations": [
                {"budget_category_id": a["id"], "percentage": "60"},
                {"budget_category_id": b["id"], "percentage": "50"},
            ],
        })

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_template"

    def test_deactivate_category(self, client):
        category = _category(client, "Needs", "40")

        assert client.delete(f"/api/v1/budget/categories/{category['id']}", headers=FAMILY).status_code == 204
        assert client.get("/api/v1/budget/categories", headers=FAMILY).json() == []

    def test_income_allocation(self, client):
        template = _template(client)
        income = client.post("/api/v1/income-events/", headers=FAMILY, json={
            "name": "Salary", "amount": "4000", "scheduled_date": "2099-01-01",
        }).json()
        url = f"/api/v1/budget/income-events/{income['id']}/allocation"

        created = client.post(url, headers=FAMILY, json={"template_id": template["id"]})
        assert created.status_code == 201
        assert [r["amount"] for r in created.json()] == ["2000.00", "800.00", "1200.00"]
        assert client.get(url, headers=FAMILY).json() == created.json()
        assert client.post(url, headers=FAMILY, json={"template_id": template["id"]}).status_code == 409


class TestReports:
    def test_cash_flow(self, client):
        income = client.post("/api/v1/income-events/", headers=FAMILY, json={
            "name": "Salary", "amount": "4000", "scheduled_date": "2024-03-01",
        }).json()
        client.post(f"/api/v1/income-events/{income['id']}/mark-received", headers=FAMILY, json={
            "actual_date": "2024-03-01",
        })

        response = client.get("/api/v1/reports/cash-flow", headers=FAMILY, params={
            "from_date": "2024-01-01", "to_date": "2024-03-31", "group_by": "month",
        })

        assert response.status_code == 200
        body = response.json()
        assert [b["label"] for b in body["buckets"]] == ["2024-01", "2024-02", "2024-03"]
        assert body["buckets"][2]["income"] == "4000.00"
        assert body["summary"]["total_income"] == "4000.00"

    def test_cash_flow_reversed_range(self, client):
        response = client.get("/api/v1/reports/cash-flow", headers=FAMILY, params={
            "from_date": "2024-12-31", "to_date": "2024-01-01",
        })

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_date_range"

    def test_cash_flow_bad_group_by(self, client):
        response = client.get("/api/v1/reports/cash-flow", headers=FAMILY, params={
            "from_date": "2024-01-01", "to_date": "2024-02-01", "group_by": "decade",
        })

        assert response.status_code == 422

    def test_annual_summary(self, client):
        response = client.get("/api/v1/reports/annual-summary", headers=FAMILY, params={"year": 2024})

        assert response.status_code == 200
        assert len(response.json()["months"]) == 12

    def test_savings_rate(self, client):
        response = client.get("/api/v1/reports/savings-rate", headers=FAMILY, params={
            "from_date": "2024-01-01", "to_date": "2024-06-30", "target_rate": "15",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["target_rate"] == "15.00"
        assert body["trend"] == "stable"

    def test_budget_overview_unknown_template(self, client):
        response = client.get("/api/v1/reports/budget-overview", headers=FAMILY, params={
            "template_id": 999, "from_date": "2024-01-01", "to_date": "2024-01-31",
        })

        assert response.status_code == 404

    def test_debt_analysis(self, client):
        category = client.post("/api/v1/budget/spending-categories", headers=FAMILY, json={"name": "Debt"})

        response = client.get("/api/v1/reports/debt-analysis", headers=FAMILY,
                              params={"debt_category_id": [category.json()["id"]]})

        assert response.status_code == 200
        body = response.json()
        assert body["total_debt"] == "0.00"
        assert body["health_score"] == 100
        assert body["recommendations"] == []

    def test_debt_analysis_unknown_category(self, client):
        response = client.get("/api/v1/reports/debt-analysis", headers=FAMILY, params={"debt_category_id": 999})

        assert response.status_code == 404
        assert response.json()["error"] == "spending_category_not_found"

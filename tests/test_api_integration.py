"""
Integration tests for the Microfinance Back-Office API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from microfinance.api_modular import create_app, BackOfficeSystem, get_back_office


CUSTOMER = {
    "name": "Lakshmi Devi",
    "customer_number": "C001",
    "phone": ["9876543210"],
    "business_name": "Lakshmi Flowers",
    "area": "Market Road",
    "address": "12 Market Road",
}

LOAN_TERMS = {
    "amount": "5000",
    "emi_amount": "500",
    "loan_type": "Daily",
    "loan_days": 10,
    "emi_start_date": "2024-03-01",
    "date_applied": "2024-02-28",
}


@pytest.fixture
def system():
    back_office = BackOfficeSystem(use_sqlite=False)
    yield back_office
    back_office.close()


@pytest.fixture
def client(system):
    """Test client wired to an in-memory back office"""
    app = create_app()
    app.dependency_overrides[get_back_office] = lambda: system
    return TestClient(app)


def create_customer(client, **overrides):
    r = client.post("/customers", json=dict(CUSTOMER, **overrides))
    assert r.status_code == 201
    return r.json()["customer_id"]


def create_loan(client, customer_id, **overrides):
    r = client.post("/loans", json=dict(LOAN_TERMS, customer_id=customer_id, **overrides))
    assert r.status_code == 201
    return r.json()


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        data = r.json()
        assert data["currency"] == "INR"
        assert "endpoints" in data


class TestCustomerFlow:
    """End-to-end customer management tests"""

    def test_create_and_get_customer(self, client):
        customer_id = create_customer(client)
        r = client.get(f"/customers/{customer_id}")
        assert r.status_code == 200
        assert r.json()["customer_number"] == "C001"

    def test_missing_customer(self, client):
        assert client.get("/customers/nope").status_code == 404
        assert client.get("/customers/nope/loans").status_code == 404

    def test_invalid_customer(self, client):
        r = client.post("/customers", json=dict(CUSTOMER, phone=["123"]))
        assert r.status_code == 400
        assert "10 digits" in r.json()["detail"]

    def test_update_and_list(self, client):
        customer_id = create_customer(client)
        r = client.put(f"/customers/{customer_id}", json={"area": "Station Road"})
        assert r.status_code == 200
        assert r.json()["area"] == "Station Road"

        r = client.get("/customers", params={"search": "lakshmi"})
        data = r.json()
        assert data["kind"] == "customers"
        assert data["count"] == 1


class TestLoanFlow:
    """Loan creation, payments and progress"""

    def test_create_loan(self, client):
        customer_id = create_customer(client)
        data = create_loan(client, customer_id)
        assert data["loan_number"] == "LN1"
        assert data["loan"]["status"] == "active"
        assert data["loan"]["nextEmiDate"] == "2024-03-01"

        r = client.get(f"/customers/{customer_id}/loans")
        assert [loan["loanNumber"] for loan in r.json()["items"]] == ["LN1"]

    def test_loan_for_unknown_customer(self, client):
        r = client.post("/loans", json=dict(LOAN_TERMS, customer_id="nope"))
        assert r.status_code == 404

    def test_record_payment(self, client):
        loan_id = create_loan(client, create_customer(client))["loan_id"]
        r = client.post("/payments", json={
            "loan_id": loan_id, "amount": "500", "payment_date": "2024-03-01", "collected_by": "agent1"
        })
        assert r.status_code == 201
        data = r.json()
        assert data["payment"]["status"] == "Paid"
        assert data["loan"]["emiPaidCount"] == 1
        assert data["loan"]["nextEmiDate"] == "2024-03-02"

        r = client.get(f"/payments/{loan_id}")
        assert r.json()["kind"] == "payments"
        assert r.json()["count"] == 1

    def test_duplicate_payment_rejected(self, client):
        loan_id = create_loan(client, create_customer(client))["loan_id"]
        payment = {"loan_id": loan_id, "amount": "500", "payment_date": "2024-03-01"}
        assert client.post("/payments", json=payment).status_code == 201
        r = client.post("/payments", json=payment)
        assert r.status_code == 400

    def test_schedule_and_completion(self, client):
        loan_id = create_loan(client, create_customer(client))["loan_id"]
        client.post("/payments", json={"loan_id": loan_id, "amount": "500", "payment_date": "2024-03-01"})

        r = client.get(f"/loans/{loan_id}/schedule")
        data = r.json()
        assert data["count"] == 10
        assert data["items"][0] == {"installment": 1, "dueDate": "2024-03-01", "emiAmount": "500"}
        assert data["items"][-1]["dueDate"] == "2024-03-10"

        r = client.get(f"/loans/{loan_id}/completion")
        completion = r.json()
        assert completion["paidCount"] == 1
        assert completion["completionPercentage"] == 10.0
        assert completion["remainingAmount"] == "4500"
        assert not completion["isCompleted"]

    def test_delete_loan(self, client):
        loan_id = create_loan(client, create_customer(client))["loan_id"]
        r = client.delete(f"/loans/{loan_id}", params={"reason": "entered twice", "deleted_by": "admin"})
        assert r.status_code == 200
        assert client.get(f"/loans/{loan_id}").status_code == 404

    def test_delete_loan_with_payments_refused(self, client):
        loan_id = create_loan(client, create_customer(client))["loan_id"]
        client.post("/payments", json={"loan_id": loan_id, "amount": "500", "payment_date": "2024-03-01"})
        assert client.delete(f"/loans/{loan_id}").status_code == 400


class TestCalendarEndpoint:
    """Month view over a customer's loans"""

    def test_month_view(self, client):
        customer_id = create_customer(client)
        loan_id = create_loan(client, customer_id)["loan_id"]
        client.post("/payments", json={"loan_id": loan_id, "amount": "500", "payment_date": "2024-03-01"})

        r = client.get(f"/calendar/{customer_id}", params={"year": 2024, "month": 2, "today": "2024-03-10"})
        assert r.status_code == 200
        data = r.json()
        assert data["kind"] == "calendar_days"
        days = {day["date"]: day for day in data["items"]}

        assert days["2024-03-01"]["status"] == "paid"
        assert days["2024-03-02"]["status"] == "missed"
        assert days["2024-03-10"]["status"] == "due"
        assert days["2024-03-10"]["isToday"]
        assert not days["2024-03-11"]["isEmiDue"]

    def test_month_out_of_range(self, client):
        customer_id = create_customer(client)
        r = client.get(f"/calendar/{customer_id}", params={"year": 2024, "month": 12})
        assert r.status_code == 422

    def test_unknown_customer(self, client):
        r = client.get("/calendar/nope", params={"year": 2024, "month": 2})
        assert r.status_code == 404


class TestRequestFlow:
    """Approval requests submitted by operators"""

    def test_submit_and_approve_new_loan(self, client):
        customer_id = create_customer(client)
        r = client.post("/requests", json={
            "request_type": "New Loan", "payload": LOAN_TERMS,
            "created_by": "deo1", "customer_id": customer_id
        })
        assert r.status_code == 201
        request_id = r.json()["id"]
        assert r.json()["status"] == "Pending"
        assert client.get("/requests/pending").json()["count"] == 1

        r = client.post(f"/requests/{request_id}/approve", json={"reviewer": "admin"})
        assert r.status_code == 200
        assert r.json()["status"] == "Approved"
        assert r.json()["result"]["loan_number"] == "LN1"
        assert client.get("/requests/pending").json()["count"] == 0

    def test_reject_request(self, client):
        customer_id = create_customer(client)
        r = client.post("/requests", json={
            "request_type": "Customer Edit", "payload": {"area": "Elsewhere"},
            "created_by": "deo1", "customer_id": customer_id
        })
        request_id = r.json()["id"]
        r = client.post(f"/requests/{request_id}/reject", json={"reviewer": "admin", "notes": "wrong area"})
        assert r.json()["status"] == "Rejected"
        assert client.get(f"/customers/{customer_id}").json()["area"] == "Market Road"

    def test_unknown_request(self, client):
        assert client.get("/requests/nope").status_code == 404


class TestTeamAndCollections:
    """Recovery agents and the collection report"""

    def test_assign_customers(self, client):
        customer_id = create_customer(client)
        r = client.post("/team", json={
            "name": "Suresh", "phone": "9123456780", "login_id": "agent1", "role": "Recovery Team"
        })
        assert r.status_code == 201
        member_id = r.json()["id"]

        r = client.post(f"/team/{member_id}/assignments", json={"customer_ids": [customer_id]})
        assert r.status_code == 201
        r = client.get(f"/team/{member_id}/assignments")
        assert [a["customer_id"] for a in r.json()["items"]] == [customer_id]

    def test_collection_report(self, client):
        loan_id = create_loan(client, create_customer(client))["loan_id"]
        client.post("/payments", json={
            "loan_id": loan_id, "amount": "500", "payment_date": "2024-03-01", "collected_by": "agent1"
        })

        r = client.get("/collections/report", params={"start_date": "2024-03-01", "end_date": "2024-03-01"})
        assert r.status_code == 200
        data = r.json()
        assert data["totalCollected"] == "500"
        assert data["byCollector"] == {"agent1": "500"}
        assert data["byOffice"] == {"Office 1": "500"}

"""Tests for /api/services."""
import csv
import io

import pytest

from conftest import create_product, days_from_today, default_category_id


@pytest.fixture
def product(client, alice):
    category = default_category_id(client, alice, "Vehicle")
    return create_product(client, alice, category, name="Scooter", purchase_date="2024-01-15",
                          warranty_period=24)


def add_service(client, headers, product_id, **fields):
    body = {
        "product_id": product_id,
        "service_date": "2024-06-01",
        "service_center": "City Motors",
        "description": "Oil change",
    }
    body.update(fields)
    response = client.post("/api/services", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["service"]


def test_create_and_fetch(client, alice, product):
    service = add_service(client, alice, product["product_id"], cost=45.5,
                          next_service_due_date=days_from_today(10))
    assert service["product_name"] == "Scooter"
    assert service["cost"] == 45.5
    assert service["service_due_status"] == "upcoming"

    fetched = client.get(f"/api/services/{service['service_id']}", headers=alice).json()["service"]
    assert fetched["service_center"] == "City Motors"


def test_no_due_date_means_no_due_status(client, alice, product):
    service = add_service(client, alice, product["product_id"])
    assert service["next_service_due_date"] is None
    assert service["service_due_status"] is None
    assert service["cost"] == 0


def test_invalid_product_rejected(client, alice, bob, product):
    body = {"product_id": product["product_id"], "service_date": "2024-06-01",
            "service_center": "X", "description": "Y"}
    response = client.post("/api/services", json=body, headers=bob)
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid product"

    body["product_id"] = "missing"
    assert client.post("/api/services", json=body, headers=alice).status_code == 400


def test_required_fields(client, alice, product):
    response = client.post("/api/services", json={"product_id": product["product_id"]}, headers=alice)
    assert response.status_code == 400
    fields = {e["loc"][-1] for e in response.json()["errors"]}
    assert {"service_date", "service_center", "description"} <= fields


def test_ownership_enforced(client, alice, bob, product):
    service = add_service(client, alice, product["product_id"])
    sid = service["service_id"]
    assert client.get(f"/api/services/{sid}", headers=bob).status_code == 403
    assert client.put(f"/api/services/{sid}", json={"cost": 1}, headers=bob).status_code == 403
    assert client.delete(f"/api/services/{sid}", headers=bob).status_code == 403
    assert client.get(f"/api/services/{sid}", headers=alice).json()["service"]["cost"] == 0
    assert client.get("/api/services/missing", headers=alice).json()["detail"] == "Service record not found"


def test_update_and_clear_due_date(client, alice, product):
    service = add_service(client, alice, product["product_id"], next_service_due_date=days_from_today(90))
    sid = service["service_id"]
    updated = client.put(f"/api/services/{sid}", json={"cost": 80, "next_service_due_date": None},
                         headers=alice).json()["service"]
    assert updated["cost"] == 80
    assert updated["next_service_due_date"] is None


def test_list_filters_by_product_and_paginates(client, alice, product):
    other = create_product(client, alice, product["category_id"], name="Car")
    for day in range(1, 6):
        add_service(client, alice, product["product_id"], service_date=f"2024-07-0{day}")
    add_service(client, alice, other["product_id"])

    body = client.get("/api/services", params={"limit": 2}, headers=alice).json()
    assert body["pagination"]["total"] == 6
    assert body["data"][0]["service_date"] == "2024-07-05"

    body = client.get("/api/services", params={"product": product["product_id"], "sort": "serviceDate:asc"},
                      headers=alice).json()
    assert body["pagination"]["total"] == 5
    assert [s["service_date"] for s in body["data"]][:2] == ["2024-07-01", "2024-07-02"]


def test_upcoming_and_overdue(client, alice, bob, product):
    add_service(client, alice, product["product_id"], description="due soon",
                next_service_due_date=days_from_today(5))
    add_service(client, alice, product["product_id"], description="due today",
                next_service_due_date=days_from_today(0))
    add_service(client, alice, product["product_id"], description="late",
                next_service_due_date=days_from_today(-3))
    add_service(client, alice, product["product_id"], description="far off",
                next_service_due_date=days_from_today(45))
    add_service(client, alice, product["product_id"], description="none")

    body = client.get("/api/services/upcoming/due", headers=alice).json()
    assert [s["description"] for s in body["upcoming"]] == ["due soon"]
    assert [s["description"] for s in body["overdue"]] == ["late", "due today"]
    assert {s["service_due_status"] for s in body["overdue"]} == {"overdue"}
    assert {s["service_due_status"] for s in body["upcoming"]} == {"upcoming"}

    assert client.get("/api/services/upcoming/due", headers=bob).json() == {"upcoming": [], "overdue": []}


def test_service_csv_export(client, alice, product):
    add_service(client, alice, product["product_id"], service_date="2024-06-01", cost=45.5,
                next_service_due_date="2024-12-01")
    response = client.get("/api/services/export/csv", headers=alice)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    rows = list(csv.DictReader(io.StringIO(response.text)))
    assert rows == [{
        "Product": "Scooter",
        "Service Date": "06/01/2024",
        "Service Center": "City Motors",
        "Cost": "45.50",
        "Description": "Oil change",
        "Next Service Due": "12/01/2024",
        "Due Status": "overdue",
    }]


def test_service_documents(client, alice, product):
    sid = add_service(client, alice, product["product_id"])["service_id"]
    doc = client.post(f"/api/services/{sid}/documents", json={"name": "invoice.pdf", "path": "u/i.pdf"},
                      headers=alice).json()["document"]
    assert doc["document_type"] == "other"
    assert client.delete(f"/api/services/{sid}/documents/{doc['document_id']}", headers=alice).status_code == 200

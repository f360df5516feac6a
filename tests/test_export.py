"""Tests for CSV / PDF exports and dashboard aggregates."""
import csv
import io
from datetime import timedelta

import pytest

from api.export import EMPTY_REPORT_MESSAGE, PRODUCT_CSV_FIELDS, ReportExporter
from conftest import FIXED_NOW, FIXED_TODAY, create_product, days_from_today, default_category_id


@pytest.fixture
def exporter(stores):
    return ReportExporter(stores["products"], stores["services"], stores["categories"])


@pytest.fixture
def owner(stores):
    return stores["users"].add_user("Dana", "dana@example.com")


def category_id(stores, owner, name):
    return stores["categories"].find_by_name(name, owner.user_id).category_id


def add(stores, owner, name, expires_in_days, category="Electronics", **fields):
    """A product whose expiry is FIXED_TODAY + expires_in_days."""
    return stores["products"].add_product(
        owner.user_id, name,
        purchase_date=(FIXED_TODAY + timedelta(days=expires_in_days)).isoformat(),
        warranty_period=0,
        category_id=category_id(stores, owner, category),
        **fields,
    )


def test_empty_csv_is_header_only(exporter, owner):
    data = exporter.products_csv(owner.user_id).decode("utf-8")
    assert data.splitlines() == [",".join(PRODUCT_CSV_FIELDS)]


def test_csv_rows(stores, exporter, owner):
    stores["products"].add_product(
        owner.user_id, "Laptop", purchase_date="2024-01-15", warranty_period=12,
        category_id=category_id(stores, owner, "Electronics"),
        purchase_price=1299.99, seller="Best Buy", serial_number="SN1",
    )
    stores["products"].add_product(
        owner.user_id, "Sofa", purchase_date="2024-02-01", warranty_period=6,
        category_id="deleted-category",
    )
    rows = list(csv.DictReader(io.StringIO(exporter.products_csv(owner.user_id).decode("utf-8"))))
    by_name = {r["Name"]: r for r in rows}
    assert by_name["Laptop"] == {
        "Name": "Laptop",
        "Category": "Electronics",
        "Purchase Date": "01/15/2024",
        "Warranty Expiry": "01/15/2025",
        "Purchase Price": "1299.99",
        "Seller": "Best Buy",
        "Serial Number": "SN1",
    }
    assert by_name["Sofa"]["Category"] == "Unknown"
    assert by_name["Sofa"]["Purchase Price"] == "N/A"
    assert by_name["Sofa"]["Seller"] == "N/A"
    assert by_name["Sofa"]["Serial Number"] == "N/A"


def test_csv_only_includes_owner_rows(stores, exporter, owner):
    other = stores["users"].add_user("Eve", "eve@example.com")
    add(stores, other, "Not mine", 10)
    assert exporter.product_rows(owner.user_id) == []


def test_empty_pdf_says_no_products(exporter, owner):
    assert exporter.product_report_blocks(owner.user_id) == []
    data = exporter.products_pdf(owner.user_id, FIXED_NOW)
    assert data.startswith(b"%PDF")
    assert EMPTY_REPORT_MESSAGE == "No products found in inventory."


def test_pdf_blocks(stores, exporter, owner):
    add(stores, owner, "Camera – Pro", 40, purchase_price=850.0, serial_number="C-9")
    blocks = exporter.product_report_blocks(owner.user_id)
    assert blocks[0]["heading"] == "Camera – Pro"
    assert "Price: $850" in blocks[0]["lines"]
    assert "Serial Number: C-9" in blocks[0]["lines"]
    assert exporter.products_pdf(owner.user_id, FIXED_NOW).startswith(b"%PDF")


def test_dashboard_counts_partition_products(stores, exporter, owner):
    add(stores, owner, "Expired long ago", -40)
    add(stores, owner, "Expires today", 0)
    add(stores, owner, "Tomorrow", 1, category="Appliance")
    add(stores, owner, "Last soon day", 30, category="Appliance")
    add(stores, owner, "First active day", 31, category="Appliance")
    add(stores, owner, "Far future", 400, category="Furniture")

    stats = exporter.dashboard_stats(owner.user_id, FIXED_NOW)
    counts = stats["warranty_status_counts"]
    assert counts == {"active": 2, "expiring": 2, "expired": 2}
    assert sum(counts.values()) == stats["total_products"] == 6
    assert [p["name"] for p in stats["expiring_warranties"]] == ["Tomorrow", "Last soon day"]
    assert stats["products_by_category"][0] == {
        "category": "Appliance",
        "category_id": category_id(stores, owner, "Appliance"),
        "count": 3,
    }
    assert [c["count"] for c in stats["products_by_category"]] == [3, 2, 1]


def test_dashboard_empty(exporter, owner):
    stats = exporter.dashboard_stats(owner.user_id, FIXED_NOW)
    assert stats == {
        "total_products": 0,
        "products_by_category": [],
        "expiring_warranties": [],
        "warranty_status_counts": {"active": 0, "expiring": 0, "expired": 0},
    }


def test_export_endpoints(client, alice):
    response = client.get("/api/products/export/csv", headers=alice)
    assert response.status_code == 200
    assert 'filename="products_export.csv"' in response.headers["content-disposition"]
    assert response.text.strip() == ",".join(PRODUCT_CSV_FIELDS)

    response = client.get("/api/products/export/pdf", headers=alice)
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")

    assert client.get("/api/products/export/csv").status_code == 401


def test_dashboard_endpoint(client, alice):
    category = default_category_id(client, alice)
    create_product(client, alice, category, purchase_date=days_from_today(5))
    create_product(client, alice, category, purchase_date=days_from_today(-5))
    stats = client.get("/api/products/stats/dashboard", headers=alice).json()
    assert stats["total_products"] == 2
    assert stats["warranty_status_counts"] == {"active": 0, "expiring": 1, "expired": 1}
    assert stats["products_by_category"] == [
        {"category": "Electronics", "category_id": category, "count": 2},
    ]

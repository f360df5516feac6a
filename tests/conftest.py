"""
Pytest configuration and fixtures for the Warranty Tracker tests.

Every test gets its own SQLite file under tmp_path and an app built on it;
the in-process sweep scheduler is disabled.
"""
from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from core.config import TrackerConfig
from interfaces.api.server import create_app
from tools.tracker.categories import CategoryStore
from tools.tracker.products import ProductStore
from tools.tracker.services import ServiceStore
from tools.tracker.users import UserStore


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "tracker.db")


@pytest.fixture
def config(tmp_path, db_path):
    return TrackerConfig(
        config_path=tmp_path / "missing.toml",
        overrides={
            "database": {"db_path": db_path},
            "sweep": {"enabled": False},
            "email": {"enabled": False},
            "api": {"api_key": ""},
        },
    )


@pytest.fixture
def app(config):
    return create_app(config)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def stores(db_path):
    """Direct store access for tests that don't go through HTTP."""
    users = UserStore(db_path)
    categories = CategoryStore(db_path)
    categories.seed_defaults()
    products = ProductStore(db_path)
    services = ServiceStore(db_path)
    yield {
        "users": users,
        "categories": categories,
        "products": products,
        "services": services,
    }
    for store in (services, products, categories, users):
        store.close()


def register(client, name="Alice", email="alice@example.com", notifications_enabled=True):
    """Create a user through the API and return request headers identifying them."""
    response = client.post("/api/users", json={
        "name": name,
        "email": email,
        "notifications_enabled": notifications_enabled,
    })
    assert response.status_code == 201, response.text
    return {"X-User-Id": response.json()["user"]["user_id"]}


def default_category_id(client, headers, name="Electronics"):
    categories = client.get("/api/categories", headers=headers).json()["data"]
    return next(c["category_id"] for c in categories if c["name"] == name)


def utc_today():
    return datetime.now(timezone.utc).date()


def days_from_today(days):
    return (utc_today() + timedelta(days=days)).isoformat()


def create_product(client, headers, category_id, name="Laptop", **fields):
    """Create a product; defaults give an expiry of purchase_date (period 0)."""
    body = {
        "name": name,
        "purchase_date": fields.pop("purchase_date", days_from_today(100)),
        "warranty_period": fields.pop("warranty_period", 0),
        "category_id": category_id,
    }
    body.update(fields)
    response = client.post("/api/products", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["product"]


@pytest.fixture
def alice(client):
    return register(client)


@pytest.fixture
def bob(client):
    return register(client, name="Bob", email="bob@example.com")


FIXED_NOW = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)
FIXED_TODAY = date(2025, 3, 1)

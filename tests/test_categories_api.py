"""Tests for /api/categories."""
from fastapi.testclient import TestClient

from conftest import create_product, default_category_id
from core.config import TrackerConfig
from interfaces.api.server import create_app


def test_defaults_are_seeded_and_sorted(client, alice):
    data = client.get("/api/categories", headers=alice).json()["data"]
    names = [c["name"] for c in data]
    assert names == ["Appliance", "Electronics", "Furniture", "Others", "Vehicle"]
    assert all(c["is_default"] for c in data)


def test_seeding_is_idempotent(stores):
    assert stores["categories"].seed_defaults() == 0
    assert len(stores["categories"].list_visible("anyone")) == 5


def test_requires_known_user(client):
    assert client.get("/api/categories").status_code == 401
    assert client.get("/api/categories", headers={"X-User-Id": "nobody"}).status_code == 401


def test_create_custom_category(client, alice):
    response = client.post("/api/categories", json={"name": "Tools", "description": "Power tools"},
                           headers=alice)
    assert response.status_code == 201
    category = response.json()["category"]
    assert category["name"] == "Tools"
    assert category["is_default"] is False

    names = [c["name"] for c in client.get("/api/categories", headers=alice).json()["data"]]
    assert "Tools" in names


def test_duplicate_of_default_rejected_case_insensitively(client, alice):
    for name in ("Electronics", "electronics", "ELECTRONICS"):
        response = client.post("/api/categories", json={"name": name}, headers=alice)
        assert response.status_code == 400
        assert response.json()["detail"] == "Category already exists"


def test_duplicate_custom_rejected_but_other_users_unaffected(client, alice, bob):
    assert client.post("/api/categories", json={"name": "Garden"}, headers=alice).status_code == 201
    assert client.post("/api/categories", json={"name": "garden"}, headers=alice).status_code == 400
    assert client.post("/api/categories", json={"name": "Garden"}, headers=bob).status_code == 201


def test_custom_categories_are_private(client, alice, bob):
    created = client.post("/api/categories", json={"name": "Cameras"}, headers=alice).json()["category"]
    bob_names = [c["name"] for c in client.get("/api/categories", headers=bob).json()["data"]]
    assert "Cameras" not in bob_names
    assert client.get(f"/api/categories/{created['category_id']}", headers=bob).status_code == 404


def test_default_categories_are_read_only(client, alice):
    cid = default_category_id(client, alice, "Vehicle")
    response = client.put(f"/api/categories/{cid}", json={"name": "Cars"}, headers=alice)
    assert response.status_code == 403
    assert response.json()["detail"] == "Cannot modify default categories"
    response = client.delete(f"/api/categories/{cid}", headers=alice)
    assert response.status_code == 403
    assert response.json()["detail"] == "Cannot delete default categories"


def test_rename_custom_category(client, alice):
    cid = client.post("/api/categories", json={"name": "Toys"}, headers=alice).json()["category"]["category_id"]
    response = client.put(f"/api/categories/{cid}", json={"name": "Games"}, headers=alice)
    assert response.status_code == 200
    assert response.json()["category"]["name"] == "Games"

    # Renaming onto a default name collides
    response = client.put(f"/api/categories/{cid}", json={"name": "furniture"}, headers=alice)
    assert response.status_code == 400

    # Renaming to its own name with different case is allowed
    response = client.put(f"/api/categories/{cid}", json={"name": "GAMES"}, headers=alice)
    assert response.status_code == 200


def test_deleting_category_leaves_products_as_unknown(client, alice):
    cid = client.post("/api/categories", json={"name": "Bikes"}, headers=alice).json()["category"]["category_id"]
    product = create_product(client, alice, cid, name="Road bike")
    assert product["category"] == "Bikes"

    assert client.delete(f"/api/categories/{cid}", headers=alice).status_code == 200
    fetched = client.get(f"/api/products/{product['product_id']}", headers=alice).json()["product"]
    assert fetched["category_id"] == cid
    assert fetched["category"] == "Unknown"


def test_missing_name_is_a_validation_error(client, alice):
    response = client.post("/api/categories", json={"description": "no name"}, headers=alice)
    assert response.status_code == 400
    assert response.json()["errors"]


def test_blank_names_are_rejected_and_names_are_trimmed(client, alice):
    assert client.post("/api/categories", json={"name": "   "}, headers=alice).status_code == 400

    category = client.post("/api/categories", json={"name": "  Garden  "}, headers=alice).json()["category"]
    assert category["name"] == "Garden"
    response = client.put(f"/api/categories/{category['category_id']}", json={"name": "\t "}, headers=alice)
    assert response.status_code == 400
    assert client.get(f"/api/categories/{category['category_id']}",
                      headers=alice).json()["category"]["name"] == "Garden"

    electronics = default_category_id(client, alice)
    body = {"name": "  ", "purchase_date": "2024-01-01", "warranty_period": 12, "category_id": electronics}
    assert client.post("/api/products", json=body, headers=alice).status_code == 400


def test_api_key_guard(tmp_path):
    config = TrackerConfig(
        config_path=tmp_path / "missing.toml",
        overrides={
            "database": {"db_path": str(tmp_path / "keyed.db")},
            "sweep": {"enabled": False},
            "api": {"api_key": "secret"},
        },
    )
    with TestClient(create_app(config)) as keyed:
        body = {"name": "Kay", "email": "kay@example.com"}
        assert keyed.post("/api/users", json=body).status_code == 403
        response = keyed.post("/api/users", json=body, headers={"X-API-Key": "secret"})
        assert response.status_code == 201
        user_id = response.json()["user"]["user_id"]

        assert keyed.get("/api/categories", headers={"X-API-Key": "secret", "X-User-Id": user_id}).status_code == 200
        assert keyed.get("/api/categories", headers={"X-User-Id": user_id}).status_code == 403


def test_register_rejects_duplicate_email(client, alice):
    response = client.post("/api/users", json={"name": "Other", "email": "ALICE@example.com"})
    assert response.status_code == 400


def test_profile_update(client, alice):
    response = client.put("/api/users/profile", json={"notifications_enabled": False}, headers=alice)
    assert response.status_code == 200
    assert response.json()["user"]["notifications_enabled"] is False
    profile = client.get("/api/users/profile", headers=alice).json()["user"]
    assert profile["name"] == "Alice"
    assert profile["notifications_enabled"] is False


def test_profile_email_conflict(client, alice, bob):
    response = client.put("/api/users/profile", json={"email": "bob@example.com"}, headers=alice)
    assert response.status_code == 400


def test_invalid_email_rejected(client):
    assert client.post("/api/users", json={"name": "X", "email": "not-an-email"}).status_code == 400

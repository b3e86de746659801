from datetime import timedelta

import pytest

from database import utcnow
from errors import BadRequestError, ConflictError, NotFoundError

SMALL = {"size": "8.0", "color": "Red", "sku": "GIRL-OG-80"}
LARGE = {"size": "8.5", "color": "Red", "sku": "GIRL-OG-85"}


def add(client, headers, product_id, quantity, variant=SMALL):
    return client.post("/api/cart/items", json={"product_id": product_id, "quantity": quantity, "variant": variant},
                       headers=headers)


def test_cart_created_lazily(client, customer):
    res = client.get("/api/cart", headers=customer["headers"])
    cart = res.json()["data"]
    assert cart["items"] == []
    assert cart["subtotal"] == 0
    assert cart["user_id"] == customer["user"]["id"]


def test_same_variant_merges_into_one_line(client, customer, product_id):
    add(client, customer["headers"], product_id, 2)
    res = add(client, customer["headers"], product_id, 3)
    cart = res.json()["data"]
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 5
    assert cart["subtotal"] == 500


def test_variant_price_and_subtotal(client, customer, product_id):
    add(client, customer["headers"], product_id, 1)
    res = add(client, customer["headers"], product_id, 2, LARGE)
    cart = res.json()["data"]
    assert [i["price"] for i in cart["items"]] == [100, 105]
    assert cart["subtotal"] == 310


def test_combined_quantity_checked_against_stock(client, customer, product_id):
    add(client, customer["headers"], product_id, 2, LARGE)
    res = add(client, customer["headers"], product_id, 2, LARGE)
    assert res.status_code == 400
    assert res.json()["error"] == "Insufficient stock. Only 3 units available."
    cart = client.get("/api/cart", headers=customer["headers"]).json()["data"]
    assert cart["items"][0]["quantity"] == 2


def test_unknown_variant_rejected(client, customer, product_id):
    res = add(client, customer["headers"], product_id, 1, {"size": "9", "color": "Blue", "sku": "NOPE"})
    assert res.status_code == 400
    assert res.json()["error"] == "Invalid product variant"


def test_update_to_zero_removes_line(client, customer, product_id):
    headers = customer["headers"]
    add(client, headers, product_id, 1)
    add(client, headers, product_id, 1, LARGE)
    res = client.put("/api/cart/items", json={"product_id": product_id, "variant_sku": "GIRL-OG-80", "quantity": 0},
                     headers=headers)
    items = res.json()["data"]["items"]
    assert len(items) == 1
    assert items[0]["variant"]["sku"] == "GIRL-OG-85"


def test_update_quantity_rechecks_stock(client, customer, product_id):
    headers = customer["headers"]
    add(client, headers, product_id, 1, LARGE)
    res = client.put("/api/cart/items", json={"product_id": product_id, "variant_sku": "GIRL-OG-85", "quantity": 4},
                     headers=headers)
    assert res.status_code == 400
    res = client.put("/api/cart/items", json={"product_id": product_id, "variant_sku": "GIRL-OG-85", "quantity": 3},
                     headers=headers)
    assert res.json()["data"]["subtotal"] == 315


def test_update_missing_line(services, product_id):
    with pytest.raises(NotFoundError, match="Item not found in cart"):
        services.cart.update_item_quantity("user-1", product_id, "GIRL-OG-80", 2)


def test_remove_and_clear(client, customer, product_id):
    headers = customer["headers"]
    add(client, headers, product_id, 1)
    add(client, headers, product_id, 1, LARGE)
    res = client.request("DELETE", "/api/cart/items", json={"product_id": product_id, "variant_sku": "GIRL-OG-80"},
                         headers=headers)
    assert len(res.json()["data"]["items"]) == 1
    res = client.delete("/api/cart", headers=headers)
    assert res.json()["data"]["items"] == []
    assert res.json()["data"]["subtotal"] == 0


def test_writes_slide_expiry_and_bump_version(services, product_id):
    first = services.cart.add_item("user-1", product_id, 1, SMALL)
    second = services.cart.add_item("user-1", product_id, 1, SMALL)
    assert second["version"] == first["version"] + 1
    assert second["expires_at"] > utcnow() + timedelta(days=6)


def test_stale_version_raises_conflict(services, product_id):
    stale = services.cart.get_cart("user-1")
    services.cart.add_item("user-1", product_id, 1, SMALL)
    stale["items"] = []
    with pytest.raises(ConflictError):
        services.cart._save(stale)


def test_expired_cart_reads_empty(services, product_id, db):
    services.cart.add_item("user-1", product_id, 2, SMALL)
    db["cart"].update_one({"user_id": "user-1"}, {"$set": {"expires_at": utcnow() - timedelta(minutes=1)}})
    cart = services.cart.get_cart("user-1")
    assert cart["items"] == []
    assert cart["subtotal"] == 0


def test_refresh_reports_price_changes(client, customer, product_id, db):
    headers = customer["headers"]
    add(client, headers, product_id, 2)
    db["product"].update_one({"sku": "GIRL-DECK-OG"}, {"$set": {"base_price": 90.0}})
    res = client.post("/api/cart/refresh", headers=headers)
    data = res.json()["data"]
    assert data["price_changes"] == [
        {"product_id": product_id, "variant_sku": "GIRL-OG-80", "old_price": 100, "new_price": 90}
    ]
    assert data["cart"]["subtotal"] == 180


def test_inactive_product_cannot_be_added(services, product_id):
    services.products.delete_product(product_id)
    with pytest.raises(NotFoundError):
        services.cart.add_item("user-1", product_id, 1, SMALL)


def test_bad_quantity_rejected(client, customer, product_id):
    res = add(client, customer["headers"], product_id, 0)
    assert res.status_code == 400
    assert res.json()["success"] is False


def test_over_stock_add_leaves_cart_untouched(services, product_id):
    with pytest.raises(BadRequestError, match="Only 10 units"):
        services.cart.add_item("user-1", product_id, 11, SMALL)
    assert services.cart.get_cart("user-1")["items"] == []

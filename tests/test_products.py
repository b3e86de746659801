import pytest
from pydantic import ValidationError

from conftest import product_payload
from dto import ProductCreateDTO, ProductUpdateDTO
from errors import BadRequestError, NotFoundError


def test_negative_additional_price_within_base(services):
    payload = product_payload(variations=[{"sku": "A", "additional_price": -50, "stock_quantity": 10}])
    product = services.products.create_product(ProductCreateDTO(**payload))
    assert product["variations"][0]["additional_price"] == -50


def test_negative_total_price_rejected():
    payload = product_payload(variations=[{"sku": "A", "additional_price": -150, "stock_quantity": 10}])
    with pytest.raises(ValidationError, match="cannot be negative"):
        ProductCreateDTO(**payload)


def test_duplicate_variation_skus_rejected(client, admin):
    variations = [
        {"sku": "DUP-1", "stock_quantity": 1},
        {"sku": "DUP-1", "stock_quantity": 2},
    ]
    res = client.post("/api/products", json=product_payload(variations=variations), headers=admin["headers"])
    assert res.status_code == 400
    assert res.json()["error"] == "SKUs must be unique across all variations"


def test_duplicate_name_and_sku(services, product_id):
    with pytest.raises(BadRequestError, match="name already exists"):
        services.products.create_product(ProductCreateDTO(**product_payload(sku="OTHER-SKU")))
    with pytest.raises(BadRequestError, match="SKU already exists"):
        services.products.create_product(ProductCreateDTO(**product_payload(name="Another Deck")))


def test_create_requires_admin(client, customer):
    res = client.post("/api/products", json=product_payload(), headers=customer["headers"])
    assert res.status_code == 403
    assert client.post("/api/products", json=product_payload()).status_code == 401


def test_admin_creates_product(client, admin):
    res = client.post("/api/products", json=product_payload(), headers=admin["headers"])
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["id"]
    assert data["ratings"] == {"average": 0, "count": 0}


def test_list_filters_and_pagination(client, make_product):
    make_product()
    make_product(name="Thunder Hollow Lights", sku="THN-HL", category="Trucks", brand="Thunder", base_price=70)
    make_product(name="Enjoi Panda Deck", sku="ENJ-PANDA", brand="Enjoi", base_price=55)

    res = client.get("/api/products", params={"limit": 2})
    body = res.json()
    assert body["success"] is True
    assert len(body["data"]) == 2
    assert body["total"] == 3
    assert body["totalPages"] == 2

    res = client.get("/api/products", params={"category": "Deck", "maxPrice": 60})
    names = [p["name"] for p in res.json()["data"]]
    assert names == ["Enjoi Panda Deck"]


def test_search_matches_name_description_and_tags(client, make_product):
    make_product()
    make_product(name="Thunder Hollow Lights", sku="THN-HL", category="Trucks", brand="Thunder",
                 description="Lightweight hollow kingpin trucks.", tags=["trucks"], variations=[])

    assert client.get("/api/products/search", params={"q": "hollow"}).json()["total"] == 1
    assert client.get("/api/products/search", params={"q": "STREET"}).json()["total"] == 1
    assert client.get("/api/products/search", params={"q": "maple"}).json()["data"][0]["sku"] == "GIRL-DECK-OG"


def test_soft_delete_hides_product(client, admin, product_id, db):
    res = client.delete(f"/api/products/{product_id}", headers=admin["headers"])
    assert res.status_code == 200
    assert client.get(f"/api/products/{product_id}").status_code == 404
    assert client.get("/api/products").json()["total"] == 0
    assert db["product"].count_documents({}) == 1


def test_get_product_bad_id(client):
    res = client.get("/api/products/not-an-id")
    assert res.status_code == 400
    assert res.json()["error"] == "Invalid product id"


def test_update_revalidates_and_checks_collisions(services, make_product):
    first = make_product(variations=[{"sku": "GIRL-OG-SALE", "stock_quantity": 1, "additional_price": -50}])
    make_product(name="Plan B Team Deck", sku="PLANB-TEAM")

    updated = services.products.update_product(first, ProductUpdateDTO(base_price=120))
    assert updated["base_price"] == 120
    assert updated["name"] == "Girl Classic OG Deck"

    with pytest.raises(BadRequestError, match="name already exists"):
        services.products.update_product(first, ProductUpdateDTO(name="Plan B Team Deck"))
    with pytest.raises(BadRequestError, match="cannot be negative"):
        services.products.update_product(first, ProductUpdateDTO(base_price=20))


def test_review_replaces_previous_and_recomputes(client, register, product_id):
    first = register(email="one@example.com")
    second = register(email="two@example.com")
    url = f"/api/products/{product_id}/reviews"
    client.post(url, json={"rating": 2}, headers={"Authorization": f"Bearer {first['token']}"})
    client.post(url, json={"rating": 5, "comment": "Pops great"}, headers={"Authorization": f"Bearer {second['token']}"})
    res = client.post(url, json={"rating": 4}, headers={"Authorization": f"Bearer {first['token']}"})
    data = res.json()["data"]
    assert len(data["reviews"]) == 2
    assert data["ratings"] == {"average": 4.5, "count": 2}


def test_stock_adjustment_never_negative(client, admin, product_id, services):
    url = f"/api/products/{product_id}/stock"
    res = client.patch(url, json={"quantity": -4}, headers=admin["headers"])
    assert res.json()["data"]["stock"] == 6
    res = client.patch(url, json={"quantity": -7}, headers=admin["headers"])
    assert res.status_code == 400
    assert res.json()["error"] == "Insufficient stock"
    assert services.products.get_product_by_id(product_id)["stock"] == 6

    with pytest.raises(NotFoundError):
        services.products.update_stock("0" * 24, 1)


def test_blank_search_term_rejected(client, services, product_id):
    with pytest.raises(BadRequestError, match="Search term is required"):
        services.products.search_products("   ")
    res = client.get("/api/products/search", params={"q": "   "})
    assert res.status_code == 400

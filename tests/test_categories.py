import os

import pytest


def test_create_single_category(client, admin_headers):
    response = client.post(
        "/categories",
        data={"name": "Shirt", "price": "19.99", "material": "cotton", "images": ["http://img/a.png", "http://img/b.png"]},
        headers=admin_headers,
    )
    assert response.status_code == 201
    category_id = response.json()["categoryId"]

    listing = client.get("/categories", headers=admin_headers).json()
    row = next(c for c in listing["categories"] if c["id"] == category_id)
    assert row["price"] == 19.99
    assert row["size"] is None
    assert row["images"] == ["http://img/a.png", "http://img/b.png"]


def test_comma_separated_sizes_fan_out(client, admin_headers):
    response = client.post(
        "/categories", data={"name": "Tee", "price": "10", "size": "S, M ,L"}, headers=admin_headers
    )
    assert response.status_code == 201
    body = response.json()
    assert body["sizesCreated"] == 3
    assert len(body["categoryIds"]) == 3

    sizes = {c["size"] for c in client.get("/categories?name=Tee", headers=admin_headers).json()["categories"]}
    assert sizes == {"S", "M", "L"}


def test_repeated_sizes_field(client, admin_headers):
    response = client.post(
        "/categories", data={"name": "Cap", "price": "5", "sizes": ["S", "XL"]}, headers=admin_headers
    )
    assert response.status_code == 201
    assert response.json()["sizesCreated"] == 2


def test_blank_sizes_rejected(client, admin_headers):
    response = client.post("/categories", data={"name": "Tee", "price": "10", "size": " , "}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "No valid sizes provided"


def test_create_requires_name_and_price(client, admin_headers):
    assert client.post("/categories", data={"name": "Tee"}, headers=admin_headers).status_code == 400
    assert client.post("/categories", data={"price": "3"}, headers=admin_headers).status_code == 400
    bad_price = client.post("/categories", data={"name": "Tee", "price": "-1"}, headers=admin_headers)
    assert bad_price.status_code == 400


def test_create_requires_admin(client, user_headers):
    response = client.post("/categories", data={"name": "Tee", "price": "10"}, headers=user_headers)
    assert response.status_code == 403


def test_uploaded_images_are_stored(client, admin_headers):
    response = client.post(
        "/categories",
        data={"name": "Bag", "price": "42", "images": "http://img/url.png"},
        files=[("images", ("photo.PNG", b"\x89PNG fake", "image/png"))],
        headers=admin_headers,
    )
    assert response.status_code == 201
    category_id = response.json()["categoryId"]

    row = client.get("/categories?name=Bag", headers=admin_headers).json()["categories"][0]
    assert row["id"] == category_id
    assert len(row["images"]) == 2
    uploaded, url = row["images"]
    assert uploaded.startswith("/uploads/") and uploaded.endswith(".png")
    assert url == "http://img/url.png"
    stored = os.path.join(os.environ["UPLOAD_DIR"], uploaded[len("/uploads/"):])
    with open(stored, "rb") as fh:
        assert fh.read() == b"\x89PNG fake"


def test_filters_and_pagination(client, make_category, admin_headers):
    make_category("Shirt", "10", color="red", material="cotton")
    make_category("Shirt", "30", color="blue", material="linen")
    make_category("Jacket", "80", color="red", material="wool")

    def names(query):
        body = client.get(f"/categories?{query}", headers=admin_headers).json()
        return sorted(c["name"] for c in body["categories"]), body["pagination"]

    assert names("name=hir")[0] == ["Shirt", "Shirt"]
    assert names("minPrice=20&maxPrice=50")[0] == ["Shirt"]
    assert names("color=red")[0] == ["Jacket", "Shirt"]
    assert names("material=wool")[0] == ["Jacket"]

    rows, pagination = names("limit=2&offset=0")
    assert len(rows) == 2
    assert pagination == {"total": 3, "limit": 2, "offset": 0, "hasMore": True}
    rows, pagination = names("limit=2&offset=2")
    assert len(rows) == 1
    assert pagination["hasMore"] is False


def test_listing_requires_auth(client):
    assert client.get("/categories").status_code == 401


def test_update_is_partial(client, make_category, admin_headers):
    category_id = make_category("Shirt", "10", color="red", images=["http://img/1.png"])
    response = client.put(f"/categories/{category_id}", data={"price": "12.5"}, headers=admin_headers)
    assert response.status_code == 200
    updated = response.json()["category"]
    assert updated["price"] == 12.5
    assert updated["name"] == "Shirt"
    assert updated["color"] == "red"
    assert updated["images"] == ["http://img/1.png"]


def test_update_replaces_images(client, make_category, admin_headers):
    category_id = make_category("Shirt", "10", images=["http://img/1.png", "http://img/2.png"])
    response = client.put(
        f"/categories/{category_id}", data={"images": ["http://img/3.png"]}, headers=admin_headers
    )
    assert response.json()["category"]["images"] == ["http://img/3.png"]


def test_update_missing_category(client, admin_headers):
    response = client.put("/categories/999", data={"price": "1"}, headers=admin_headers)
    assert response.status_code == 404


def test_delete_category(client, make_category, admin_headers):
    category_id = make_category()
    assert client.delete(f"/categories/{category_id}", headers=admin_headers).status_code == 200
    assert client.delete(f"/categories/{category_id}", headers=admin_headers).status_code == 404


def test_delete_cascades_to_images(client, make_category, admin_headers, db):
    from models import CategoryImage
    category_id = make_category(images=["http://img/1.png"])
    client.delete(f"/categories/{category_id}", headers=admin_headers)
    assert db.query(CategoryImage).filter_by(category_id=category_id).count() == 0


def test_grouped_by_exact_name(client, make_category):
    make_category("tshirt", "10", size="S,M")
    make_category("tshirt-1", "12")
    grouped = client.get("/categories/grouped").json()
    assert set(grouped) == {"tshirt", "tshirt-1"}
    assert len(grouped["tshirt"]) == 2
    assert set(grouped["tshirt"][0]) == {"id", "name", "price", "description", "images"}


def test_names_lookup(client, make_category, admin_headers):
    make_category("Hat", "5", size="S,M")
    make_category("Hat band", "2")
    response = client.post("/categories/names", json={"name": "Hat"}, headers=admin_headers)
    assert response.status_code == 200
    assert [c["name"] for c in response.json()["categories"]] == ["Hat", "Hat"]


@pytest.mark.parametrize("price", ["inf", "-inf", "nan"])
def test_non_finite_price_rejected(client, make_category, admin_headers, price):
    response = client.post("/categories", data={"name": "Shirt", "price": price}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Price must be a number"

    category_id = make_category("Hat", "5")
    response = client.put(f"/categories/{category_id}", data={"price": price}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Price must be a number"

    listing = client.get("/categories", headers=admin_headers)
    assert listing.status_code == 200
    assert [c["price"] for c in listing.json()["categories"]] == [5.0]

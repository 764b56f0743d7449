def test_toggle_twice_returns_to_original_state(client, user_headers, make_category):
    category_id = make_category()

    added = client.post("/favorites/toggle", json={"categoryId": category_id}, headers=user_headers)
    assert added.status_code == 201
    assert added.json()["action"] == "added"
    assert added.json()["isFavorited"] is True

    removed = client.post("/favorites/toggle", json={"categoryId": category_id}, headers=user_headers)
    assert removed.status_code == 200
    assert removed.json() == {"message": "Category removed from favorites", "action": "removed", "isFavorited": False}

    check = client.get(f"/favorites/check/{category_id}", headers=user_headers).json()
    assert check == {"categoryId": category_id, "isFavorited": False}


def test_add_favorite_twice_conflicts(client, user_headers, make_category):
    category_id = make_category()
    first = client.post("/favorites", json={"categoryId": category_id}, headers=user_headers)
    assert first.status_code == 201
    assert first.json()["favorite"]["categoryId"] == category_id
    second = client.post("/favorites", json={"categoryId": category_id}, headers=user_headers)
    assert second.status_code == 409


def test_favorite_unknown_category(client, user_headers):
    assert client.post("/favorites", json={"categoryId": 123}, headers=user_headers).status_code == 404
    assert client.post("/favorites/toggle", json={"categoryId": 123}, headers=user_headers).status_code == 404


def test_list_and_remove_favorites(client, user_headers, make_category):
    shirt = make_category("Shirt", "10")
    hat = make_category("Hat", "5")
    for category_id in (shirt, hat):
        client.post("/favorites", json={"categoryId": category_id}, headers=user_headers)

    body = client.get("/favorites", headers=user_headers).json()
    assert body["total"] == 2
    assert {f["category"]["name"] for f in body["favorites"]} == {"Shirt", "Hat"}

    assert client.delete(f"/favorites/{shirt}", headers=user_headers).status_code == 200
    assert client.delete(f"/favorites/{shirt}", headers=user_headers).status_code == 404
    assert client.get("/favorites", headers=user_headers).json()["total"] == 1


def test_favorites_are_per_account(client, user_headers, other_headers, make_category):
    category_id = make_category()
    client.post("/favorites", json={"categoryId": category_id}, headers=user_headers)
    assert client.get(f"/favorites/check/{category_id}", headers=other_headers).json()["isFavorited"] is False


def test_multiple_ratings_per_user_and_statistics(client, user_headers, other_headers, make_category):
    category_id = make_category()
    for value in (5, 3):
        response = client.post(
            "/ratings", json={"categoryId": category_id, "rating": value, "review": "ok"}, headers=user_headers
        )
        assert response.status_code == 201
    client.post("/ratings", json={"categoryId": category_id, "rating": 4}, headers=other_headers)

    body = client.get(f"/ratings/category/{category_id}", headers=user_headers).json()
    assert len(body["ratings"]) == 3
    assert body["statistics"] == {"averageRating": 4.0, "totalRatings": 3}
    assert {r["userName"] for r in body["ratings"]} == {"Alice", "Bob"}

    mine = client.get(f"/ratings/user/{category_id}", headers=user_headers).json()
    assert sorted(r["rating"] for r in mine["ratings"]) == [3, 5]
    assert mine["statistics"]["totalRatings"] == 3


def test_rating_out_of_range_rejected(client, user_headers, make_category):
    category_id = make_category()
    for value in (0, 6):
        response = client.post("/ratings", json={"categoryId": category_id, "rating": value}, headers=user_headers)
        assert response.status_code == 400


def test_rating_statistics_for_unrated_category(client, user_headers, make_category):
    category_id = make_category()
    body = client.get(f"/ratings/category/{category_id}", headers=user_headers).json()
    assert body == {"ratings": [], "statistics": {"averageRating": 0, "totalRatings": 0}}


def test_update_and_delete_own_rating(client, user_headers, make_category):
    category_id = make_category()
    rating_id = client.post(
        "/ratings", json={"categoryId": category_id, "rating": 2}, headers=user_headers
    ).json()["ratingId"]

    assert client.put(f"/ratings/{rating_id}", json={"rating": 4, "review": "better"}, headers=user_headers).status_code == 200
    rating = client.get(f"/ratings/user/{category_id}", headers=user_headers).json()["ratings"][0]
    assert (rating["rating"], rating["review"]) == (4, "better")

    assert client.delete(f"/ratings/{rating_id}", headers=user_headers).status_code == 200
    assert client.delete(f"/ratings/{rating_id}", headers=user_headers).status_code == 404


def test_cannot_change_another_accounts_rating(client, user_headers, other_headers, make_category):
    category_id = make_category()
    rating_id = client.post(
        "/ratings", json={"categoryId": category_id, "rating": 5}, headers=user_headers
    ).json()["ratingId"]
    assert client.put(f"/ratings/{rating_id}", json={"rating": 1}, headers=other_headers).status_code == 403
    assert client.delete(f"/ratings/{rating_id}", headers=other_headers).status_code == 403
    assert client.put("/ratings/999", json={"rating": 1}, headers=user_headers).status_code == 404

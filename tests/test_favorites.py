from bson import ObjectId


def delete(client, url, **kwargs):
    return client.request("DELETE", url, **kwargs)


def test_add_and_remove_favorite(client, store, user, make_tool, headers):
    tool = make_tool()
    tool_id = str(tool["_id"])
    auth = headers(user)

    res = client.post("/favorites", json={"toolId": tool_id}, headers=auth)
    assert res.status_code == 200
    assert res.json()["favorite"]["toolName"] == "Acme"
    assert store.favorites.count_documents({"toolId": tool_id, "userEmail": user["email"]}) == 1

    assert client.get("/favorites", params={"toolId": tool_id}, headers=auth).json() == {"isFavorited": True}

    assert delete(client, "/favorites", json={"toolId": tool_id}, headers=auth).status_code == 200
    assert client.get("/favorites", params={"toolId": tool_id}, headers=auth).json() == {"isFavorited": False}


def test_second_delete_is_404(client, user, make_tool, headers):
    tool_id = str(make_tool()["_id"])
    auth = headers(user)
    client.post("/favorites", json={"toolId": tool_id}, headers=auth)

    assert delete(client, "/favorites", json={"toolId": tool_id}, headers=auth).status_code == 200
    res = delete(client, "/favorites", json={"toolId": tool_id}, headers=auth)
    assert res.status_code == 404
    assert res.json() == {"error": "Favorite not found"}


def test_duplicate_favorite_is_409(client, store, user, make_tool, headers):
    tool_id = str(make_tool()["_id"])
    auth = headers(user)
    assert client.post("/favorites", json={"toolId": tool_id}, headers=auth).status_code == 200
    res = client.post("/favorites", json={"toolId": tool_id}, headers=auth)
    assert res.status_code == 409
    assert res.json() == {"error": "Tool already favorited"}
    assert store.favorites.count_documents({}) == 1


def test_favorite_validation(client, user, headers):
    auth = headers(user)
    assert client.post("/favorites", json={}, headers=auth).status_code == 400
    assert client.post("/favorites", json={"toolId": "abc"}, headers=auth).status_code == 400
    assert client.post("/favorites", json={"toolId": str(ObjectId())}, headers=auth).status_code == 404


def test_favorites_require_a_session(client, make_tool):
    tool_id = str(make_tool()["_id"])
    assert client.post("/favorites", json={"toolId": tool_id}).status_code == 401
    assert delete(client, "/favorites", json={"toolId": tool_id}).status_code == 401
    assert client.get("/favorites").status_code == 401


def test_listing_only_shows_own_favorites(client, make_user, make_tool, headers):
    alice = make_user("alice@klicktools.io")
    bob = make_user("bob@klicktools.io")
    acme, zeta = make_tool("Acme"), make_tool("Zeta")
    client.post("/favorites", json={"toolId": str(acme["_id"])}, headers=headers(alice))
    client.post("/favorites", json={"toolId": str(zeta["_id"])}, headers=headers(alice))
    client.post("/favorites", json={"toolId": str(zeta["_id"])}, headers=headers(bob))

    mine = client.get("/user/favorites", headers=headers(alice)).json()
    assert {f["toolName"] for f in mine} == {"Acme", "Zeta"}
    assert all(f["userEmail"] == "alice@klicktools.io" for f in mine)
    assert len(client.get("/favorites", headers=headers(bob)).json()) == 1


def test_uppercase_tool_id_matches_the_same_favorite(client, user, make_tool, headers):
    tool_id = str(make_tool()["_id"])
    auth = headers(user)
    client.post("/favorites", json={"toolId": tool_id}, headers=auth)
    res = client.get("/favorites", params={"toolId": tool_id.upper()}, headers=auth)
    assert res.json() == {"isFavorited": True}

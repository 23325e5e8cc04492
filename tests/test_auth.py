from datetime import timedelta

from auth import create_access_token
from conftest import PASSWORD


def test_register_creates_user_without_exposing_hash(client, store):
    res = client.post("/auth/register", json={"email": "New@KlickTools.io", "name": "New", "password": "pw-123456"})
    assert res.status_code == 201
    body = res.json()["user"]
    assert body["email"] == "new@klicktools.io"
    assert body["role"] == "user"
    assert "passwordHash" not in body
    stored = store.users.find_one({"email": "new@klicktools.io"})
    assert stored["passwordHash"] != "pw-123456"


def test_register_missing_field_is_400(client):
    res = client.post("/auth/register", json={"email": "new@klicktools.io", "name": "New"})
    assert res.status_code == 400
    assert "error" in res.json()


def test_register_existing_email_is_409(client, user):
    res = client.post("/auth/register", json={"email": "USER@klicktools.io", "name": "Again", "password": "x"})
    assert res.status_code == 409
    assert res.json() == {"error": "User already exists"}


def test_login_returns_token_and_touches_last_login(client, store, user):
    res = client.post("/auth/login", json={"email": user["email"], "password": PASSWORD})
    assert res.status_code == 200
    body = res.json()
    assert body["token"]
    assert body["user"]["email"] == user["email"]
    assert "passwordHash" not in body["user"]
    assert store.users.find_one({"_id": user["_id"]}).get("lastLogin") is not None

    me = client.get("/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.status_code == 200
    assert me.json()["id"] == str(user["_id"])


def test_login_bad_password_is_401(client, user):
    res = client.post("/auth/login", json={"email": user["email"], "password": "wrong"})
    assert res.status_code == 401
    assert res.json() == {"error": "Invalid email or password"}


def test_login_unknown_user_is_401(client):
    res = client.post("/auth/login", json={"email": "ghost@klicktools.io", "password": PASSWORD})
    assert res.status_code == 401


def test_me_requires_a_session(client):
    res = client.get("/me")
    assert res.status_code == 401
    assert res.json() == {"error": "Unauthorized"}


def test_me_rejects_garbage_and_expired_tokens(client, user):
    assert client.get("/me", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401
    expired = create_access_token({"sub": str(user["_id"])}, expires_delta=timedelta(minutes=-5))
    assert client.get("/me", headers={"Authorization": f"Bearer {expired}"}).status_code == 401


def test_token_for_deleted_user_is_401(client, store, user, headers):
    store.users.delete_one({"_id": user["_id"]})
    assert client.get("/me", headers=headers(user)).status_code == 401


def test_role_is_read_from_the_store(client, store, user, headers):
    # a token minted while the user was plain keeps working after promotion
    auth = headers(user)
    assert client.get("/admin/tools", headers=auth).status_code == 403
    store.users.update_one({"_id": user["_id"]}, {"$set": {"role": "admin"}})
    assert client.get("/admin/tools", headers=auth).status_code == 200


def test_unknown_route_uses_error_shape(client):
    res = client.get("/nope")
    assert res.status_code == 404
    assert "error" in res.json()

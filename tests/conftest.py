import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import hash_password, token_for
from database import Store, get_store
from main import app
from schemas import new_tool, new_user

PASSWORD = "correct-horse"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture
def store():
    s = Store(mongomock.MongoClient(), "klicktools_test")
    s.ensure_indexes()
    yield s
    s.client.drop_database("klicktools_test")


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(store):
    def _make(email="user@klicktools.io", role="user", name="Test User"):
        user = new_user(email=email, name=name, password_hash=PASSWORD_HASH, role=role)
        store.users.insert_one(user)
        return user
    return _make


@pytest.fixture
def user(make_user):
    return make_user("user@klicktools.io")


@pytest.fixture
def admin(make_user):
    return make_user("admin@klicktools.io", role="admin", name="Admin")


@pytest.fixture
def headers():
    def _headers(user):
        return {"Authorization": f"Bearer {token_for(user)}"}
    return _headers


@pytest.fixture
def make_tool(store):
    def _make(name="Acme", **overrides):
        tool = new_tool({
            "name": name,
            "description": f"{name} helps you work",
            "url": f"https://{name.lower().replace(' ', '')}.ai",
            "category": "Productivity",
        })
        tool.update(overrides)
        store.tools.insert_one(tool)
        return tool
    return _make


@pytest.fixture
def server_error_client(client):
    return TestClient(app, raise_server_exceptions=False)

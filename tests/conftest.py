import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="shope-uploads-")
os.environ.pop("ADMIN_EMAIL", None)

import pytest
from fastapi.testclient import TestClient

from auth import get_password_hash
from database import SessionLocal, drop_db
from main import app
from models import Account


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    drop_db()


@pytest.fixture
def db(client):
    session = SessionLocal()
    yield session
    session.close()


def register(client, email="alice@example.com", password="secret123", name="Alice", **extra):
    body = {"name": name, "email": email, "password": password, **extra}
    return client.post("/auth/register", json=body)


def login_headers(client, email="alice@example.com", password="secret123"):
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def user_headers(client):
    assert register(client).status_code == 201
    return login_headers(client)


@pytest.fixture
def other_headers(client):
    assert register(client, email="bob@example.com", name="Bob").status_code == 201
    return login_headers(client, email="bob@example.com")


@pytest.fixture
def admin_headers(client):
    with SessionLocal() as session:
        session.add(Account(
            name="Admin User",
            email="admin@example.com",
            password_hash=get_password_hash("admin123"),
            role="admin",
        ))
        session.commit()
    return login_headers(client, email="admin@example.com", password="admin123")


@pytest.fixture
def make_category(client, admin_headers):
    def _make(name="Shirt", price="20.00", **fields):
        data = {"name": name, "price": str(price), **fields}
        response = client.post("/categories", data=data, headers=admin_headers)
        assert response.status_code == 201, response.text
        body = response.json()
        return body.get("categoryId") or body["categoryIds"]
    return _make

import os

os.environ["EXPENSES_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["EXPENSES_ENV"] = "development"
os.environ["EXPENSES_TIMEZONE"] = "Asia/Kolkata"
os.environ["EXPENSES_RATE_LIMIT_ENABLED"] = "0"
os.environ["EXPENSES_BCRYPT_ROUNDS"] = "4"
os.environ["EXPENSES_JWT_SECRET"] = "test-secret-0123456789abcdef0123456789abcdef"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import models  # noqa: E402,F401
from database import Base, engine  # noqa: E402


@pytest.fixture()
def client():
    from main import app

    Base.metadata.create_all(engine)
    try:
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client
    finally:
        Base.metadata.drop_all(engine)


@pytest.fixture()
def register(client):
    """Register a user through the API and return its bearer headers."""

    def _register(username: str = "alice", **overrides) -> dict[str, str]:
        body = {
            "username": username,
            "email": f"{username}@example.com",
            "password": "secret123",
            "fullName": username.title(),
        }
        body.update(overrides)
        response = client.post("/api/auth/register", json=body)
        assert response.status_code == 201, response.text
        return {"Authorization": f"Bearer {response.json()['token']}"}

    return _register

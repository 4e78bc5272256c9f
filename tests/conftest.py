"""Shared fixtures: an app on SQLite in-memory with local file storage in a tmp dir."""
import os

import pytest

os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from app import create_app  # noqa: E402
from database import Client, PlatformCredential, db  # noqa: E402

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "Admin123!"
CLIENT_PASSWORD = "Abcd123!"


def make_config(tmp_path, **overrides):
    config = {
        "TESTING": True,
        "APP_ENV": "testing",
        "SECRET_KEY": "test-secret-key",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SQLALCHEMY_ENGINE_OPTIONS": {},
        "BCRYPT_ROUNDS": 4,
        "STORAGE_BACKEND": "local",
        "UPLOAD_DIR": str(tmp_path / "uploads"),
        "RATELIMIT_STORAGE_URI": "memory://",
        "AUTH_RATE_LIMIT": "1000 per minute",
        "API_RATE_LIMIT": "1000 per minute",
        "MESSAGE_RATE_LIMIT": "1000 per minute",
        "UPLOAD_RATE_LIMIT": "1000 per minute",
        "ADMIN_USERNAME": ADMIN_USERNAME,
        "ADMIN_PASSWORD": ADMIN_PASSWORD,
        "EMAIL_SENDER": None,
        "EMAIL_PASSWORD": None,
        "SENDGRID_API_KEY": None,
    }
    config.update(overrides)
    return config


@pytest.fixture
def make_app(tmp_path):
    def factory(**overrides):
        return create_app(make_config(tmp_path, **overrides))
    return factory


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def upload_root(app):
    return app.config["UPLOAD_DIR"]


def register(client, name="Jane Doe", email="jane@x.com", password=CLIENT_PASSWORD):
    return client.post("/auth/client/register", json={
        "name": name,
        "email": email,
        "password": password,
        "confirmPassword": password,
    })


@pytest.fixture
def registered(client):
    """A self-registered active client: its clientId, token and bearer headers."""
    body = register(client).get_json()["data"]
    return {
        "clientId": body["clientId"],
        "token": body["token"],
        "headers": {"Authorization": f"Bearer {body['token']}"},
        "email": body["email"],
    }


@pytest.fixture
def admin_headers(client):
    response = client.post("/auth/admin/login", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    client.delete_cookie("adminToken")
    return {"Authorization": f"Bearer {response.get_json()['data']['token']}"}


def create_client(app, client_id="CLT-1700000000000-ABC123", email="bob@acme.io", status="active",
                  password=CLIENT_PASSWORD, name="Bob Stone"):
    with app.app_context():
        tenant = Client(client_id=client_id, name=name, email=email, status=status)
        tenant.credentials.append(PlatformCredential(platform="account", username=email, password=password,
                                                     connection_status="connected"))
        db.session.add(tenant)
        db.session.commit()
    return client_id

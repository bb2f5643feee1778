"""
Pytest configuration and fixtures for backend tests.
"""

from datetime import timedelta

import mongomock
import pytest

from bakeshop.accounts import hash_password
from bakeshop.app import create_app
from bakeshop.errors import ConfigurationError
from bakeshop.payments import PAYMENTS_EXTENSION_KEY
from bakeshop.roles import Role
from bakeshop.store import utcnow

PASSWORD = "bakeshop-pass"


class FakeCheckout:
    """Stands in for the Stripe client; records sessions instead of calling out."""

    def __init__(self):
        self.configured = True
        self.created = []
        self.sessions = {}
        self.error = None

    def ensure_configured(self):
        if not self.configured:
            raise ConfigurationError("Stripe is not configured on server")

    def create_checkout_session(self, params, idempotency_key=None):
        self.ensure_configured()
        if self.error:
            raise self.error
        session_id = f"cs_test_{len(self.created) + 1}"
        self.created.append({"params": params, "idempotency_key": idempotency_key})
        return {"id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    def retrieve_checkout_session(self, session_id):
        if self.error:
            raise self.error
        return self.sessions.get(
            session_id, {"id": session_id, "status": "open", "payment_status": "unpaid"}
        )


@pytest.fixture
def database():
    """A fresh in-memory MongoDB database per test."""
    return mongomock.MongoClient().db


@pytest.fixture
def checkout():
    return FakeCheckout()


@pytest.fixture
def app(database, checkout, tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "APP_ENV": "test",
            "JWT_SECRET_KEY": "test-secret-key-with-enough-length",
            "JWT_ACCESS_TOKEN_EXPIRES": timedelta(days=7),
            "JWT_REFRESH_WINDOW_SECONDS": 24 * 60 * 60,
            "BCRYPT_ROUNDS": 4,
            "COOKIE_SECURE": False,
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
            "CORS_ORIGINS": ["http://localhost:5173"],
            "CLIENT_URL": "http://localhost:5173",
        },
        database=database,
    )
    app.extensions[PAYMENTS_EXTENSION_KEY] = checkout
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_account(app, database):
    """Insert an account directly and return its document."""

    def _make(username, role=Role.USER, email=None, password=PASSWORD):
        with app.app_context():
            hashed = hash_password(password)
        document = {
            "username": username,
            "email": email or f"{username}@bakeshop.test",
            "password": hashed,
            "role": Role(role).value,
            "created_at": utcnow(),
        }
        document["_id"] = database.users.insert_one(document).inserted_id
        return document

    return _make


@pytest.fixture
def customer(make_account):
    return make_account("carla")


@pytest.fixture
def admin(make_account):
    return make_account("adrian", Role.ADMIN)


@pytest.fixture
def owner(make_account):
    return make_account("olivia", Role.OWNER)


@pytest.fixture
def login(client):
    """Log ``account`` in on the shared test client; the session cookie is kept."""

    def _login(account, password=PASSWORD, account_type=None):
        if account_type is None:
            account_type = "user" if account["role"] == Role.USER.value else "admin"
        response = client.post(
            "/api/auth/login",
            json={
                "usernameOrEmail": account["username"],
                "password": password,
                "accountType": account_type,
            },
        )
        assert response.status_code == 200, response.get_json()
        return response

    return _login


@pytest.fixture
def category(database):
    document = {"name": "Breads", "created_at": utcnow()}
    document["_id"] = database.categories.insert_one(document).inserted_id
    return document


@pytest.fixture
def make_product(database, category):
    def _make(title="Sourdough loaf", price=6.5, **fields):
        document = {
            "title": title,
            "image": "https://cdn.bakeshop.test/sourdough.jpg",
            "description": "Naturally leavened, baked every morning.",
            "price": price,
            "preparation_time": 30,
            "category": category["_id"],
            "created_at": utcnow(),
        }
        document.update(fields)
        document["_id"] = database.products.insert_one(document).inserted_id
        return document

    return _make


@pytest.fixture
def product(make_product):
    return make_product()

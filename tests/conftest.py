import os
import sys
from datetime import datetime, timezone

import httpx
import pytest
from mongomock_motor import AsyncMongoMockClient

# Ensure project root is on sys.path so `import main` works
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# Must be set before config.py is imported
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("SESSION_USER_HEADER", "X-Auth-User")


@pytest.fixture
def mongo_db():
    """In-memory database, fresh for every test."""
    return AsyncMongoMockClient()["partyhall_test"]


@pytest.fixture
def expenses_collection(mongo_db):
    return mongo_db["expenses"]


@pytest.fixture
def bookings_collection(mongo_db):
    return mongo_db["bookings"]


@pytest.fixture
def client(expenses_collection, bookings_collection):
    """TestClient wired to the in-memory collections (lifespan is not run)."""
    from fastapi.testclient import TestClient

    from main import app
    from routes import get_bookings_collection, get_expenses_collection

    app.dependency_overrides[get_expenses_collection] = lambda: expenses_collection
    app.dependency_overrides[get_bookings_collection] = lambda: bookings_collection
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def expense_payload():
    return {
        "description": "Flowers for stage",
        "amount": 1500,
        "category": "decor",
        "date": "2024-01-01T00:00:00.000Z",
        "addedBy": "Alice",
    }


@pytest.fixture
def fixed_date():
    return datetime(2024, 3, 5, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def make_client():
    """Factory for AsyncClients whose requests are answered by `handler`."""
    def _make(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver")
    return _make

import os

os.environ["ENVIRONMENT"] = "test"
os.environ.pop("DATABASE_URL", None)

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from database import ensure_indexes  # noqa: E402
from main import Services, create_app  # noqa: E402
from notifications import Notifier  # noqa: E402
from security import create_token  # noqa: E402


class RecordingNotifier(Notifier):
    """Keeps every message instead of logging it."""

    def __init__(self):
        self.sent = []

    def send_email(self, to, subject, body):
        self.sent.append({"to": to, "subject": subject, "body": body})
        return {"success": True}


@pytest.fixture()
def db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def services(db, notifier):
    return Services(db, notifier)


@pytest.fixture()
def client(db, notifier):
    return TestClient(create_app(db, notifier))


@pytest.fixture()
def customer(services):
    return services.accounts.create_user("Alice Buyer", "Alice@Mailbox.org", "secret123")


@pytest.fixture()
def admin(services):
    return services.accounts.create_user("Store Admin", "admin@mailbox.org", "adminpass", role="admin")


@pytest.fixture()
def customer_headers(customer):
    return {"Authorization": f"Bearer {create_token(customer)}"}


@pytest.fixture()
def admin_headers(admin):
    return {"Authorization": f"Bearer {create_token(admin)}"}


def product_data(**overrides):
    data = {
        "name": "Trail Backpack",
        "description": "A 30 litre hiking pack",
        "category": "Sports & Outdoors",
        "price": 10.0,
        "stock": 5,
        "sku": "SPRT-PACK-001",
    }
    data.update(overrides)
    return data


@pytest.fixture()
def make_product(services):
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        overrides.setdefault("sku", f"SKU-{counter['n']:04d}")
        overrides.setdefault("name", f"Product {counter['n']}")
        return services.catalog.create_product(product_data(**overrides))

    return _make


SHIPPING_ADDRESS = {
    "street": "1 Market St",
    "city": "Springfield",
    "state": "IL",
    "zip_code": "62701",
    "country": "US",
}

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import utcnow
from main import create_app
from payments import TransactionNotFound
from settings import Settings

DB_NAME = "marketplace_test"
NOW = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    def __init__(self):
        self.transactions = {}
        self.closed = False

    def verify_transaction(self, reference):
        if reference not in self.transactions:
            raise TransactionNotFound("Transaction not found", 404)
        return self.transactions[reference]

    def close(self):
        self.closed = True


@pytest.fixture
def mongo():
    return mongomock.MongoClient()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def settings():
    return Settings(_env_file=None, database_url=None, database_name=DB_NAME, rate_limit_enabled=True)


@pytest.fixture
def client(settings, mongo, gateway, clock):
    app = create_app(settings=settings, client=mongo, payment_gateway=gateway, clock=clock)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db(client, mongo):
    return mongo[DB_NAME]


@pytest.fixture
def admin_headers():
    return {"X-Admin-Id": "admin-1", "X-Admin-Role": "admin"}


@pytest.fixture
def make_product(db):
    def factory(**fields):
        doc = {
            "_id": ObjectId(),
            "vendorId": "vendor-1",
            "vendorName": "Acme",
            "name": "Walnut Desk",
            "price": 100.0,
            "category": "furniture",
            "type": "physical",
            "stock": 10,
            "status": "active",
            "rating": 0,
            "reviewCount": 0,
            "ratingTotal": 0,
            "stats": {"views": 0, "sales": 0, "revenue": 0, "rating": 0, "reviewCount": 0},
            "createdAt": utcnow(),
        }
        doc.update(fields)
        db["products"].insert_one(doc)
        return str(doc["_id"])
    return factory


@pytest.fixture
def make_booking(db):
    def factory(**fields):
        doc = {
            "_id": ObjectId(),
            "orderId": "order-1",
            "serviceId": None,
            "serviceName": "Plumbing",
            "customerId": "customer-1",
            "customerName": "Ada",
            "vendorId": "vendor-1",
            "status": "pending_schedule",
            "rating": None,
            "messages": [],
            "createdAt": utcnow(),
        }
        doc.update(fields)
        db["serviceBookings"].insert_one(doc)
        return str(doc["_id"])
    return factory

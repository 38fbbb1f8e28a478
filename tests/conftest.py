import os

# Must be set before the app (and its settings) are imported
os.environ["ENV"] = "testing"
os.environ.setdefault("WOMPI_EVENTS_KEY", "test_events_key")
os.environ.setdefault("WOMPI_INTEGRITY_KEY", "test_integrity_key")

import pytest
from decimal import Decimal
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator

from main import app
from core.database import Base
from models import Customer, Delivery, Product, Transaction, Order
from services.wompi_gateway import GatewayResponse
from utils.deps import get_db
from utils.signatures import verify_event_signature

# SYNC SQLite for testing (matches sync service layer)
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False}
)

TestingSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

EVENTS_KEY = "test_events_key"


def transaction_response(gateway_id: str = "wompi-txn-1", status: str = "PENDING", **data) -> GatewayResponse:
    """A successful gateway answer carrying a transaction snapshot."""
    payload = {
        "id": gateway_id,
        "status": status,
        "reference": data.pop("reference", "ORDER-1-1000"),
        "amount_in_cents": data.pop("amount_in_cents", 6000000),
        "currency": "COP",
        "payment_method_type": "CARD",
    }
    payload.update(data)
    return GatewayResponse(success=True, data=payload)


class FakeGateway:
    """
    In-memory stand-in for WompiGateway.

    get_transaction replays `statuses` in order and keeps repeating the last
    one; set `charge_error` / `fetch_error` to an exception to simulate the
    gateway not answering.
    """

    def __init__(self):
        self.acceptance = {
            "acceptance_token": "acc_tok_1234567890",
            "permalink": "https://wompi.co/terms.pdf",
            "type": "END_USER_POLICY"
        }
        self.charge_response = transaction_response()
        self.statuses = [transaction_response()]
        self.charge_error = None
        self.fetch_error = None
        self.charges = []
        self.fetches = []

    async def get_acceptance_token(self):
        return self.acceptance

    async def create_transaction(self, charge):
        self.charges.append(charge)
        if self.charge_error is not None:
            raise self.charge_error
        return self.charge_response

    async def get_transaction(self, gateway_id):
        self.fetches.append(gateway_id)
        if self.fetch_error is not None:
            raise self.fetch_error
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    def validate_webhook_signature(self, payload, signature, timestamp):
        return verify_event_signature(payload, signature, timestamp, EVENTS_KEY)


@pytest.fixture
def session() -> Generator[Session, None, None]:
    """
    Creates a fresh, empty database for each test.
    Uses SYNC SQLAlchemy to match the service layer.
    """
    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Create session
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

    # Drop all tables (cleanup)
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
async def client(session: Session, gateway: FakeGateway):
    """
    Yields an HTTP client that interacts with the app using the test database
    and the fake gateway. The client is async (for FastAPI), but the DB
    session is sync.
    """
    # Override the get_db dependency to use our test session
    def override_get_db():
        try:
            yield session
        finally:
            pass  # Session cleanup handled by session fixture

    app.dependency_overrides[get_db] = override_get_db
    app.state.payment_gateway = gateway

    # Create async client for FastAPI
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    # Clean up
    app.dependency_overrides.clear()
    app.state.payment_gateway = None


@pytest.fixture
def products(session: Session):
    """Three products: 30000 COP (stock 10), 10000 COP (stock 5), 60000 COP (stock 1)."""
    items = [
        Product(name="Wireless Headphones", price=Decimal("30000.00"), stock=10),
        Product(name="Phone Case", price=Decimal("10000.00"), stock=5),
        Product(name="Smart Watch", price=Decimal("60000.00"), stock=1),
    ]
    session.add_all(items)
    session.commit()
    for product in items:
        session.refresh(product)
    return items


@pytest.fixture
def make_order(session: Session, products):
    """
    Builds a customer + pending delivery + order, optionally with a linked
    transaction. Returns the order.
    """
    counter = {"n": 0}

    def _make(items=None, transaction_status=None, gateway_id="wompi-txn-1",
              order_status="pending", with_delivery=True):
        counter["n"] += 1
        items = items or [{"product_id": products[0].id, "quantity": 2}]

        customer = Customer(email=f"buyer{counter['n']}@example.com", full_name="Test Buyer",
                            phone_number="+573001234567")
        session.add(customer)
        session.flush()

        delivery = None
        if with_delivery:
            delivery = Delivery(address_line_1="Calle 123 #45-67", city="Bogota",
                                region="Cundinamarca", country="CO", status="pending")
            session.add(delivery)
            session.flush()

        order = Order(
            reference=f"ORDER-1700000000-{1000 + counter['n']}",
            customer_id=customer.id,
            delivery_id=delivery.id if delivery else None,
            amount_in_cents=6000000,
            currency="COP",
            status=order_status,
            items=items
        )
        session.add(order)
        session.flush()

        if transaction_status is not None:
            transaction = Transaction(
                wompi_transaction_id=gateway_id,
                reference=order.reference,
                amount_in_cents=order.amount_in_cents,
                currency="COP",
                status=transaction_status,
                payment_method_type="CARD"
            )
            session.add(transaction)
            session.flush()
            order.transaction_id = transaction.id

        session.commit()
        session.refresh(order)
        return order

    return _make


@pytest.fixture
def other_session(session: Session) -> Generator[Session, None, None]:
    """A second connection to the same database, for concurrent writers."""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

# tests/conftest.py
"""
Pytest configuration and fixtures shared by the service and API tests.

The database URL is pinned before any educomm module is imported so the
engine in educomm.database points at a throwaway SQLite file.
"""

import json
import os
import tempfile
from decimal import Decimal

import pytest

_TEST_DB_DIR = tempfile.mkdtemp(prefix="educomm-tests-")
os.environ["DATABASE_URL"] = os.getenv(
    "TEST_DATABASE_URL", f"sqlite:///{os.path.join(_TEST_DB_DIR, 'educomm_test.db')}"
)
os.environ.setdefault("STRUCTURED_LOGS_ENABLED", "false")
os.environ.setdefault("JWT_SECRET", "educomm-test-signing-key-0123456789abcdef")

from educomm.database import Base, SessionLocal, engine  # noqa: E402
from educomm.models import Cart, CartItem, Course, Kit, User, UserRole  # noqa: E402
from educomm.observability.metrics import reset_metrics  # noqa: E402
from educomm.services.payment_gateway import (  # noqa: E402
    CheckoutSession,
    PaymentEvent,
    PaymentGatewayError,
    SessionNotFoundError,
    WebhookVerificationError,
    PaymentGateway,
)

VALID_SIGNATURE = "t=1,v1=test-signature"


class FakeGateway(PaymentGateway):
    """In-memory stand-in for Stripe Checkout."""

    def __init__(self):
        self.sessions = {}
        self.created = []
        self.fail_create = False
        self.broken_sessions = set()

    def add_session(self, session_id, user_id, payment_status="paid", amount_total=None,
                    shipping_address="12 Long Street, Pune", created=None):
        metadata = {}
        if user_id is not None:
            metadata["userId"] = str(user_id)
        if shipping_address is not None:
            metadata["shippingAddress"] = shipping_address
        session = CheckoutSession(
            id=session_id,
            payment_status=payment_status,
            amount_total=amount_total,
            metadata=metadata,
            url=f"https://checkout.example.test/{session_id}",
            created=created,
        )
        self.sessions[session_id] = session
        return session

    def create_checkout_session(self, *, line_items, metadata, success_url, cancel_url):
        if self.fail_create:
            raise PaymentGatewayError("gateway unavailable")
        session_id = f"cs_test_{len(self.created) + 1}"
        self.created.append({
            "line_items": line_items,
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
        })
        session = CheckoutSession(
            id=session_id,
            payment_status="unpaid",
            amount_total=sum(
                item["price_data"]["unit_amount"] * item["quantity"] for item in line_items
            ),
            metadata=dict(metadata),
            url=f"https://checkout.example.test/{session_id}",
        )
        self.sessions[session_id] = session
        return session

    def get_session(self, session_id):
        if session_id in self.broken_sessions:
            raise PaymentGatewayError("gateway timeout")
        if session_id not in self.sessions:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return self.sessions[session_id]

    def construct_event(self, payload, signature):
        if signature != VALID_SIGNATURE:
            raise WebhookVerificationError("Invalid signature")
        try:
            return PaymentEvent.from_payload(json.loads(payload))
        except ValueError as exc:
            raise WebhookVerificationError("Invalid payload") from exc


def completed_event_payload(session_id, user_id, amount_total=None, payment_status="paid",
                            shipping_address="12 Long Street, Pune"):
    metadata = {"userId": str(user_id)} if user_id is not None else {}
    if shipping_address is not None:
        metadata["shippingAddress"] = shipping_address
    return json.dumps({
        "id": f"evt_{session_id}",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_status": payment_status,
                "amount_total": amount_total,
                "metadata": metadata,
            }
        },
    })


def _delete_all_rows(session):
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()


@pytest.fixture(scope="session")
def test_db():
    """Create the schema once for the whole test session"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine, SessionLocal
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _reset_metrics():
    reset_metrics()
    yield


@pytest.fixture
def db_session(test_db):
    """Fresh session per test; every row is removed afterwards"""
    _, session_factory = test_db
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        _delete_all_rows(session)
        session.close()


@pytest.fixture
def sample_user(db_session):
    user = User(email="learner@example.com", first_name="Asha", last_name="Rao", role=UserRole.CUSTOMER)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def admin_user(db_session):
    user = User(email="admin@example.com", first_name="Ops", last_name="Admin", role=UserRole.ADMIN)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def sample_course(db_session):
    course = Course(name="Intro to Robotics", description="Hands-on robotics basics")
    db_session.add(course)
    db_session.commit()
    return course


@pytest.fixture
def sample_kits(db_session, sample_course):
    """Two kits for the same course plus one kit with no course"""
    kits = [
        Kit(course_id=sample_course.course_id, name="Robotics Starter Kit", sku="RB-1",
            price=Decimal("100.00"), stock_quantity=5),
        Kit(course_id=sample_course.course_id, name="Sensor Pack", sku="RB-2",
            price=Decimal("50.00"), stock_quantity=3),
        Kit(course_id=None, name="Soldering Iron", sku="TL-1",
            price=Decimal("25.50"), stock_quantity=10),
    ]
    db_session.add_all(kits)
    db_session.commit()
    return kits


@pytest.fixture
def fill_cart(db_session):
    """Put (kit, quantity) lines straight into a user's cart"""
    def _fill(user, lines):
        cart = db_session.query(Cart).filter_by(user_id=user.user_id).first()
        if cart is None:
            cart = Cart(user_id=user.user_id)
            db_session.add(cart)
            db_session.flush()
        for kit, quantity in lines:
            db_session.add(CartItem(cart_id=cart.cart_id, kit_id=kit.kit_id, quantity=quantity))
        db_session.commit()
        return cart
    return _fill


@pytest.fixture
def fake_gateway():
    return FakeGateway()

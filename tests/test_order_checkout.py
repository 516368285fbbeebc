"""
Direct checkout: cart -> Pending order with price snapshot, stock decrement,
course enrollment and cart clear, all in one transaction.
"""
from decimal import Decimal

import pytest
from sqlalchemy import update

from educomm.database import SessionLocal
from educomm.models import CartItem, Enrollment, Kit, Order, OrderStatus, User, UserRole
from educomm.observability.metrics import get_counter_value
from educomm.services.cart_service import CartService
from educomm.services.inventory_service import InventoryService
from educomm.services.order_service import OrderService
from educomm.services.results import CartConsumedError, OutcomeKind

ADDRESS = "221B Baker Street, Pune 411001"


def _stock(db_session, kit):
    db_session.expire_all()
    return db_session.get(Kit, kit.kit_id).stock_quantity


def _cart_lines(db_session):
    return db_session.query(CartItem).count()


class _FailingEnrollmentService:
    def enroll_for_courses(self, user_id, course_ids):
        raise RuntimeError("enrollment store unavailable")


def test_checkout_creates_pending_order(db_session, sample_user, sample_kits, fill_cart):
    starter, _, iron = sample_kits
    fill_cart(sample_user, [(starter, 2), (iron, 1)])

    result = OrderService(db_session).checkout(sample_user.user_id, ADDRESS)

    assert result.kind == OutcomeKind.COMPLETED
    order = result.order
    assert order.status == OrderStatus.PENDING
    assert order.total_amount == Decimal("225.50")
    assert order.shipping_address == ADDRESS
    assert order.payment_session_id is None
    assert sorted((item.kit_id, item.quantity, item.price_at_purchase) for item in order.items) == sorted([
        (starter.kit_id, 2, Decimal("100.00")),
        (iron.kit_id, 1, Decimal("25.50")),
    ])

    assert _stock(db_session, starter) == 3
    assert _stock(db_session, iron) == 9
    assert _cart_lines(db_session) == 0
    assert db_session.query(Enrollment).filter_by(user_id=sample_user.user_id).count() == 1
    assert get_counter_value("orders_accepted_total", {"source": "checkout"}) == 1


def test_kits_of_same_course_enroll_once(db_session, sample_user, sample_course, sample_kits, fill_cart):
    starter, sensors, _ = sample_kits
    fill_cart(sample_user, [(starter, 1), (sensors, 1)])

    OrderService(db_session).checkout(sample_user.user_id, ADDRESS)

    enrollments = db_session.query(Enrollment).filter_by(user_id=sample_user.user_id).all()
    assert [e.course_id for e in enrollments] == [sample_course.course_id]


def test_existing_enrollment_is_not_duplicated(db_session, sample_user, sample_course, sample_kits, fill_cart):
    db_session.add(Enrollment(user_id=sample_user.user_id, course_id=sample_course.course_id))
    db_session.commit()
    fill_cart(sample_user, [(sample_kits[0], 1)])

    result = OrderService(db_session).checkout(sample_user.user_id, ADDRESS)

    assert result.kind == OutcomeKind.COMPLETED
    assert db_session.query(Enrollment).filter_by(user_id=sample_user.user_id).count() == 1


def test_kit_without_course_creates_no_enrollment(db_session, sample_user, sample_kits, fill_cart):
    fill_cart(sample_user, [(sample_kits[2], 1)])

    result = OrderService(db_session).checkout(sample_user.user_id, ADDRESS)

    assert result.kind == OutcomeKind.COMPLETED
    assert db_session.query(Enrollment).count() == 0


def test_order_keeps_price_at_purchase(db_session, sample_user, sample_kits, fill_cart):
    starter = sample_kits[0]
    fill_cart(sample_user, [(starter, 1)])
    order_id = OrderService(db_session).checkout(sample_user.user_id, ADDRESS).order.order_id

    db_session.get(Kit, starter.kit_id).price = Decimal("150.00")
    db_session.commit()

    order = db_session.get(Order, order_id)
    assert order.items[0].price_at_purchase == Decimal("100.00")
    assert order.total_amount == Decimal("100.00")


def test_insufficient_stock_leaves_everything_untouched(db_session, sample_user, sample_kits, fill_cart):
    starter, _, iron = sample_kits
    fill_cart(sample_user, [(starter, 6), (iron, 1)])

    result = OrderService(db_session).checkout(sample_user.user_id, ADDRESS)

    assert result.kind == OutcomeKind.INSUFFICIENT_STOCK
    assert "Not enough stock for Robotics Starter Kit" in result.message
    assert _stock(db_session, starter) == 5
    assert _stock(db_session, iron) == 10
    assert db_session.query(Order).count() == 0
    assert _cart_lines(db_session) == 2
    assert db_session.query(Enrollment).count() == 0


def test_empty_cart_is_rejected(db_session, sample_user):
    result = OrderService(db_session).checkout(sample_user.user_id, ADDRESS)

    assert result.kind == OutcomeKind.EMPTY_CART
    assert result.message == "Cart is empty."


@pytest.mark.parametrize(
    "address, message",
    [
        (None, "Shipping address is required."),
        ("   ", "Shipping address is required."),
        ("Pune", "Please enter a complete delivery address."),
    ],
)
def test_shipping_address_is_validated(db_session, sample_user, sample_kits, fill_cart, address, message):
    fill_cart(sample_user, [(sample_kits[0], 1)])

    result = OrderService(db_session).checkout(sample_user.user_id, address)

    assert result.kind == OutcomeKind.INVALID_REQUEST
    assert result.message == message
    assert _cart_lines(db_session) == 1


def test_failure_mid_checkout_rolls_back_all_effects(db_session, sample_user, sample_kits, fill_cart):
    starter, sensors, _ = sample_kits
    fill_cart(sample_user, [(starter, 1), (sensors, 2)])
    service = OrderService(db_session, enrollment_service=_FailingEnrollmentService())

    with pytest.raises(RuntimeError):
        service.checkout(sample_user.user_id, ADDRESS)

    assert _stock(db_session, starter) == 5
    assert _stock(db_session, sensors) == 3
    assert db_session.query(Order).count() == 0
    assert _cart_lines(db_session) == 2


def test_conditional_decrement_blocks_oversell(db_session, sample_user, sample_kits, fill_cart, monkeypatch):
    starter = sample_kits[0]
    fill_cart(sample_user, [(starter, 2)])
    # Another buyer drains the stock after the pre-check would have passed
    monkeypatch.setattr(InventoryService, "find_shortages", lambda self, items: [])
    db_session.execute(update(Kit).where(Kit.kit_id == starter.kit_id).values(stock_quantity=1))
    db_session.commit()

    result = OrderService(db_session).checkout(sample_user.user_id, ADDRESS)

    assert result.kind == OutcomeKind.INSUFFICIENT_STOCK
    assert "available 1" in result.message
    assert _stock(db_session, starter) == 1
    assert db_session.query(Order).count() == 0
    assert get_counter_value("stock_reservations_rejected_total", {"reason": "checkout"}) == 1


def test_last_unit_is_sold_once(db_session, sample_user, sample_kits, fill_cart):
    starter = sample_kits[0]
    db_session.execute(update(Kit).where(Kit.kit_id == starter.kit_id).values(stock_quantity=1))
    second_buyer = User(email="second@example.com", role=UserRole.CUSTOMER)
    db_session.add(second_buyer)
    db_session.commit()
    fill_cart(sample_user, [(starter, 1)])
    fill_cart(second_buyer, [(starter, 1)])
    service = OrderService(db_session)

    first = service.checkout(sample_user.user_id, ADDRESS)
    second = service.checkout(second_buyer.user_id, ADDRESS)

    assert first.kind == OutcomeKind.COMPLETED
    assert second.kind == OutcomeKind.INSUFFICIENT_STOCK
    assert _stock(db_session, starter) == 0
    assert db_session.query(Order).count() == 1


def test_list_user_orders_newest_first(db_session, sample_user, sample_kits, fill_cart):
    service = OrderService(db_session)
    fill_cart(sample_user, [(sample_kits[0], 1)])
    first_id = service.checkout(sample_user.user_id, ADDRESS).order.order_id
    fill_cart(sample_user, [(sample_kits[2], 1)])
    second_id = service.checkout(sample_user.user_id, ADDRESS).order.order_id

    orders = service.list_user_orders(sample_user.user_id)

    assert [o.order_id for o in orders] == [second_id, first_id]


def test_stale_cart_read_cannot_place_second_order(db_session, sample_user, sample_kits, fill_cart):
    iron = sample_kits[2]
    fill_cart(sample_user, [(iron, 2)])
    user_id = sample_user.user_id

    # A double-clicked request loaded the same cart before the first one committed
    stale_db = SessionLocal()
    stale_cart = CartService(stale_db).get_cart(user_id)
    stale_db.close()

    first = OrderService(db_session).checkout(user_id, ADDRESS)
    assert first.kind == OutcomeKind.COMPLETED
    db_session.commit()

    second_db = SessionLocal()
    try:
        with pytest.raises(CartConsumedError):
            OrderService(second_db).fulfil_cart(
                stale_cart,
                user_id=user_id,
                shipping_address=ADDRESS,
                status=OrderStatus.PENDING,
            )
    finally:
        second_db.rollback()
        second_db.close()

    assert db_session.query(Order).count() == 1
    assert _stock(db_session, iron) == 8


def test_checkout_losing_cart_race_reports_empty_cart(db_session, sample_user, sample_kits, fill_cart, monkeypatch):
    starter = sample_kits[0]
    fill_cart(sample_user, [(starter, 1)])
    # Another transaction deleted the lines between our read and our delete
    monkeypatch.setattr(CartService, "consume_lines", lambda self, cart, items: 0)

    result = OrderService(db_session).checkout(sample_user.user_id, ADDRESS)

    assert result.kind == OutcomeKind.EMPTY_CART
    assert result.message == "Cart is empty."
    assert _stock(db_session, starter) == 5
    assert db_session.query(Order).count() == 0
    assert db_session.query(Enrollment).count() == 0


@pytest.mark.parametrize("address", [12345678901, ["221B Baker Street"], {"line1": "221B Baker Street"}])
def test_non_text_shipping_address_is_rejected(db_session, sample_user, sample_kits, fill_cart, address):
    fill_cart(sample_user, [(sample_kits[0], 1)])

    result = OrderService(db_session).checkout(sample_user.user_id, address)

    assert result.kind == OutcomeKind.INVALID_REQUEST
    assert result.message == "Shipping address must be text."
    assert _cart_lines(db_session) == 1

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session, joinedload

from educomm.config import Config
from educomm.models import Cart, Order, OrderItem, OrderStatus
from educomm.observability import increment_counter, observe_latency, record_event
from educomm.services.cart_service import CartService
from educomm.services.enrollment_service import EnrollmentService
from educomm.services.inventory_service import InventoryService
from educomm.services.results import CartConsumedError, InsufficientStockError, OutcomeKind, ServiceResult


class OrderService:
    """Turns a user's cart into an order: price snapshot, stock, enrollments, cart clear."""

    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        cart_service: Optional[CartService] = None,
        inventory_service: Optional[InventoryService] = None,
        enrollment_service: Optional[EnrollmentService] = None,
    ) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)
        self.config = config
        self.cart_service = cart_service or CartService(db_session)
        self.inventory_service = inventory_service or InventoryService(db_session)
        self.enrollment_service = enrollment_service or EnrollmentService(db_session)

    # ------------------------------------------------------------------
    # Direct checkout
    # ------------------------------------------------------------------
    def checkout(self, user_id: int, shipping_address: Optional[str]) -> ServiceResult:
        """
        Convert the user's cart into a Pending order in one transaction.
        Nothing is written unless every line can be fulfilled.
        """
        started = time.perf_counter()

        address_error = self.validate_shipping_address(shipping_address)
        if address_error:
            return ServiceResult.failure(OutcomeKind.INVALID_REQUEST, address_error)

        cart = self.cart_service.get_cart(user_id)
        if not cart or cart.is_empty:
            return ServiceResult.failure(OutcomeKind.EMPTY_CART, "Cart is empty.")

        increment_counter("orders_submitted_total", labels={"source": "checkout"})
        try:
            order = self.fulfil_cart(
                cart,
                user_id=user_id,
                shipping_address=shipping_address.strip(),
                status=OrderStatus.PENDING,
                reason="checkout",
            )
            self.db.commit()
        except InsufficientStockError as exc:
            self.db.rollback()
            increment_counter("orders_rejected_total", labels={"reason": "insufficient_stock"})
            self.logger.info("Checkout rejected for user %d: %s", user_id, exc)
            return ServiceResult.failure(OutcomeKind.INSUFFICIENT_STOCK, " ".join(exc.messages))
        except CartConsumedError:
            self.db.rollback()
            increment_counter("orders_rejected_total", labels={"reason": "cart_consumed"})
            self.logger.info("Checkout for user %d lost the race for its cart", user_id)
            return ServiceResult.failure(OutcomeKind.EMPTY_CART, "Cart is empty.")
        except Exception:
            self.db.rollback()
            increment_counter("orders_failed_total", labels={"source": "checkout"})
            self.logger.exception("Checkout failed for user %d", user_id)
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        increment_counter("orders_accepted_total", labels={"source": "checkout"})
        observe_latency("order_processing_latency_ms", duration_ms, labels={"source": "checkout"})
        record_event(
            "order_completed",
            {
                "order_id": order.order_id,
                "user_id": user_id,
                "amount": float(order.total_amount),
                "latency_ms": duration_ms,
            },
        )
        self.logger.info(
            "Order %d created for user %d",
            order.order_id,
            user_id,
            extra={"amount": float(order.total_amount)},
        )
        return ServiceResult.completed("Order created.", order=order)

    def validate_shipping_address(self, shipping_address: Optional[str]) -> Optional[str]:
        if shipping_address is not None and not isinstance(shipping_address, str):
            return "Shipping address must be text."
        if shipping_address is None or not shipping_address.strip():
            return "Shipping address is required."
        if len(shipping_address.strip()) < self.config.MIN_SHIPPING_ADDRESS_LENGTH:
            return "Please enter a complete delivery address."
        return None

    # ------------------------------------------------------------------
    # Shared by checkout and payment reconciliation
    # ------------------------------------------------------------------
    def fulfil_cart(
        self,
        cart: Cart,
        *,
        user_id: int,
        shipping_address: str,
        status: OrderStatus,
        total_amount: Optional[Decimal] = None,
        payment_session_id: Optional[str] = None,
        order_date: Optional[datetime] = None,
        reason: str = "checkout",
    ) -> Order:
        """
        Apply the cart-to-order effect inside the caller's transaction.
        The caller commits on success and rolls back on any exception.

        Raises InsufficientStockError when a line cannot be covered and
        CartConsumedError when another transaction already turned these
        lines into an order.
        """
        cart_items = list(cart.items)
        shortages = self.inventory_service.find_shortages(cart_items)
        if shortages:
            raise InsufficientStockError(shortages)

        cart_total = cart.total()
        if total_amount is None:
            total_amount = cart_total
        elif total_amount != cart_total:
            self.logger.warning(
                "Amount paid %s differs from cart total %s for user %d",
                total_amount,
                cart_total,
                user_id,
                extra={"payment_session_id": payment_session_id},
            )

        order = Order(
            user_id=user_id,
            order_date=order_date or datetime.now(timezone.utc),
            total_amount=total_amount,
            status=status,
            shipping_address=shipping_address,
            payment_session_id=payment_session_id,
        )
        course_ids = []
        for item in cart_items:
            order.items.append(
                OrderItem(
                    kit_id=item.kit_id,
                    quantity=item.quantity,
                    price_at_purchase=item.kit.price,
                )
            )
            course_ids.append(item.kit.course_id)

        self.inventory_service.reserve_cart(cart_items, reason=reason)

        self.db.add(order)
        self.db.flush()

        self.enrollment_service.enroll_for_courses(user_id, course_ids)
        removed = self.cart_service.consume_lines(cart, cart_items)
        if removed != len(cart_items):
            raise CartConsumedError(
                f"Expected to consume {len(cart_items)} cart line(s) for user {user_id}, removed {removed}"
            )
        return order

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_user_orders(self, user_id: int) -> List[Order]:
        return (
            self.db.query(Order)
            .options(joinedload(Order.items).joinedload(OrderItem.kit))
            .filter_by(user_id=user_id)
            .order_by(desc(Order.order_date), desc(Order.order_id))
            .all()
        )

    def find_by_payment_session(self, payment_session_id: str) -> Optional[Order]:
        return (
            self.db.query(Order)
            .filter_by(payment_session_id=payment_session_id)
            .first()
        )

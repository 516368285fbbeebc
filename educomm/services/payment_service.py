"""
Payment Service

Hosted checkout sessions and reconciliation of gateway-confirmed payments
into orders. Reconciliation is keyed on the external checkout session id, so
replayed or concurrent deliveries of the same payment create one order.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from educomm.config import Config
from educomm.models import OrderStatus, User
from educomm.observability import increment_counter, record_event
from educomm.services.order_service import OrderService
from educomm.services.payment_gateway import (
    CHECKOUT_COMPLETED_EVENT,
    CheckoutSession,
    PaymentGateway,
    PaymentGatewayError,
    SessionNotFoundError,
    StripeGateway,
    WebhookVerificationError,
    to_minor_units,
)
from educomm.services.results import CartConsumedError, InsufficientStockError, OutcomeKind, ServiceResult


class PaymentService:
    """Coordinates the payment gateway with order fulfilment."""

    def __init__(
        self,
        db_session: Session,
        gateway: Optional[PaymentGateway] = None,
        config: type[Config] = Config,
        order_service: Optional[OrderService] = None,
    ) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)
        self.config = config
        self.gateway = gateway or StripeGateway()
        self.order_service = order_service or OrderService(db_session, config=config)
        self.cart_service = self.order_service.cart_service

    # ------------------------------------------------------------------
    # Hosted checkout
    # ------------------------------------------------------------------
    def create_checkout_session(self, user_id: int, shipping_address: Optional[str] = None) -> ServiceResult:
        if shipping_address is not None and not isinstance(shipping_address, str):
            return ServiceResult.failure(OutcomeKind.INVALID_REQUEST, "Shipping address must be text.")

        cart = self.cart_service.get_cart(user_id)
        if not cart or cart.is_empty:
            return ServiceResult.failure(OutcomeKind.EMPTY_CART, "Cart is empty.")

        shortages = self.order_service.inventory_service.find_shortages(cart.items)
        if shortages:
            return ServiceResult.failure(OutcomeKind.INSUFFICIENT_STOCK, " ".join(shortages))

        line_items = [self._line_item(item) for item in cart.items]
        metadata = {
            "userId": str(user_id),
            "shippingAddress": (shipping_address or "").strip() or self.config.DEFAULT_SHIPPING_ADDRESS,
        }
        try:
            session = self.gateway.create_checkout_session(
                line_items=line_items,
                metadata=metadata,
                success_url=self.config.PAYMENT_SUCCESS_URL,
                cancel_url=self.config.PAYMENT_CANCEL_URL,
            )
        except PaymentGatewayError:
            increment_counter("payment_gateway_errors_total", labels={"operation": "create_session"})
            self.logger.exception("Failed to create checkout session for user %d", user_id)
            return ServiceResult.failure(OutcomeKind.GATEWAY_ERROR, "Failed to create checkout session")

        self.logger.info(
            "Checkout session %s created for user %d with %d line item(s)",
            session.id,
            user_id,
            len(line_items),
        )
        return ServiceResult.completed(
            "Checkout session created.",
            sessionId=session.id,
            sessionUrl=session.url,
        )

    def _line_item(self, cart_item) -> Dict[str, Any]:
        product_data = {"name": cart_item.kit.name}
        if cart_item.kit.description:
            product_data["description"] = cart_item.kit.description
        return {
            "price_data": {
                "currency": self.config.PAYMENT_CURRENCY,
                "unit_amount": to_minor_units(cart_item.kit.price),
                "product_data": product_data,
            },
            "quantity": cart_item.quantity,
        }

    # ------------------------------------------------------------------
    # Client polling
    # ------------------------------------------------------------------
    def verify_session(self, session_id: str) -> ServiceResult:
        """
        Report the gateway's view of a checkout session.
        Read-only unless VERIFY_SESSION_RECONCILES is enabled, in which case a
        paid session is also reconciled (recovering a webhook that never arrived).
        """
        if not session_id:
            return ServiceResult.failure(OutcomeKind.INVALID_REQUEST, "sessionId is required.")
        try:
            session = self.gateway.get_session(session_id)
        except SessionNotFoundError:
            return ServiceResult.failure(OutcomeKind.SESSION_NOT_FOUND, "Session not found.")
        except PaymentGatewayError:
            increment_counter("payment_gateway_errors_total", labels={"operation": "verify_session"})
            self.logger.exception("Failed to verify session %s", session_id)
            return ServiceResult.failure(OutcomeKind.GATEWAY_ERROR, "Failed to verify session")

        if not session.is_paid:
            return ServiceResult(
                OutcomeKind.NOT_COMPLETED,
                "Payment not completed.",
                data={"success": False, "paymentStatus": session.payment_status},
            )

        user_id = self._resolve_user_id(session)
        if user_id is None:
            return ServiceResult.failure(
                OutcomeKind.MISSING_USER_ID, "User ID not found in session metadata."
            )

        data: Dict[str, Any] = {
            "success": True,
            "userId": user_id,
            "paymentStatus": session.payment_status,
            "amountTotal": float(session.amount_paid) if session.amount_paid is not None else None,
        }
        if self.config.VERIFY_SESSION_RECONCILES:
            outcome = self.reconcile(session)
            data["reconciliation"] = outcome.kind.value
            order = outcome.order
        else:
            order = self.order_service.find_by_payment_session(session.id)
        data["orderId"] = order.order_id if order else None
        return ServiceResult(OutcomeKind.COMPLETED, "Payment completed.", order, data)

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------
    def handle_webhook(self, payload: bytes, signature: Optional[str]) -> ServiceResult:
        try:
            event = self.gateway.construct_event(payload, signature)
        except WebhookVerificationError as exc:
            increment_counter("payment_webhooks_total", labels={"outcome": "rejected"})
            self.logger.warning("Rejected webhook delivery: %s", exc)
            return ServiceResult.failure(OutcomeKind.INVALID_REQUEST, str(exc))

        self.logger.info("Received payment event %s", event.type)
        if event.type != CHECKOUT_COMPLETED_EVENT or event.session is None:
            increment_counter("payment_webhooks_total", labels={"outcome": "ignored"})
            return ServiceResult(OutcomeKind.NOT_COMPLETED, f"Ignored event {event.type or 'unknown'}.")

        result = self.reconcile(event.session)
        increment_counter("payment_webhooks_total", labels={"outcome": result.kind.value})
        return result

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    def reconcile(self, session: CheckoutSession, backfill: bool = False) -> ServiceResult:
        """
        Ensure exactly one order exists for a paid checkout session.
        With ``backfill`` the order is dated with the session creation time.

        Steps: payment status -> user id -> already processed -> cart -> fulfil.
        """
        if not session.is_paid:
            return ServiceResult(
                OutcomeKind.NOT_COMPLETED,
                f"Payment not completed: {session.payment_status}",
            )

        user_id = self._resolve_user_id(session)
        if user_id is None:
            self.logger.warning("Paid session %s has no resolvable userId", session.id)
            return ServiceResult.failure(OutcomeKind.MISSING_USER_ID, "userId not found in metadata")

        if not session.id:
            return ServiceResult.failure(OutcomeKind.INVALID_REQUEST, "Session id missing from payment event")

        existing = self.order_service.find_by_payment_session(session.id)
        if existing:
            self.logger.info(
                "Session %s already reconciled as order %d", session.id, existing.order_id
            )
            return ServiceResult(OutcomeKind.ALREADY_PROCESSED, "Order already exists", existing)

        cart = self.cart_service.get_cart(user_id)
        if not cart or cart.is_empty:
            self.logger.error(
                "Paid session %s for user %d has no cart to fulfil", session.id, user_id
            )
            return ServiceResult.failure(OutcomeKind.EMPTY_CART, "Cart is empty")

        shipping_address = (
            session.metadata.get("shippingAddress") or self.config.DEFAULT_SHIPPING_ADDRESS
        )
        try:
            order = self.order_service.fulfil_cart(
                cart,
                user_id=user_id,
                shipping_address=shipping_address,
                status=OrderStatus.CONFIRMED,
                total_amount=session.amount_paid,
                payment_session_id=session.id,
                order_date=session.created if backfill else None,
                reason="payment",
            )
            self.db.commit()
        except InsufficientStockError as exc:
            self.db.rollback()
            self.logger.error(
                "Paid session %s cannot be fulfilled: %s", session.id, exc
            )
            return ServiceResult.failure(OutcomeKind.INSUFFICIENT_STOCK, " ".join(exc.messages))
        except CartConsumedError:
            self.db.rollback()
            self.logger.error(
                "Cart for paid session %s was consumed by a concurrent order", session.id
            )
            return ServiceResult.failure(OutcomeKind.EMPTY_CART, "Cart is empty")
        except IntegrityError:
            self.db.rollback()
            # A concurrent delivery of the same session committed first
            existing = self.order_service.find_by_payment_session(session.id)
            if existing:
                return ServiceResult(OutcomeKind.ALREADY_PROCESSED, "Order already exists", existing)
            self.logger.exception("Integrity error while reconciling session %s", session.id)
            return ServiceResult.failure(OutcomeKind.PROCESSING_ERROR, "Failed to process payment")
        except Exception:
            self.db.rollback()
            self.logger.exception("Error while reconciling session %s", session.id)
            return ServiceResult.failure(OutcomeKind.PROCESSING_ERROR, "Failed to process payment")

        increment_counter("orders_accepted_total", labels={"source": "payment"})
        record_event(
            "payment_reconciled",
            {
                "order_id": order.order_id,
                "user_id": user_id,
                "session_id": session.id,
                "amount": float(order.total_amount),
            },
        )
        self.logger.info(
            "Order %d created from session %s for user %d",
            order.order_id,
            session.id,
            user_id,
        )
        return ServiceResult.completed("Order created.", order=order)

    def sync_historical_payments(self, session_ids: Iterable[str]) -> ServiceResult:
        """Reconcile a batch of sessions independently and summarise the outcomes."""
        session_ids = [str(sid).strip() for sid in (session_ids or []) if str(sid).strip()]
        if not session_ids:
            return ServiceResult.failure(
                OutcomeKind.INVALID_REQUEST,
                "Please provide a list of Stripe session IDs to sync.",
            )

        results: List[Dict[str, Any]] = []
        success_count = skipped_count = error_count = 0
        for session_id in session_ids:
            entry: Dict[str, Any] = {"sessionId": session_id}
            try:
                session = self.gateway.get_session(session_id)
                outcome = self.reconcile(session, backfill=True)
            except SessionNotFoundError:
                entry.update(status="error", message="Session not found in Stripe")
                error_count += 1
            except Exception as exc:
                self.db.rollback()
                self.logger.exception("Sync failed for session %s", session_id)
                entry.update(status="error", message=str(exc) or exc.__class__.__name__)
                error_count += 1
            else:
                if outcome.kind == OutcomeKind.COMPLETED:
                    entry.update(status="success", message=outcome.message)
                    success_count += 1
                elif outcome.ok:
                    entry.update(status="skipped", message=outcome.message)
                    skipped_count += 1
                else:
                    entry.update(status="error", message=outcome.message)
                    error_count += 1
                if outcome.order is not None:
                    entry["orderId"] = outcome.order.order_id
            results.append(entry)

        self.logger.info(
            "Historical payment sync finished",
            extra={
                "total": len(session_ids),
                "success": success_count,
                "skipped": skipped_count,
                "errors": error_count,
            },
        )
        return ServiceResult.completed(
            "Sync finished.",
            totalProcessed=len(session_ids),
            successCount=success_count,
            skippedCount=skipped_count,
            errorCount=error_count,
            results=results,
        )

    def _resolve_user_id(self, session: CheckoutSession) -> Optional[int]:
        raw = (session.metadata or {}).get("userId")
        try:
            user_id = int(str(raw).strip()) if raw is not None else None
        except ValueError:
            return None
        if user_id is None or self.db.get(User, user_id) is None:
            return None
        return user_id

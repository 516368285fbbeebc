from __future__ import annotations

from typing import Any, Dict

from flask import current_app

from educomm.models import Order
from educomm.services.payment_gateway import PaymentGateway, StripeGateway
from educomm.services.results import OutcomeKind

GATEWAY_EXTENSION_KEY = "payment_gateway"

STATUS_CODES = {
    OutcomeKind.COMPLETED: 200,
    OutcomeKind.NOT_COMPLETED: 200,
    OutcomeKind.ALREADY_PROCESSED: 200,
    OutcomeKind.EMPTY_CART: 400,
    OutcomeKind.INSUFFICIENT_STOCK: 400,
    OutcomeKind.MISSING_USER_ID: 400,
    OutcomeKind.INVALID_REQUEST: 400,
    OutcomeKind.KIT_NOT_FOUND: 404,
    OutcomeKind.CART_ITEM_NOT_FOUND: 404,
    OutcomeKind.SESSION_NOT_FOUND: 404,
    OutcomeKind.GATEWAY_ERROR: 500,
    OutcomeKind.PROCESSING_ERROR: 500,
}


def status_for(kind: OutcomeKind) -> int:
    return STATUS_CODES.get(kind, 500)


def get_payment_gateway() -> PaymentGateway:
    gateway = current_app.extensions.get(GATEWAY_EXTENSION_KEY)
    if gateway is None:
        gateway = StripeGateway()
        current_app.extensions[GATEWAY_EXTENSION_KEY] = gateway
    return gateway


def serialize_order(order: Order) -> Dict[str, Any]:
    return {
        "orderId": order.order_id,
        "userId": order.user_id,
        "orderDate": order.order_date.isoformat() if order.order_date else None,
        "totalAmount": float(order.total_amount),
        "status": order.status.value if hasattr(order.status, "value") else order.status,
        "shippingAddress": order.shipping_address,
        "paymentSessionId": order.payment_session_id,
        "orderItems": [
            {
                "orderItemId": item.order_item_id,
                "kitId": item.kit_id,
                "kitName": item.kit.name if item.kit else None,
                "quantity": item.quantity,
                "priceAtPurchase": float(item.price_at_purchase),
            }
            for item in order.items
        ],
    }

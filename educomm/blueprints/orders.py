from __future__ import annotations

import logging
from typing import Optional

from flask import Blueprint, g, jsonify, request

from educomm.auth import require_user
from educomm.database import get_db
from educomm.services.order_service import OrderService
from educomm.blueprints.common import serialize_order, status_for

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

logger = logging.getLogger(__name__)


def _shipping_address_from_request() -> Optional[str]:
    # Accepts either a bare JSON string or {"shippingAddress": "..."}
    payload = request.get_json(silent=True)
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        return payload.get("shippingAddress")
    return None


@orders_bp.route("/checkout", methods=["POST"])
@require_user
def checkout():
    db = get_db()
    try:
        result = OrderService(db).checkout(g.current_user_id, _shipping_address_from_request())
    except Exception:
        db.rollback()
        logger.exception("Checkout error")
        return jsonify({"error": "Checkout failed. Please try again."}), 500

    if not result.ok:
        return result.message, status_for(result.kind)
    return jsonify(serialize_order(result.order))


@orders_bp.route("", methods=["GET"])
@require_user
def list_orders():
    orders = OrderService(get_db()).list_user_orders(g.current_user_id)
    return jsonify([serialize_order(order) for order in orders])

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from educomm.auth import require_user
from educomm.database import get_db
from educomm.services.cart_service import CartService
from educomm.blueprints.common import status_for

carts_bp = Blueprint("carts", __name__, url_prefix="/api/carts")


def _get_cart_service() -> CartService:
    return CartService(get_db())


@carts_bp.route("", methods=["GET"])
@require_user
def get_cart():
    return jsonify(_get_cart_service().cart_view(g.current_user_id))


@carts_bp.route("/items", methods=["POST"])
@require_user
def add_to_cart():
    payload = request.get_json(silent=True) or {}
    try:
        kit_id = int(payload.get("kitId"))
        quantity = int(payload.get("quantity", 1))
    except (TypeError, ValueError):
        return jsonify({"error": "kitId and quantity must be integers."}), 400

    result = _get_cart_service().add_item(g.current_user_id, kit_id, quantity)
    if not result.ok:
        return jsonify({"error": result.message}), status_for(result.kind)
    return jsonify({"message": result.message, "cart": result.data["cart"]})


@carts_bp.route("/items/<int:cart_item_id>", methods=["DELETE"])
@require_user
def remove_cart_item(cart_item_id: int):
    result = _get_cart_service().remove_item(g.current_user_id, cart_item_id)
    if not result.ok:
        return jsonify({"error": result.message}), status_for(result.kind)
    return jsonify({"message": result.message, "cart": result.data["cart"]})


@carts_bp.route("", methods=["DELETE"])
@require_user
def clear_cart():
    db = get_db()
    removed = CartService(db).clear(g.current_user_id)
    db.commit()
    if not removed:
        return jsonify({"error": "Cart is already empty."}), 404
    return jsonify({"message": "Cart emptied.", "removed": removed})

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from educomm.auth import require_user
from educomm.database import get_db
from educomm.services.payment_service import PaymentService
from educomm.services.results import OutcomeKind
from educomm.blueprints.common import get_payment_gateway, serialize_order, status_for

payment_bp = Blueprint("payment", __name__, url_prefix="/api/payment")


def _get_payment_service() -> PaymentService:
    return PaymentService(get_db(), gateway=get_payment_gateway())


@payment_bp.route("/create-checkout-session", methods=["POST"])
@require_user
def create_checkout_session():
    payload = request.get_json(silent=True) or {}
    shipping_address = payload.get("shippingAddress") if isinstance(payload, dict) else None
    result = _get_payment_service().create_checkout_session(g.current_user_id, shipping_address)
    if not result.ok:
        if result.kind == OutcomeKind.GATEWAY_ERROR:
            return jsonify({"message": result.message}), 500
        return result.message, status_for(result.kind)
    return jsonify({"sessionId": result.data["sessionId"], "sessionUrl": result.data["sessionUrl"]})


@payment_bp.route("/verify-session", methods=["GET"])
@payment_bp.route("/verify-session/<session_id>", methods=["GET"])
@require_user
def verify_session(session_id=None):
    session_id = session_id or request.args.get("sessionId") or request.args.get("session_id")
    result = _get_payment_service().verify_session(session_id)
    if not result.ok:
        if result.kind == OutcomeKind.GATEWAY_ERROR:
            return jsonify({"message": result.message}), 500
        return result.message, status_for(result.kind)

    body = dict(result.data)
    if result.order is not None:
        body["order"] = serialize_order(result.order)
    return jsonify(body)


@payment_bp.route("/webhook", methods=["POST"])
def stripe_webhook():
    payload = request.get_data()
    signature = request.headers.get("Stripe-Signature")
    result = _get_payment_service().handle_webhook(payload, signature)
    if not result.ok:
        return result.message, status_for(result.kind)
    return "", 200

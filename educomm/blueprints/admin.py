from __future__ import annotations

from flask import Blueprint, jsonify, request

from educomm.auth import require_admin
from educomm.database import get_db
from educomm.observability import get_metrics_snapshot
from educomm.observability.order_flow import compute_order_flow_summary
from educomm.services.payment_service import PaymentService
from educomm.blueprints.common import get_payment_gateway, status_for

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.route("/sync-historical-payments", methods=["POST"])
@require_admin
def sync_historical_payments():
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        payload = payload.get("sessionIds")
    if not isinstance(payload, list):
        payload = []

    result = PaymentService(get_db(), gateway=get_payment_gateway()).sync_historical_payments(payload)
    if not result.ok:
        return result.message, status_for(result.kind)
    return jsonify(result.data)


@admin_bp.route("/metrics", methods=["GET"])
@require_admin
def admin_metrics():
    snapshot = get_metrics_snapshot()
    snapshot["orderFlow"] = compute_order_flow_summary().to_dict()
    return jsonify(snapshot)

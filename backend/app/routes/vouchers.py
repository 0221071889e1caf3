# Overview: Flask API routes for customers' voucher discovery, quoting and wallet.

"""
Voucher routes (customer side).

Eligibility is evaluated on every request against the caller's current cart
subtotal, order history and the store's local clock hour.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import cart_service, checkout_service, voucher_service
from ..services.checkout_service import CheckoutDraft, CheckoutError
from ..services.voucher_service import VoucherError
from ..validation import ValidationError


vouchers_bp = Blueprint("vouchers", __name__, url_prefix="/api/vouchers")


@vouchers_bp.get("/available")
@require_auth
def available_vouchers_route():
    """
    Vouchers the caller can apply right now.

    Query: subtotal (optional; defaults to the caller's cart subtotal)
    """
    subtotal = request.args.get("subtotal", type=int)
    if subtotal is None:
        subtotal = cart_service.get_cart_summary(g.current_user.id)["subtotal"]
    if subtotal < 0:
        return jsonify({"error": "subtotal must be >= 0"}), 400

    vouchers = voucher_service.load_available_vouchers(g.current_user.id, subtotal)
    return jsonify({
        "items": [v.to_dict() for v in vouchers],
        "count": len(vouchers),
        "subtotal": subtotal,
    }), 200


@vouchers_bp.post("/quote")
@require_auth
def quote_route():
    """
    Price the caller's cart with an optional voucher; nothing is written.

    Body: {"voucher_id": 3} or {"voucher_code": "WELCOME10"} or {}
    """
    data = request.get_json(silent=True) or {}
    try:
        draft = CheckoutDraft.from_payload(data)
        result = checkout_service.quote(g.current_user.id, draft)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CheckoutError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    return jsonify(result.to_dict()), 200


@vouchers_bp.get("/saved")
@require_auth
def saved_vouchers_route():
    saved = voucher_service.list_saved_vouchers(g.current_user.id)
    return jsonify({"items": [s.to_dict() for s in saved], "count": len(saved)}), 200


@vouchers_bp.post("/<int:voucher_id>/save")
@require_auth
def save_voucher_route(voucher_id: int):
    try:
        saved = voucher_service.save_voucher(g.current_user.id, voucher_id)
    except VoucherError as e:
        if "not found" in str(e).lower():
            return jsonify({"error": str(e), "details": e.details}), 404
        if "already saved" in str(e).lower():
            return jsonify({"error": str(e), "details": e.details}), 409
        return jsonify({"error": str(e), "details": e.details}), 400
    return jsonify({"saved": saved.to_dict()}), 201

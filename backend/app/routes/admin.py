# Overview: Flask API routes for shop admins; order processing and voucher catalog management.

"""
Admin routes.

SECURITY:
- Every route requires authentication AND the admin role
- The acting admin id comes from the session, never from the request body

ORDERS:
- GET  /api/admin/orders?status=pending|confirmed|completed|cancelled|all
- POST /api/admin/orders/<id>/confirm     pending   -> confirmed
- POST /api/admin/orders/<id>/complete    confirmed -> completed
- POST /api/admin/orders/<id>/cancel      pending|confirmed -> cancelled (reason required)

VOUCHERS:
- GET/POST        /api/admin/vouchers
- PATCH/DELETE    /api/admin/vouchers/<id>
- POST            /api/admin/vouchers/<id>/toggle
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..change_feed import ADMIN_CHANNEL
from ..decorators import require_admin, require_auth
from ..models import Voucher
from ..models.auth import ROLE_ADMIN
from ..services import change_feed_service, order_lifecycle_service, voucher_service
from ..services.concurrency import StorageUnavailableError
from ..services.order_lifecycle_service import OrderLifecycleError
from ..services.voucher_service import VoucherError
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_voucher,
    validate_payload,
)
from .orders import changes_payload, event_stream, lifecycle_error_response, parse_since, storage_error_response


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


VOUCHER_POLICY = ModelValidationPolicy(
    writable_fields={
        "code",
        "title",
        "description",
        "discount_type",
        "discount_value",
        "min_order_value",
        "for_new_user",
        "start_hour",
        "end_hour",
        "max_usage_per_user",
        "is_active",
    },
    required_on_create={"code", "title", "discount_type", "discount_value"},
)

VOUCHER_RULE_FIELDS = (
    "discount_type",
    "discount_value",
    "min_order_value",
    "start_hour",
    "end_hour",
    "max_usage_per_user",
)


# =============================================================================
# ORDERS
# =============================================================================

@admin_bp.get("/orders")
@require_auth
@require_admin
def list_orders_route():
    """All customers' orders, newest first. Query: status (optional, 'all' for every status)."""
    status = request.args.get("status") or None
    if status == "all":
        status = None
    try:
        orders = order_lifecycle_service.list_orders(status)
    except OrderLifecycleError as e:
        return lifecycle_error_response(e)
    return jsonify({
        "items": [o.to_dict(include_items=True) for o in orders],
        "count": len(orders),
    }), 200


@admin_bp.get("/orders/changes")
@require_auth
@require_admin
def order_changes_route():
    """Pull change events for every order after ?since=<event_id>."""
    limit = request.args.get("limit", default=100, type=int)
    events = change_feed_service.list_changes(parse_since(), limit=limit)
    return jsonify(changes_payload(events)), 200


@admin_bp.get("/orders/events")
@require_auth
@require_admin
def order_stream_route():
    return event_stream(ADMIN_CHANNEL, parse_since())


@admin_bp.get("/orders/<int:order_id>")
@require_auth
@require_admin
def get_order_route(order_id: int):
    try:
        order = order_lifecycle_service.get_order(order_id)
    except OrderLifecycleError as e:
        return lifecycle_error_response(e)
    return jsonify({
        "order": order.to_dict(include_items=True),
        "actions": order_lifecycle_service.next_statuses(order.status, ROLE_ADMIN),
    }), 200


def _transition(order_id: int, action):
    try:
        order = action()
        current_app.logger.info(
            "Order %s moved to %s by admin %s", order_id, order.status, g.current_user.id
        )
        return jsonify({"order": order.to_dict()}), 200
    except OrderLifecycleError as e:
        return lifecycle_error_response(e)
    except StorageUnavailableError as e:
        return storage_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order %s", order_id)
        return jsonify({"error": "Could not update the order, please try again"}), 500


@admin_bp.post("/orders/<int:order_id>/confirm")
@require_auth
@require_admin
def confirm_order_route(order_id: int):
    return _transition(
        order_id,
        lambda: order_lifecycle_service.confirm_order(order_id, admin_user_id=g.current_user.id),
    )


@admin_bp.post("/orders/<int:order_id>/complete")
@require_auth
@require_admin
def complete_order_route(order_id: int):
    return _transition(
        order_id,
        lambda: order_lifecycle_service.complete_order(order_id, admin_user_id=g.current_user.id),
    )


@admin_bp.post("/orders/<int:order_id>/cancel")
@require_auth
@require_admin
def cancel_order_route(order_id: int):
    """
    Cancel a pending or confirmed order.

    Body: {"reason": "Hết nguyên liệu"}
    """
    data = request.get_json(silent=True) or {}
    return _transition(
        order_id,
        lambda: order_lifecycle_service.cancel_order(
            order_id,
            actor_user_id=g.current_user.id,
            actor_role=ROLE_ADMIN,
            reason=data.get("reason"),
        ),
    )


# =============================================================================
# VOUCHERS
# =============================================================================

def _voucher_error_response(e: VoucherError):
    status = 404 if "not found" in str(e).lower() else 400
    return jsonify({"error": str(e), "details": e.details}), status


@admin_bp.get("/vouchers")
@require_auth
@require_admin
def list_vouchers_route():
    active_only = request.args.get("active_only", "false").lower() == "true"
    vouchers = voucher_service.list_vouchers(active_only)
    return jsonify({"items": [v.to_dict() for v in vouchers], "count": len(vouchers)}), 200


@admin_bp.post("/vouchers")
@require_auth
@require_admin
def create_voucher_route():
    """
    Create a voucher.

    Body:
        {"code": "WELCOME10", "title": "...", "discount_type": "percent"|"fixed",
         "discount_value": 10, "min_order_value"?, "for_new_user"?,
         "start_hour"?, "end_hour"?, "max_usage_per_user"?, "description"?, "is_active"?}
    """
    try:
        patch = validate_payload(
            model=Voucher,
            payload=request.get_json(silent=True),
            policy=VOUCHER_POLICY,
            partial=False,
        )
        enforce_rules_voucher(patch)
        voucher = voucher_service.create_voucher(patch=patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    current_app.logger.info("Voucher %s created by admin %s", voucher.code, g.current_user.id)
    return jsonify({"voucher": voucher.to_dict()}), 201


@admin_bp.patch("/vouchers/<int:voucher_id>")
@require_auth
@require_admin
def update_voucher_route(voucher_id: int):
    try:
        voucher = voucher_service.get_voucher(voucher_id)
        patch = validate_payload(
            model=Voucher,
            payload=request.get_json(silent=True),
            policy=VOUCHER_POLICY,
            partial=True,
        )
        current = {key: getattr(voucher, key) for key in VOUCHER_RULE_FIELDS}
        enforce_rules_voucher(patch, current)
        voucher = voucher_service.update_voucher(voucher_id, patch=patch)
    except VoucherError as e:
        return _voucher_error_response(e)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    return jsonify({"voucher": voucher.to_dict()}), 200


@admin_bp.post("/vouchers/<int:voucher_id>/toggle")
@require_auth
@require_admin
def toggle_voucher_route(voucher_id: int):
    """Flip is_active, or set it explicitly with {"is_active": true|false}."""
    data = request.get_json(silent=True) or {}
    try:
        voucher = voucher_service.get_voucher(voucher_id)
        is_active = data.get("is_active", not voucher.is_active)
        if not isinstance(is_active, bool):
            return jsonify({"error": "is_active must be a boolean"}), 400
        voucher = voucher_service.set_voucher_active(voucher_id, is_active)
    except VoucherError as e:
        return _voucher_error_response(e)
    return jsonify({"voucher": voucher.to_dict()}), 200


@admin_bp.delete("/vouchers/<int:voucher_id>")
@require_auth
@require_admin
def delete_voucher_route(voucher_id: int):
    try:
        voucher_service.delete_voucher(voucher_id)
    except VoucherError as e:
        return _voucher_error_response(e)
    current_app.logger.info("Voucher %s deleted by admin %s", voucher_id, g.current_user.id)
    return jsonify({"deleted": True, "id": voucher_id}), 200

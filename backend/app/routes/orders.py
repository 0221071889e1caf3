# Overview: Flask API routes for customer checkout, order tracking and cancellation.

"""
Customer order routes.

SECURITY:
- All routes require authentication
- Every read and write is scoped to g.current_user; another customer's order
  reads as 404
- The acting user and role come from the session, never from the request body

CHANGE FEED:
- GET /api/orders/changes?since=<event_id>  pull; resync after a missed push
- GET /api/orders/<id>/events               Server-Sent Events for one order
- GET /api/orders/events                    Server-Sent Events for all my orders
"""

import json

from flask import Blueprint, Response, current_app, g, jsonify, request, stream_with_context

from ..extensions import change_feed
from ..change_feed import QueueSubscriber, order_channel, user_channel
from ..models.auth import ROLE_CUSTOMER
from ..services import change_feed_service, checkout_service, order_lifecycle_service
from ..services.checkout_service import CheckoutDraft, CheckoutError
from ..services.concurrency import StorageUnavailableError
from ..services.order_lifecycle_service import OrderLifecycleError
from ..validation import ValidationError
from ..decorators import require_auth


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

LIFECYCLE_HTTP_STATUS = {
    order_lifecycle_service.ORDER_NOT_FOUND: 404,
    order_lifecycle_service.NOT_ORDER_OWNER: 403,
    order_lifecycle_service.ACTOR_NOT_ALLOWED: 403,
    order_lifecycle_service.INVALID_TRANSITION: 409,
    order_lifecycle_service.CANCEL_REASON_REQUIRED: 400,
    order_lifecycle_service.CANCEL_REASON_TOO_LONG: 400,
    order_lifecycle_service.INVALID_STATUS: 400,
}


def lifecycle_error_response(e: OrderLifecycleError):
    status = LIFECYCLE_HTTP_STATUS.get(e.code, 409)
    return jsonify({"error": str(e), "code": e.code, "details": e.details}), status


def storage_error_response(e: StorageUnavailableError):
    return jsonify({"error": str(e), "retryable": True}), 503


def parse_since() -> int:
    since = request.args.get("since", type=int)
    if since is None:
        since = request.headers.get("Last-Event-ID", type=int)
    return since or 0


def changes_payload(events) -> dict:
    items = [ev.to_dict() for ev in events]
    return {
        "items": items,
        "count": len(items),
        "cursor": items[-1]["id"] if items else None,
    }


def event_stream(channel: str, since: int, *, order_id: int | None = None, user_id: int | None = None):
    """
    SSE body: replay the log after `since`, then relay live notices.

    The subscription is taken before the replay query so nothing committed in
    between is lost; notices already replayed are skipped by id.
    """
    timeout = current_app.config["CHANGE_FEED_STREAM_TIMEOUT"]

    def _format(notice: dict) -> str:
        return f"id: {notice['event_id']}\nevent: order.changed\ndata: {json.dumps(notice)}\n\n"

    @stream_with_context
    def _generate():
        with QueueSubscriber(change_feed, channel) as subscriber:
            last_id = since
            yield "retry: 3000\n\n"
            # Page through the whole backlog before going live
            while since:
                page = change_feed_service.list_changes(last_id, order_id=order_id, user_id=user_id)
                if not page:
                    break
                for ev in page:
                    last_id = ev.id
                    yield _format({
                        "event_id": ev.id,
                        "order_id": ev.order_id,
                        "user_id": ev.user_id,
                        "event_type": ev.event_type,
                        "status": ev.to_status,
                    })
            while True:
                notice = subscriber.get(timeout=timeout)
                if notice is None:
                    yield ": keep-alive\n\n"
                    continue
                if notice.event_id <= last_id:
                    continue
                last_id = notice.event_id
                yield _format(notice.to_dict())

    return Response(
        _generate(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@orders_bp.post("/checkout")
@require_auth
def checkout_route():
    """
    Place an order from the caller's cart.

    Body:
        {"payment_method": "cod"|"momo"|"bank", "voucher_id": 3 | "voucher_code": "WELCOME10",
         "receiver_name"?, "receiver_phone"?, "shipping_address"?}

    Error responses:
        400: validation error, empty cart, ineligible voucher
        503: storage unavailable (retry)
    """
    data = request.get_json(silent=True) or {}
    try:
        draft = CheckoutDraft.from_payload(data)
        order = checkout_service.checkout(g.current_user.id, draft)
        return jsonify({"order": order.to_dict(include_items=True)}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CheckoutError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except StorageUnavailableError as e:
        current_app.logger.warning("Checkout failed for user %s: storage unavailable", g.current_user.id)
        return storage_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check out")
        return jsonify({"error": "Could not place the order, please try again"}), 500


@orders_bp.get("")
@require_auth
def list_my_orders_route():
    """List the caller's orders, newest first. Query: status (optional)."""
    status = request.args.get("status") or None
    if status == "all":
        status = None
    try:
        orders = order_lifecycle_service.list_orders_for_user(g.current_user.id, status)
    except OrderLifecycleError as e:
        return lifecycle_error_response(e)
    return jsonify({
        "items": [o.to_dict(include_items=True) for o in orders],
        "count": len(orders),
    }), 200


@orders_bp.get("/changes")
@require_auth
def my_changes_route():
    """Pull change events for the caller's orders after ?since=<event_id>."""
    limit = request.args.get("limit", default=100, type=int)
    events = change_feed_service.list_changes(
        parse_since(), user_id=g.current_user.id, limit=limit
    )
    return jsonify(changes_payload(events)), 200


@orders_bp.get("/events")
@require_auth
def my_orders_stream_route():
    user_id = g.current_user.id
    return event_stream(user_channel(user_id), parse_since(), user_id=user_id)


@orders_bp.get("/<int:order_id>")
@require_auth
def get_my_order_route(order_id: int):
    try:
        order = order_lifecycle_service.get_order(order_id, user_id=g.current_user.id)
    except OrderLifecycleError as e:
        return lifecycle_error_response(e)
    return jsonify({
        "order": order.to_dict(include_items=True),
        "actions": order_lifecycle_service.next_statuses(order.status, ROLE_CUSTOMER),
    }), 200


@orders_bp.get("/<int:order_id>/events")
@require_auth
def my_order_stream_route(order_id: int):
    try:
        order_lifecycle_service.get_order(order_id, user_id=g.current_user.id)
    except OrderLifecycleError as e:
        return lifecycle_error_response(e)
    return event_stream(order_channel(order_id), parse_since(), order_id=order_id)


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_my_order_route(order_id: int):
    """
    Cancel the caller's own order while it is still pending.

    Body: {"reason": "Đặt nhầm sản phẩm"}

    Error responses:
        400: reason missing
        403: order already confirmed (only the shop can cancel now)
        404: order not found
        409: order not cancellable from its current status
    """
    data = request.get_json(silent=True) or {}
    try:
        order = order_lifecycle_service.cancel_order(
            order_id,
            actor_user_id=g.current_user.id,
            actor_role=ROLE_CUSTOMER,
            reason=data.get("reason"),
        )
        return jsonify({"order": order.to_dict()}), 200
    except OrderLifecycleError as e:
        if e.code == order_lifecycle_service.NOT_ORDER_OWNER:
            return jsonify({"error": f"Order {order_id} not found", "code": order_lifecycle_service.ORDER_NOT_FOUND}), 404
        return lifecycle_error_response(e)
    except StorageUnavailableError as e:
        return storage_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Could not cancel the order, please try again"}), 500

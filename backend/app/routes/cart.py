# Overview: Flask API routes for the customer cart; parses input and returns JSON responses.

"""
Cart routes.

SECURITY: All routes require authentication; a customer only ever sees and
edits their own cart lines (another user's item reads as 404).
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import cart_service
from ..services.cart_service import CartError
from ..services.concurrency import StorageUnavailableError
from ..validation import ValidationError


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _cart_error_response(e: CartError):
    status = 404 if "not found" in str(e).lower() else 400
    return jsonify({"error": str(e), "details": e.details}), status


@cart_bp.get("")
@require_auth
def get_cart_route():
    """Items (newest first), line count, total quantity and subtotal."""
    return jsonify(cart_service.get_cart_summary(g.current_user.id)), 200


@cart_bp.post("/items")
@require_auth
def add_item_route():
    """
    Add a configured product to the cart.

    Body:
        {"product_id": 1, "quantity": 2, "size": "L", "topping_ids": [1, 2],
         "note": "ít đá", "sugar_level": "50%", "ice_level": "100%"}
    """
    data = request.get_json(silent=True) or {}
    product_id = data.get("product_id")
    if isinstance(product_id, bool) or not isinstance(product_id, int):
        return jsonify({"error": "product_id must be an integer"}), 400

    topping_ids = data.get("topping_ids") or []
    if not isinstance(topping_ids, list) or any(
        isinstance(t, bool) or not isinstance(t, int) for t in topping_ids
    ):
        return jsonify({"error": "topping_ids must be a list of integers"}), 400

    try:
        item = cart_service.add_to_cart(
            g.current_user.id,
            product_id,
            quantity=data.get("quantity", 1),
            size=data.get("size"),
            topping_ids=topping_ids,
            note=data.get("note"),
            sugar_level=data.get("sugar_level"),
            ice_level=data.get("ice_level"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CartError as e:
        return _cart_error_response(e)
    return jsonify({"item": item.to_dict()}), 201


@cart_bp.patch("/items/<int:item_id>")
@require_auth
def update_item_route(item_id: int):
    """Body: {"quantity": 3}. Reprices only this line."""
    data = request.get_json(silent=True) or {}
    if "quantity" not in data:
        return jsonify({"error": "quantity is required"}), 400
    try:
        item = cart_service.update_quantity(g.current_user.id, item_id, data["quantity"])
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CartError as e:
        return _cart_error_response(e)
    except StorageUnavailableError as e:
        return jsonify({"error": str(e), "retryable": True}), 503
    except Exception:
        current_app.logger.exception("Failed to update cart item %s", item_id)
        return jsonify({"error": "Could not update the cart, please try again"}), 500
    return jsonify({"item": item.to_dict()}), 200


@cart_bp.delete("/items/<int:item_id>")
@require_auth
def remove_item_route(item_id: int):
    try:
        cart_service.remove_item(g.current_user.id, item_id)
    except CartError as e:
        return _cart_error_response(e)
    return jsonify({"deleted": True, "id": item_id}), 200

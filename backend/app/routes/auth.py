# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/app/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Password strength validation on registration
- Self-registration always creates a customer; admins come from the CLI
- Session management with token-based auth
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..services.auth_service import PasswordValidationError
from ..decorators import require_auth, _bearer_token


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _issue_session(user, message: str, status: int):
    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    return jsonify({
        "user": user.to_dict(),
        "token": token,
        "session": session.to_dict(),
        "message": message,
    }), status


@auth_bp.post("/register")
def register_route():
    """
    Create a customer account and sign it in.

    Request body:
    {
        "username": "lan",
        "email": "lan@example.com",
        "password": "...",          // 8+ chars, letters and digits
        "full_name"?, "phone"?, "address"?
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        username = (data.get("username") or "").strip()
        email = (data.get("email") or "").strip()
        password = data.get("password")

        if not all([username, email, password]):
            return jsonify({"error": "username, email and password required"}), 400

        user = auth_service.create_user(
            username,
            email,
            password,
            full_name=data.get("full_name"),
            phone=data.get("phone"),
            address=data.get("address"),
        )
        return _issue_session(user, "Registration successful", 201)

    except PasswordValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ValueError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email") or data.get("identifier")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            current_app.logger.info("Failed login for %s from %s", username, request.remote_addr)
            return jsonify({"error": "Invalid credentials"}), 401

        return _issue_session(user, "Login successful", 200)

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke session token (logout).

    Expects Authorization header: Bearer <token>
    """
    try:
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authorization header required"}), 401

        revoked = session_service.revoke_session(token, reason="User logout")

        if not revoked:
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.put("/profile")
@require_auth
def update_profile_route():
    """
    Update receiver info used at checkout.

    Request body: {"full_name"?, "phone"?, "address"?}; blank clears a field.
    """
    data = request.get_json(silent=True) or {}
    unknown = [k for k in data if k not in auth_service.PROFILE_FIELDS]
    if unknown:
        return jsonify({"error": f"Field not allowed: {unknown[0]}"}), 400
    for key, value in data.items():
        if value is not None and not isinstance(value, str):
            return jsonify({"error": f"{key} must be a string"}), 400

    user = auth_service.update_profile(g.current_user, data)
    return jsonify({"user": user.to_dict()}), 200

"""
Auth Blueprint — sign-in and the signed-in user's own profile.

Endpoints:
  POST /api/v1/auth/login            — username or email + password → JWT
  GET  /api/v1/auth/me               — current profile + capabilities
  POST /api/v1/auth/change-password  — change own password
"""

from flask import Blueprint, g, jsonify

from ompro.blueprints import json_body, register_error_handlers
from ompro.services.jwt_service import token_response
from ompro.services.permission import capabilities_for
from ompro.services.user_service import AuthError, authenticate, change_password
from ompro.utils.errors import E, api_error

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")
register_error_handlers(auth_bp)


@auth_bp.errorhandler(AuthError)
def handle_auth_error(e):
    code = E.AUTH_INVALID if e.status_code == 401 else E.VALIDATION_INVALID
    return api_error(code, e.message, status=e.status_code)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Body: { "login": "joao silva" | "joao.silva@ompro.com.br", "password": "..." }

    "email" and "username" are accepted as aliases of "login".
    """
    data = json_body()
    identifier = str(data.get("login") or data.get("email") or data.get("username") or "").strip()
    password = data.get("password") or ""

    if not identifier or not password:
        return api_error(E.VALIDATION_REQUIRED, "Username and password are required")

    user = authenticate(identifier, password)
    return jsonify(token_response(user)), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
def me():
    user = g.current_user
    return jsonify({**user.to_dict(), "capabilities": capabilities_for(user.role)}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/change-password
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/change-password", methods=["POST"])
def change_own_password():
    """Body: { "current_password", "new_password", "confirm_password" }"""
    data = json_body()
    if not data.get("current_password") or not data.get("new_password"):
        return api_error(E.VALIDATION_REQUIRED, "current_password and new_password are required")

    change_password(
        g.current_user,
        data["current_password"],
        data["new_password"],
        data.get("confirm_password"),
    )
    return jsonify({"message": "Password changed"}), 200

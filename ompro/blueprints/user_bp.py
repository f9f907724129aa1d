"""
User Blueprint — profile administration.

Endpoints:
  GET    /api/v1/users        — list profiles
  POST   /api/v1/users        — create profile
  DELETE /api/v1/users/<id>   — delete profile (not yourself)
"""

from flask import Blueprint, g, jsonify

from ompro.blueprints import json_body, register_error_handlers
from ompro.middleware.permission_required import require_capability
from ompro.services import user_service
from ompro.services.permission import USERS_MANAGE, USERS_VIEW
from ompro.utils.errors import E, api_error

user_bp = Blueprint("users", __name__, url_prefix="/api/v1/users")
register_error_handlers(user_bp)


@user_bp.route("", methods=["GET"])
@require_capability(USERS_VIEW)
def list_users():
    items = [u.to_dict() for u in user_service.list_users()]
    return jsonify({"items": items, "total": len(items)}), 200


@user_bp.route("", methods=["POST"])
@require_capability(USERS_MANAGE)
def create_user():
    """Body: { "name", "login" (or "email"), "role", "password" }"""
    data = json_body()
    login = data.get("login") or data.get("email")
    missing = [f for f, v in (("name", data.get("name")), ("login", login),
                              ("role", data.get("role")), ("password", data.get("password"))) if not v]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"Missing fields: {', '.join(missing)}")

    user = user_service.create_user(
        name=data["name"], login=login, role=data["role"], password=data["password"],
    )
    return jsonify(user.to_dict()), 201


@user_bp.route("/<int:user_id>", methods=["DELETE"])
@require_capability(USERS_MANAGE)
def delete_user(user_id):
    user_service.delete_user(user_id, actor=g.current_user)
    return jsonify({"message": "User deleted"}), 200

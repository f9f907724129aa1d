"""
Auth, user administration and capability tests.

Tests cover:
  - Password hashing (bcrypt) and username → email normalization
  - JWT token generation / verification
  - Auth API: login (username or email), me, change-password
  - Middleware: missing / invalid token, deleted profile
  - Rate limits: mutations only on groups/tasks/users
  - Users API: list, create, duplicate, self-delete, capability checks
  - Role capability table
"""

import logging
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import jwt
import pytest
from werkzeug.security import generate_password_hash

from ompro.core.exceptions import PermissionDeniedError
from ompro.middleware.rate_limiter import LOGIN_LIMIT, WRITE_LIMIT, init_rate_limits
from ompro.models import db
from ompro.models.auth import User
from ompro.services.jwt_service import decode_access_token, generate_access_token
from ompro.services.permission import (
    CAPABILITIES,
    GROUPS_MANAGE,
    REPORTS_EXPORT,
    TASKS_IMPORT,
    TASKS_UPDATE_STATUS,
    USERS_MANAGE,
    capabilities_for,
    check_capability,
    has_capability,
)
from ompro.services.user_service import normalize_login
from ompro.utils.crypto import hash_password, needs_rehash, verify_password

PASSWORD = "secret123"  # password of the conftest users


# ═══════════════════════════════════════════════════════════════
# Unit: crypto, login normalization, JWT
# ═══════════════════════════════════════════════════════════════

class TestCrypto:
    def test_hash_and_verify(self):
        hashed = hash_password("s3cret!", rounds=4)
        assert hashed != "s3cret!"
        assert verify_password("s3cret!", hashed)
        assert not verify_password("wrong", hashed)

    def test_verify_against_empty_hash(self):
        assert not verify_password("anything", None)

    def test_legacy_werkzeug_hash_verifies_and_needs_rehash(self):
        legacy = generate_password_hash("s3cret!", method="pbkdf2:sha256")
        assert verify_password("s3cret!", legacy)
        assert needs_rehash(legacy, rounds=4)

    def test_bcrypt_cost_below_configured_needs_rehash(self):
        hashed = hash_password("s3cret!", rounds=4)
        assert needs_rehash(hashed, rounds=5)
        assert not needs_rehash(hashed, rounds=4)


class TestNormalizeLogin:
    @pytest.mark.parametrize("identifier, expected", [
        ("joão silva", "joao.silva@ompro.com.br"),
        ("  Maria  Clara ", "maria.clara@ompro.com.br"),
        ("Ana@Example.com", "ana@example.com"),
        ("", ""),
    ])
    def test_normalize(self, identifier, expected):
        assert normalize_login(identifier) == expected


class TestJWT:
    def test_roundtrip(self):
        payload = decode_access_token(generate_access_token(7, "executor"))
        assert payload["sub"] == 7
        assert payload["role"] == "executor"
        assert payload["type"] == "access"

    def test_expired_token(self, app):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "1", "type": "access", "iat": now - timedelta(hours=2),
             "exp": now - timedelta(hours=1)},
            app.config["JWT_SECRET_KEY"] or app.config["SECRET_KEY"], algorithm="HS256",
        )
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_access_token(token)

    def test_wrong_type_rejected(self, app):
        token = jwt.encode(
            {"sub": "1", "type": "refresh"},
            app.config["JWT_SECRET_KEY"] or app.config["SECRET_KEY"], algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError):
            decode_access_token(token)


# ═══════════════════════════════════════════════════════════════
# Auth API
# ═══════════════════════════════════════════════════════════════

class TestLogin:
    def test_login_with_username(self, client, executor):
        res = client.post("/api/v1/auth/login", json={"login": "João Silva", "password": PASSWORD})
        assert res.status_code == 200
        data = res.get_json()
        assert data["token_type"] == "Bearer"
        assert data["user"]["email"] == "joao.silva@ompro.com.br"
        assert decode_access_token(data["access_token"])["sub"] == executor.id

    def test_login_with_email_alias(self, client, manager):
        res = client.post("/api/v1/auth/login", json={"email": manager.email, "password": PASSWORD})
        assert res.status_code == 200

    def test_wrong_password_and_unknown_user_look_the_same(self, client, executor):
        wrong = client.post("/api/v1/auth/login", json={"login": "joao silva", "password": "nope123"})
        unknown = client.post("/api/v1/auth/login", json={"login": "ghost", "password": "nope123"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.get_json()["error"] == unknown.get_json()["error"]

    def test_non_text_password(self, client, executor):
        res = client.post("/api/v1/auth/login", json={"login": "joao silva", "password": 123456})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_missing_fields(self, client):
        res = client.post("/api/v1/auth/login", json={"login": "x"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_legacy_hash_upgraded_on_login(self, client, executor):
        executor.password_hash = generate_password_hash(PASSWORD, method="pbkdf2:sha256")
        db.session.commit()
        res = client.post("/api/v1/auth/login", json={"login": "joao silva", "password": PASSWORD})
        assert res.status_code == 200
        db.session.refresh(executor)
        assert executor.password_hash.startswith("$2b$")
        assert verify_password(PASSWORD, executor.password_hash)


class TestMiddleware:
    def test_no_token(self, client):
        res = client.get("/api/v1/groups")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_AUTH_REQUIRED"

    def test_garbage_token(self, client):
        res = client.get("/api/v1/groups", headers={"Authorization": "Bearer not.a.jwt"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_AUTH_INVALID"

    def test_deleted_profile_is_signed_out(self, client, executor, executor_headers):
        db.session.delete(executor)
        db.session.commit()
        res = client.get("/api/v1/auth/me", headers=executor_headers)
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_PROFILE_MISSING"

    def test_health_is_public(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        checks = res.get_json()["checks"]
        assert checks["database"]["status"] == "ok"
        assert checks["change_feed"]["status"] == "ok"
        assert checks["data"] == {"groups": 0, "tasks": 0}
        assert checks["app"]["name"] == "OmPro"


class _RecordingLimiter:
    def __init__(self):
        self.limits = {}
        self.exempted = []

    def limit(self, value, methods=None):
        def apply(bp):
            self.limits[bp.name] = (value, methods)
            return bp
        return apply

    def exempt(self, bp):
        self.exempted.append(bp.name)
        return bp


class TestRateLimits:
    def test_reads_and_streams_are_not_write_limited(self, app):
        limiter = _RecordingLimiter()
        fake_app = SimpleNamespace(
            config={"TESTING": False}, blueprints=app.blueprints,
            logger=logging.getLogger("ompro.tests"),
        )
        init_rate_limits(fake_app, limiter)

        for name in ("groups", "tasks", "users"):
            value, methods = limiter.limits[name]
            assert value == WRITE_LIMIT
            assert "GET" not in methods
            assert set(methods) == {"POST", "PATCH", "DELETE"}
        assert limiter.limits["auth"] == (LOGIN_LIMIT, ["POST"])
        assert limiter.exempted == ["health"]


class TestMe:
    def test_me_lists_capabilities(self, client, administrator, administrator_headers):
        res = client.get("/api/v1/auth/me", headers=administrator_headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["email"] == administrator.email
        assert "reports.export" in data["capabilities"]
        assert "tasks.import" not in data["capabilities"]


class TestChangePassword:
    URL = "/api/v1/auth/change-password"

    def test_change_and_login_with_new_password(self, client, executor, executor_headers):
        res = client.post(self.URL, headers=executor_headers, json={
            "current_password": PASSWORD, "new_password": "novasenha", "confirm_password": "novasenha",
        })
        assert res.status_code == 200
        res = client.post("/api/v1/auth/login", json={"login": "joao silva", "password": "novasenha"})
        assert res.status_code == 200

    def test_wrong_current_password(self, client, executor_headers):
        res = client.post(self.URL, headers=executor_headers, json={
            "current_password": "wrong-one", "new_password": "novasenha", "confirm_password": "novasenha",
        })
        assert res.status_code == 400
        assert res.get_json()["error"] == "Current password is incorrect"

    def test_confirmation_mismatch(self, client, executor_headers):
        res = client.post(self.URL, headers=executor_headers, json={
            "current_password": PASSWORD, "new_password": "novasenha", "confirm_password": "outra",
        })
        assert res.status_code == 422
        assert "confirm_password" in res.get_json()["details"]

    def test_non_text_current_password(self, client, executor_headers):
        res = client.post(self.URL, headers=executor_headers, json={
            "current_password": 123, "new_password": "novasenha", "confirm_password": "novasenha",
        })
        assert res.status_code == 400

    def test_too_short(self, client, executor_headers):
        res = client.post(self.URL, headers=executor_headers, json={
            "current_password": PASSWORD, "new_password": "abc", "confirm_password": "abc",
        })
        assert res.status_code == 422


# ═══════════════════════════════════════════════════════════════
# Users API
# ═══════════════════════════════════════════════════════════════

class TestUsersAPI:
    def test_create_user_from_username(self, client, manager_headers):
        res = client.post("/api/v1/users", headers=manager_headers, json={
            "name": "Carla Técnica", "login": "carla souza", "role": "executor", "password": "senha123",
        })
        assert res.status_code == 201
        assert res.get_json()["email"] == "carla.souza@ompro.com.br"

        res = client.post("/api/v1/auth/login", json={"login": "carla souza", "password": "senha123"})
        assert res.status_code == 200

    def test_duplicate_email(self, client, manager_headers, executor):
        res = client.post("/api/v1/users", headers=manager_headers, json={
            "name": "Outro", "login": executor.email, "role": "executor", "password": "senha123",
        })
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_invalid_role(self, client, manager_headers):
        res = client.post("/api/v1/users", headers=manager_headers, json={
            "name": "X", "login": "x", "role": "superuser", "password": "senha123",
        })
        assert res.status_code == 422
        assert "role" in res.get_json()["details"]

    def test_non_text_fields(self, client, manager_headers):
        res = client.post("/api/v1/users", headers=manager_headers, json={
            "name": 42, "login": ["x"], "role": ["executor"], "password": 12345678,
        })
        assert res.status_code == 422
        assert set(res.get_json()["details"]) == {"name", "email", "role", "password"}

    def test_missing_fields(self, client, manager_headers):
        res = client.post("/api/v1/users", headers=manager_headers, json={"name": "X"})
        assert res.status_code == 400

    def test_administrator_can_list_but_not_manage(self, client, administrator_headers, executor):
        res = client.get("/api/v1/users", headers=administrator_headers)
        assert res.status_code == 200
        assert res.get_json()["total"] == 2

        res = client.delete(f"/api/v1/users/{executor.id}", headers=administrator_headers)
        assert res.status_code == 403

    def test_executor_cannot_list(self, client, executor_headers):
        assert client.get("/api/v1/users", headers=executor_headers).status_code == 403

    def test_delete_user(self, client, manager_headers, executor):
        executor_id = executor.id
        res = client.delete(f"/api/v1/users/{executor_id}", headers=manager_headers)
        assert res.status_code == 200
        assert db.session.get(User, executor_id) is None

    def test_cannot_delete_self(self, client, manager, manager_headers):
        res = client.delete(f"/api/v1/users/{manager.id}", headers=manager_headers)
        assert res.status_code == 422
        assert db.session.get(User, manager.id) is not None

    def test_delete_unknown_user(self, client, manager_headers):
        assert client.delete("/api/v1/users/9999", headers=manager_headers).status_code == 404


# ═══════════════════════════════════════════════════════════════
# Capability table
# ═══════════════════════════════════════════════════════════════

class TestCapabilities:
    def test_manager_has_everything(self):
        every = set().union(*CAPABILITIES.values())
        assert set(capabilities_for("manager")) == every

    def test_executor_field_work_only(self):
        assert has_capability("executor", TASKS_UPDATE_STATUS)
        for cap in (TASKS_IMPORT, GROUPS_MANAGE, REPORTS_EXPORT, USERS_MANAGE):
            assert not has_capability("executor", cap)

    def test_administrator_supervises_without_importing(self):
        assert has_capability("administrator", REPORTS_EXPORT)
        assert not has_capability("administrator", TASKS_IMPORT)
        assert not has_capability("administrator", USERS_MANAGE)

    def test_unknown_role_gets_nothing(self):
        assert capabilities_for("guest") == []
        with pytest.raises(PermissionDeniedError):
            check_capability(None, TASKS_UPDATE_STATUS)

"""
User Service — profiles, sign-in and password changes.

Field staff sign in with a short username ("joao silva") instead of an email
address; normalize_login turns it into the provisioned address
(joao.silva@<LOGIN_EMAIL_DOMAIN>).
"""

import logging
import re
import unicodedata

from email_validator import EmailNotValidError, validate_email
from flask import current_app

from ompro.core.exceptions import ConflictError, NotFoundError, ValidationError
from ompro.models import db
from ompro.models.auth import VALID_ROLES, User
from ompro.utils.crypto import hash_password, needs_rehash, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
INVALID_CREDENTIALS = "Invalid username or password."

_WHITESPACE = re.compile(r"\s+")


def _bcrypt_rounds() -> int:
    return int(current_app.config.get("BCRYPT_ROUNDS", 12))


class AuthError(Exception):
    """Sign-in or credential check failure."""
    def __init__(self, message, status_code=401):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


# ═══════════════════════════════════════════════════════════════
# Sign-in
# ═══════════════════════════════════════════════════════════════
def normalize_login(identifier: str) -> str:
    """Email as typed (lower-cased), or ``<slug>@<LOGIN_EMAIL_DOMAIN>`` for usernames."""
    value = (identifier or "").strip().lower()
    if not value or "@" in value:
        return value
    decomposed = unicodedata.normalize("NFD", value)
    slug = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    slug = _WHITESPACE.sub(".", slug)
    domain = current_app.config.get("LOGIN_EMAIL_DOMAIN", "ompro.com.br")
    return f"{slug}@{domain}"


def authenticate(identifier: str, password: str) -> User:
    """Return the matching user or raise AuthError with a generic message."""
    if not isinstance(identifier, str) or not isinstance(password, str):
        raise AuthError("Username and password must be text.", status_code=400)
    email = normalize_login(identifier)
    if not email or not password:
        raise AuthError(INVALID_CREDENTIALS)

    user = User.query.filter_by(email=email).first()
    if not user or not verify_password(password, user.password_hash):
        logger.info("Failed sign-in for %s", email)
        raise AuthError(INVALID_CREDENTIALS)

    if needs_rehash(user.password_hash, _bcrypt_rounds()):
        user.password_hash = hash_password(password, _bcrypt_rounds())
        db.session.commit()
        logger.info("Upgraded password hash for %s", user.email)

    logger.info("User %s signed in", user.email)
    return user


# ═══════════════════════════════════════════════════════════════
# User CRUD
# ═══════════════════════════════════════════════════════════════
def create_user(name: str, login: str, role: str, password: str) -> User:
    """Create a profile. ``login`` may be an email or a short username."""
    errors = {}
    if not isinstance(name, str) or not name.strip():
        errors["name"] = "required"
    else:
        name = name.strip()
    if not isinstance(role, str) or role not in VALID_ROLES:
        errors["role"] = f"must be one of: {', '.join(sorted(VALID_ROLES))}"
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = f"at least {MIN_PASSWORD_LENGTH} characters"

    if not isinstance(login, str):
        errors["email"] = "must be text"
    else:
        try:
            email = validate_email(
                normalize_login(login), check_deliverability=False,
            ).normalized.lower()
        except EmailNotValidError as e:
            errors["email"] = str(e)

    if errors:
        raise ValidationError("Invalid user data", details=errors)

    if User.query.filter_by(email=email).first():
        raise ConflictError(resource="User", field="email", value=email)

    user = User(
        name=name,
        email=email,
        role=role,
        password_hash=hash_password(password, _bcrypt_rounds()),
    )
    db.session.add(user)
    db.session.commit()
    logger.info("Created user %s (%s)", user.email, user.role)
    return user


def list_users() -> list[User]:
    return User.query.order_by(User.name.asc(), User.id.asc()).all()


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def delete_user(user_id: int, actor: User) -> None:
    """Delete a profile. Task history keeps the e-mail snapshot."""
    if actor is not None and actor.id == user_id:
        raise ValidationError(
            "You cannot delete your own account",
            details={"user_id": "self-deletion is not allowed"},
        )
    user = get_user(user_id)
    email = user.email
    db.session.delete(user)
    db.session.commit()
    logger.info("Deleted user %s", email)


def change_password(user: User, current: str, new: str, confirm: str) -> None:
    """Change the signed-in user's password after re-checking the current one."""
    errors = {}
    if not isinstance(new, str) or len(new) < MIN_PASSWORD_LENGTH:
        errors["new_password"] = f"at least {MIN_PASSWORD_LENGTH} characters"
    elif new != confirm:
        errors["confirm_password"] = "passwords do not match"
    if errors:
        raise ValidationError("Invalid password change", details=errors)

    if not isinstance(current, str) or not verify_password(current, user.password_hash):
        raise AuthError("Current password is incorrect", 400)

    user.password_hash = hash_password(new, _bcrypt_rounds())
    db.session.commit()
    logger.info("User %s changed password", user.email)

"""
Password hashing.

New hashes are bcrypt. Profiles carried over from the old spreadsheet tool
hold werkzeug (scrypt/pbkdf2) hashes; they still verify, and needs_rehash
tells the sign-in flow to replace them.
"""

import bcrypt
from werkzeug.security import check_password_hash

_BCRYPT_PREFIXES = ("$2b$", "$2a$", "$2y$")


def _is_bcrypt(password_hash: str) -> bool:
    return password_hash.startswith(_BCRYPT_PREFIXES)


def hash_password(plain_password: str, rounds: int = 12) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str | None) -> bool:
    """True when ``plain_password`` matches the stored hash (either format)."""
    if not password_hash:
        return False
    if _is_bcrypt(password_hash):
        return bcrypt.checkpw(plain_password.encode("utf-8"), password_hash.encode("utf-8"))
    return check_password_hash(password_hash, plain_password)


def needs_rehash(password_hash: str | None, rounds: int) -> bool:
    """True for werkzeug hashes and bcrypt hashes below ``rounds`` cost."""
    if not password_hash:
        return False
    if not _is_bcrypt(password_hash):
        return True
    # $2b$12$<salt+digest>
    try:
        cost = int(password_hash.split("$")[2])
    except (IndexError, ValueError):
        return True
    return cost < rounds

"""Password hashing, token issuance and role gating."""
from functools import wraps
from typing import Optional, Tuple

import bcrypt
from flask import current_app
from flask_jwt_extended import (
    create_access_token,
    get_jwt,
    get_jwt_identity,
    jwt_required,
    verify_jwt_in_request,
)

from .errors import Forbidden, Unauthorized

ROLES = ("user", "admin")

# bcrypt only considers the first 72 bytes of a password.
_BCRYPT_MAX_BYTES = 72

auth_required = jwt_required


def _password_bytes(password: str) -> bytes:
    return str(password).encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> bytes:
    rounds = int(current_app.config.get("BCRYPT_LOG_ROUNDS", 12))
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds))


def check_password(candidate: str, hashed) -> bool:
    if not hashed:
        return False
    if isinstance(hashed, str):
        hashed = hashed.encode("utf-8")
    try:
        return bcrypt.checkpw(_password_bytes(candidate), hashed)
    except ValueError:
        return False


def issue_token(user_document) -> str:
    return create_access_token(
        identity=str(user_document["_id"]),
        additional_claims={"role": user_document.get("role", "user")},
    )


def current_identity() -> Tuple[Optional[str], Optional[str]]:
    """Return ``(user_id, role)`` for the verified token of this request."""
    user_id = get_jwt_identity()
    if user_id is None:
        return None, None
    return user_id, get_jwt().get("role")


def optional_identity() -> Optional[str]:
    verify_jwt_in_request(optional=True)
    return get_jwt_identity()


def require_role(*roles: str):
    """Only let callers whose token carries one of ``roles`` through."""
    allowed = {role for role in roles if role}

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request(optional=True)
            user_id, role = current_identity()
            if user_id is None:
                raise Unauthorized()
            if role not in allowed:
                raise Forbidden()
            return view(*args, **kwargs)

        return wrapper

    return decorator

from typing import Dict, Optional

from flask import Blueprint, current_app, jsonify, request
from pymongo.errors import DuplicateKeyError

from .documents import isoformat, parse_object_id, utcnow
from .errors import Conflict, NotFound, Unauthorized
from .extensions import get_db
from .schemas import LoginRequest, RegisterRequest, parse_request
from .security import (
    auth_required,
    check_password,
    current_identity,
    hash_password,
    issue_token,
    require_role,
)

bp = Blueprint("auth", __name__, url_prefix="/api/auth")

INVALID_CREDENTIALS = "Invalid credentials"


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def serialize_user_profile(user_document) -> Dict[str, object]:
    return {
        "id": str(user_document.get("_id")),
        "name": user_document.get("name", ""),
        "email": user_document.get("email", ""),
        "role": user_document.get("role", "user"),
        "createdAt": isoformat(user_document.get("created_at")),
        "updatedAt": isoformat(user_document.get("updated_at")),
    }


def request_payload() -> Dict:
    payload = request.get_json(silent=True)
    if payload is None and request.form:
        payload = request.form.to_dict()
    return payload if isinstance(payload, dict) else {}


def create_user(db, data: RegisterRequest):
    email = normalize_email(data.email)
    if db.users.find_one({"email": email}, {"_id": 1}):
        raise Conflict("Email already in use")

    timestamp = utcnow()
    user_document = {
        "name": data.name,
        "email": email,
        "password": hash_password(data.password),
        "role": data.role,
        "created_at": timestamp,
        "updated_at": timestamp,
    }
    try:
        result = db.users.insert_one(user_document)
    except DuplicateKeyError:
        raise Conflict("Email already in use")
    user_document["_id"] = result.inserted_id
    return user_document


def authenticate(db, data: LoginRequest):
    """Return the matching user or raise the same error for any mismatch."""
    user_document = db.users.find_one({"email": normalize_email(data.email)})
    if not user_document or not check_password(data.password, user_document.get("password")):
        raise Unauthorized(INVALID_CREDENTIALS)
    return user_document


@bp.route("/register", methods=["POST"])
def register():
    data = parse_request(RegisterRequest, request_payload())
    user_document = create_user(get_db(), data)
    current_app.logger.info("Registered user %s", user_document["_id"])
    return (
        jsonify(
            {
                "token": issue_token(user_document),
                "user": serialize_user_profile(user_document),
            }
        ),
        201,
    )


@bp.route("/login", methods=["POST"])
def login():
    data = parse_request(LoginRequest, request_payload())
    user_document = authenticate(get_db(), data)
    return jsonify(
        {
            "token": issue_token(user_document),
            "user": serialize_user_profile(user_document),
        }
    )


@bp.route("/me", methods=["GET"])
@auth_required()
def me():
    user_id, _ = current_identity()
    user_document = get_db().users.find_one(
        {"_id": parse_object_id(user_id, "user")}, {"password": 0}
    )
    if not user_document:
        raise NotFound("User not found.")
    return jsonify({"user": serialize_user_profile(user_document)})


@bp.route("/admin-only", methods=["GET"])
@require_role("admin")
def admin_only():
    return jsonify({"ok": True, "message": "Hello, admin!"})

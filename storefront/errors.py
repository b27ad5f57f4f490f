from typing import Dict, List, Optional

from flask import jsonify
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException


class ConfigurationError(RuntimeError):
    """Raised when the application cannot start with the given settings."""


class ApiError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> Dict[str, object]:
        return {"message": self.message}


class BadRequest(ApiError):
    status_code = 400
    default_message = "Bad request."


class ValidationFailed(BadRequest):
    default_message = "Validation failed."

    def __init__(self, errors: Dict[str, List[str]], message: Optional[str] = None):
        super().__init__(message)
        self.errors = errors

    @classmethod
    def from_pydantic(cls, exc: ValidationError) -> "ValidationFailed":
        field_errors: Dict[str, List[str]] = {}
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ())) or "body"
            field_errors.setdefault(location, []).append(error.get("msg", "Invalid value"))
        return cls(field_errors)

    def to_dict(self) -> Dict[str, object]:
        return {"message": self.message, "errors": self.errors}


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class Conflict(ApiError):
    status_code = 409
    default_message = "Conflict"


class StorageError(ApiError):
    """Blob store failure. The underlying detail is only logged."""

    status_code = 500
    default_message = "Failed to store images"


def register_error_handlers(app) -> None:
    @app.errorhandler(ApiError)
    def handle_api_error(error: ApiError):
        if error.status_code >= 500:
            app.logger.error("%s: %s", type(error).__name__, error.__cause__ or error)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        return jsonify({"message": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.exception("Unhandled error: %s", error)
        return jsonify({"message": "Internal Server Error"}), 500

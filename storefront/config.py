import os
import re
from datetime import timedelta
from typing import Dict, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()

DEFAULT_TOKEN_LIFETIME = timedelta(days=1)
DEFAULT_ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}

_DURATION_PATTERN = re.compile(r"^(\d+)\s*([smhd]?)$")
_DURATION_UNITS = {"": "seconds", "s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_duration(value) -> timedelta:
    """Parse token lifetimes such as ``"3600"``, ``"15m"``, ``"12h"`` or ``"1d"``."""
    if isinstance(value, timedelta):
        return value
    candidate = str(value or "").strip().lower()
    match = _DURATION_PATTERN.match(candidate)
    if not match:
        raise ConfigurationError(f"Unsupported duration value: {value!r}")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if not normalized:
        return default
    return normalized in {"1", "true", "yes", "on"}


def parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def parse_origins(value: Optional[str]):
    origins = [origin.strip() for origin in (value or "").split(",")]
    origins = [origin for origin in origins if origin]
    return origins or "*"


def load_settings() -> Dict[str, object]:
    """Read the application settings from the environment."""
    max_upload_mb = parse_int(os.getenv("MAX_UPLOAD_SIZE_MB"), 16)

    return {
        "MONGO_URI": (os.getenv("MONGO_URI") or os.getenv("MONGODB_URI") or "").strip(),
        "MONGO_DB_NAME": (os.getenv("MONGO_DB_NAME") or "storefront").strip(),
        "JWT_SECRET_KEY": (
            os.getenv("JWT_SECRET_KEY") or os.getenv("JWT_SECRET") or ""
        ).strip(),
        "JWT_ACCESS_TOKEN_EXPIRES": parse_duration(os.getenv("JWT_EXPIRES_IN") or "1d"),
        "BCRYPT_LOG_ROUNDS": parse_int(os.getenv("BCRYPT_LOG_ROUNDS"), 12),
        "R2_ACCOUNT_ID": (os.getenv("R2_ACCOUNT_ID") or "").strip(),
        "R2_ACCESS_KEY_ID": (os.getenv("R2_ACCESS_KEY_ID") or "").strip(),
        "R2_SECRET_ACCESS_KEY": (os.getenv("R2_SECRET_ACCESS_KEY") or "").strip(),
        "R2_BUCKET": (os.getenv("R2_BUCKET") or "").strip(),
        "R2_PUBLIC_BASE": (os.getenv("R2_PUBLIC_BASE") or "").strip(),
        "UPLOAD_FOLDER": (os.getenv("UPLOAD_FOLDER") or "").strip(),
        "PRODUCT_MAX_IMAGES": parse_int(os.getenv("PRODUCT_MAX_IMAGES"), 5),
        "PRODUCT_NAME_UNIQUE": parse_bool(os.getenv("PRODUCT_NAME_UNIQUE"), True),
        "PRODUCT_ALLOWED_EXTENSIONS": set(DEFAULT_ALLOWED_EXTENSIONS),
        "MAX_CONTENT_LENGTH": max_upload_mb * 1024 * 1024,
        "CORS_ALLOWED_ORIGINS": parse_origins(os.getenv("CORS_ALLOWED_ORIGINS")),
    }


def validate_settings(config, database_injected: bool = False) -> None:
    if not config.get("JWT_SECRET_KEY"):
        raise ConfigurationError("JWT_SECRET_KEY (or JWT_SECRET) is required")
    if not database_injected and not config.get("MONGO_URI"):
        raise ConfigurationError("MONGO_URI (or MONGODB_URI) is required")

    config["JWT_ACCESS_TOKEN_EXPIRES"] = parse_duration(
        config.get("JWT_ACCESS_TOKEN_EXPIRES") or DEFAULT_TOKEN_LIFETIME
    )
    if int(config.get("PRODUCT_MAX_IMAGES") or 0) < 1:
        raise ConfigurationError("PRODUCT_MAX_IMAGES must be at least 1")

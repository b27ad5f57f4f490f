from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId

from .errors import BadRequest


def utcnow() -> datetime:
    # Stored naive, matching what PyMongo hands back.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat() + "Z"
    return None


def parse_object_id(value, label: str = "product") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise BadRequest(f"Invalid {label} identifier.")


def stringify_id(value) -> Optional[str]:
    return str(value) if value is not None else None

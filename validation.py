import re
from typing import Any, Mapping

from bson import ObjectId

from errors import InvalidInput

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: Any) -> bool:
    return isinstance(email, str) and EMAIL_RE.match(email) is not None


def require_email(email: Any) -> str:
    if not is_valid_email(email):
        raise InvalidInput("Invalid email address")
    return email


def parse_object_id(value: str, what: str = "id") -> ObjectId:
    if not ObjectId.is_valid(value):
        raise InvalidInput(f"Invalid {what}")
    return ObjectId(value)


def require_bool(value: Any, field: str) -> bool:
    # bool only; "true" and 1 are rejected
    if not isinstance(value, bool):
        raise InvalidInput(f"{field} must be a boolean")
    return value


def check_field_names(doc: Mapping[str, Any], what: str = "payload") -> None:
    """Reject keys MongoDB would read as operators or dotted paths."""
    for key in doc:
        if not isinstance(key, str) or not key:
            raise InvalidInput(f"Invalid field name in {what}")
        if key.startswith("$") or "." in key:
            raise InvalidInput(f"Invalid field name in {what}: {key!r}")

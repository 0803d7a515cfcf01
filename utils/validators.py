import re
from typing import Any, Optional

from bson import ObjectId

from errors import InvalidIdError

_OBJECT_ID = re.compile(r"^[0-9a-fA-F]{24}$")


class IdValidator:
    """Checks and converts document identifiers coming from URLs and query strings."""

    @staticmethod
    def is_valid_object_id(value: Any) -> bool:
        if isinstance(value, ObjectId):
            return True
        return isinstance(value, str) and bool(_OBJECT_ID.match(value))

    @staticmethod
    def to_object_id(value: Any) -> ObjectId:
        if isinstance(value, ObjectId):
            return value
        if not IdValidator.is_valid_object_id(value):
            raise InvalidIdError()
        return ObjectId(value)


class TextValidator:
    """Normalization for free-text fields stored on members."""

    @staticmethod
    def normalize_email(email: Optional[str]) -> str:
        if email is None:
            return ""
        return email.strip().lower()

    @staticmethod
    def clean(text: Optional[str]) -> Optional[str]:
        if text is None:
            return None
        return text.strip()

"""Error taxonomy shared by the services and the HTTP layer.

Every service method runs inside :func:`store_operation`, which turns
pymongo/bson exceptions into one of the classes below. The HTTP layer only
ever sees ``LibraryError`` subclasses and maps them to a status code.
"""

from __future__ import annotations

import logging
import re
from functools import wraps
from typing import Any, Optional

from bson.errors import InvalidId
from pymongo import errors as mongo_errors

logger = logging.getLogger(__name__)


class LibraryError(Exception):
    status_code = 500
    message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, details: Any = None) -> None:
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(LibraryError):
    status_code = 400
    message = "Validation failed"


class DuplicateKeyError(LibraryError):
    status_code = 400
    message = "Duplicate key"

    def __init__(self, field: Optional[str] = None, message: Optional[str] = None) -> None:
        self.field = field
        if message is None and field:
            message = f"{field} must be unique"
        super().__init__(message)


class InvalidIdError(LibraryError):
    status_code = 400
    message = "Invalid ID format"


class NotFoundError(LibraryError):
    status_code = 404
    message = "Not found"


class AuthenticationError(LibraryError):
    status_code = 401
    message = "Invalid email or password"

    def to_dict(self) -> dict:
        return {"message": self.message}


class StoreError(LibraryError):
    status_code = 500
    message = "Database operation failed"


_INDEX_NAME = re.compile(r"index: (?:\S+\.\$)?([A-Za-z0-9]+)_-?1")


def duplicate_field(exc: mongo_errors.DuplicateKeyError) -> Optional[str]:
    """Return the field name that violated a unique index, if it can be found."""
    details = exc.details or {}
    for key in ("keyPattern", "keyValue"):
        value = details.get(key)
        if value:
            return next(iter(value))
    match = _INDEX_NAME.search(str(exc))
    return match.group(1) if match else None


def translate_store_error(exc: Exception) -> LibraryError:
    if isinstance(exc, mongo_errors.DuplicateKeyError):
        return DuplicateKeyError(duplicate_field(exc))
    if isinstance(exc, InvalidId):
        return InvalidIdError()
    logger.error(f"Database error: {exc}")
    return StoreError()


def store_operation(func):
    """Map store-layer exceptions raised by ``func`` onto the error taxonomy."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LibraryError:
            raise
        except (mongo_errors.PyMongoError, InvalidId) as exc:
            raise translate_store_error(exc) from exc
    return wrapper

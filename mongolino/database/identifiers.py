"""Identifier parsing."""

from typing import Any

from bson import ObjectId
from bson.errors import InvalidId

from ..exceptions import FormatError


def parse_object_id(value: Any) -> ObjectId:
    """
    Coerce an identifier to an ObjectId.

    Accepts an ObjectId, its 24 character hex text, or its 12 raw bytes.

    Raises:
        FormatError: If the value is not a valid identifier
    """
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError) as e:
        raise FormatError(f"Invalid identifier: {value!r}", value=value) from e

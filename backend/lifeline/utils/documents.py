from __future__ import annotations

from datetime import datetime
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId


def to_object_id(value: Any) -> Any:
    """Return ``value`` as an ObjectId when it parses as one, unchanged otherwise."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return value


def jsonable(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(item) for item in value]
    return value


def serialize_id(document: dict[str, Any]) -> dict[str, Any]:
    """Serialize MongoDB document ids for model construction."""
    if "_id" in document:
        document["_id"] = str(document["_id"])
    return document

from datetime import datetime
from typing import Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from flask import current_app
from pymongo import ASCENDING, DESCENDING

DB_EXTENSION_KEY = "bakeshop.db"


def get_db():
    return current_app.extensions[DB_EXTENSION_KEY]


def parse_object_id(value) -> Optional[ObjectId]:
    """Return an ObjectId for ``value`` or None when it is not a valid identifier."""
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str):
        return None
    try:
        return ObjectId(value.strip())
    except (InvalidId, TypeError):
        return None


def parse_object_ids(values: Iterable) -> List[ObjectId]:
    parsed: List[ObjectId] = []
    for value in values:
        object_id = parse_object_id(value)
        if object_id is not None and object_id not in parsed:
            parsed.append(object_id)
    return parsed


def utcnow() -> datetime:
    return datetime.utcnow()


def isoformat(value) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat() + "Z"
    return None


def ensure_indexes(app, db) -> None:
    try:
        db.users.create_index("username", unique=True)
        db.users.create_index("email", unique=True)
        db.categories.create_index("name", unique=True)
        db.products.create_index([("category", ASCENDING)])
        db.products.create_index([("created_at", DESCENDING)])
        db.orders.create_index([("user", ASCENDING), ("created_at", DESCENDING)])
        db.orders.create_index([("status", ASCENDING), ("created_at", ASCENDING)])
    except Exception as exc:
        app.logger.warning("Unable to ensure catalog and order indexes: %s", exc)

    try:
        db.audit_logs.create_index([("created_at", DESCENDING)])
        db.audit_logs.create_index([("actor", ASCENDING), ("action", ASCENDING)])
    except Exception as exc:
        app.logger.warning("Unable to ensure indexes for audit logs: %s", exc)

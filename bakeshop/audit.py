import re
from datetime import datetime, timedelta
from typing import Dict, Optional

from flask import current_app

from .store import get_db, isoformat, parse_object_id, utcnow

TARGET_TYPES = frozenset({"admin", "category", "product", "order"})
TARGET_LABEL_MAX_LENGTH = 140
DETAILS_MAX_LENGTH = 300
MAX_LISTED_LOGS = 300


def record_activity(
    actor, action: str, target_type: str, target_id, target_label, details: str = ""
) -> None:
    """Append one audit entry. Failures are logged and never reach the caller."""
    try:
        actor_id = actor.get("_id") if isinstance(actor, dict) else parse_object_id(actor)
        if actor_id is None:
            raise ValueError("audit entry requires an actor")
        if not action:
            raise ValueError("audit entry requires an action")
        if target_type not in TARGET_TYPES:
            raise ValueError(f"unknown audit target type {target_type!r}")

        get_db().audit_logs.insert_one(
            {
                "actor": actor_id,
                "action": str(action).strip(),
                "target_type": target_type,
                "target_id": parse_object_id(target_id) or target_id,
                "target_label": str(target_label or "").strip()[:TARGET_LABEL_MAX_LENGTH],
                "details": str(details or "").strip()[:DETAILS_MAX_LENGTH],
                "created_at": utcnow(),
            }
        )
    except Exception as exc:
        current_app.logger.warning("Unable to record audit log: %s", exc)


def parse_iso_date(value: Optional[str], *, end_of_day: bool = False):
    if not value:
        return None
    candidate = str(value).strip()
    if not candidate:
        return None
    date_only = re.fullmatch(r"\d{4}-\d{2}-\d{2}", candidate) is not None
    normalized = f"{candidate}T00:00:00" if date_only else candidate.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - (parsed.utcoffset() or timedelta(0))
    if end_of_day and date_only:
        return parsed + timedelta(days=1)
    return parsed


def build_log_query(search: str = "", start=None, end=None) -> Dict[str, object]:
    query: Dict[str, object] = {}
    search_term = (search or "").strip()
    if search_term:
        regex = re.compile(re.escape(search_term), re.IGNORECASE)
        query["$or"] = [{"action": regex}, {"target_label": regex}]

    start_date = parse_iso_date(start)
    end_date = parse_iso_date(end, end_of_day=True)
    if start_date or end_date:
        created_filter: Dict[str, datetime] = {}
        if start_date:
            created_filter["$gte"] = start_date
        if end_date:
            created_filter["$lt"] = end_date
        query["created_at"] = created_filter
    return query


def serialize_audit_log(document, actors: Dict) -> Dict[str, object]:
    actor = actors.get(document.get("actor"))
    target_id = document.get("target_id")
    return {
        "id": str(document.get("_id")),
        "actor": (
            {
                "id": str(actor["_id"]),
                "username": actor.get("username", ""),
                "role": actor.get("role", ""),
            }
            if actor
            else None
        ),
        "action": document.get("action") or "",
        "targetType": document.get("target_type") or "",
        "targetId": str(target_id) if target_id is not None else None,
        "targetLabel": document.get("target_label") or "",
        "details": document.get("details") or "",
        "createdAt": isoformat(document.get("created_at")),
    }


def list_recent_activity(query: Dict[str, object], limit: int = MAX_LISTED_LOGS):
    db = get_db()
    limit = min(max(int(limit), 1), MAX_LISTED_LOGS)
    documents = list(
        db.audit_logs.find(query).sort([("created_at", -1), ("_id", -1)]).limit(limit)
    )

    actor_ids = list({document.get("actor") for document in documents if document.get("actor")})
    actors = {}
    if actor_ids:
        for user in db.users.find({"_id": {"$in": actor_ids}}, {"username": 1, "role": 1}):
            actors[user["_id"]] = user

    return [serialize_audit_log(document, actors) for document in documents]

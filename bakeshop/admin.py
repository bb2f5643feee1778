from flask import Blueprint, jsonify, request

from .accounts import apply_profile_changes, create_account, read_credentials, serialize_user
from .audit import MAX_LISTED_LOGS, build_log_query, list_recent_activity, record_activity
from .errors import AuthorizationError, NotFoundError, ValidationError
from .guards import admin_or_owner_required, current_user, owner_required
from .roles import STAFF_ROLES, Role
from .store import get_db, parse_object_id

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

STAFF_ROLE_VALUES = [role.value for role in STAFF_ROLES]


def load_staff_account(admin_id: str, protected_message: str):
    object_id = parse_object_id(admin_id)
    if object_id is None:
        raise ValidationError("Invalid admin id")

    account = get_db().users.find_one({"_id": object_id})
    if not account or Role.parse(account.get("role")) not in STAFF_ROLES:
        raise NotFoundError("Admin account not found")
    if Role.parse(account.get("role")) is Role.OWNER:
        raise AuthorizationError(protected_message)
    return account


@admin_bp.route("/stats", methods=["GET"])
@admin_or_owner_required
def dashboard_stats():
    db = get_db()
    return jsonify(
        {
            "stats": {
                "users": db.users.count_documents({"role": Role.USER.value}),
                "admins": db.users.count_documents({"role": Role.ADMIN.value}),
                "owners": db.users.count_documents({"role": Role.OWNER.value}),
                "categories": db.categories.count_documents({}),
                "products": db.products.count_documents({}),
            }
        }
    )


@admin_bp.route("/admins", methods=["GET"])
@admin_or_owner_required
def list_admins():
    # "owner" sorts after "admin", so descending role puts owners first.
    documents = get_db().users.find(
        {"role": {"$in": STAFF_ROLE_VALUES}}, {"password": 0}
    ).sort([("role", -1), ("created_at", -1), ("_id", -1)])
    return jsonify({"admins": [serialize_user(document) for document in documents]})


@admin_bp.route("/admins", methods=["POST"])
@admin_or_owner_required
def create_admin():
    payload = request.get_json(silent=True) or {}
    credentials = read_credentials(payload)
    admin = create_account(
        credentials["username"],
        credentials["email"],
        credentials["password"],
        Role.ADMIN,
    )

    actor = current_user()
    record_activity(
        actor,
        "CREATED_ADMIN",
        "admin",
        admin["_id"],
        admin["username"],
        f"{actor.get('username')} added {admin['username']} as admin",
    )

    return jsonify({"message": "Admin created", "admin": serialize_user(admin)}), 201


@admin_bp.route("/admins/<admin_id>", methods=["PUT"])
@owner_required
def update_admin(admin_id: str):
    admin = load_staff_account(admin_id, "Owner account cannot be modified")

    payload = request.get_json(silent=True) or {}
    users = get_db().users
    updates = apply_profile_changes(admin, payload)
    if updates:
        users.update_one({"_id": admin["_id"]}, {"$set": updates})
        admin = users.find_one({"_id": admin["_id"]})

    actor = current_user()
    record_activity(
        actor,
        "UPDATED_ADMIN",
        "admin",
        admin["_id"],
        admin.get("username", ""),
        f"{actor.get('username')} updated admin {admin.get('username', '')}",
    )

    return jsonify({"message": "Admin updated", "admin": serialize_user(admin)})


@admin_bp.route("/admins/<admin_id>", methods=["DELETE"])
@owner_required
def delete_admin(admin_id: str):
    admin = load_staff_account(admin_id, "Owner account cannot be deleted")

    # Role in the filter keeps a concurrent promotion to owner from being deleted.
    result = get_db().users.delete_one({"_id": admin["_id"], "role": Role.ADMIN.value})
    if result.deleted_count == 0:
        raise NotFoundError("Admin account not found")

    actor = current_user()
    record_activity(
        actor,
        "DELETED_ADMIN",
        "admin",
        admin["_id"],
        admin.get("username", ""),
        f"{actor.get('username')} deleted admin {admin.get('username', '')}",
    )

    return jsonify({"message": "Admin deleted"})


@admin_bp.route("/logs", methods=["GET"])
@owner_required
def list_audit_logs():
    try:
        limit = int(request.args.get("limit", MAX_LISTED_LOGS))
    except (TypeError, ValueError):
        raise ValidationError("Invalid limit")

    query = build_log_query(
        search=request.args.get("search", ""),
        start=request.args.get("from") or request.args.get("start"),
        end=request.args.get("to") or request.args.get("end"),
    )
    return jsonify({"logs": list_recent_activity(query, limit)})

from flask import Blueprint, jsonify, make_response, request

from .accounts import (
    apply_profile_changes,
    check_password,
    create_account,
    find_by_login,
    read_credentials,
    serialize_user,
)
from .errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from .guards import current_user, login_required
from .roles import Role
from .store import get_db
from .tokens import clear_auth_cookie, issue_token, set_auth_cookie

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

ACCOUNT_TYPES = {"user", "admin"}


def session_response(body, status_code, user_document):
    token = issue_token(user_document["_id"], user_document.get("role"))
    response = make_response(jsonify({**body, "token": token}), status_code)
    return set_auth_cookie(response, token)


@auth_bp.route("/register", methods=["POST"])
def register():
    payload = request.get_json(silent=True) or {}
    credentials = read_credentials(payload)

    # Self-registration always yields a plain user, whatever the payload says.
    user = create_account(
        credentials["username"],
        credentials["email"],
        credentials["password"],
        Role.USER,
    )

    return session_response(
        {"message": "User registered successfully", "user": serialize_user(user)},
        201,
        user,
    )


@auth_bp.route("/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or {}
    account_type = str(payload.get("accountType") or "user").strip().lower()
    identifier = payload.get("usernameOrEmail")
    identifier = identifier.strip() if isinstance(identifier, str) else ""
    password = payload.get("password")

    if account_type not in ACCOUNT_TYPES:
        raise ValidationError("Invalid account type")
    if not identifier or not isinstance(password, str) or not password:
        raise ValidationError("username/email and password are required")

    user = find_by_login(identifier)
    if not user or not check_password(password, user.get("password")):
        raise AuthenticationError("Invalid credentials")

    if account_type == "admin" and not Role.parse(user.get("role")).at_least(Role.ADMIN):
        raise AuthorizationError("Admin account required")

    return session_response(
        {"message": "Login successful", "user": serialize_user(user)}, 200, user
    )


@auth_bp.route("/logout", methods=["POST"])
def logout():
    response = make_response(jsonify({"message": "Logged out"}), 200)
    return clear_auth_cookie(response)


@auth_bp.route("/me", methods=["GET"])
@login_required
def get_me():
    return jsonify({"user": serialize_user(current_user())})


@auth_bp.route("/me", methods=["PUT"])
@login_required
def update_me():
    payload = request.get_json(silent=True) or {}
    users = get_db().users
    user = users.find_one({"_id": current_user()["_id"]})
    if not user:
        raise NotFoundError("User not found")

    updates = apply_profile_changes(user, payload)
    if updates:
        users.update_one({"_id": user["_id"]}, {"$set": updates})
        user = users.find_one({"_id": user["_id"]})

    return jsonify({"message": "Profile updated", "user": serialize_user(user)})

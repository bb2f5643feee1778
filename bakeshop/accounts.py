import re
from typing import Dict, Optional

import bcrypt
from flask import current_app

from .errors import ConflictError, ValidationError
from .roles import Role
from .store import get_db, isoformat, utcnow

EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30
PASSWORD_MIN_LENGTH = 8


def normalize_email(value: Optional[str]) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("Invalid email format")
    return value.strip().lower()


def normalize_username(value: Optional[str]) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("Invalid username")
    return value.strip()


def is_valid_email(value: Optional[str]) -> bool:
    if not isinstance(value, str):
        return False
    normalized = normalize_email(value)
    return bool(normalized and EMAIL_REGEX.match(normalized))


def validate_username(username: str) -> str:
    if len(username) < USERNAME_MIN_LENGTH:
        raise ValidationError(
            f"Username must contain at least {USERNAME_MIN_LENGTH} characters"
        )
    if len(username) > USERNAME_MAX_LENGTH:
        raise ValidationError(
            f"Username must contain at most {USERNAME_MAX_LENGTH} characters"
        )
    return username


def validate_email(email: str) -> str:
    if not is_valid_email(email):
        raise ValidationError("Invalid email format")
    return email


def validate_password(password: str) -> str:
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"Password must contain at least {PASSWORD_MIN_LENGTH} characters"
        )
    return password


def hash_password(password: str) -> bytes:
    rounds = int(current_app.config.get("BCRYPT_ROUNDS", 12))
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))


def check_password(password: str, hashed) -> bool:
    if not hashed:
        return False
    if isinstance(hashed, str):
        hashed = hashed.encode("utf-8")
    try:
        return bcrypt.checkpw(password.encode("utf-8"), bytes(hashed))
    except ValueError:
        return False


def serialize_user(user_document) -> Dict[str, object]:
    return {
        "id": str(user_document.get("_id")),
        "username": user_document.get("username", ""),
        "email": user_document.get("email", ""),
        "role": Role.parse(user_document.get("role")).value,
        "createdAt": isoformat(user_document.get("created_at")),
    }


def find_by_login(identifier: str):
    normalized = str(identifier or "").strip()
    return get_db().users.find_one(
        {"$or": [{"username": normalized}, {"email": normalized.lower()}]}
    )


def ensure_available(username: Optional[str] = None, email: Optional[str] = None, exclude_id=None):
    """Raise ConflictError when another account already uses the username or email."""
    users = get_db().users
    scope = {"_id": {"$ne": exclude_id}} if exclude_id is not None else {}

    if username and email:
        if users.find_one({"$or": [{"username": username}, {"email": email}], **scope}):
            raise ConflictError("Username or email already in use")
        return
    if username and users.find_one({"username": username, **scope}):
        raise ConflictError("Username already in use")
    if email and users.find_one({"email": email, **scope}):
        raise ConflictError("Email already in use")


def read_credentials(payload: Dict) -> Dict[str, str]:
    username = normalize_username(payload.get("username"))
    email = normalize_email(payload.get("email"))
    password = payload.get("password")
    password = password if isinstance(password, str) else ""

    if not username or not email or not password:
        raise ValidationError("username, email and password are required")

    return {
        "username": validate_username(username),
        "email": validate_email(email),
        "password": validate_password(password),
    }


def create_account(username: str, email: str, password: str, role: Role):
    ensure_available(username=username, email=email)
    user_document = {
        "username": username,
        "email": email,
        "password": hash_password(password),
        "role": Role(role).value,
        "created_at": utcnow(),
    }
    # The unique indexes turn a lost race into DuplicateKeyError (409).
    insert_result = get_db().users.insert_one(user_document)
    user_document["_id"] = insert_result.inserted_id
    return user_document


def apply_profile_changes(user_document, payload: Dict) -> Dict[str, object]:
    """
    Validate a partial ``{username, email, password}`` update for ``user_document``.

    Returns the ``$set`` document; fields equal to the stored value are skipped.
    """
    username = normalize_username(payload.get("username"))
    email = normalize_email(payload.get("email"))
    password = payload.get("password")
    password = password if isinstance(password, str) else ""

    if not username and not email and not password:
        raise ValidationError("At least one field is required")

    updates: Dict[str, object] = {}
    if username and username != user_document.get("username"):
        validate_username(username)
        ensure_available(username=username, exclude_id=user_document["_id"])
        updates["username"] = username

    if email and email != user_document.get("email"):
        validate_email(email)
        ensure_available(email=email, exclude_id=user_document["_id"])
        updates["email"] = email

    if password:
        validate_password(password)
        updates["password"] = hash_password(password)

    return updates

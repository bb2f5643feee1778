"""
Access control decorators.

``authenticate`` turns the session cookie into ``g.current_user``; the role
decorators stack a check of the user < admin < owner hierarchy on top of it.
"""

from functools import wraps

from flask import after_this_request, current_app, g
from pymongo.errors import PyMongoError

from .errors import AuthenticationError, AuthorizationError, ServiceUnavailableError
from .roles import Role
from .store import get_db, parse_object_id
from .tokens import (
    issue_token,
    needs_renewal,
    read_request_token,
    set_auth_cookie,
    verify_token,
)


def authenticate():
    token = read_request_token()
    if not token:
        raise AuthenticationError("Not authorized: no token")

    claims = verify_token(token)
    account_id = parse_object_id(claims.account_id)
    if account_id is None:
        raise AuthenticationError("Not authorized: invalid token")

    try:
        user = get_db().users.find_one({"_id": account_id}, {"password": 0})
    except PyMongoError as exc:
        current_app.logger.error("Unable to load session account: %s", exc)
        raise ServiceUnavailableError("Authentication service unavailable")

    if not user:
        raise AuthenticationError("Not authorized: user not found")

    g.current_user = user

    if needs_renewal(claims):
        renewed_token = issue_token(user["_id"], user.get("role"))

        @after_this_request
        def replace_session_cookie(response):
            return set_auth_cookie(response, renewed_token)

    return user


def current_user():
    return g.current_user


def role_required(minimum: Role, message: str):
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            user = authenticate()
            if not Role.parse(user.get("role")).at_least(minimum):
                raise AuthorizationError(message)
            return view(*args, **kwargs)

        return wrapper

    return decorator


login_required = role_required(Role.USER, "Not authorized")
admin_or_owner_required = role_required(Role.ADMIN, "Admin/Owner access required")
owner_required = role_required(Role.OWNER, "Owner access required")

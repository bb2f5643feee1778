"""
Session tokens.

Tokens are JWTs signed with ``JWT_SECRET_KEY`` and carried in an HTTP-only
cookie. A token that is close to expiry is replaced on the same response
(see ``bakeshop.guards.authenticate``).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from flask import Response, current_app, request
from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException

from .errors import AuthenticationError, ConfigurationError
from .roles import Role


@dataclass(frozen=True)
class TokenClaims:
    account_id: str
    role: Role
    expires_at: datetime

    def seconds_remaining(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (self.expires_at - now).total_seconds()


def _require_secret() -> None:
    if not current_app.config.get("JWT_SECRET_KEY"):
        raise ConfigurationError("JWT secret not configured")


def token_lifetime() -> timedelta:
    return current_app.config["JWT_ACCESS_TOKEN_EXPIRES"]


def issue_token(account_id, role, expires_delta: Optional[timedelta] = None) -> str:
    _require_secret()
    return create_access_token(
        identity=str(account_id),
        additional_claims={"role": Role.parse(role).value},
        expires_delta=expires_delta,
    )


def verify_token(token: str) -> TokenClaims:
    _require_secret()
    try:
        decoded = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Not authorized: token expired")
    except (jwt.InvalidTokenError, JWTExtendedException):
        raise AuthenticationError("Not authorized: invalid token")

    account_id = decoded.get(current_app.config.get("JWT_IDENTITY_CLAIM", "sub"))
    expires = decoded.get("exp")
    if not account_id or not isinstance(expires, (int, float)):
        raise AuthenticationError("Not authorized: invalid token")

    return TokenClaims(
        account_id=str(account_id),
        role=Role.parse(decoded.get("role")),
        expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
    )


def needs_renewal(claims: TokenClaims, now: Optional[datetime] = None) -> bool:
    window = current_app.config.get("JWT_REFRESH_WINDOW_SECONDS", 24 * 60 * 60)
    remaining = claims.seconds_remaining(now)
    return 0 < remaining <= window


def cookie_name() -> str:
    return current_app.config.get("JWT_ACCESS_COOKIE_NAME", "token")


def read_request_token() -> Optional[str]:
    return request.cookies.get(cookie_name()) or None


def is_secure_transport() -> bool:
    # COOKIE_SECURE wins; otherwise trust the scheme ProxyFix resolved.
    forced = current_app.config.get("COOKIE_SECURE")
    if forced is not None:
        return bool(forced)
    return request.is_secure


def cookie_options() -> dict:
    secure = is_secure_transport()
    return {
        "httponly": True,
        "secure": secure,
        "samesite": "None" if secure else "Lax",
        "path": "/",
    }


def set_auth_cookie(response: Response, token: str) -> Response:
    response.set_cookie(
        cookie_name(),
        token,
        max_age=int(token_lifetime().total_seconds()),
        **cookie_options(),
    )
    return response


def clear_auth_cookie(response: Response) -> Response:
    options = cookie_options()
    response.delete_cookie(
        cookie_name(),
        path=options["path"],
        secure=options["secure"],
        httponly=options["httponly"],
        samesite=options["samesite"],
    )
    return response

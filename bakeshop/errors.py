"""
Error types raised by request handlers and the terminal handler that renders them.
"""

import traceback

from flask import Flask, jsonify, request
from pymongo.errors import DuplicateKeyError
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    """Base class for errors that carry an HTTP status."""

    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message=None, status_code=None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(ApiError):
    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(ApiError):
    status_code = 401
    default_message = "Not authorized"


class AuthorizationError(ApiError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ApiError):
    status_code = 409
    default_message = "Resource already exists"


class ConfigurationError(ApiError):
    """A required secret or integration key is missing."""

    status_code = 500
    default_message = "Server is not configured"


class UpstreamError(ApiError):
    """The payment provider (or another external service) failed."""

    status_code = 502
    default_message = "Upstream service failed"


class ServiceUnavailableError(ApiError):
    status_code = 503
    default_message = "Service unavailable"


def register_error_handlers(app: Flask) -> None:
    """Install the single terminal handler for every error the app can raise."""

    def is_production() -> bool:
        return str(app.config.get("APP_ENV", "")).strip().lower() == "production"

    def render(error: Exception, status_code: int, message: str):
        if status_code >= 500:
            app.logger.error(
                "Request failed with %s: %s", status_code, message, exc_info=error
            )

        if is_production():
            body = {
                "message": "Internal Server Error" if status_code >= 500 else message
            }
        else:
            body = {
                "message": message,
                "stack": "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                ),
            }
        return jsonify(body), status_code

    @app.errorhandler(ApiError)
    def handle_api_error(error: ApiError):
        return render(error, error.status_code, error.message)

    @app.errorhandler(DuplicateKeyError)
    def handle_duplicate_key(error: DuplicateKeyError):
        return render(error, 409, "Resource already exists")

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        if error.code == 404:
            message = f"Route not found: {request.path}"
        else:
            message = error.description or error.name
        return render(error, error.code or 500, message)

    @app.errorhandler(Exception)
    def handle_unexpected(error: Exception):
        return render(error, 500, str(error) or "Internal Server Error")

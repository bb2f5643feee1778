import logging
import os
from datetime import timedelta
from typing import Dict, List, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo
from werkzeug.middleware.proxy_fix import ProxyFix

from .admin import admin_bp
from .auth import auth_bp
from .catalog import categories_bp, products_bp
from .cli import register_commands
from .errors import register_error_handlers
from .orders import orders_bp
from .payments import PAYMENTS_EXTENSION_KEY, StripeCheckoutClient
from .store import DB_EXTENSION_KEY, ensure_indexes
from .uploads import uploads_bp

load_dotenv()

DEFAULT_CLIENT_URL = "http://localhost:5173"


def read_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def read_optional_bool(name: str) -> Optional[bool]:
    value = (os.getenv(name) or "").strip().lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return None


def read_origins() -> List[str]:
    origins = [
        (os.getenv("CLIENT_URL") or DEFAULT_CLIENT_URL).strip(),
    ]
    for origin in (os.getenv("CORS_ALLOWED_ORIGINS") or "").split(","):
        trimmed = origin.strip()
        if trimmed:
            origins.append(trimmed)
    return [origin.rstrip("/") for origin in dict.fromkeys(origins) if origin]


def create_app(config_overrides: Optional[Dict] = None, database=None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # --- Configuration ---
    max_upload_mb = read_int("MAX_UPLOAD_SIZE_MB", 5)
    app.config.update(
        APP_ENV=os.getenv("APP_ENV", "development"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        MONGO_URI=os.getenv("MONGO_URI", "mongodb://localhost:27017/bakeshop"),
        JWT_SECRET_KEY=os.getenv("JWT_SECRET_KEY", ""),
        JWT_ACCESS_TOKEN_EXPIRES=timedelta(
            seconds=read_int("JWT_EXPIRES_SECONDS", 7 * 24 * 60 * 60)
        ),
        JWT_REFRESH_WINDOW_SECONDS=read_int("JWT_REFRESH_WINDOW_SECONDS", 24 * 60 * 60),
        JWT_TOKEN_LOCATION=["cookies"],
        JWT_ACCESS_COOKIE_NAME="token",
        JWT_COOKIE_CSRF_PROTECT=False,
        COOKIE_SECURE=read_optional_bool("COOKIE_SECURE"),
        TRUSTED_PROXY_HOPS=max(0, read_int("TRUSTED_PROXY_HOPS", 1)),
        CORS_ORIGINS=read_origins(),
        CLIENT_URL=(os.getenv("CLIENT_URL") or DEFAULT_CLIENT_URL).strip(),
        STRIPE_SECRET_KEY=os.getenv("STRIPE_SECRET_KEY", ""),
        STRIPE_API_BASE=os.getenv("STRIPE_API_BASE", "https://api.stripe.com"),
        PAYMENT_CURRENCY=os.getenv("PAYMENT_CURRENCY", "eur").strip().lower(),
        PAYMENT_TIMEOUT_SECONDS=read_int("PAYMENT_TIMEOUT_SECONDS", 10),
        UPLOAD_FOLDER=os.getenv("UPLOAD_DIR") or os.path.join(app.root_path, "uploads"),
        MAX_UPLOAD_BYTES=max_upload_mb * 1024 * 1024,
        # Room for the multipart envelope around a maximum-size image.
        MAX_CONTENT_LENGTH=(max_upload_mb + 1) * 1024 * 1024,
        BCRYPT_ROUNDS=read_int("BCRYPT_ROUNDS", 12),
    )
    app.config.update(config_overrides or {})

    app.logger.setLevel(
        getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO)
    )

    # Honor proxy headers so the session cookie follows the public scheme.
    trusted_proxy_hops = app.config["TRUSTED_PROXY_HOPS"]
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    # --- Initialize extensions ---
    CORS(
        app,
        supports_credentials=True,
        origins=app.config["CORS_ORIGINS"] or "*",
    )
    JWTManager(app)

    if database is None:
        database = PyMongo(app).db
    app.extensions[DB_EXTENSION_KEY] = database
    app.extensions[PAYMENTS_EXTENSION_KEY] = StripeCheckoutClient(
        app.config["STRIPE_SECRET_KEY"],
        api_base=app.config["STRIPE_API_BASE"],
        timeout=app.config["PAYMENT_TIMEOUT_SECONDS"],
    )
    ensure_indexes(app, database)

    # --- Routes ---
    app.register_blueprint(auth_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(categories_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(uploads_bp)

    @app.route("/api/health")
    def health():
        return jsonify({"status": "ok"}), 200

    register_error_handlers(app)
    register_commands(app)

    return app

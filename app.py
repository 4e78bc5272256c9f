"""Flask web application for the client back office: admin dashboard, client portal and JSON API."""
from dotenv import load_dotenv
load_dotenv()  # Load environment variables from .env file

import logging
import os

from flask import Flask, jsonify, render_template
from flask_cors import CORS

from auth import TokenService, login_manager
from commands import register_commands
from database import db, init_db
from errors import register_error_handlers
from mailer import Mailer
from security import limiter
from storage import build_storage

logger = logging.getLogger(__name__)


def _env_bool(name, default="false"):
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _database_url():
    db_url = os.getenv("DATABASE_URL", "sqlite:///client_portal.db")
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql://", 1)
    return db_url


def load_config() -> dict:
    """Application settings read from the environment (.env included)."""
    app_env = os.getenv("APP_ENV", os.getenv("FLASK_ENV", "production")).lower()
    max_file_size = 10 * 1024 * 1024  # 10MB
    max_files = 5
    return {
        "APP_ENV": app_env,
        "IS_PRODUCTION": app_env == "production",
        "SECRET_KEY": os.getenv("SECRET_KEY", "your-secret-key-change-in-production"),
        "SQLALCHEMY_DATABASE_URI": _database_url(),
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "SQLALCHEMY_ENGINE_OPTIONS": {"pool_pre_ping": True, "pool_recycle": 300},
        "AUTO_CREATE_DB": _env_bool("AUTO_CREATE_DB", "true"),
        "BCRYPT_ROUNDS": int(os.getenv("BCRYPT_ROUNDS", "12")),
        # Admin identity
        "ADMIN_USERNAME": os.getenv("ADMIN_USERNAME", "admin"),
        "ADMIN_PASSWORD": os.getenv("ADMIN_PASSWORD", "admin123"),
        "ADMIN_EMAIL": os.getenv("ADMIN_EMAIL"),
        "ADMIN_LOCK_MINUTES": int(os.getenv("ADMIN_LOCK_MINUTES", "120")),
        # Rate limiting (fixed window, memory or Redis)
        "RATELIMIT_STORAGE_URI": os.getenv("REDIS_URL", "memory://"),
        "RATELIMIT_STRATEGY": "fixed-window",
        "RATELIMIT_HEADERS_ENABLED": True,
        "AUTH_RATE_LIMIT": os.getenv("AUTH_RATE_LIMIT", "5 per 15 minutes"),
        "API_RATE_LIMIT": os.getenv("API_RATE_LIMIT", "100 per minute"),
        "MESSAGE_RATE_LIMIT": os.getenv("MESSAGE_RATE_LIMIT", "10 per minute"),
        "UPLOAD_RATE_LIMIT": os.getenv("UPLOAD_RATE_LIMIT", "5 per minute"),
        # Uploads and storage
        "MAX_FILE_SIZE": max_file_size,
        "MAX_FILES": max_files,
        "MAX_CONTENT_LENGTH": max_file_size * max_files + 1024 * 1024,  # multipart overhead
        "STORAGE_BACKEND": os.getenv("STORAGE_BACKEND", "local"),
        "UPLOAD_DIR": os.getenv("UPLOAD_DIR", "uploads"),
        "S3_BUCKET": os.getenv("S3_BUCKET"),
        "S3_REGION": os.getenv("S3_REGION"),
        "S3_ENDPOINT_URL": os.getenv("S3_ENDPOINT_URL"),
        "AWS_ACCESS_KEY_ID": os.getenv("AWS_ACCESS_KEY_ID"),
        "AWS_SECRET_ACCESS_KEY": os.getenv("AWS_SECRET_ACCESS_KEY"),
        "SIGNED_URL_TTL": int(os.getenv("SIGNED_URL_TTL", str(15 * 60))),
        # Email
        "EMAIL_SENDER": os.getenv("EMAIL_SENDER"),
        "EMAIL_PASSWORD": os.getenv("EMAIL_PASSWORD"),
        "SMTP_SERVER": os.getenv("SMTP_SERVER"),
        "SMTP_PORT": os.getenv("SMTP_PORT"),
        "SENDGRID_API_KEY": os.getenv("SENDGRID_API_KEY"),
        "CORS_ORIGINS": [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()],
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO").upper(),
    }


def _mask_email(email: str) -> str:
    if not email or "@" not in email:
        return ""
    name, domain = email.split("@", 1)
    if len(name) <= 2:
        masked = name[0] + "*"
    else:
        masked = name[0] + "*" * (len(name) - 2) + name[-1]
    return f"{masked}@{domain}"


def _register_cors(app):
    origins = app.config["CORS_ORIGINS"]
    if not origins:
        return
    CORS(
        app,
        resources={r"/(auth|admin|client)(/.*)?": {"origins": origins}},
        supports_credentials=True,
        allow_headers=["Authorization", "Content-Type"],
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    )


def _log_startup(app):
    # Startup diagnostics (no secrets)
    config = app.config
    logger.info(f"[STARTUP] Environment: {config['APP_ENV']}")
    logger.info(f"[STARTUP] Database: {config['SQLALCHEMY_DATABASE_URI'].split(':', 1)[0]}")
    logger.info(f"[STARTUP] File storage: {app.extensions['file_storage'].provider}")
    logger.info(f"[STARTUP] Email configured: {'yes' if app.extensions['mailer'].configured else 'no'}")
    logger.info(f"[STARTUP] Rate limit storage: {'redis' if config['RATELIMIT_STORAGE_URI'].startswith('redis') else 'memory'}")
    if config["IS_PRODUCTION"] and config["SECRET_KEY"] == "your-secret-key-change-in-production":
        logger.warning("[STARTUP] SECRET_KEY is the default value, set it before going live")


def create_app(overrides=None):
    """Build the Flask app; ``overrides`` is merged over the environment config (used by tests)."""
    app = Flask(__name__)
    app.config.update(load_config())
    if overrides:
        app.config.update(overrides)
        if "APP_ENV" in overrides and "IS_PRODUCTION" not in overrides:
            app.config["IS_PRODUCTION"] = overrides["APP_ENV"] == "production"

    logging.basicConfig(level=app.config["LOG_LEVEL"], format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    init_db(app)
    limiter.init_app(app)
    login_manager.init_app(app)

    app.extensions["token_service"] = TokenService(app.config["SECRET_KEY"])
    app.extensions["file_storage"] = app.config.get("FILE_STORAGE") or build_storage(app.config)
    app.extensions["mailer"] = Mailer.from_config(app.config)

    register_error_handlers(app)
    _register_cors(app)

    from routes.admin import admin_bp
    from routes.auth import auth_bp
    from routes.client import client_bp
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(client_bp)

    @app.context_processor
    def inject_utils():
        return {"mask_email": _mask_email, "app_env": app.config["APP_ENV"]}

    @app.route("/")
    def home():
        return render_template("home.html")

    @app.route("/health")
    def health():
        try:
            db.session.execute(db.text("SELECT 1"))
            database = "ok"
        except Exception as e:
            logger.error(f"[HEALTH] Database check failed: {e}")
            db.session.rollback()
            database = "error"
        return jsonify({"status": "ok" if database == "ok" else "degraded", "database": database})

    register_commands(app)
    _log_startup(app)
    return app


if __name__ == "__main__":
    application = create_app()
    application.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")),
                    debug=application.config["APP_ENV"] == "development")

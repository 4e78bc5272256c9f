"""Typed API errors and the Flask handlers that render them as JSON."""
import logging
import traceback

from flask import jsonify, render_template, request
from flask_limiter.errors import RateLimitExceeded
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from database import db

logger = logging.getLogger(__name__)

API_PREFIXES = ("/auth/", "/admin/", "/client/")


class ApiError(Exception):
    """An error with an HTTP status and a stable machine-readable code."""

    def __init__(self, status, code, message, details=None):
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationFailed(ApiError):
    def __init__(self, details):
        super().__init__(400, "VALIDATION_ERROR", "Validation failed", details)


class NotFound(ApiError):
    def __init__(self, code="NOT_FOUND", message="Not found"):
        super().__init__(404, code, message)


def _wants_json() -> bool:
    if request.accept_mimetypes.best == "text/html":  # browser navigation
        return False
    return request.is_json or request.path.startswith(API_PREFIXES)


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(error):
        if error.status >= 500:
            logger.error("[ERROR] %s %s -> %s: %s", request.method, request.path, error.code, error.message)
        return jsonify(error.to_dict()), error.status

    @app.errorhandler(RateLimitExceeded)
    def handle_rate_limit(error):
        message = error.description or "Too many requests, please try again later"
        logger.warning("[RATE_LIMIT] %s %s from %s", request.method, request.path, request.remote_addr)
        return jsonify({"error": message, "code": "RATE_LIMIT_EXCEEDED"}), 429

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(error):
        max_mb = app.config["MAX_FILE_SIZE"] // (1024 * 1024)
        return jsonify({
            "error": f"File too large. Maximum size is {max_mb}MB",
            "code": "FILE_TOO_LARGE",
        }), 400

    @app.errorhandler(404)
    def handle_not_found(error):
        if _wants_json():
            return jsonify({"error": "Resource not found", "code": "NOT_FOUND"}), 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description, "code": error.name.upper().replace(" ", "_")}), error.code
        db.session.rollback()
        logger.exception("[ERROR] Unhandled error on %s %s", request.method, request.path)
        body = {"error": "Internal server error", "code": "INTERNAL_ERROR"}
        if not app.config.get("IS_PRODUCTION"):
            body["stack"] = traceback.format_exc()
        return jsonify(body), 500

"""Request validation and rate limiting shared by every route module."""
import logging

from flask import current_app, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from pydantic import ValidationError

from errors import ValidationFailed

logger = logging.getLogger(__name__)

# Rate limiting (storage and strategy come from app.config, see create_app)
limiter = Limiter(get_remote_address)


@limiter.request_filter
def _skip_in_development():
    return current_app.config.get("APP_ENV") == "development"


# One counter per endpoint class, shared by every route decorated with it
auth_limit = limiter.shared_limit(
    lambda: current_app.config["AUTH_RATE_LIMIT"],
    scope="auth",
    error_message="Too many authentication attempts, please try again after 15 minutes",
    exempt_when=lambda: request.method == "GET",
)
api_limit = limiter.shared_limit(
    lambda: current_app.config["API_RATE_LIMIT"],
    scope="api",
    error_message="Too many API requests, please try again after 1 minute",
)
message_limit = limiter.shared_limit(
    lambda: current_app.config["MESSAGE_RATE_LIMIT"],
    scope="messages",
    error_message="Too many messages sent, please try again after 1 minute",
)
upload_limit = limiter.shared_limit(
    lambda: current_app.config["UPLOAD_RATE_LIMIT"],
    scope="uploads",
    error_message="Too many file uploads, please try again after 1 minute",
)

DANGEROUS_KEYS = ("__proto__", "constructor", "prototype")
SECRET_FIELDS = ("password", "confirmPassword")


def sanitize(value):
    """Drop prototype-pollution style keys from nested mappings."""
    if isinstance(value, dict):
        return {k: sanitize(v) for k, v in value.items() if k not in DANGEROUS_KEYS}
    if isinstance(value, list):
        return [sanitize(v) for v in value]
    return value


def request_payload() -> dict:
    if request.is_json:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}
    else:
        payload = request.form.to_dict()
    return sanitize(payload)


def _field_errors(exc: ValidationError, payload: dict) -> list:
    details = []
    for error in exc.errors():
        field = str(error["loc"][0]) if error["loc"] else "body"
        if error["type"] == "missing":
            message = f"{field} is required"
        elif error["type"] == "value_error":
            message = str(error["ctx"]["error"])
        else:
            message = error["msg"]
        value = payload.get(field)
        if field in SECRET_FIELDS:
            value = ""
        details.append({"field": field, "message": message, "value": value})
    return details


def validate_request(schema, payload=None):
    """Parse the request body with ``schema`` or raise ValidationFailed."""
    payload = request_payload() if payload is None else sanitize(payload)
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        details = _field_errors(exc, payload)
        logger.info("[VALIDATION] %s %s rejected: %s", request.method, request.path,
                    ", ".join(d["field"] for d in details))
        raise ValidationFailed(details)

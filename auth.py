"""Signed, expiring tokens for admins and clients, and the guards that check them."""
import logging
from functools import wraps

from flask import current_app, g, redirect, request, url_for
from flask_login import LoginManager, current_user
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from database import Admin, Client, DEFAULT_ADMIN_PERMISSIONS, db
from errors import ApiError

logger = logging.getLogger(__name__)

ADMIN_TOKEN_MAX_AGE = 8 * 60 * 60  # 8 hours
CLIENT_TOKEN_MAX_AGE = 7 * 24 * 60 * 60  # 7 days
ADMIN_COOKIE = "adminToken"

login_manager = LoginManager()  # admin UI session variant
login_manager.login_view = "auth.admin_login_page"


@login_manager.user_loader
def load_admin(admin_id):
    return db.session.get(Admin, int(admin_id))


class TokenError(Exception):
    def __init__(self, message, expired=False):
        super().__init__(message)
        self.expired = expired


class TokenService:
    """Issues and verifies URL-safe timed tokens carrying a role claim."""

    salt = "auth-token"

    def __init__(self, secret_key):
        self._serializer = URLSafeTimedSerializer(secret_key, salt=self.salt)

    def issue_admin_token(self, admin) -> str:
        return self._serializer.dumps({
            "id": getattr(admin, "id", None) or "admin",
            "username": getattr(admin, "username", "admin"),
            "role": "admin",
            "permissions": list(getattr(admin, "permissions", None) or DEFAULT_ADMIN_PERMISSIONS),
        })

    def issue_client_token(self, client) -> str:
        return self._serializer.dumps({
            "clientId": client.client_id,
            "email": client.email,
            "role": "client",
        })

    def verify(self, token, max_age=CLIENT_TOKEN_MAX_AGE) -> dict:
        try:
            claims = self._serializer.loads(token, max_age=max_age)
        except SignatureExpired:
            raise TokenError("Token expired", expired=True)
        except BadSignature:
            raise TokenError("Invalid token")
        if not isinstance(claims, dict) or claims.get("role") not in ("admin", "client"):
            raise TokenError("Invalid token")
        return claims

    def verify_any(self, token) -> dict:
        """Verify against the lifetime that matches the token's role."""
        claims = self.verify(token, max_age=CLIENT_TOKEN_MAX_AGE)
        if claims["role"] == "admin":
            claims = self.verify(token, max_age=ADMIN_TOKEN_MAX_AGE)
        return claims


def get_token_service() -> TokenService:
    return current_app.extensions["token_service"]


def bearer_token():
    header = request.headers.get("Authorization", "")
    parts = header.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1].strip():
        return parts[1].strip()
    return None


def is_development() -> bool:
    return current_app.config.get("APP_ENV") == "development"


def token_required(view):
    """Any valid admin or client token in the Authorization header."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        token = bearer_token()
        if not token:
            raise ApiError(401, "NO_TOKEN", "Access token required")
        try:
            g.token_claims = get_token_service().verify_any(token)
        except TokenError:
            raise ApiError(403, "INVALID_TOKEN", "Invalid or expired token")
        return view(*args, **kwargs)
    return wrapper


def _browser_navigation() -> bool:
    return request.method == "GET" and request.accept_mimetypes.best == "text/html"


def admin_required(view):
    """Admin token from the bearer header or http-only cookie, or a logged-in admin session."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        if current_user.is_authenticated and isinstance(current_user._get_current_object(), Admin):
            g.admin_claims = {
                "id": current_user.id,
                "username": current_user.username,
                "role": current_user.role,
                "permissions": list(current_user.permissions or []),
            }
            return view(*args, **kwargs)

        token = bearer_token() or request.cookies.get(ADMIN_COOKIE)
        if not token:
            if _browser_navigation():
                return redirect(url_for("auth.admin_login_page"))
            raise ApiError(401, "NO_ADMIN_TOKEN", "Admin access required")
        try:
            claims = get_token_service().verify(token, max_age=ADMIN_TOKEN_MAX_AGE)
        except TokenError:
            claims = None
        if not claims or claims.get("role") != "admin":
            if _browser_navigation():
                return redirect(url_for("auth.admin_login_page"))
            raise ApiError(403, "INVALID_ADMIN_TOKEN", "Admin access denied")
        g.admin_claims = claims
        return view(*args, **kwargs)
    return wrapper


def permission_required(permission):
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            claims = getattr(g, "admin_claims", None) or {}
            if permission not in (claims.get("permissions") or []):
                raise ApiError(403, "INSUFFICIENT_PERMISSIONS", f"Missing permission: {permission}")
            return view(*args, **kwargs)
        return wrapper
    return decorator


def current_admin():
    """The Admin row behind the current request, if it still exists."""
    claims = getattr(g, "admin_claims", None) or {}
    admin_id = claims.get("id")
    if isinstance(admin_id, int):
        return db.session.get(Admin, admin_id)
    return Admin.query.filter_by(username=claims.get("username")).first()


def client_required(view):
    """Bearer client token whose clientId matches the clientId in the path.

    In development an unauthenticated request is let through when the path
    clientId belongs to an existing client.
    """
    @wraps(view)
    def wrapper(client_id, *args, **kwargs):
        token = bearer_token()

        if is_development() and not token:
            client = Client.find_by_client_id(client_id)
            if client:
                g.client = client
                return view(client_id, *args, **kwargs)

        if not token:
            raise ApiError(401, "NO_CLIENT_TOKEN", "Client authentication required")
        try:
            claims = get_token_service().verify(token, max_age=CLIENT_TOKEN_MAX_AGE)
        except TokenError:
            raise ApiError(403, "INVALID_CLIENT_TOKEN", "Invalid client token")
        if claims.get("role") != "client" or claims.get("clientId") != client_id:
            raise ApiError(403, "CLIENT_ACCESS_DENIED", "Client access denied")

        client = Client.find_by_client_id(client_id)
        if client is None:
            raise ApiError(403, "CLIENT_ACCESS_DENIED", "Client access denied")
        g.client = client
        return view(client_id, *args, **kwargs)
    return wrapper

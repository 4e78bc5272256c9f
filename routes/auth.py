"""Authentication routes: client registration/login, admin login, verification and password reset."""
import hashlib
import logging
import secrets
from datetime import timedelta

from flask import Blueprint, current_app, flash, g, jsonify, redirect, render_template, request, url_for
from flask_login import login_user, logout_user
from sqlalchemy.exc import IntegrityError

from auth import ADMIN_COOKIE, ADMIN_TOKEN_MAX_AGE, get_token_service, token_required
from database import Client, PlatformCredential, db, generate_client_id, get_or_create_admin, utcnow
from errors import ApiError, ValidationFailed
from mailer import get_mailer
from schemas import AdminLogin, ClientLogin, ClientRegistration, PasswordReset, PasswordResetRequest
from security import auth_limit, validate_request

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

RESET_TOKEN_TTL = timedelta(minutes=10)
RESET_SENT_MESSAGE = "If an account with that email exists, a password reset link has been sent."


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# --- Pages ---

@auth_bp.route("/client-login")
def client_login_page():
    return render_template("auth/client_login.html", title="Client Login")


@auth_bp.route("/client-register")
def client_register_page():
    return render_template("auth/client_register.html", title="Client Registration")


@auth_bp.route("/forgot-password")
def forgot_password_page():
    return render_template("auth/forgot_password.html", title="Forgot Password")


@auth_bp.route("/reset-password/<token>")
def reset_password_page(token):
    return render_template("auth/reset_password.html", title="Reset Password", token=token)


# --- Client ---

@auth_bp.route("/client/register", methods=["POST"])
@auth_limit
def client_register():
    data = validate_request(ClientRegistration)

    if Client.find_by_email(data.email):
        raise ApiError(409, "CLIENT_EXISTS", "Client with this email already exists")

    try:
        client = Client(
            client_id=generate_client_id(),
            name=data.name,
            email=data.email,
            status="active",
            plan="free",
            email_verification_token=secrets.token_urlsafe(32),
        )
        # hashed by the before_insert hook
        client.credentials.append(PlatformCredential(
            platform="account",
            username=data.email,
            password=data.password,
            is_active=True,
            connection_status="connected",
        ))
        client.add_activity_log("success", "Client account created successfully",
                                f"New client registered with email: {data.email}")
        db.session.add(client)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ApiError(409, "CLIENT_EXISTS", "Client with this email already exists")
    except Exception:
        db.session.rollback()
        logger.exception("[AUTH] Client registration failed")
        raise ApiError(500, "REGISTRATION_ERROR", "Registration failed")

    logger.info(f"[AUTH] Registered client {client.client_id}")
    return jsonify({
        "success": True,
        "message": "Client registered successfully.",
        "data": {
            "clientId": client.client_id,
            "name": client.name,
            "email": client.email,
            "status": client.status,
            "verificationUrl": url_for("auth.verify_email", token=client.email_verification_token, _external=True),
            "token": get_token_service().issue_client_token(client),
        },
    }), 201


@auth_bp.route("/client/login", methods=["POST"])
@auth_limit
def client_login():
    data = validate_request(ClientLogin)

    client = Client.find_by_email(data.email)
    if client is None:
        raise ApiError(401, "INVALID_CREDENTIALS", "Invalid credentials")

    if client.status == "suspended":
        raise ApiError(403, "ACCOUNT_SUSPENDED", "Account is suspended")

    credential = client.account_credential
    if credential is None:
        logger.error(f"[AUTH] Client {client.client_id} has no account credential")
        raise ApiError(401, "ACCOUNT_ERROR", "Account not properly configured")

    if not credential.check_password(data.password):
        logger.info(f"[AUTH] Failed login for {client.client_id}")
        raise ApiError(401, "INVALID_CREDENTIALS", "Invalid credentials")

    if client.status == "pending_verification":
        raise ApiError(403, "ACCOUNT_PENDING_VERIFICATION",
                       "Account is pending verification. Please verify your email first.")
    if client.status == "inactive":
        raise ApiError(403, "ACCOUNT_INACTIVE", "Account is inactive")

    client.last_login = utcnow()
    client.add_activity_log("success", "Client logged in successfully", f"Login from IP: {request.remote_addr}")
    db.session.commit()

    logger.info(f"[AUTH] Client {client.client_id} logged in")
    return jsonify({
        "success": True,
        "message": "Login successful",
        "data": {
            "clientId": client.client_id,
            "name": client.name,
            "email": client.email,
            "status": client.status,
            "token": get_token_service().issue_client_token(client),
        },
    })


# --- Admin ---

def _authenticate_admin(username, password):
    """Check the configured admin credentials against the stored record, honouring the lockout."""
    config = current_app.config
    if username != config["ADMIN_USERNAME"]:
        raise ApiError(401, "INVALID_ADMIN_CREDENTIALS", "Invalid admin credentials")

    admin = get_or_create_admin(config["ADMIN_USERNAME"], config["ADMIN_PASSWORD"], config.get("ADMIN_EMAIL"))
    if admin.is_locked:
        raise ApiError(423, "ACCOUNT_LOCKED", "Too many failed attempts. Account is temporarily locked")

    # the configured password is authoritative; the stored hash follows it
    if not secrets.compare_digest(password.encode("utf-8"), config["ADMIN_PASSWORD"].encode("utf-8")):
        admin.register_failed_login(lock_minutes=config["ADMIN_LOCK_MINUTES"])
        db.session.commit()
        logger.warning(f"[AUTH] Failed admin login for {username}")
        raise ApiError(401, "INVALID_ADMIN_CREDENTIALS", "Invalid admin credentials")

    if not admin.check_password(password):
        logger.info(f"[AUTH] Admin password for {username} changed in configuration, re-hashing")
        admin.set_password(password)
    admin.register_successful_login()
    admin.add_activity_log("success", "Admin logged in", f"Login from IP: {request.remote_addr}")
    db.session.commit()
    logger.info(f"[AUTH] Admin {username} logged in")
    return admin


@auth_bp.route("/admin/login", methods=["POST"])
@auth_limit
def admin_login():
    data = validate_request(AdminLogin)
    admin = _authenticate_admin(data.username, data.password)
    token = get_token_service().issue_admin_token(admin)

    response = jsonify({
        "success": True,
        "message": "Admin login successful",
        "data": {
            "token": token,
            "username": admin.username,
            "role": admin.role,
            "permissions": list(admin.permissions or []),
        },
    })
    response.set_cookie(
        ADMIN_COOKIE,
        token,
        max_age=ADMIN_TOKEN_MAX_AGE,
        httponly=True,
        secure=current_app.config["IS_PRODUCTION"],
        samesite="Strict",
    )
    return response


@auth_bp.route("/admin-login", methods=["GET", "POST"])
@auth_limit
def admin_login_page():
    if request.method == "GET":
        return render_template("auth/admin_login.html", title="Admin Login")

    try:
        data = validate_request(AdminLogin)
        admin = _authenticate_admin(data.username, data.password)
    except ValidationFailed:
        flash("Username and password are required.", "error")
        return render_template("auth/admin_login.html", title="Admin Login"), 400
    except ApiError as e:
        flash(e.message, "error")
        return render_template("auth/admin_login.html", title="Admin Login"), e.status

    login_user(admin)
    return redirect(url_for("admin.dashboard"))


@auth_bp.route("/logout", methods=["POST"])
def logout():
    logout_user()
    response = jsonify({"success": True, "message": "Logged out successfully"})
    response.delete_cookie(ADMIN_COOKIE)
    return response


@auth_bp.route("/verify")
@token_required
def verify():
    return jsonify({"success": True, "data": {"valid": True, "user": g.token_claims}})


@auth_bp.route("/verify-email/<token>")
def verify_email(token):
    client = Client.query.filter_by(email_verification_token=token).first()
    if client is None:
        raise ApiError(404, "INVALID_TOKEN", "Invalid verification token")

    if client.email_verified:
        raise ApiError(400, "ALREADY_VERIFIED", "Account is already verified")

    if client.status == "pending_verification":
        client.status = "active"
    client.email_verified = True
    client.add_activity_log("success", "Email verified successfully",
                            f"Email verification completed for: {client.email}")
    db.session.commit()
    logger.info(f"[AUTH] Client {client.client_id} verified their email")
    return jsonify({
        "success": True,
        "message": "Email verified successfully. You can now log in.",
        "data": {"clientId": client.client_id, "status": client.status},
    })


# --- Password reset ---

@auth_bp.route("/forgot-password", methods=["POST"])
@auth_limit
def forgot_password():
    data = validate_request(PasswordResetRequest)
    client = Client.find_by_email(data.email)
    if client is None:
        return jsonify({"success": True, "message": RESET_SENT_MESSAGE})

    reset_token = secrets.token_hex(32)
    client.password_reset_token = _hash_token(reset_token)
    client.password_reset_expires = utcnow() + RESET_TOKEN_TTL
    db.session.commit()

    reset_url = url_for("auth.reset_password_page", token=reset_token, _external=True)
    html = render_template("emails/password_reset.html", name=client.name, reset_url=reset_url)
    body = f"Hello {client.name},\n\nReset your password here (valid for 10 minutes):\n{reset_url}\n"
    status = get_mailer().send(client.email, "Your Password Reset Request", body, html)
    logger.info(f"[AUTH] Password reset requested for {client.client_id} (email {status})")

    return jsonify({"success": True, "message": RESET_SENT_MESSAGE})


@auth_bp.route("/reset-password/<token>", methods=["POST"])
@auth_limit
def reset_password(token):
    data = validate_request(PasswordReset)
    client = Client.query.filter(
        Client.password_reset_token == _hash_token(token),
        Client.password_reset_expires > utcnow(),
    ).first()
    if client is None:
        raise ApiError(400, "INVALID_RESET_TOKEN", "Password reset token is invalid or has expired.")

    credential = client.account_credential
    if credential is None:
        raise ApiError(401, "ACCOUNT_ERROR", "Account not properly configured")

    credential.password = data.password  # re-hashed by the before_update hook
    client.password_reset_token = None
    client.password_reset_expires = None
    client.add_activity_log("info", "Password reset", "Account password changed via reset link")
    db.session.commit()

    logger.info(f"[AUTH] Password reset completed for {client.client_id}")
    return jsonify({"success": True, "message": "Password has been reset successfully."})

"""Admin dashboard and client management API."""
import logging
import secrets

from flask import Blueprint, current_app, g, jsonify, render_template, request, url_for
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth import admin_required, current_admin, permission_required
from database import ActivityLog, Client, PlatformCredential, UploadedFile, db, generate_client_id, get_or_create_admin
from errors import ApiError
from messaging import list_messages, send_admin_message
from schemas import AdminClientCreate, AdminMessageIn, AdminSettingsIn, ClientStatusUpdate, SendFileIn
from security import api_limit, message_limit, request_payload, upload_limit, validate_request
from storage import StorageError, get_storage
from uploads import collect_files, serve_file, store_uploads

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _get_client_or_404(client_id) -> Client:
    client = Client.find_by_client_id(client_id)
    if client is None:
        raise ApiError(404, "CLIENT_NOT_FOUND", "Client not found")
    return client


def _admin_name() -> str:
    return (getattr(g, "admin_claims", None) or {}).get("username", "admin")


def _the_admin():
    admin = current_admin()
    if admin is None:
        config = current_app.config
        admin = get_or_create_admin(config["ADMIN_USERNAME"], config["ADMIN_PASSWORD"], config.get("ADMIN_EMAIL"))
    return admin


def dashboard_stats() -> dict:
    """Aggregate counts for the dashboard header."""
    by_status = dict(db.session.query(Client.status, func.count(Client.id)).group_by(Client.status).all())
    by_plan = dict(db.session.query(Client.plan, func.count(Client.id)).group_by(Client.plan).all())
    return {
        "totalClients": sum(by_status.values()),
        "byStatus": by_status,
        "byPlan": by_plan,
        "activeClients": by_status.get("active", 0),
        "suspendedClients": by_status.get("suspended", 0),
        "totalFiles": db.session.query(func.count(UploadedFile.id)).scalar() or 0,
        "totalMessages": db.session.query(func.count(ActivityLog.id))
        .filter(ActivityLog.source.in_(("admin", "client"))).scalar() or 0,
    }


# --- Pages ---

@admin_bp.route("", strict_slashes=False)
@admin_required
def dashboard():
    try:
        stats = dashboard_stats()
        recent = Client.query.order_by(Client.created_at.desc(), Client.id.desc()).limit(10).all()
        clients = [c.to_summary() for c in recent]
        database_ok = True
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"[ADMIN] Dashboard data unavailable: {e}")
        stats, clients, database_ok = {}, [], False
    return render_template("admin/dashboard.html", title="Admin Dashboard", stats=stats,
                           clients=clients, database_ok=database_ok, admin_name=_admin_name())


# --- Stats & clients ---

@admin_bp.route("/stats")
@admin_required
@api_limit
def stats():
    return jsonify({"success": True, "stats": dashboard_stats()})


@admin_bp.route("/clients")
@admin_required
@api_limit
def list_clients():
    query = Client.query
    search = (request.args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Client.name.ilike(pattern),
            Client.email.ilike(pattern),
            Client.client_id.ilike(pattern),
        ))
    status = (request.args.get("status") or "").strip()
    if status:
        query = query.filter(Client.status == status)

    clients = query.order_by(Client.created_at.desc(), Client.id.desc()).all()
    return jsonify({"success": True, "clients": [c.to_summary() for c in clients], "total": len(clients)})


@admin_bp.route("/clients", methods=["POST"])
@admin_required
@permission_required("manage_clients")
@api_limit
def create_client():
    data = validate_request(AdminClientCreate)
    if Client.find_by_email(data.email):
        raise ApiError(409, "CLIENT_EXISTS", "Client with this email already exists")

    temporary_password = None
    password = data.password
    if not password:
        temporary_password = password = secrets.token_urlsafe(12) + "A1!"

    client = Client(
        client_id=generate_client_id(),
        name=data.name,
        email=data.email,
        status=data.status,
        plan=data.plan,
        email_verification_token=secrets.token_urlsafe(32),
    )
    client.credentials.append(PlatformCredential(
        platform="account", username=data.email, password=password,
        is_active=True, connection_status="connected",
    ))
    client.add_activity_log("success", "Client account created by admin",
                            f"Created by {_admin_name()}")
    db.session.add(client)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ApiError(409, "CLIENT_EXISTS", "Client with this email already exists")

    logger.info(f"[ADMIN] {_admin_name()} created client {client.client_id}")
    payload = {"success": True, "client": client.to_summary()}
    if temporary_password:
        payload["temporaryPassword"] = temporary_password
    if client.status == "pending_verification":
        payload["verificationUrl"] = url_for("auth.verify_email", token=client.email_verification_token,
                                             _external=True)
    return jsonify(payload), 201


@admin_bp.route("/clients/<client_id>")
@admin_required
@api_limit
def client_detail(client_id):
    client = _get_client_or_404(client_id)
    return jsonify({"success": True, "client": client.to_detail(include_platform_passwords=True)})


@admin_bp.route("/clients/<client_id>/status", methods=["PUT"])
@admin_required
@permission_required("manage_clients")
@api_limit
def update_client_status(client_id):
    data = validate_request(ClientStatusUpdate)
    client = _get_client_or_404(client_id)

    previous = client.status
    client.status = data.status
    client.add_activity_log(
        "warning" if data.status == "suspended" else "info",
        f"Account status changed from {previous} to {data.status}",
        data.reason or f"Changed by {_admin_name()}",
    )
    _the_admin().add_activity_log("info", f"Changed status of {client.client_id} to {data.status}", data.reason)
    db.session.commit()

    logger.info(f"[ADMIN] {client.client_id} status {previous} -> {data.status}")
    return jsonify({"success": True, "client": client.to_summary()})


@admin_bp.route("/clients/<client_id>", methods=["DELETE"])
@admin_required
@permission_required("delete")
@api_limit
def delete_client(client_id):
    client = _get_client_or_404(client_id)
    deleted = {
        "clientId": client.client_id,
        "files": len(client.uploaded_files),
        "logs": len(client.activity_logs),
        "credentials": len(client.credentials),
        "campaigns": len(client.campaigns),
    }

    paths = [uploaded.storage_path for uploaded in client.uploaded_files]

    db.session.delete(client)  # child rows go with it
    _the_admin().add_activity_log("warning", f"Deleted client {deleted['clientId']}",
                                  f"{deleted['files']} files, {deleted['logs']} log entries")
    db.session.commit()
    logger.warning(f"[ADMIN] {_admin_name()} deleted client {deleted['clientId']}")

    # stored bytes go only once the rows are gone; leftovers show up in check-files
    storage = get_storage()
    try:
        for path in paths:
            storage.delete(path)
        storage.delete_prefix(deleted["clientId"])
    except (StorageError, OSError) as e:
        logger.error(f"[ADMIN] Stored files for deleted client {deleted['clientId']} not fully removed: {e}")

    return jsonify({"success": True, "message": "Client deleted", "deletedData": deleted})


# --- Messaging ---

@admin_bp.route("/message", methods=["POST"])
@admin_required
@message_limit
def message_client():
    data = validate_request(AdminMessageIn)
    client = _get_client_or_404(data.client_id)
    entry = send_admin_message(client, data.message, admin_name=_admin_name())
    return jsonify({"success": True, "message": "Message sent", "log": entry.to_dict()})


@admin_bp.route("/messages/<client_id>")
@admin_required
@api_limit
def client_messages(client_id):
    client = _get_client_or_404(client_id)
    return jsonify({"success": True, "messages": list_messages(client)})


# --- Files ---

@admin_bp.route("/send-file", methods=["POST"])
@admin_required
@upload_limit
def send_file_to_client():
    data = validate_request(SendFileIn, payload=request_payload())
    client = _get_client_or_404(data.client_id)
    files = collect_files(request.files)
    records = store_uploads(client, files, source="admin", category=data.category,
                            admin_message=data.message, status="admin_sent")
    logger.info(f"[ADMIN] Sent {len(records)} file(s) to {client.client_id}")
    return jsonify({"success": True, "message": "File sent to client", "files": [r.to_dict() for r in records]})


def _get_file_or_404(file_id) -> UploadedFile:
    uploaded = db.session.get(UploadedFile, file_id)
    if uploaded is None:
        raise ApiError(404, "FILE_NOT_FOUND", "File not found")
    return uploaded


@admin_bp.route("/download-file/<int:file_id>")
@admin_required
@api_limit
def download_file(file_id):
    return serve_file(_get_file_or_404(file_id), inline=False)


@admin_bp.route("/view-file/<int:file_id>")
@admin_required
@api_limit
def view_file(file_id):
    return serve_file(_get_file_or_404(file_id), inline=True)


# --- Settings ---

@admin_bp.route("/settings")
@admin_required
@api_limit
def get_settings():
    admin = _the_admin()
    return jsonify({
        "success": True,
        "settings": admin.to_dict(),
        "activity": [log.to_dict() for log in reversed(admin.activity_logs[-20:])],
    })


@admin_bp.route("/settings", methods=["PUT"])
@admin_required
@api_limit
def update_settings():
    data = validate_request(AdminSettingsIn)
    admin = _the_admin()
    if data.third_party_api_key is not None:
        admin.third_party_api_key = data.third_party_api_key.strip() or None
    if data.email:
        admin.email = data.email
    admin.add_activity_log("info", "Settings updated")
    db.session.commit()
    logger.info(f"[ADMIN] Settings updated by {admin.username}")
    return jsonify({"success": True, "settings": admin.to_dict()})

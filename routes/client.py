"""Client self-service routes, all scoped to /client/<client_id>."""
import logging

from flask import Blueprint, g, jsonify, render_template, request

from auth import client_required
from database import ACCOUNT_PLATFORM, FILE_CATEGORIES, Campaign, Client, PlatformCredential, db
from errors import ApiError, ValidationFailed
from messaging import list_messages, recent_logs, send_client_message
from schemas import CampaignConfigIn, CredentialIn, MessageIn
from security import api_limit, message_limit, upload_limit, validate_request
from uploads import collect_files, serve_file, store_uploads

logger = logging.getLogger(__name__)

client_bp = Blueprint("client", __name__, url_prefix="/client")


@client_bp.route("/<client_id>")
def dashboard(client_id):
    client = Client.find_by_client_id(client_id)
    if client is None:
        return render_template("errors/404.html", message="Client not found"), 404
    return render_template("client/dashboard.html", title="Client Dashboard", client=client)


@client_bp.route("/<client_id>/data")
@client_required
@api_limit
def client_data(client_id):
    return jsonify({"success": True, "client": g.client.to_detail()})


@client_bp.route("/<client_id>/credentials", methods=["POST"])
@client_required
@api_limit
def save_credentials(client_id):
    data = validate_request(CredentialIn)
    client = g.client

    credential = client.credential_for(data.platform)
    if credential is None:
        credential = PlatformCredential(platform=data.platform, username=data.username)
        client.credentials.append(credential)
    elif data.platform != ACCOUNT_PLATFORM:
        credential.username = data.username
    credential.password = data.password  # the account login is hashed on flush
    credential.is_active = True
    if data.platform != ACCOUNT_PLATFORM:
        credential.connection_status = "pending"

    client.add_activity_log("success", f"Credentials saved for {data.platform}",
                            f"Username: {data.username}")
    db.session.commit()

    logger.info(f"[CLIENT] {client.client_id} saved {data.platform} credentials")
    return jsonify({"success": True, "message": "Credentials saved successfully", "credential": credential.to_dict()})


@client_bp.route("/<client_id>/upload", methods=["POST"])
@client_required
@upload_limit
def upload(client_id):
    files = collect_files(request.files)
    category = request.form.get("category") or "data"
    if category not in FILE_CATEGORIES:
        raise ValidationFailed([{"field": "category", "message": "Invalid file category", "value": category}])
    records = store_uploads(g.client, files, source="client", category=category)
    return jsonify({
        "success": True,
        "message": f"{len(records)} file(s) uploaded successfully",
        "files": [r.to_dict() for r in records],
    })


@client_bp.route("/<client_id>/files")
@client_required
@api_limit
def list_files(client_id):
    files = sorted(g.client.uploaded_files, key=lambda f: (f.upload_date, f.id), reverse=True)
    return jsonify({"success": True, "files": [f.to_dict() for f in files]})


@client_bp.route("/<client_id>/download-file/<int:file_id>")
@client_required
@api_limit
def download_file(client_id, file_id):
    uploaded = g.client.find_file(file_id)
    if uploaded is None:  # also covers another client's file id
        raise ApiError(404, "FILE_NOT_FOUND", "File not found")
    return serve_file(uploaded, inline=request.args.get("inline") == "1")


@client_bp.route("/<client_id>/config", methods=["POST"])
@client_required
@api_limit
def save_config(client_id):
    data = validate_request(CampaignConfigIn)
    client = g.client
    campaign = Campaign(
        name=data.campaign_name,
        automation_type=data.automation_type,
        instructions=data.instructions,
        status="draft",
    )
    client.campaigns.append(campaign)
    client.add_activity_log("success", f"Campaign configuration saved: {data.campaign_name}",
                            f"Automation type: {data.automation_type}")
    db.session.commit()
    return jsonify({"success": True, "message": "Configuration saved successfully", "campaign": campaign.to_dict()})


@client_bp.route("/<client_id>/send-message", methods=["POST"])
@client_required
@message_limit
def send_message(client_id):
    data = validate_request(MessageIn)
    send_client_message(g.client, data.message)
    return jsonify({"success": True})


@client_bp.route("/<client_id>/messages")
@client_required
@api_limit
def messages(client_id):
    return jsonify({"success": True, "messages": list_messages(g.client)})


@client_bp.route("/<client_id>/logs")
@client_required
@api_limit
def logs(client_id):
    return jsonify({"success": True, "logs": recent_logs(g.client, limit=50)})

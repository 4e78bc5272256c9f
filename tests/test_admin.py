import io
import os
from types import SimpleNamespace

from sqlalchemy.exc import OperationalError

from conftest import CLIENT_PASSWORD, create_client, register
from database import Client, UploadedFile, db
from storage import StorageError


def _upload(client, registered, name="leads.csv", content=b"name,email\nAnn,ann@acme.io\n", mimetype="text/csv"):
    return client.post(
        f"/client/{registered['clientId']}/upload",
        data={"files": (io.BytesIO(content), name, mimetype)},
        headers=registered["headers"],
        content_type="multipart/form-data",
    )


def test_admin_api_requires_a_token(client):
    response = client.get("/admin/clients")
    assert response.status_code == 401
    assert response.get_json()["code"] == "NO_ADMIN_TOKEN"

    response = client.get("/admin/clients", headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 403
    assert response.get_json()["code"] == "INVALID_ADMIN_TOKEN"


def test_client_token_is_not_an_admin_token(client, registered):
    response = client.get("/admin/clients", headers=registered["headers"])
    assert response.status_code == 403
    assert response.get_json()["code"] == "INVALID_ADMIN_TOKEN"


def test_missing_permission_is_refused(app, client):
    viewer = SimpleNamespace(id="viewer", username="viewer", permissions=["read"])
    token = app.extensions["token_service"].issue_admin_token(viewer)
    response = client.delete("/admin/clients/CLT-1-ABCDEF", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403
    assert response.get_json()["code"] == "INSUFFICIENT_PERMISSIONS"


def test_list_and_search_clients(app, client, admin_headers):
    register(client, name="Jane Doe", email="jane@x.com")
    register(client, name="Mark Twain", email="mark@acme.io")
    create_client(app, client_id="CLT-1-SUSPND", email="sam@acme.io", name="Sam Hill", status="suspended")

    clients = client.get("/admin/clients", headers=admin_headers).get_json()["clients"]
    assert len(clients) == 3

    found = client.get("/admin/clients?search=TWAIN", headers=admin_headers).get_json()["clients"]
    assert [c["email"] for c in found] == ["mark@acme.io"]

    found = client.get("/admin/clients?search=suspnd", headers=admin_headers).get_json()["clients"]
    assert [c["clientId"] for c in found] == ["CLT-1-SUSPND"]

    found = client.get("/admin/clients?status=suspended", headers=admin_headers).get_json()["clients"]
    assert [c["name"] for c in found] == ["Sam Hill"]


def test_client_detail_shows_platform_passwords_only(client, registered, admin_headers):
    client.post(f"/client/{registered['clientId']}/credentials",
                json={"platform": "linkedin", "username": "jane.doe", "password": "li-secret"},
                headers=registered["headers"])

    detail = client.get(f"/admin/clients/{registered['clientId']}", headers=admin_headers).get_json()["client"]
    by_platform = {c["platform"]: c for c in detail["credentials"]}
    assert by_platform["linkedin"]["password"] == "li-secret"
    assert "password" not in by_platform["account"]
    assert detail["activityLogs"][0]["message"] == "Credentials saved for linkedin"

    missing = client.get("/admin/clients/CLT-0-NOPE00", headers=admin_headers)
    assert missing.status_code == 404
    assert missing.get_json()["code"] == "CLIENT_NOT_FOUND"


def test_admin_creates_client_with_temporary_password(client, admin_headers):
    response = client.post("/admin/clients", json={"name": "Lee Park", "email": "lee@acme.io", "plan": "premium"},
                           headers=admin_headers)
    assert response.status_code == 201
    body = response.get_json()
    assert body["client"]["plan"] == "premium"
    assert body["client"]["status"] == "active"

    login = client.post("/auth/client/login", json={"email": "lee@acme.io", "password": body["temporaryPassword"]})
    assert login.status_code == 200

    duplicate = client.post("/admin/clients", json={"name": "Lee Park", "email": "lee@acme.io"}, headers=admin_headers)
    assert duplicate.status_code == 409
    assert duplicate.get_json()["code"] == "CLIENT_EXISTS"


def test_status_change_is_logged_and_enforced(client, registered, admin_headers):
    path = f"/admin/clients/{registered['clientId']}/status"
    response = client.put(path, json={"status": "suspended", "reason": "Unpaid invoice"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.get_json()["client"]["status"] == "suspended"

    logs = client.get(f"/admin/clients/{registered['clientId']}", headers=admin_headers).get_json()["client"]["activityLogs"]
    assert logs[0]["message"] == "Account status changed from active to suspended"
    assert logs[0]["details"] == "Unpaid invoice"
    assert logs[0]["type"] == "warning"

    login = client.post("/auth/client/login", json={"email": "jane@x.com", "password": CLIENT_PASSWORD})
    assert login.get_json()["code"] == "ACCOUNT_SUSPENDED"

    bad = client.put(path, json={"status": "pending_verification"}, headers=admin_headers)
    assert bad.status_code == 400

    client.put(path, json={"status": "active"}, headers=admin_headers)
    login = client.post("/auth/client/login", json={"email": "jane@x.com", "password": CLIENT_PASSWORD})
    assert login.status_code == 200


def test_delete_client_removes_rows_and_files(app, client, registered, admin_headers, upload_root):
    assert _upload(client, registered).status_code == 200
    client_dir = os.path.join(upload_root, registered["clientId"])
    assert len(os.listdir(client_dir)) == 1

    response = client.delete(f"/admin/clients/{registered['clientId']}", headers=admin_headers)
    assert response.status_code == 200
    deleted = response.get_json()["deletedData"]
    assert deleted["clientId"] == registered["clientId"]
    assert deleted["files"] == 1
    assert deleted["credentials"] == 1
    assert deleted["logs"] >= 2

    assert not os.path.exists(client_dir)
    with app.app_context():
        assert Client.find_by_client_id(registered["clientId"]) is None
        assert UploadedFile.query.count() == 0

    again = client.get(f"/admin/clients/{registered['clientId']}", headers=admin_headers)
    assert again.status_code == 404


def test_admin_message_reaches_client_transcript(client, registered, admin_headers):
    response = client.post("/admin/message", json={"clientId": registered["clientId"], "message": "Welcome aboard"},
                           headers=admin_headers)
    assert response.status_code == 200

    client.post(f"/client/{registered['clientId']}/send-message", json={"message": "Thanks!"},
                headers=registered["headers"])

    messages = client.get(f"/client/{registered['clientId']}/messages", headers=registered["headers"]).get_json()["messages"]
    assert [(m["source"], m["message"]) for m in messages] == [("admin", "Welcome aboard"), ("client", "Thanks!")]

    admin_view = client.get(f"/admin/messages/{registered['clientId']}", headers=admin_headers).get_json()["messages"]
    assert admin_view == messages

    unknown = client.post("/admin/message", json={"clientId": "CLT-0-NOPE00", "message": "hi"}, headers=admin_headers)
    assert unknown.status_code == 404


def test_send_file_to_client(client, registered, admin_headers):
    response = client.post(
        "/admin/send-file",
        data={
            "clientId": registered["clientId"],
            "category": "report",
            "message": "Your weekly report",
            "file": (io.BytesIO(b"%PDF-1.4 report"), "weekly.pdf", "application/pdf"),
        },
        headers=admin_headers,
        content_type="multipart/form-data",
    )
    assert response.status_code == 200
    sent = response.get_json()["files"][0]
    assert sent["source"] == "admin"
    assert sent["status"] == "admin_sent"
    assert sent["adminMessage"] == "Your weekly report"

    files = client.get(f"/client/{registered['clientId']}/files", headers=registered["headers"]).get_json()["files"]
    assert [f["originalName"] for f in files] == ["weekly.pdf"]

    logs = client.get(f"/client/{registered['clientId']}/logs", headers=registered["headers"]).get_json()["logs"]
    assert logs[0]["message"] == "Admin sent file: weekly.pdf"
    assert logs[0]["source"] == "system"
    assert logs[0]["fileInfo"]["fileId"] == sent["id"]
    assert logs[0]["fileInfo"]["category"] == "report"


def test_download_and_view_file(app, client, registered, admin_headers, upload_root):
    uploaded = _upload(client, registered).get_json()["files"][0]

    download = client.get(f"/admin/download-file/{uploaded['id']}", headers=admin_headers)
    assert download.status_code == 200
    assert download.data == b"name,email\nAnn,ann@acme.io\n"
    assert download.headers["Content-Disposition"].startswith("attachment")

    view = client.get(f"/admin/view-file/{uploaded['id']}", headers=admin_headers)
    assert view.status_code == 200
    assert view.headers["Content-Disposition"].startswith("inline")

    with app.app_context():
        record = db.session.get(UploadedFile, uploaded["id"])
        assert record.download_count == 2
        assert record.last_accessed is not None
        os.remove(os.path.join(upload_root, record.storage_path))

    gone = client.get(f"/admin/download-file/{uploaded['id']}", headers=admin_headers)
    assert gone.status_code == 404
    assert gone.get_json()["code"] == "FILE_NOT_FOUND"

    unknown = client.get("/admin/download-file/9999", headers=admin_headers)
    assert unknown.get_json()["code"] == "FILE_NOT_FOUND"


def test_stats_and_dashboard(client, registered, admin_headers):
    client.post(f"/client/{registered['clientId']}/send-message", json={"message": "hello"},
                headers=registered["headers"])
    stats = client.get("/admin/stats", headers=admin_headers).get_json()["stats"]
    assert stats["totalClients"] == 1
    assert stats["byStatus"] == {"active": 1}
    assert stats["byPlan"] == {"free": 1}
    assert stats["totalMessages"] == 1

    page = client.get("/admin", headers=dict(admin_headers, Accept="text/html"))
    assert page.status_code == 200
    assert b"Jane Doe" in page.data


def test_settings_mask_api_key(client, admin_headers):
    response = client.put("/admin/settings", json={"thirdPartyApiKey": "sk-live-1234567890"}, headers=admin_headers)
    assert response.status_code == 200
    masked = response.get_json()["settings"]["thirdPartyApiKey"]
    assert masked.endswith("7890")
    assert "sk-live" not in masked

    settings = client.get("/admin/settings", headers=admin_headers).get_json()
    assert settings["settings"]["thirdPartyApiKey"] == masked
    assert settings["activity"][0]["message"] == "Settings updated"


def test_failed_delete_keeps_row_and_stored_bytes(app, client, registered, admin_headers, upload_root, monkeypatch):
    uploaded = _upload(client, registered).get_json()["files"][0]
    stored = os.path.join(upload_root, registered["clientId"], uploaded["fileName"])

    def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db.session, "commit", failing_commit)
    response = client.delete(f"/admin/clients/{registered['clientId']}", headers=admin_headers)
    monkeypatch.undo()

    assert response.status_code == 500
    assert os.path.isfile(stored)
    with app.app_context():
        assert Client.find_by_client_id(registered["clientId"]) is not None
        assert UploadedFile.query.count() == 1


def test_delete_succeeds_when_storage_cleanup_fails(app, client, registered, admin_headers, monkeypatch):
    _upload(client, registered)

    def unreachable(client_id):
        raise StorageError("Could not delete client files")

    monkeypatch.setattr(app.extensions["file_storage"], "delete_prefix", unreachable)
    response = client.delete(f"/admin/clients/{registered['clientId']}", headers=admin_headers)

    assert response.status_code == 200
    with app.app_context():
        assert Client.find_by_client_id(registered["clientId"]) is None


def test_dashboard_degrades_when_database_is_unavailable(client, admin_headers, monkeypatch):
    def unavailable():
        raise OperationalError("SELECT", {}, Exception("could not connect to server"))

    monkeypatch.setattr("routes.admin.dashboard_stats", unavailable)
    page = client.get("/admin", headers=dict(admin_headers, Accept="text/html"))
    assert page.status_code == 200
    assert b"Client data is unavailable right now" in page.data


def test_audit_events_are_not_counted_as_messages(client, registered, admin_headers):
    client.post("/admin/clients", json={"name": "Mark Twain", "email": "mark@acme.io"}, headers=admin_headers)
    client.put(f"/admin/clients/{registered['clientId']}/status", json={"status": "inactive"}, headers=admin_headers)
    client.post("/admin/message", json={"clientId": registered["clientId"], "message": "Ping"}, headers=admin_headers)

    stats = client.get("/admin/stats", headers=admin_headers).get_json()["stats"]
    assert stats["totalMessages"] == 1
    transcript = client.get(f"/admin/messages/{registered['clientId']}", headers=admin_headers).get_json()["messages"]
    assert [m["message"] for m in transcript] == ["Ping"]

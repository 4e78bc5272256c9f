import io
import os

import boto3
from botocore.client import Config
from botocore.stub import Stubber

from commands import TEST_CLIENT_EMAIL, TEST_CLIENT_PASSWORD, migrate_files_to_s3
from database import ActivityLog, Client, UploadedFile, db, utcnow
from storage import S3FileStorage


def _upload(client, registered, name="leads.csv", body=b"a,b\n"):
    return client.post(
        f"/client/{registered['clientId']}/upload",
        data={"file": (io.BytesIO(body), name, "text/csv")},
        headers=registered["headers"],
        content_type="multipart/form-data",
    ).get_json()["files"][0]


def test_init_db_creates_the_demo_client_once(app, client):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["init-db"])
    assert result.exit_code == 0
    assert "demo@client.com" in result.output

    again = runner.invoke(args=["init-db"])
    assert "already exists" in again.output

    login = client.post("/auth/client/login", json={"email": "demo@client.com", "password": "Demo123!"})
    assert login.status_code == 200
    assert login.get_json()["data"]["clientId"] == "1"


def test_create_test_client(app, client):
    result = app.test_cli_runner().invoke(args=["create-test-client"])
    assert result.exit_code == 0
    assert "Test client created successfully!" in result.output

    login = client.post("/auth/client/login", json={"email": TEST_CLIENT_EMAIL, "password": TEST_CLIENT_PASSWORD})
    assert login.status_code == 200
    with app.app_context():
        tenant = Client.find_by_client_id("test123")
        assert {c.platform for c in tenant.credentials} == {"account", "facebook", "linkedin"}
        assert len(tenant.campaigns) == 2


def test_reset_db_needs_confirmation(app, registered):
    runner = app.test_cli_runner()
    aborted = runner.invoke(args=["reset-db"], input="n\n")
    assert aborted.exit_code != 0
    with app.app_context():
        assert Client.query.count() == 1

    result = runner.invoke(args=["reset-db", "--yes"])
    assert result.exit_code == 0
    with app.app_context():
        assert Client.query.count() == 0


def test_purge_invalid_logs(app, registered):
    with app.app_context():
        tenant = Client.find_by_client_id(registered["clientId"])
        db.session.execute(
            db.text("INSERT INTO activity_logs (client_pk, type, message, details, timestamp, source) "
                    "VALUES (:pk, 'bogus', 'legacy entry', '', :ts, 'system')"),
            {"pk": tenant.id, "ts": utcnow()},
        )
        db.session.commit()
        assert ActivityLog.query.count() == 2

    result = app.test_cli_runner().invoke(args=["purge-invalid-logs"])
    assert "Removed 1 invalid activity log entries" in result.output
    with app.app_context():
        assert [log.message for log in ActivityLog.query.all()] == ["Client account created successfully"]


def test_check_files_reports_missing_and_orphaned(app, client, registered, upload_root):
    kept = _upload(client, registered, name="kept.csv")
    lost = _upload(client, registered, name="lost.csv")
    os.remove(os.path.join(upload_root, registered["clientId"], lost["fileName"]))
    with open(os.path.join(upload_root, registered["clientId"], "stray.csv"), "wb") as handle:
        handle.write(b"x")

    result = app.test_cli_runner().invoke(args=["check-files"])
    assert result.exit_code == 0
    assert "Checked 2 file records" in result.output
    assert f"MISSING  file {lost['id']}" in result.output
    assert f"{registered['clientId']}/stray.csv" in result.output
    assert kept["fileName"] not in result.output
    assert "1 missing, 1 orphaned" in result.output


def test_migrate_command_needs_a_bucket(app):
    result = app.test_cli_runner().invoke(args=["migrate-files-to-s3"])
    assert result.exit_code != 0
    assert "S3_BUCKET is not configured" in result.output


def test_migrate_files_to_s3_repoints_records(app, client, registered):
    uploaded = _upload(client, registered)
    s3_client = boto3.client("s3", region_name="us-east-1", aws_access_key_id="testing",
                             aws_secret_access_key="testing", config=Config(signature_version="s3v4"))
    bucket = S3FileStorage(bucket="portal-files", client=s3_client)

    with app.app_context(), Stubber(s3_client) as stubber:
        stubber.add_response("put_object", {"ETag": '"abc"'}, {
            "Bucket": "portal-files",
            "Key": f"client-files/{registered['clientId']}/{uploaded['fileName']}",
            "Body": b"a,b\n",
            "ContentType": "text/csv",
            "ServerSideEncryption": "AES256",
            "Metadata": {"client-id": registered["clientId"]},
        })
        result = migrate_files_to_s3(app.extensions["file_storage"], bucket)
        stubber.assert_no_pending_responses()

        assert result == {"migrated": 1, "failed": []}
        record = db.session.get(UploadedFile, uploaded["id"])
        assert record.storage_provider == "s3"
        assert record.storage_path == f"client-files/{registered['clientId']}/{uploaded['fileName']}"
        assert record.storage_url.startswith("s3://portal-files/")

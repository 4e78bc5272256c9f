"""Maintenance commands, run with `flask --app app:create_app <command>`."""
import click
from flask import current_app

from database import Campaign, Client, PlatformCredential, UploadedFile, db
from messaging import purge_invalid_logs
from storage import LocalFileStorage, build_storage

TEST_CLIENT_ID = "test123"
TEST_CLIENT_EMAIL = "john.smith@testclient.com"
TEST_CLIENT_PASSWORD = "Test123!"


def init_db_command():
    """Create tables and the demo client."""
    db.create_all()
    demo = Client.find_by_client_id("1")
    if demo:
        click.echo("Demo client already exists (clientId 1)")
        return
    demo = Client(client_id="1", name="Demo Client", email="demo@client.com", status="active", plan="basic")
    demo.credentials.append(PlatformCredential(platform="account", username="demo@client.com",
                                               password="Demo123!", connection_status="connected"))
    demo.add_activity_log("info", "Demo client created", "Created by init-db")
    db.session.add(demo)
    db.session.commit()
    click.echo("Database initialised. Demo client: demo@client.com / Demo123!")


def reset_db_command():
    db.drop_all()
    db.create_all()
    click.echo("Database reset successfully! All tables recreated.")


def create_test_client_command():
    client = Client.find_by_client_id(TEST_CLIENT_ID)
    if client:
        click.echo("Test client already exists!")
    else:
        client = Client(client_id=TEST_CLIENT_ID, name="John Smith", email=TEST_CLIENT_EMAIL,
                        status="active", plan="premium", email_verified=True)
        client.credentials.extend([
            PlatformCredential(platform="account", username=TEST_CLIENT_EMAIL,
                               password=TEST_CLIENT_PASSWORD, connection_status="connected"),
            PlatformCredential(platform="facebook", username="john.smith.facebook",
                               password="facebook-pass-123", connection_status="connected"),
            PlatformCredential(platform="linkedin", username="john.smith.linkedin",
                               password="linkedin-pass-456", connection_status="pending"),
        ])
        client.campaigns.extend([
            Campaign(name="Lead Generation Campaign", automation_type="outreach",
                     instructions="Target business professionals in tech industry", status="active"),
            Campaign(name="Content Scraping Project", automation_type="scraping",
                     instructions="Collect competitor pricing data", status="completed"),
        ])
        client.add_activity_log("info", "Client account created", "New client registration completed successfully")
        client.add_activity_log("success", "Campaign launched", "Lead Generation Campaign started successfully")
        db.session.add(client)
        db.session.commit()
        click.echo("Test client created successfully!")
    click.echo(f"Client ID: {client.client_id}")
    click.echo(f"Email: {TEST_CLIENT_EMAIL}")
    click.echo(f"Password: {TEST_CLIENT_PASSWORD}")


def check_files_report(storage) -> dict:
    """Compare file records with what the storage backend actually holds."""
    missing = []
    known_paths = set()
    for uploaded in UploadedFile.query.order_by(UploadedFile.id).all():
        known_paths.add(uploaded.storage_path)
        if uploaded.storage_provider != storage.provider or not storage.exists(uploaded.storage_path):
            missing.append({"fileId": uploaded.id, "clientId": uploaded.client.client_id,
                            "path": uploaded.storage_path, "provider": uploaded.storage_provider})
    orphaned = [key for key in storage.list_keys() if key not in known_paths]
    return {"checked": len(known_paths), "missing": missing, "orphaned": orphaned}


def migrate_files_to_s3(local, bucket) -> dict:
    """Copy local file records into the bucket and repoint their storage descriptors."""
    migrated, failed = 0, []
    for uploaded in UploadedFile.query.filter_by(storage_provider="local").order_by(UploadedFile.id).all():
        try:
            with open(local.open(uploaded.storage_path), "rb") as handle:
                data = handle.read()
        except FileNotFoundError:
            failed.append(uploaded.id)
            continue
        stored = bucket.save(uploaded.client.client_id, uploaded.file_name, data, uploaded.file_type)
        uploaded.storage_provider = stored.provider
        uploaded.storage_path = stored.path
        uploaded.storage_url = stored.url
        migrated += 1
    db.session.commit()
    return {"migrated": migrated, "failed": failed}


def register_commands(app):
    @app.cli.command("init-db")
    def init_db():
        """Create tables and a demo client."""
        init_db_command()

    @app.cli.command("reset-db")
    @click.confirmation_option(prompt="This drops every table. Continue?")
    def reset_db():
        """Drop and recreate all tables."""
        reset_db_command()

    @app.cli.command("create-test-client")
    def create_test_client():
        """Create a ready-to-login test client."""
        create_test_client_command()

    @app.cli.command("purge-invalid-logs")
    def purge_logs():
        """Remove activity log entries with an invalid type."""
        removed = purge_invalid_logs()
        click.echo(f"Removed {removed} invalid activity log entries")

    @app.cli.command("check-files")
    def check_files():
        """Report file records without stored bytes and stored files without records."""
        report = check_files_report(current_app.extensions["file_storage"])
        click.echo(f"Checked {report['checked']} file records")
        for item in report["missing"]:
            click.echo(f"  MISSING  file {item['fileId']} ({item['clientId']}): {item['path']} [{item['provider']}]")
        for key in report["orphaned"]:
            click.echo(f"  ORPHANED {key}")
        click.echo(f"{len(report['missing'])} missing, {len(report['orphaned'])} orphaned")

    @app.cli.command("migrate-files-to-s3")
    def migrate_to_s3():
        """Upload locally stored files to the configured bucket."""
        if not current_app.config.get("S3_BUCKET"):
            raise click.ClickException("S3_BUCKET is not configured")
        bucket = build_storage(dict(current_app.config, STORAGE_BACKEND="s3"))
        local = LocalFileStorage(current_app.config.get("UPLOAD_DIR") or "uploads")
        result = migrate_files_to_s3(local, bucket)
        click.echo(f"Migrated {result['migrated']} file(s) to s3://{bucket.bucket}")
        if result["failed"]:
            click.echo(f"Local bytes missing for file ids: {', '.join(str(i) for i in result['failed'])}")

"""Database models and setup for client accounts, their activity and the admin identity."""
import secrets
import string
import time
from datetime import datetime, timedelta, timezone

import bcrypt
from flask import current_app, has_app_context
from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.orm import validates

db = SQLAlchemy()  # bound to the Flask app in init_db()

CLIENT_STATUSES = ("active", "inactive", "suspended", "pending_verification")
CLIENT_PLANS = ("free", "basic", "premium", "enterprise")
PLATFORMS = ("account", "linkedin", "twitter", "email", "facebook", "instagram")
CONNECTION_STATUSES = ("pending", "connected", "failed", "expired")
AUTOMATION_TYPES = ("enrichment", "outreach", "scraping")
CAMPAIGN_STATUSES = ("draft", "active", "paused", "completed", "failed")
FILE_STATUSES = ("uploaded", "processing", "processed", "failed", "admin_sent")
FILE_CATEGORIES = ("document", "template", "report", "instruction", "data", "other")
FILE_SOURCES = ("client", "admin")
LOG_TYPES = ("info", "success", "warning", "error")
LOG_SOURCES = ("client", "admin", "system")

ACCOUNT_PLATFORM = "account"
BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")
MAX_LOGIN_ATTEMPTS = 5
DEFAULT_ADMIN_PERMISSIONS = ["read", "write", "delete", "manage_clients"]


def utcnow() -> datetime:
    # naive UTC, what SQLite hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() + "Z" if value else None


def looks_hashed(password: str) -> bool:
    return bool(password) and password.startswith(BCRYPT_PREFIXES) and len(password) == 60


def hash_password(password: str) -> str:
    rounds = 12
    if has_app_context():
        rounds = current_app.config.get("BCRYPT_ROUNDS", rounds)
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:  # stored value is not a bcrypt hash
        return False


def generate_client_id() -> str:
    """External client identifier: CLT-<epoch ms>-<6 upper alnum>."""
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"CLT-{int(time.time() * 1000)}-{suffix}"


def _check_choice(field: str, value, choices):
    if value not in choices:
        raise ValueError(f"Invalid {field} '{value}', expected one of: {', '.join(choices)}")
    return value


class Client(db.Model):  # one row per tenant
    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False, default="pending_verification", index=True)
    plan = db.Column(db.String(32), nullable=False, default="free")
    plan_expiry = db.Column(db.DateTime, nullable=True)
    billing_customer_id = db.Column(db.String(255), nullable=True)
    billing_subscription_id = db.Column(db.String(255), nullable=True)

    email_verified = db.Column(db.Boolean, default=False, nullable=False)
    email_verification_token = db.Column(db.String(255), nullable=True)
    password_reset_token = db.Column(db.String(128), nullable=True, index=True)
    password_reset_expires = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    last_login = db.Column(db.DateTime, nullable=True)

    credentials = db.relationship(
        "PlatformCredential", backref="client", lazy=True,
        cascade="all, delete-orphan", order_by="PlatformCredential.id",
    )
    campaigns = db.relationship(
        "Campaign", backref="client", lazy=True,
        cascade="all, delete-orphan", order_by="Campaign.id",
    )
    uploaded_files = db.relationship(
        "UploadedFile", backref="client", lazy=True,
        cascade="all, delete-orphan", order_by="UploadedFile.id",
    )
    activity_logs = db.relationship(
        "ActivityLog", backref="client", lazy=True,
        cascade="all, delete-orphan", order_by="ActivityLog.id",
    )

    @validates("status")
    def _validate_status(self, key, value):
        return _check_choice(key, value, CLIENT_STATUSES)

    @validates("plan")
    def _validate_plan(self, key, value):
        return _check_choice(key, value, CLIENT_PLANS)

    @validates("email")
    def _normalize_email(self, key, value):
        return (value or "").strip().lower()

    @classmethod
    def find_by_client_id(cls, client_id):
        if not client_id:
            return None
        return cls.query.filter_by(client_id=client_id).first()

    @classmethod
    def find_by_email(cls, email):
        return cls.query.filter_by(email=(email or "").strip().lower()).first()

    @property
    def account_credential(self):
        for credential in self.credentials:
            if credential.platform == ACCOUNT_PLATFORM:
                return credential
        return None

    def credential_for(self, platform):
        for credential in self.credentials:
            if credential.platform == platform:
                return credential
        return None

    def add_activity_log(self, type, message, details="", source="system", file_info=None):
        """Append an entry to the activity log. Entries are never edited afterwards."""
        entry = ActivityLog(
            type=type,
            message=message,
            details=details or "",
            source=source,
            file_info=file_info,
            timestamp=utcnow(),
        )
        self.activity_logs.append(entry)
        self.updated_at = utcnow()
        return entry

    def find_file(self, file_id):
        for uploaded in self.uploaded_files:
            if uploaded.id == file_id:
                return uploaded
        return None

    def to_summary(self) -> dict:
        return {
            "clientId": self.client_id,
            "name": self.name,
            "email": self.email,
            "status": self.status,
            "plan": self.plan,
            "emailVerified": self.email_verified,
            "credentialsCount": len([c for c in self.credentials if c.platform != ACCOUNT_PLATFORM]),
            "campaignsCount": len(self.campaigns),
            "filesCount": len(self.uploaded_files),
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
            "lastLogin": isoformat(self.last_login),
        }

    def to_detail(self, include_platform_passwords=False) -> dict:
        data = self.to_summary()
        data.update({
            "planExpiry": isoformat(self.plan_expiry),
            "credentials": [
                c.to_dict(include_password=include_platform_passwords) for c in self.credentials
            ],
            "campaigns": [c.to_dict() for c in self.campaigns],
            "uploadedFiles": [f.to_dict() for f in self.uploaded_files],
            "activityLogs": [log.to_dict() for log in reversed(self.activity_logs)],
        })
        return data

    def __str__(self):
        return f"{self.name} ({self.client_id})"


class PlatformCredential(db.Model):  # logins for the client account and automation targets
    __tablename__ = "client_credentials"

    id = db.Column(db.Integer, primary_key=True)
    client_pk = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    platform = db.Column(db.String(32), nullable=False)
    username = db.Column(db.String(255), nullable=False)
    # account: bcrypt hash; other platforms: plain text shared with operators
    password = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    connection_status = db.Column(db.String(32), default="pending", nullable=False)
    last_tested = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    @validates("platform")
    def _validate_platform(self, key, value):
        return _check_choice(key, value, PLATFORMS)

    @validates("connection_status")
    def _validate_connection_status(self, key, value):
        return _check_choice(key, value, CONNECTION_STATUSES)

    def check_password(self, password: str) -> bool:
        return check_password(password, self.password)

    def to_dict(self, include_password=False) -> dict:
        data = {
            "id": self.id,
            "platform": self.platform,
            "username": self.username,
            "isActive": self.is_active,
            "connectionStatus": self.connection_status,
            "lastTested": isoformat(self.last_tested),
        }
        if include_password and self.platform != ACCOUNT_PLATFORM:
            data["password"] = self.password
        return data


@event.listens_for(PlatformCredential, "before_insert")
@event.listens_for(PlatformCredential, "before_update")
def _hash_account_password(mapper, connection, target):
    """Hash the client's own login before it is written; already-hashed values pass through."""
    if target.platform == ACCOUNT_PLATFORM and target.password and not looks_hashed(target.password):
        target.password = hash_password(target.password)


class Campaign(db.Model):  # automation configuration submitted by a client
    __tablename__ = "campaigns"

    id = db.Column(db.Integer, primary_key=True)
    client_pk = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    automation_type = db.Column(db.String(32), nullable=False)
    instructions = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(32), default="draft", nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    last_run = db.Column(db.DateTime, nullable=True)
    performance_data = db.Column(db.JSON, nullable=True)

    @validates("automation_type")
    def _validate_type(self, key, value):
        return _check_choice(key, value, AUTOMATION_TYPES)

    @validates("status")
    def _validate_status(self, key, value):
        return _check_choice(key, value, CAMPAIGN_STATUSES)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "automationType": self.automation_type,
            "instructions": self.instructions or "",
            "status": self.status,
            "createdAt": isoformat(self.created_at),
            "lastRun": isoformat(self.last_run),
            "performanceData": self.performance_data or {},
        }


class UploadedFile(db.Model):  # file attachment owned by a client, sent by either side
    __tablename__ = "uploaded_files"

    id = db.Column(db.Integer, primary_key=True)
    client_pk = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    file_name = db.Column(db.String(255), nullable=False)  # storage key
    original_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.Integer, nullable=False)
    file_type = db.Column(db.String(120), nullable=False)
    upload_date = db.Column(db.DateTime, default=utcnow, nullable=False)
    status = db.Column(db.String(32), default="uploaded", nullable=False)
    category = db.Column(db.String(32), default="other", nullable=False)
    admin_message = db.Column(db.Text, default="", nullable=True)
    source = db.Column(db.String(16), default="client", nullable=False)
    storage_provider = db.Column(db.String(16), default="local", nullable=False)
    storage_path = db.Column(db.String(512), nullable=False)
    storage_url = db.Column(db.String(1024), nullable=True)
    processed_rows = db.Column(db.Integer, default=0, nullable=False)
    valid_rows = db.Column(db.Integer, default=0, nullable=False)
    download_count = db.Column(db.Integer, default=0, nullable=False)
    last_accessed = db.Column(db.DateTime, nullable=True)

    @validates("status")
    def _validate_status(self, key, value):
        return _check_choice(key, value, FILE_STATUSES)

    @validates("category")
    def _validate_category(self, key, value):
        return _check_choice(key, value, FILE_CATEGORIES)

    @validates("source")
    def _validate_source(self, key, value):
        return _check_choice(key, value, FILE_SOURCES)

    def mark_accessed(self):
        self.download_count = (self.download_count or 0) + 1
        self.last_accessed = utcnow()

    def file_info(self) -> dict:
        return {
            "fileId": self.id,
            "fileName": self.file_name,
            "originalName": self.original_name,
            "category": self.category,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "fileName": self.file_name,
            "originalName": self.original_name,
            "fileSize": self.file_size,
            "fileType": self.file_type,
            "uploadDate": isoformat(self.upload_date),
            "status": self.status,
            "category": self.category,
            "adminMessage": self.admin_message or "",
            "source": self.source,
            "storageProvider": self.storage_provider,
            "downloadCount": self.download_count,
            "lastAccessed": isoformat(self.last_accessed),
        }


class ActivityLog(db.Model):  # audit trail and chat transcript in one timeline
    __tablename__ = "activity_logs"

    id = db.Column(db.Integer, primary_key=True)
    client_pk = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False)
    message = db.Column(db.Text, nullable=False)
    details = db.Column(db.Text, default="", nullable=True)
    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    source = db.Column(db.String(16), default="system", nullable=False)
    file_info = db.Column(db.JSON, nullable=True)

    @validates("type")
    def _validate_type(self, key, value):
        return _check_choice(key, value, LOG_TYPES)

    @validates("source")
    def _validate_source(self, key, value):
        return _check_choice(key, value, LOG_SOURCES)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "type": self.type,
            "message": self.message,
            "details": self.details or "",
            "timestamp": isoformat(self.timestamp),
            "source": self.source,
        }
        if self.file_info:
            data["fileInfo"] = self.file_info
        return data


class Admin(UserMixin, db.Model):  # operator identity and settings
    __tablename__ = "admins"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(255), nullable=True)
    password = db.Column(db.String(255), nullable=False)  # bcrypt hash
    role = db.Column(db.String(32), default="admin", nullable=False)
    permissions = db.Column(db.JSON, default=lambda: list(DEFAULT_ADMIN_PERMISSIONS), nullable=False)
    login_attempts = db.Column(db.Integer, default=0, nullable=False)
    lock_until = db.Column(db.DateTime, nullable=True)
    last_login = db.Column(db.DateTime, nullable=True)
    third_party_api_key = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    activity_logs = db.relationship(
        "AdminActivityLog", backref="admin", lazy=True,
        cascade="all, delete-orphan", order_by="AdminActivityLog.id",
    )

    @property
    def is_locked(self) -> bool:
        return bool(self.lock_until and self.lock_until > utcnow())

    def set_password(self, password: str):
        self.password = hash_password(password)

    def check_password(self, password: str) -> bool:
        return check_password(password, self.password)

    def register_failed_login(self, lock_minutes=120):
        self.login_attempts = (self.login_attempts or 0) + 1
        if self.login_attempts >= MAX_LOGIN_ATTEMPTS:
            self.lock_until = utcnow() + timedelta(minutes=lock_minutes)
            self.login_attempts = 0

    def register_successful_login(self):
        self.login_attempts = 0
        self.lock_until = None
        self.last_login = utcnow()

    def add_activity_log(self, type, message, details=""):
        entry = AdminActivityLog(type=type, message=message, details=details or "", timestamp=utcnow())
        self.activity_logs.append(entry)
        return entry

    def to_dict(self) -> dict:
        key = self.third_party_api_key or ""
        return {
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "permissions": list(self.permissions or []),
            "lastLogin": isoformat(self.last_login),
            "thirdPartyApiKey": ("*" * max(len(key) - 4, 0) + key[-4:]) if key else None,
        }


class AdminActivityLog(db.Model):
    __tablename__ = "admin_activity_logs"

    id = db.Column(db.Integer, primary_key=True)
    admin_id = db.Column(db.Integer, db.ForeignKey("admins.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False)
    message = db.Column(db.Text, nullable=False)
    details = db.Column(db.Text, default="", nullable=True)
    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False)

    @validates("type")
    def _validate_type(self, key, value):
        return _check_choice(key, value, LOG_TYPES)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "message": self.message,
            "details": self.details or "",
            "timestamp": isoformat(self.timestamp),
        }


def get_or_create_admin(username: str, password: str, email: str = None) -> Admin:
    """Load the admin record, seeding it from the configured credentials on first use."""
    admin = Admin.query.filter_by(username=username).first()
    if admin is None:
        admin = Admin(username=username, email=email, role="admin",
                      permissions=list(DEFAULT_ADMIN_PERMISSIONS))
        admin.set_password(password)
        db.session.add(admin)
        db.session.commit()
    return admin


def init_db(app):  # initialize database with Flask app (called from create_app)
    db.init_app(app)
    db_url = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    # Only auto-create tables for local SQLite; other databases go through Alembic.
    if app.config.get("AUTO_CREATE_DB", True) and db_url.startswith("sqlite:"):
        with app.app_context():
            db.create_all()

"""Upload policy: size/count/type checks, a content scan, and storing files for a client."""
import logging
import os
import re
import secrets
import time

from flask import current_app, redirect, send_file

from database import UploadedFile, db
from errors import ApiError
from storage import get_storage

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB per file
MAX_FILES = 5  # per request

ALLOWED_TYPES = {
    "image/jpeg": (".jpg", ".jpeg"),
    "image/png": (".png",),
    "image/gif": (".gif",),
    "image/webp": (".webp",),
    "text/csv": (".csv",),
    "application/vnd.ms-excel": (".xls", ".csv"),
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": (".xlsx",),
    "text/plain": (".txt",),
    "application/pdf": (".pdf",),
    "application/json": (".json",),
}
ALLOWED_EXTENSIONS = {ext for exts in ALLOWED_TYPES.values() for ext in exts}

SUSPICIOUS_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (r"<script", r"javascript:", r"vbscript:", r"onload=", r"onerror=", r"eval\(", r"exec\(")
]


def _max_file_size():
    return current_app.config.get("MAX_FILE_SIZE", MAX_FILE_SIZE)


def storage_key(original_name: str) -> str:
    """Unique storage name: <sanitised basename>-<epoch ms>-<12 hex><ext>."""
    base, ext = os.path.splitext(os.path.basename(original_name or "file"))
    base = re.sub(r"[^a-zA-Z0-9_-]", "_", base)[:100] or "file"
    return f"{base}-{int(time.time() * 1000)}-{secrets.token_hex(6)}{ext.lower()}"


def collect_files(request_files):
    """All uploaded parts from the `file` and `files` fields, empty parts skipped."""
    files = request_files.getlist("file") + request_files.getlist("files")
    files = [f for f in files if f and f.filename]
    if not files:
        raise ApiError(400, "NO_FILE", "No file uploaded")
    if len(files) > MAX_FILES:
        raise ApiError(400, "TOO_MANY_FILES", f"Too many files. Maximum is {MAX_FILES} files")
    return files


def check_type(filename: str, mimetype: str):
    mimetype = (mimetype or "").split(";")[0].strip().lower()
    if mimetype not in ALLOWED_TYPES:
        raise ApiError(400, "FILE_VALIDATION_ERROR", f"File type {mimetype or 'unknown'} not allowed")
    extension = os.path.splitext(filename or "")[1].lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise ApiError(400, "FILE_VALIDATION_ERROR", f"File extension {extension or '(none)'} not allowed")
    return mimetype


def read_limited(upload) -> bytes:
    limit = _max_file_size()
    data = upload.stream.read(limit + 1)
    if len(data) > limit:
        raise ApiError(400, "FILE_TOO_LARGE", f"File too large. Maximum size is {limit // (1024 * 1024)}MB")
    return data


def scan_content(data: bytes, mimetype: str):
    """Reject text-like uploads carrying script or markup injection patterns."""
    if not (mimetype.startswith("text/") or mimetype == "application/json"):
        return
    try:
        content = data.decode("utf-8")
    except UnicodeDecodeError:
        raise ApiError(500, "SCAN_ERROR", "File security scan failed")
    for pattern in SUSPICIOUS_PATTERNS:
        if pattern.search(content):
            logger.warning(f"[UPLOAD] Rejected file matching {pattern.pattern!r}")
            raise ApiError(400, "MALICIOUS_FILE", "File contains potentially malicious content")


def prepare(files):
    """Validate every part before anything is written; returns (upload, data, mimetype) triples."""
    prepared = []
    for upload in files:
        mimetype = check_type(upload.filename, upload.mimetype)
        data = read_limited(upload)
        scan_content(data, mimetype)
        prepared.append((upload, data, mimetype))
    return prepared


def store_uploads(client, files, source="client", category="other", admin_message="", status="uploaded"):
    """Store validated uploads for ``client`` and record them in one commit.

    Objects already written are deleted again if anything fails before the
    database commit, so a failed request leaves no orphaned files behind.
    """
    prepared = prepare(files)
    storage = get_storage()
    written = []
    records = []
    try:
        for upload, data, mimetype in prepared:
            stored = storage.save(client.client_id, storage_key(upload.filename), data, mimetype)
            written.append(stored)
            record = UploadedFile(
                file_name=os.path.basename(stored.path),
                original_name=os.path.basename(upload.filename),
                file_size=stored.size,
                file_type=mimetype,
                status=status,
                category=category,
                admin_message=admin_message or "",
                source=source,
                storage_provider=stored.provider,
                storage_path=stored.path,
                storage_url=stored.url,
            )
            client.uploaded_files.append(record)
            records.append(record)
        db.session.flush()  # assigns file ids for the log entries

        for record in records:
            if source == "admin":
                message = f"Admin sent file: {record.original_name}"
            else:
                message = f"File uploaded: {record.original_name}"
            client.add_activity_log(
                "info" if source == "client" else "success",
                message,
                admin_message or f"{record.original_name} ({record.file_size} bytes, {record.category})",
                file_info=record.file_info(),
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        for stored in written:
            storage.delete(stored.path)
        logger.error(f"[UPLOAD] Upload for {client.client_id} failed, removed {len(written)} stored file(s)")
        raise

    logger.info(f"[UPLOAD] Stored {len(records)} file(s) for {client.client_id} from {source}")
    return records


def serve_file(uploaded, inline=False):
    """Stream a local file or redirect to a signed bucket URL, counting the access."""
    storage = get_storage()
    if uploaded.storage_provider == "s3":
        url = storage.signed_url(uploaded.storage_path, download_name=uploaded.original_name, inline=inline)
        if not url:
            raise ApiError(404, "FILE_NOT_FOUND", "File not found in storage")
        uploaded.mark_accessed()
        db.session.commit()
        return redirect(url)

    try:
        path = storage.open(uploaded.storage_path)
    except (FileNotFoundError, ApiError):
        logger.warning(f"[UPLOAD] Missing bytes for file {uploaded.id} at {uploaded.storage_path}")
        raise ApiError(404, "FILE_NOT_FOUND", "File not found on disk")
    uploaded.mark_accessed()
    db.session.commit()
    return send_file(path, mimetype=uploaded.file_type, as_attachment=not inline,
                     download_name=uploaded.original_name)

"""Admin <-> client messaging on top of the client activity log."""
import logging

from database import ActivityLog, LOG_TYPES, db, isoformat

logger = logging.getLogger(__name__)

CHAT_SOURCES = ("admin", "client")


def send_admin_message(client, text: str, admin_name: str = "admin"):
    entry = client.add_activity_log("info", text, f"Message from {admin_name}", source="admin")
    db.session.commit()
    logger.info(f"[MESSAGE] Admin message to {client.client_id} ({len(text)} chars)")
    return entry


def send_client_message(client, text: str):
    entry = client.add_activity_log("info", text, "Message from client", source="client")
    db.session.commit()
    logger.info(f"[MESSAGE] Client message from {client.client_id} ({len(text)} chars)")
    return entry


def _chat_entry(log) -> dict:
    data = log.to_dict()
    data["time"] = log.timestamp.strftime("%H:%M") if log.timestamp else ""
    data["date"] = log.timestamp.strftime("%d %b %Y") if log.timestamp else ""
    data["timestamp"] = isoformat(log.timestamp)
    return data


def list_messages(client) -> list:
    """Chat transcript: admin and client entries, oldest first, with display time/date."""
    entries = [log for log in client.activity_logs if log.source in CHAT_SOURCES]
    entries.sort(key=lambda log: (log.timestamp, log.id))
    return [_chat_entry(log) for log in entries]


def recent_logs(client, limit: int = 50) -> list:
    entries = sorted(client.activity_logs, key=lambda log: (log.timestamp, log.id), reverse=True)
    return [log.to_dict() for log in entries[:limit]]


def purge_invalid_logs() -> int:
    """Delete activity-log entries whose type is outside the allowed set."""
    removed = ActivityLog.query.filter(ActivityLog.type.notin_(LOG_TYPES)).delete(synchronize_session=False)
    db.session.commit()
    if removed:
        logger.warning(f"[MAINTENANCE] Removed {removed} activity log entries with an invalid type")
    return removed

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from portal import db
from portal.kvstore import ERRORS_KEY, KeyValueStore, StorageWriteError
from portal.store import isoformat, utc_now

RECENT_ERROR_WINDOW = timedelta(hours=1)


def record_error(
    kv: KeyValueStore,
    kind: str,
    message: str,
    *,
    context: str | None = None,
    url: str | None = None,
    user_agent: str | None = None,
    cap: int = 50,
) -> dict:
    entry = {
        "type": kind,
        "message": message,
        "context": context,
        "url": url,
        "userAgent": user_agent,
        "timestamp": isoformat(utc_now()),
    }
    errors = kv.read_collection(ERRORS_KEY)
    errors.append(entry)
    kv.write_collection(ERRORS_KEY, errors, cap=cap)
    return entry


def get_errors(kv: KeyValueStore) -> list[dict]:
    return kv.read_collection(ERRORS_KEY)


def _parse_timestamp(raw) -> datetime | None:
    if not isinstance(raw, str):
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def health_check(kv: KeyValueStore, started_at: datetime, now: datetime | None = None) -> dict:
    now = now or utc_now()
    storage_ok = True
    errors = []
    try:
        errors = get_errors(kv)
    except (SQLAlchemyError, StorageWriteError):
        db.session.rollback()
        current_app.logger.exception("Health check could not read the store")
        storage_ok = False

    recent = 0
    for entry in errors:
        stamp = _parse_timestamp(entry.get("timestamp") if isinstance(entry, dict) else None)
        if stamp is not None and now - stamp <= RECENT_ERROR_WINDOW:
            recent += 1

    if not storage_ok:
        status = "error"
    elif recent:
        status = "warning"
    else:
        status = "ok"

    return {
        "status": status,
        "storage": storage_ok,
        "uptime": int((now - started_at).total_seconds()),
        "errorCount": len(errors),
        "recentErrors": recent,
        "lastCheck": isoformat(now),
    }

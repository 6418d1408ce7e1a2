import json
from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from portal import db
from portal.models import StoreEntry

USERS_KEY = "users"
WEBSITES_KEY = "websites"
LOGIN_SESSIONS_KEY = "loginSessions"
VISIT_LOG_KEY = "analytics_sessions"
DAILY_STATS_KEY = "analytics_daily_stats"
EVENTS_KEY = "analytics_events"
ERRORS_KEY = "app_errors"


class StorageWriteError(RuntimeError):
    """Raised when the storage medium rejects a write (full disk, quota, lost connection)."""

    def __init__(self, key: str, message: str):
        super().__init__(f"Failed to write {key!r}: {message}")
        self.key = key


class KeyValueStore:
    """Flat key/value namespace; each key holds one independently serialized JSON document.

    Every write replaces the whole document for its key. Nothing here guards
    against two writers doing read-modify-write on the same key at once; the
    later commit wins.
    """

    def read_value(self, key: str, default: Any = None) -> Any:
        entry = db.session.get(StoreEntry, key)
        if entry is None:
            return default
        try:
            return json.loads(entry.value)
        except (TypeError, ValueError):
            current_app.logger.warning("Stored value for %s is not valid JSON; ignoring it", key)
            return default

    def read_collection(self, key: str) -> list:
        value = self.read_value(key, default=[])
        if not isinstance(value, list):
            current_app.logger.warning(
                "Stored value for %s is %s, expected a list; treating as empty",
                key,
                type(value).__name__,
            )
            return []
        return value

    def write_value(self, key: str, value: Any) -> None:
        self.write_values({key: value})

    def write_values(self, values: dict[str, Any]) -> None:
        """Replace several documents in one commit; on failure none of them change."""
        try:
            for key, value in values.items():
                payload = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
                entry = db.session.get(StoreEntry, key)
                if entry is None:
                    db.session.add(StoreEntry(key=key, value=payload))
                else:
                    entry.value = payload
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageWriteError(", ".join(values), str(exc)) from exc

    def write_collection(self, key: str, items: list, cap: int | None = None) -> list:
        """Persist ``items``; with ``cap`` set only the newest ``cap`` entries are kept."""
        if cap is not None and len(items) > cap:
            items = items[len(items) - cap :]
        self.write_value(key, items)
        return items

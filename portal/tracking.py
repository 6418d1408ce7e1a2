from collections.abc import MutableMapping
from datetime import date, datetime, timedelta
from typing import Any, Callable
from uuid import uuid4

from flask import current_app

from portal.kvstore import (
    DAILY_STATS_KEY,
    EVENTS_KEY,
    VISIT_LOG_KEY,
    KeyValueStore,
)
from portal.records import AnalyticsEvent, DailyStat, VisitorSession
from portal.security import visitor_hash
from portal.store import isoformat, utc_now

SESSION_ID_KEY = "analytics_session_id"
SESSION_STARTED_KEY = "analytics_session_started_at"
LAST_VISIT_KEY = "analytics_last_visit"
DIRECT_REFERRER = "direct"


def epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class SessionTracker:
    """Turns page-view, hide and unload triggers into visit log entries and daily counters.

    ``session`` is the per-browser session medium (the Flask session cookie in
    production) and holds the session id, its start time and the last visit
    day. The visit log and daily counters live in the shared key/value
    namespace.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        session: MutableMapping,
        user_agent: str | None = None,
        referrer: str | None = None,
        now: Callable[[], datetime] = utc_now,
        visit_cap: int = 1000,
        event_cap: int = 500,
        retention_days: int = 90,
    ):
        self.kv = kv
        self.session = session
        self.user_agent = user_agent or ""
        self.referrer = referrer or DIRECT_REFERRER
        self.now = now
        self.visit_cap = visit_cap
        self.event_cap = event_cap
        self.retention_days = retention_days

    def current_session_id(self) -> str:
        session_id = self.session.get(SESSION_ID_KEY)
        if not session_id:
            session_id = str(uuid4())
            self.session[SESSION_ID_KEY] = session_id
            self.session[SESSION_STARTED_KEY] = epoch_millis(self.now())
        return session_id

    def _is_first_visit_today(self, today: date) -> bool:
        return self.session.get(LAST_VISIT_KEY) != today.isoformat()

    def record_page_view(self, page_url: str) -> VisitorSession:
        session_id = self.current_session_id()
        moment = self.now()
        is_unique = self._is_first_visit_today(moment.date())

        visit = VisitorSession(
            id=str(uuid4()),
            session_id=session_id,
            timestamp=isoformat(moment),
            user_agent=self.user_agent,
            referrer=self.referrer,
            page_url=page_url or "/",
            ip_hash=visitor_hash(self.user_agent, epoch_millis(moment)),
            duration=0,
            is_unique=is_unique,
        )
        visits = self.kv.read_collection(VISIT_LOG_KEY)
        visits.append(visit.to_dict())
        self.kv.write_collection(VISIT_LOG_KEY, visits, cap=self.visit_cap)
        # The marker moves only after the visit is stored.
        self.session[LAST_VISIT_KEY] = moment.date().isoformat()

        self._update_daily_stats(moment.date(), is_unique)
        return visit

    def _update_daily_stats(self, today: date, is_unique: bool) -> None:
        stats = []
        for row in self.kv.read_collection(DAILY_STATS_KEY):
            try:
                stats.append(DailyStat.from_dict(row))
            except (KeyError, TypeError, ValueError, AttributeError):
                current_app.logger.warning("Skipping malformed daily stat: %r", row)

        today_key = today.isoformat()
        today_stat = next((s for s in stats if s.date == today_key), None)
        if today_stat is None:
            stats.append(DailyStat(date=today_key, visitors=1 if is_unique else 0, page_views=1))
        else:
            today_stat.page_views += 1
            if is_unique:
                today_stat.visitors += 1

        cutoff = today - timedelta(days=self.retention_days - 1)
        kept = []
        for stat in stats:
            try:
                stat_day = date.fromisoformat(stat.date[:10])
            except ValueError:
                current_app.logger.warning("Dropping daily stat with bad date %r", stat.date)
                continue
            if stat_day >= cutoff:
                kept.append(stat)

        self.kv.write_collection(DAILY_STATS_KEY, [s.to_dict() for s in kept])

    def record_session_end(self) -> bool:
        session_id = self.session.get(SESSION_ID_KEY)
        started_at = self.session.get(SESSION_STARTED_KEY)
        if not session_id or started_at is None:
            return False

        visits = self.kv.read_collection(VISIT_LOG_KEY)
        for row in reversed(visits):
            if isinstance(row, dict) and row.get("sessionId") == session_id:
                row["duration"] = max(0, epoch_millis(self.now()) - int(started_at))
                self.kv.write_collection(VISIT_LOG_KEY, visits)
                return True
        return False

    def track_event(self, event_name: str, properties: dict[str, Any] | None = None) -> AnalyticsEvent:
        event = AnalyticsEvent(
            id=str(uuid4()),
            session_id=self.current_session_id(),
            event_name=event_name,
            properties=properties or {},
            timestamp=isoformat(self.now()),
        )
        events = self.kv.read_collection(EVENTS_KEY)
        events.append(event.to_dict())
        self.kv.write_collection(EVENTS_KEY, events, cap=self.event_cap)
        return event

import random
from collections import Counter
from datetime import date, timedelta
from typing import Callable
from urllib.parse import urlsplit

from flask import current_app

from portal.kvstore import DAILY_STATS_KEY, VISIT_LOG_KEY, KeyValueStore
from portal.records import AnalyticsData, DailyStat, VisitorSession
from portal.store import utc_now
from portal.tracking import DIRECT_REFERRER

WEEKDAY_LABELS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
MONTH_LABELS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

# Inclusive (low, high) ranges for placeholder points.
WEEKLY_FILL = {"visitors": (10, 29), "pageViews": (15, 44)}
MONTHLY_FILL = {"visitors": (100, 299), "pageViews": (150, 449)}


def referrer_source(referrer: str | None) -> str:
    if not referrer or referrer == DIRECT_REFERRER:
        return "Direct"
    try:
        host = urlsplit(referrer).hostname
    except ValueError:
        host = None
    return host or "Unknown"


def month_start(day: date, months_back: int) -> date:
    index = day.year * 12 + (day.month - 1) - months_back
    return date(index // 12, index % 12 + 1, 1)


class StatsAggregator:
    """Read-only rollups over the visit log and daily counters."""

    def __init__(
        self,
        kv: KeyValueStore,
        fill_missing: bool = True,
        rng: random.Random | None = None,
        today: Callable[[], date] | None = None,
        retention_days: int = 90,
        top_referrers: int = 5,
    ):
        self.kv = kv
        self.fill_missing = fill_missing
        self.rng = rng or random.Random()
        self.today = today or (lambda: utc_now().date())
        self.retention_days = retention_days
        self.top_referrers = top_referrers

    def _visits(self) -> list[VisitorSession]:
        visits = []
        for row in self.kv.read_collection(VISIT_LOG_KEY):
            try:
                visits.append(VisitorSession.from_dict(row))
            except (TypeError, ValueError, AttributeError):
                current_app.logger.warning("Skipping malformed visit record: %r", row)
        return visits

    def _daily_stats(self) -> list[DailyStat]:
        stats = []
        for row in self.kv.read_collection(DAILY_STATS_KEY):
            try:
                stats.append(DailyStat.from_dict(row))
            except (KeyError, TypeError, ValueError, AttributeError):
                current_app.logger.warning("Skipping malformed daily stat: %r", row)
        return stats

    def _fill(self, bounds: dict, field: str) -> int:
        if not self.fill_missing:
            return 0
        low, high = bounds[field]
        return self.rng.randint(low, high)

    def snapshot(self, today: date | None = None) -> AnalyticsData:
        today = today or self.today()
        visits = self._visits()
        daily = self._daily_stats()

        timed = [v.duration for v in visits if v.duration > 0]
        average_ms = sum(timed) / len(timed) if timed else 0

        return AnalyticsData(
            total_visitors=len(visits),
            unique_visitors=len({v.session_id for v in visits}),
            page_views=len(visits),
            average_session_duration=round(average_ms / 1000),
            top_referrers=self.referrer_ranking(visits),
            daily_stats=self.daily_series(daily, today),
            weekly_stats=self.weekly_series(daily, today),
            monthly_stats=self.monthly_series(daily, today),
        )

    def referrer_ranking(self, visits: list[VisitorSession]) -> list[dict]:
        # Counter keeps first-seen order, and sorted() is stable, so ties stay in that order.
        counts = Counter(referrer_source(v.referrer) for v in visits)
        ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
        return [{"source": source, "count": count} for source, count in ranked[: self.top_referrers]]

    def daily_series(self, daily: list[DailyStat], today: date) -> list[DailyStat]:
        cutoff = (today - timedelta(days=self.retention_days - 1)).isoformat()
        return [s for s in daily if s.date[:10] >= cutoff]

    def weekly_series(self, daily: list[DailyStat], today: date) -> list[dict]:
        by_date = {s.date[:10]: s for s in daily}
        points = []
        for offset in range(6, -1, -1):
            day = today - timedelta(days=offset)
            stat = by_date.get(day.isoformat())
            points.append(
                {
                    "week": WEEKDAY_LABELS[day.weekday()],
                    "date": day.isoformat(),
                    "visitors": stat.visitors if stat else self._fill(WEEKLY_FILL, "visitors"),
                    "pageViews": stat.page_views if stat else self._fill(WEEKLY_FILL, "pageViews"),
                }
            )
        return points

    def monthly_series(self, daily: list[DailyStat], today: date) -> list[dict]:
        points = []
        for months_back in range(11, -1, -1):
            start = month_start(today, months_back)
            prefix = start.isoformat()[:7]
            in_month = [s for s in daily if s.date.startswith(prefix)]
            visitors = sum(s.visitors for s in in_month)
            page_views = sum(s.page_views for s in in_month)
            has_data = bool(in_month) and (visitors or page_views)
            points.append(
                {
                    "month": MONTH_LABELS[start.month - 1],
                    "period": prefix,
                    "visitors": visitors if has_data else self._fill(MONTHLY_FILL, "visitors"),
                    "pageViews": page_views if has_data else self._fill(MONTHLY_FILL, "pageViews"),
                }
            )
        return points

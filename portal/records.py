"""
Record types stored in the key/value namespace.

Each record converts to and from the camelCase JSON document shape kept under
its collection key, so stored data stays readable by any consumer of the
namespace.
"""

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            raise ValueError(f"Unknown role: {value!r}") from None


@dataclass
class User:
    id: str
    username: str
    password_digest: str
    role: Role
    permissions: List[str] = field(default_factory=list)
    created_at: str = ""
    last_login: Optional[str] = None

    def sanitized(self) -> "User":
        """Copy of the user with the digest cleared, safe to hand to callers."""
        return replace(self, password_digest="", permissions=list(self.permissions))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "username": self.username,
            "passwordDigest": self.password_digest,
            "role": self.role.value,
            "permissions": list(self.permissions),
            "createdAt": self.created_at,
        }
        if self.last_login is not None:
            data["lastLogin"] = self.last_login
        return data

    def to_public_dict(self) -> Dict[str, Any]:
        data = self.to_dict()
        data.pop("passwordDigest")
        data.setdefault("lastLogin", None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=str(data["id"]),
            username=str(data["username"]),
            password_digest=str(data.get("passwordDigest") or ""),
            role=Role.parse(data.get("role")),
            permissions=[str(p) for p in data.get("permissions") or []],
            created_at=str(data.get("createdAt") or ""),
            last_login=data.get("lastLogin"),
        )


@dataclass
class Website:
    id: str
    name: str
    url: str
    logo: str
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Website":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            url=str(data.get("url") or ""),
            logo=str(data.get("logo") or ""),
            description=str(data.get("description") or ""),
        )


@dataclass
class LoginSession:
    id: str
    user_id: str
    username: str
    login_time: str
    user_agent: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "username": self.username,
            "loginTime": self.login_time,
            "userAgent": self.user_agent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoginSession":
        return cls(
            id=str(data.get("id") or ""),
            user_id=str(data.get("userId") or ""),
            username=str(data.get("username") or ""),
            login_time=str(data.get("loginTime") or ""),
            user_agent=str(data.get("userAgent") or "Unknown"),
        )


@dataclass
class VisitorSession:
    id: str
    session_id: str
    timestamp: str
    user_agent: str
    referrer: str
    page_url: str
    ip_hash: str
    duration: int = 0  # milliseconds
    is_unique: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
            "userAgent": self.user_agent,
            "referrer": self.referrer,
            "pageUrl": self.page_url,
            "ipHash": self.ip_hash,
            "duration": self.duration,
            "isUnique": self.is_unique,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VisitorSession":
        return cls(
            id=str(data.get("id") or ""),
            session_id=str(data.get("sessionId") or ""),
            timestamp=str(data.get("timestamp") or ""),
            user_agent=str(data.get("userAgent") or ""),
            referrer=str(data.get("referrer") or "direct"),
            page_url=str(data.get("pageUrl") or ""),
            ip_hash=str(data.get("ipHash") or ""),
            duration=int(data.get("duration") or 0),
            is_unique=bool(data.get("isUnique")),
        )


@dataclass
class DailyStat:
    date: str
    visitors: int = 0
    page_views: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date, "visitors": self.visitors, "pageViews": self.page_views}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DailyStat":
        return cls(
            date=str(data["date"]),
            visitors=int(data.get("visitors") or 0),
            page_views=int(data.get("pageViews") or 0),
        )


@dataclass
class AnalyticsEvent:
    id: str
    session_id: str
    event_name: str
    properties: Dict[str, Any]
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "eventName": self.event_name,
            "properties": dict(self.properties),
            "timestamp": self.timestamp,
        }


@dataclass
class AnalyticsData:
    total_visitors: int
    unique_visitors: int
    page_views: int
    average_session_duration: int
    top_referrers: List[Dict[str, Any]]
    daily_stats: List[DailyStat]
    weekly_stats: List[Dict[str, Any]]
    monthly_stats: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalVisitors": self.total_visitors,
            "uniqueVisitors": self.unique_visitors,
            "pageViews": self.page_views,
            "averageSessionDuration": self.average_session_duration,
            "topReferrers": [dict(item) for item in self.top_referrers],
            "dailyStats": [stat.to_dict() for stat in self.daily_stats],
            "weeklyStats": [dict(item) for item in self.weekly_stats],
            "monthlyStats": [dict(item) for item in self.monthly_stats],
        }

from datetime import datetime, timezone
from typing import Callable, Iterable
from urllib.parse import urlsplit
from uuid import uuid4

from flask import current_app

from portal.kvstore import LOGIN_SESSIONS_KEY, USERS_KEY, WEBSITES_KEY, KeyValueStore
from portal.records import LoginSession, Role, User, Website
from portal.security import digest, verify

FAVICON_URL = "https://www.google.com/s2/favicons?domain={host}&sz=64"
PLACEHOLDER_LOGO = (
    "data:image/svg+xml;base64,PHN2ZyB3aWR0aD0iNjQiIGhlaWdodD0iNjQiIHZpZXdCb3g9IjAgMCA2NCA2NCIg"
    "ZmlsbD0ibm9uZSIgeG1sbnM9Imh0dHA6Ly93d3cudzMub3JnLzIwMDAvc3ZnIj4KPHJlY3Qgd2lkdGg9IjY0IiBo"
    "ZWlnaHQ9IjY0IiByeD0iOCIgZmlsbD0iIzNCODJGNiIvPgo8dGV4dCB4PSIzMiIgeT0iNDAiIGZvbnQtZmFtaWx5"
    "PSJBcmlhbCwgc2Fucy1zZXJpZiIgZm9udC1zaXplPSIyNCIgZm9udC13ZWlnaHQ9ImJvbGQiIGZpbGw9IndoaXRl"
    "IiB0ZXh0LWFuY2hvcj0ibWlkZGxlIj5XPC90ZXh0Pgo8L3N2Zz4K"
)

DEFAULT_WEBSITES = [
    {
        "id": "github",
        "name": "GitHub",
        "url": "https://github.com",
        "logo": "https://github.githubassets.com/images/modules/logos_page/GitHub-Mark.png",
        "description": "Development platform for code collaboration",
    },
    {
        "id": "stackoverflow",
        "name": "Stack Overflow",
        "url": "https://stackoverflow.com",
        "logo": "https://cdn.sstatic.net/Sites/stackoverflow/Img/apple-touch-icon.png",
        "description": "Programming Q&A community",
    },
    {
        "id": "google",
        "name": "Google",
        "url": "https://google.com",
        "logo": "https://www.google.com/images/branding/googleg/1x/googleg_standard_color_128dp.png",
        "description": "Search engine and web services",
    },
    {
        "id": "youtube",
        "name": "YouTube",
        "url": "https://youtube.com",
        "logo": "https://www.youtube.com/s/desktop/f506bd45/img/favicon_32x32.png",
        "description": "Video sharing platform",
    },
    {
        "id": "zeolf",
        "name": "Zeolf",
        "url": "https://zeolf.com",
        "logo": "https://www.google.com/s2/favicons?domain=zeolf.com&sz=64",
        "description": "Zeolf main website",
    },
    {
        "id": "zeolf-erp",
        "name": "Zeolf ERP",
        "url": "https://erp.zeolf.com/index.php?mainmenu=home",
        "logo": "https://www.google.com/s2/favicons?domain=erp.zeolf.com&sz=64",
        "description": "Zeolf ERP system for business management",
    },
]

# (id, username, secret, role, permissions)
DEFAULT_USERS = [
    (
        "admin-1",
        "admin",
        "admin123",
        Role.ADMIN,
        ["github", "stackoverflow", "google", "youtube", "zeolf", "zeolf-erp"],
    ),
    ("user-1", "user", "user123", Role.USER, ["github", "stackoverflow", "zeolf"]),
]


class AuthFailure:
    """Single outcome for every failed login; it never says which check failed."""

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "AUTH_FAILURE"


AUTH_FAILURE = AuthFailure()


class UsernameTakenError(ValueError):
    pass


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_website_url(url: str) -> str:
    url = (url or "").strip()
    return url if url.startswith("http") else f"https://{url}"


def logo_for_url(url: str) -> str:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        host = None
    if not host:
        return PLACEHOLDER_LOGO
    return FAVICON_URL.format(host=host)


class PersistenceStore:
    def __init__(
        self,
        kv: KeyValueStore,
        salt: str,
        now: Callable[[], datetime] = utc_now,
    ):
        self.kv = kv
        self.salt = salt
        self.now = now

    # -- bootstrap -------------------------------------------------------

    def seed_if_empty(self) -> bool:
        if self.kv.read_collection(USERS_KEY):
            return False

        created_at = isoformat(self.now())
        users = [
            User(
                id=user_id,
                username=username,
                password_digest=digest(secret, self.salt),
                role=role,
                permissions=list(permissions),
                created_at=created_at,
            )
            for user_id, username, secret, role, permissions in DEFAULT_USERS
        ]
        self._save_websites([Website.from_dict(row) for row in DEFAULT_WEBSITES])
        self._save_users(users)
        self.kv.write_collection(LOGIN_SESSIONS_KEY, [])
        current_app.logger.info(
            "Seeded store with %d users and %d websites", len(users), len(DEFAULT_WEBSITES)
        )
        return True

    # -- users -------------------------------------------------------------

    def _load_users(self) -> list[User]:
        users = []
        for row in self.kv.read_collection(USERS_KEY):
            try:
                users.append(User.from_dict(row))
            except (KeyError, TypeError, ValueError, AttributeError):
                current_app.logger.warning("Skipping malformed user record: %r", row)
        return users

    def _save_users(self, users: Iterable[User]) -> None:
        self.kv.write_collection(USERS_KEY, [user.to_dict() for user in users])

    def get_all_users(self) -> list[User]:
        return [user.sanitized() for user in self._load_users()]

    def get_user(self, user_id: str) -> User | None:
        for user in self._load_users():
            if user.id == user_id:
                return user.sanitized()
        return None

    def authenticate(self, username: str, secret: str, user_agent: str | None = None):
        users = self._load_users()
        user = next((u for u in users if u.username == username), None)
        if user is None or not verify(secret or "", user.password_digest, self.salt):
            return AUTH_FAILURE

        login_time = isoformat(self.now())
        user.last_login = login_time
        self._save_users(users)

        sessions = self.kv.read_collection(LOGIN_SESSIONS_KEY)
        sessions.append(
            LoginSession(
                id=f"session-{uuid4().hex}",
                user_id=user.id,
                username=user.username,
                login_time=login_time,
                user_agent=user_agent or "Unknown",
            ).to_dict()
        )
        self.kv.write_collection(LOGIN_SESSIONS_KEY, sessions)
        return user.sanitized()

    def create_user(
        self,
        username: str,
        secret: str,
        role: Role | str,
        permissions: Iterable[str] = (),
    ) -> User:
        role = Role.parse(role)
        users = self._load_users()
        if any(u.username == username for u in users):
            raise UsernameTakenError(f"Username {username!r} already exists.")

        user = User(
            id=f"user-{uuid4().hex[:12]}",
            username=username,
            password_digest=digest(secret, self.salt),
            role=role,
            permissions=self._known_website_ids(permissions),
            created_at=isoformat(self.now()),
        )
        users.append(user)
        self._save_users(users)
        return user.sanitized()

    def delete_user(self, user_id: str) -> bool:
        users = self._load_users()
        remaining = [u for u in users if u.id != user_id]
        if len(remaining) == len(users):
            return False
        self._save_users(remaining)
        return True

    def update_user(self, updated: User) -> bool:
        users = self._load_users()
        for index, user in enumerate(users):
            if user.id == updated.id:
                if not updated.password_digest:
                    # Sanitized views carry no digest; keep the stored one.
                    updated.password_digest = user.password_digest
                users[index] = updated
                self._save_users(users)
                return True
        return False

    def update_user_permissions(self, user_id: str, permissions: Iterable[str]) -> bool:
        users = self._load_users()
        user = next((u for u in users if u.id == user_id), None)
        if user is None:
            return False
        user.permissions = self._known_website_ids(permissions)
        self._save_users(users)
        return True

    def _known_website_ids(self, permissions: Iterable[str]) -> list[str]:
        known = {w.id for w in self.get_websites()}
        result = []
        for website_id in permissions or ():
            if website_id in known and website_id not in result:
                result.append(website_id)
            elif website_id not in known:
                current_app.logger.info("Dropping unknown website id %r from permissions", website_id)
        return result

    # -- websites ----------------------------------------------------------

    def get_websites(self) -> list[Website]:
        websites = []
        for row in self.kv.read_collection(WEBSITES_KEY):
            try:
                websites.append(Website.from_dict(row))
            except (KeyError, TypeError, AttributeError):
                current_app.logger.warning("Skipping malformed website record: %r", row)
        return websites

    def _save_websites(self, websites: Iterable[Website]) -> None:
        self.kv.write_collection(WEBSITES_KEY, [w.to_dict() for w in websites])

    def get_website(self, website_id: str) -> Website | None:
        return next((w for w in self.get_websites() if w.id == website_id), None)

    def add_website(self, name: str, url: str, description: str = "") -> Website:
        websites = self.get_websites()
        normalized = normalize_website_url(url)
        website = Website(
            id=f"website-{uuid4().hex[:12]}",
            name=name,
            url=normalized,
            logo=logo_for_url(normalized),
            description=description or "",
        )
        websites.append(website)
        self._save_websites(websites)
        return website

    def delete_website(self, website_id: str) -> bool:
        websites = self.get_websites()
        remaining = [w for w in websites if w.id != website_id]
        if len(remaining) == len(websites):
            return False

        users = self._load_users()
        for user in users:
            user.permissions = [p for p in user.permissions if p != website_id]
        # Website removal and permission cleanup commit together or not at all.
        self.kv.write_values(
            {
                WEBSITES_KEY: [w.to_dict() for w in remaining],
                USERS_KEY: [user.to_dict() for user in users],
            }
        )
        return True

    def websites_for(self, user: User) -> list[Website]:
        websites = self.get_websites()
        if user.role is Role.ADMIN:
            return websites
        if user.role is Role.USER:
            allowed = set(user.permissions)
            return [w for w in websites if w.id in allowed]
        raise ValueError(f"Unhandled role: {user.role!r}")

    # -- login audit trail -------------------------------------------------

    def get_login_sessions(self) -> list[LoginSession]:
        return [LoginSession.from_dict(row) for row in self.kv.read_collection(LOGIN_SESSIONS_KEY)]

    def login_summary(self, recent: int = 10) -> dict:
        users = self._load_users()
        sessions = self.get_login_sessions()
        return {
            "totalUsers": len(users),
            "loggedInUsers": sum(1 for u in users if u.last_login),
            "totalLogins": len(sessions),
            "recentSessions": [s.to_dict() for s in reversed(sessions[-recent:])] if recent else [],
        }

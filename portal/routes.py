from functools import wraps

from flask import Blueprint, current_app, g, jsonify, request, session

from portal import STARTED_AT_EXTENSION, STORE_EXTENSION
from portal.kvstore import StorageWriteError
from portal.monitoring import get_errors, health_check, record_error
from portal.records import Role
from portal.stats import StatsAggregator
from portal.store import PersistenceStore, UsernameTakenError
from portal.tracking import SessionTracker

bp = Blueprint("main", __name__)

MAX_EVENT_NAME_LENGTH = 120


def get_store() -> PersistenceStore:
    return current_app.extensions[STORE_EXTENSION]


def get_tracker() -> SessionTracker:
    store = get_store()
    return SessionTracker(
        store.kv,
        session,
        user_agent=request.headers.get("User-Agent"),
        referrer=request.referrer,
        visit_cap=current_app.config["VISIT_LOG_CAP"],
        event_cap=current_app.config["EVENT_LOG_CAP"],
        retention_days=current_app.config["DAILY_STATS_RETENTION_DAYS"],
    )


def get_aggregator() -> StatsAggregator:
    return StatsAggregator(
        get_store().kv,
        fill_missing=current_app.config["ANALYTICS_FILL_MISSING"],
        retention_days=current_app.config["DAILY_STATS_RETENTION_DAYS"],
    )


def json_body() -> dict:
    body = request.get_json(silent=True) if request.is_json else None
    return body if isinstance(body, dict) else {}


def error_response(message: str, status: int):
    return jsonify({"ok": False, "error": message}), status


def normalize_text(value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_permissions(raw_value):
    if raw_value is None:
        return []
    if not isinstance(raw_value, list):
        return None
    return [str(item).strip() for item in raw_value if str(item).strip()]


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if g.user is None:
            return error_response("Please log in first.", 401)
        return view(*args, **kwargs)

    return wrapped


def admin_required(view):
    @wraps(view)
    @login_required
    def wrapped(*args, **kwargs):
        if g.user.role is Role.ADMIN:
            return view(*args, **kwargs)
        if g.user.role is Role.USER:
            return error_response("Admin access required.", 403)
        raise ValueError(f"Unhandled role: {g.user.role!r}")

    return wrapped


@bp.before_app_request
def load_logged_in_user():
    user_id = session.get("user_id")
    g.user = get_store().get_user(user_id) if user_id else None


@bp.app_errorhandler(StorageWriteError)
def storage_write_failed(exc: StorageWriteError):
    current_app.logger.exception("Storage write failed for key %s", exc.key)
    return error_response("Storage is unavailable or full; the change was not saved.", 507)


@bp.get("/health")
def health():
    store = get_store()
    report = health_check(store.kv, current_app.extensions[STARTED_AT_EXTENSION])
    status_code = 503 if report["status"] == "error" else 200
    return jsonify(report), status_code


@bp.post("/login")
def login():
    body = json_body()
    username = normalize_text(body.get("username"))
    password = body.get("password") or ""

    user = get_store().authenticate(
        username or "",
        password,
        user_agent=request.headers.get("User-Agent"),
    )
    if not user:
        return error_response("Invalid credentials.", 401)

    # Keep the analytics session id across the login boundary.
    tracking = {k: v for k, v in session.items() if k.startswith("analytics_")}
    session.clear()
    session.update(tracking)
    session["user_id"] = user.id
    get_tracker().track_event("login", {"userId": user.id})
    return jsonify({"ok": True, "user": user.to_public_dict()})


@bp.post("/logout")
@login_required
def logout():
    session.pop("user_id", None)
    return jsonify({"ok": True})


@bp.get("/me")
@login_required
def me():
    return jsonify({"ok": True, "user": g.user.to_public_dict()})


@bp.get("/websites")
@login_required
def websites():
    visible = get_store().websites_for(g.user)
    return jsonify({"ok": True, "websites": [w.to_dict() for w in visible]})


@bp.get("/admin/users")
@admin_required
def list_users():
    users = get_store().get_all_users()
    return jsonify({"ok": True, "users": [u.to_public_dict() for u in users]})


@bp.post("/admin/users")
@admin_required
def create_user():
    body = json_body()
    username = normalize_text(body.get("username"))
    password = body.get("password") or ""
    permissions = parse_permissions(body.get("permissions"))

    if not username:
        return error_response("Username is required.", 400)
    if not password:
        return error_response("Password is required.", 400)
    if permissions is None:
        return error_response("Permissions must be a list of website ids.", 400)
    try:
        role = Role.parse(body.get("role") or Role.USER.value)
    except ValueError as exc:
        return error_response(str(exc), 400)

    try:
        user = get_store().create_user(username, password, role, permissions)
    except UsernameTakenError:
        return error_response("A user with that username already exists.", 409)
    return jsonify({"ok": True, "user": user.to_public_dict()}), 201


@bp.delete("/admin/users/<user_id>")
@admin_required
def delete_user(user_id: str):
    if user_id == g.user.id:
        return error_response("You cannot delete your own account.", 400)
    if not get_store().delete_user(user_id):
        return error_response("User not found.", 404)
    return jsonify({"ok": True})


@bp.put("/admin/users/<user_id>/permissions")
@admin_required
def update_permissions(user_id: str):
    permissions = parse_permissions(json_body().get("permissions"))
    if permissions is None:
        return error_response("Permissions must be a list of website ids.", 400)

    store = get_store()
    if not store.update_user_permissions(user_id, permissions):
        return error_response("User not found.", 404)
    return jsonify({"ok": True, "user": store.get_user(user_id).to_public_dict()})


@bp.post("/admin/websites")
@admin_required
def add_website():
    body = json_body()
    name = normalize_text(body.get("name"))
    url = normalize_text(body.get("url"))
    description = normalize_text(body.get("description")) or ""

    if not name or not url:
        return error_response("Name and URL are required.", 400)

    website = get_store().add_website(name, url, description)
    return jsonify({"ok": True, "website": website.to_dict()}), 201


@bp.delete("/admin/websites/<website_id>")
@admin_required
def delete_website(website_id: str):
    if not get_store().delete_website(website_id):
        return error_response("Website not found.", 404)
    return jsonify({"ok": True})


@bp.get("/admin/analytics")
@admin_required
def analytics():
    return jsonify({"ok": True, "analytics": get_aggregator().snapshot().to_dict()})


@bp.get("/admin/logins")
@admin_required
def logins():
    return jsonify({"ok": True, **get_store().login_summary()})


@bp.get("/admin/errors")
@admin_required
def errors():
    return jsonify({"ok": True, "errors": get_errors(get_store().kv)})


@bp.post("/track/pageview")
def track_pageview():
    body = json_body()
    page_url = normalize_text(body.get("pageUrl")) or "/"
    tracker = get_tracker()
    if body.get("referrer") is not None:
        tracker.referrer = normalize_text(body.get("referrer")) or "direct"
    visit = tracker.record_page_view(page_url)
    return jsonify({"ok": True, "visit": visit.to_dict()})


@bp.post("/track/end")
def track_session_end():
    # Hidden tab and unload both land here; re-sending is harmless.
    recorded = get_tracker().record_session_end()
    return jsonify({"ok": True, "recorded": recorded})


@bp.post("/track/event")
def track_event():
    body = json_body()
    event_name = normalize_text(body.get("eventName"))
    properties = body.get("properties") or {}
    if not event_name or len(event_name) > MAX_EVENT_NAME_LENGTH:
        return error_response("eventName is required (max 120 characters).", 400)
    if not isinstance(properties, dict):
        return error_response("properties must be an object.", 400)

    event = get_tracker().track_event(event_name, properties)
    return jsonify({"ok": True, "event": event.to_dict()}), 201


@bp.post("/track/error")
def track_error():
    body = json_body()
    message = normalize_text(body.get("message"))
    if not message:
        return error_response("message is required.", 400)

    entry = record_error(
        get_store().kv,
        normalize_text(body.get("type")) or "client_error",
        message,
        context=normalize_text(body.get("context")),
        url=normalize_text(body.get("url")),
        user_agent=request.headers.get("User-Agent"),
        cap=current_app.config["ERROR_LOG_CAP"],
    )
    return jsonify({"ok": True, "entry": entry}), 201

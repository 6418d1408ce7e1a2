import os


def _as_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw is not None else int(default)
    except (TypeError, ValueError):
        return int(default)


# This file is auto-loaded by gunicorn when present in project root.
wsgi_app = "wsgi:app"

# Collection writes are whole-document read-modify-write; one worker, one thread.
workers = 1
threads = 1
worker_class = os.getenv("GUNICORN_WORKER_CLASS", "sync")

timeout = _as_int("GUNICORN_TIMEOUT", 30)
graceful_timeout = _as_int("GUNICORN_GRACEFUL_TIMEOUT", 30)
keepalive = _as_int("GUNICORN_KEEPALIVE", 5)

max_requests = _as_int("GUNICORN_MAX_REQUESTS", 500)
max_requests_jitter = _as_int("GUNICORN_MAX_REQUESTS_JITTER", 50)

preload_app = os.getenv("GUNICORN_PRELOAD", "false").lower() == "true"

# Stream logs to platform collector.
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")

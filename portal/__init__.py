from datetime import datetime, timezone

import click
from dotenv import load_dotenv
from flask import Flask
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import inspect

db = SQLAlchemy()
migrate = Migrate()

STORE_EXTENSION = "portal.store"
STARTED_AT_EXTENSION = "portal.started_at"


def create_app(test_config: dict | None = None) -> Flask:
    load_dotenv()

    app = Flask(__name__)
    app.config.from_object("portal.config.Config")
    if test_config:
        app.config.update(test_config)

    from portal.security import CredentialConfigError, validate_credential_configuration

    try:
        validate_credential_configuration(app.config.get("CREDENTIAL_SALT"))
    except CredentialConfigError as exc:
        raise RuntimeError(str(exc)) from exc

    db.init_app(app)
    migrate.init_app(app, db)

    # Ensure model metadata is registered for migrations.
    from portal import models  # noqa: F401
    from portal.kvstore import KeyValueStore
    from portal.store import PersistenceStore

    # One store per application; request handlers reach it through get_store().
    app.extensions[STORE_EXTENSION] = PersistenceStore(KeyValueStore(), app.config["CREDENTIAL_SALT"])
    app.extensions[STARTED_AT_EXTENSION] = datetime.now(timezone.utc)

    from portal.routes import bp

    app.register_blueprint(bp)

    if app.config.get("SEED_ON_STARTUP"):
        with app.app_context():
            if inspect(db.engine).has_table(models.StoreEntry.__tablename__):
                app.extensions[STORE_EXTENSION].seed_if_empty()
            else:
                app.logger.warning("store_entries table missing; run `flask db upgrade` before seeding")

    @app.cli.command("seed-store")
    def seed_store_command():
        """Write the default users and websites if the store has no users yet."""
        if app.extensions[STORE_EXTENSION].seed_if_empty():
            click.echo("Store seeded.")
        else:
            click.echo("Store already has users; nothing to do.")

    @app.after_request
    def apply_security_headers(response):
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        if app.config.get("SESSION_COOKIE_SECURE"):
            response.headers.setdefault(
                "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
            )
        return response

    return app

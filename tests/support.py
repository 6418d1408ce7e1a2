import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from portal import create_app, db
from portal.routes import get_store


class FakeClock:
    def __init__(self, moment: datetime):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class StoreTestCase(unittest.TestCase):
    """Fresh SQLite file per test class, empty tables per test, app context held open."""

    seed = True

    @classmethod
    def setUpClass(cls):
        cls.db_file = Path(tempfile.gettempdir()) / f"siteportal-test-{uuid4().hex}.db"
        cls.app = create_app(
            {
                "TESTING": True,
                "SECRET_KEY": "test-secret",
                "SQLALCHEMY_DATABASE_URI": f"sqlite:///{cls.db_file.as_posix()}",
                "SEED_ON_STARTUP": False,
                "ANALYTICS_FILL_MISSING": True,
            }
        )

    @classmethod
    def tearDownClass(cls):
        with cls.app.app_context():
            db.session.remove()
            db.drop_all()
            db.engine.dispose()
        if cls.db_file.exists():
            try:
                cls.db_file.unlink()
            except PermissionError:
                pass

    def setUp(self):
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.drop_all()
        db.create_all()
        self.store = get_store()
        self.kv = self.store.kv
        if self.seed:
            self.store.seed_if_empty()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

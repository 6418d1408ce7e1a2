from datetime import datetime

from portal import db


class StoreEntry(db.Model):
    """One key of the flat key/value namespace; ``value`` is a JSON document."""

    __tablename__ = "store_entries"

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.Text, nullable=False, default="[]")
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

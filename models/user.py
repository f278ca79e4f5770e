from __future__ import annotations

from extensions import db
from utils.time import utcnow


class User(db.Model):
    """Account row as mirrored from the auth provider; the uid is the primary key."""

    __tablename__ = "users"

    id = db.Column(db.String(64), primary_key=True)
    display_name = db.Column(db.String(120), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    libraries = db.relationship("Library", back_populates="owner_user", lazy="dynamic")

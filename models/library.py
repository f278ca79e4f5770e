from __future__ import annotations

import uuid

from extensions import db
from utils.time import utcnow


class Library(db.Model):
    __tablename__ = "libraries"
    __table_args__ = (
        db.UniqueConstraint("owner_user_id", "system_key", name="uq_library_owner_system_key"),
        db.CheckConstraint(
            "visibility in ('public','private')",
            name="visibility",
        ),
    )

    SYSTEM_MY = "my"
    SYSTEM_WISHLIST = "wishlist"
    VISIBILITY_PUBLIC = "public"
    VISIBILITY_PRIVATE = "private"

    id = db.Column(db.String(80), primary_key=True, default=lambda: uuid.uuid4().hex)
    owner_user_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    visibility = db.Column(
        db.String(20),
        nullable=False,
        default=VISIBILITY_PRIVATE,
        server_default=db.text(f"'{VISIBILITY_PRIVATE}'"),
    )
    # NULL for user-made libraries; unique per owner otherwise
    system_key = db.Column(db.String(20), nullable=True, index=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    owner_user = db.relationship("User", back_populates="libraries")
    items = db.relationship(
        "LibraryItem",
        back_populates="library",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class LibraryItem(db.Model):
    """Membership of a game in a library (shelf placement lives with the collaborator)."""

    __tablename__ = "library_items"

    library_id = db.Column(
        db.String(80),
        db.ForeignKey("libraries.id", ondelete="CASCADE"),
        primary_key=True,
    )
    game_id = db.Column(db.String(64), primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    library = db.relationship("Library", back_populates="items")

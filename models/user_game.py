from __future__ import annotations

from extensions import db
from utils.time import utcnow


class UserGame(db.Model):
    """A user's personal collection entry for a game.

    The collection feature owns this row; the stats engine only mirrors
    ``play_count``/``win_count`` increments onto it.
    """

    __tablename__ = "user_games"
    __table_args__ = (
        db.CheckConstraint(
            "status in ('owned','preordered','formerlyOwned','played')",
            name="status",
        ),
    )

    STATUS_OWNED = "owned"
    STATUS_PREORDERED = "preordered"
    STATUS_FORMERLY_OWNED = "formerlyOwned"
    STATUS_PLAYED = "played"

    user_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    game_id = db.Column(db.String(64), primary_key=True)
    status = db.Column(
        db.String(20),
        nullable=False,
        default=STATUS_OWNED,
        server_default=db.text(f"'{STATUS_OWNED}'"),
    )
    play_count = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))
    win_count = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

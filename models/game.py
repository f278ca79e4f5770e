"""Game session and tournament models."""

from __future__ import annotations

import uuid

from extensions import db
from utils.time import utcnow


class GameSession(db.Model):
    __tablename__ = "game_sessions"
    __table_args__ = (
        db.CheckConstraint(
            "status in ('incomplete','complete')",
            name="status",
        ),
    )

    STATUS_INCOMPLETE = "incomplete"
    STATUS_COMPLETE = "complete"

    id = db.Column(db.String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    tournament_id = db.Column(
        db.String(64),
        db.ForeignKey("tournaments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    # Stored as JSON lists; always reassign rather than mutate in place
    participant_user_ids = db.Column(db.JSON, nullable=False, default=list)
    winner_user_ids = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(
        db.String(20),
        nullable=False,
        default=STATUS_INCOMPLETE,
        server_default=db.text(f"'{STATUS_INCOMPLETE}'"),
        index=True,
    )
    game_id = db.Column(db.String(64), nullable=True, index=True)
    game_name = db.Column(db.String(200), nullable=True)
    game_thumbnail = db.Column(db.String(500), nullable=True)
    played_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    tournament = db.relationship("Tournament", back_populates="sessions")


class Tournament(db.Model):
    __tablename__ = "tournaments"

    id = db.Column(db.String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    name = db.Column(db.String(200), nullable=False, default="Tournament")
    member_ids = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    sessions = db.relationship("GameSession", back_populates="tournament", passive_deletes=True)

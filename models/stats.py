"""Derived statistics tables. The stats engine is their only writer."""

from __future__ import annotations

from extensions import db
from utils.time import utcnow


class UserStats(db.Model):
    __tablename__ = "user_stats"

    COUNTER_COLUMNS = (
        "games_played",
        "games_won",
        "tournaments_played",
        "games_owned",
        "unplayed_games",
    )

    # No FK to users: stats rows may be merge-created before the user row syncs
    user_id = db.Column(db.String(64), primary_key=True)
    games_played = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))
    games_won = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))
    tournaments_played = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))
    games_owned = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))
    unplayed_games = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))
    most_played_game_id = db.Column(db.String(64), nullable=True)
    most_played_game_name = db.Column(db.String(200), nullable=True)
    most_played_game_thumbnail = db.Column(db.String(500), nullable=True)
    most_played_game_count = db.Column(db.Integer, nullable=True)
    last_updated = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "games_played": self.games_played,
            "games_won": self.games_won,
            "tournaments_played": self.tournaments_played,
            "games_owned": self.games_owned,
            "unplayed_games": self.unplayed_games,
            "most_played": (
                {
                    "game_id": self.most_played_game_id,
                    "name": self.most_played_game_name,
                    "thumbnail": self.most_played_game_thumbnail,
                    "count": self.most_played_game_count,
                }
                if self.most_played_game_id
                else None
            ),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


class UserGameStats(db.Model):
    __tablename__ = "user_game_stats"
    __table_args__ = (
        db.Index("ix_user_game_stats_user_play_count", "user_id", "play_count"),
    )

    user_id = db.Column(db.String(64), primary_key=True)
    game_id = db.Column(db.String(64), primary_key=True)
    game_name = db.Column(db.String(200), nullable=False, default="Unknown Game")
    game_thumbnail = db.Column(db.String(500), nullable=True)
    play_count = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))
    win_count = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))
    first_played = db.Column(db.DateTime, nullable=True)
    last_played = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "game_id": self.game_id,
            "game_name": self.game_name,
            "game_thumbnail": self.game_thumbnail,
            "play_count": self.play_count,
            "win_count": self.win_count,
            "first_played": self.first_played.isoformat() if self.first_played else None,
            "last_played": self.last_played.isoformat() if self.last_played else None,
        }

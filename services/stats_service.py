"""Read helpers for the derived stats tables and the drift report."""
from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import select

from extensions import db
from models import GameSession, LibraryItem, Tournament, UserGame, UserGameStats, UserStats
from services.stats_changes import STATUS_COMPLETE, STATUS_OWNED
from services.stats_lookup import find_default_library_id
from utils.error_handling import translate_storage_errors

DEFAULT_USER_STATS = {
    "games_played": 0,
    "games_won": 0,
    "tournaments_played": 0,
    "games_owned": 0,
    "unplayed_games": 0,
    "most_played": None,
    "last_updated": None,
}


@translate_storage_errors
def load_user_stats(user_id: str) -> dict[str, Any]:
    """Stored counters for a user; all zero when nothing was ever recorded."""
    row = db.session.get(UserStats, user_id)
    if row is None:
        return {"user_id": user_id, **DEFAULT_USER_STATS}
    return row.to_dict()


@translate_storage_errors
def load_game_stats(user_id: str, game_id: str) -> Optional[dict[str, Any]]:
    row = db.session.get(UserGameStats, (user_id, game_id))
    return row.to_dict() if row else None


@translate_storage_errors
def load_top_played_games(user_id: str, limit: int = 10) -> list[dict[str, Any]]:
    rows = db.session.execute(
        select(UserGameStats)
        .where(UserGameStats.user_id == user_id, UserGameStats.play_count > 0)
        .order_by(UserGameStats.play_count.desc(), UserGameStats.game_id.asc())
        .limit(limit)
    ).scalars()
    return [row.to_dict() for row in rows]


def _contains(values, user_id: str) -> bool:
    return user_id in {str(value) for value in (values or ())}


@translate_storage_errors
def expected_user_stats(user_id: str) -> dict[str, int]:
    """Recount the counters from source tables.

    Membership in JSON lists is portable only in Python, so sessions and
    tournaments are scanned here; this is an operator tool, not a hot path.
    """
    played = won = 0
    for session in db.session.execute(
        select(GameSession).where(GameSession.status == STATUS_COMPLETE)
    ).scalars():
        if _contains(session.participant_user_ids, user_id):
            played += 1
            if _contains(session.winner_user_ids, user_id):
                won += 1

    tournaments = sum(
        1
        for members in db.session.execute(select(Tournament.member_ids)).scalars()
        if _contains(members, user_id)
    )

    owned = unplayed = 0
    library_id = find_default_library_id(user_id)
    if library_id is not None:
        records = db.session.execute(
            select(UserGame.status, UserGame.play_count)
            .join(
                LibraryItem,
                (LibraryItem.game_id == UserGame.game_id) & (LibraryItem.library_id == library_id),
            )
            .where(UserGame.user_id == user_id)
        ).all()
        for status, play_count in records:
            owned += 1
            if status == STATUS_OWNED and not play_count:
                unplayed += 1

    return {
        "games_played": played,
        "games_won": won,
        "tournaments_played": tournaments,
        "games_owned": owned,
        "unplayed_games": unplayed,
    }


def stats_drift(user_id: str) -> dict[str, dict[str, int]]:
    """Counters whose stored value differs from the recount, as {counter: {stored, expected}}."""
    stored = load_user_stats(user_id)
    expected = expected_user_stats(user_id)
    return {
        counter: {"stored": stored.get(counter, 0), "expected": value}
        for counter, value in expected.items()
        if stored.get(counter, 0) != value
    }

"""Most-played recompute.

"Is this game still the user's most played?" cannot be answered from a delta,
so after the primary write commits the top per-game row is re-queried and
copied onto ``user_stats``. Failures here are logged and never undo the
counters that already landed.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import UserGameStats, UserStats
from services.stats_writer import dialect_insert, execute_atomically
from utils.error_handling import TransientStorageError, log_error
from utils.time import utcnow

logger = logging.getLogger(__name__)


def top_played_game(user_id: str) -> Optional[UserGameStats]:
    return db.session.execute(
        select(UserGameStats)
        .where(UserGameStats.user_id == user_id, UserGameStats.play_count > 0)
        .order_by(UserGameStats.play_count.desc(), UserGameStats.game_id.asc())
        .limit(1)
    ).scalar_one_or_none()


def refresh_most_played(user_id: str) -> Optional[str]:
    """Overwrite the most-played fields for one user; returns the winning game id."""
    top = top_played_game(user_id)
    values = {
        "most_played_game_id": top.game_id if top else None,
        "most_played_game_name": top.game_name if top else None,
        "most_played_game_thumbnail": top.game_thumbnail if top else None,
        "most_played_game_count": top.play_count if top else None,
    }
    table = UserStats.__table__
    stmt = dialect_insert(table).values(user_id=user_id, last_updated=utcnow(), **values)
    set_ = {column: stmt.excluded[column] for column in values}
    set_["last_updated"] = stmt.excluded.last_updated
    stmt = stmt.on_conflict_do_update(index_elements=[table.c.user_id], set_=set_)
    execute_atomically([stmt], operation="refresh_most_played", context={"user_id": user_id})
    return values["most_played_game_id"]


def refresh_most_played_for(user_ids: Iterable[str]) -> list[str]:
    """Best-effort refresh for several users; returns the ids that were refreshed."""
    refreshed: list[str] = []
    for user_id in sorted(set(user_ids)):
        try:
            refresh_most_played(user_id)
        except (SQLAlchemyError, TransientStorageError) as exc:
            db.session.rollback()
            log_error(exc, {"operation": "refresh_most_played", "user_id": user_id})
            continue
        refreshed.append(user_id)
    if refreshed:
        logger.info("Refreshed most played", extra={"users": refreshed})
    return refreshed

"""Reads of auxiliary records needed to decide conditional stat adjustments."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from flask import current_app, has_app_context
from sqlalchemy import select

from extensions import db
from models import Library, LibraryItem, UserGame, UserGameStats
from services.stats_changes import STATUS_OWNED
from utils.error_handling import translate_storage_errors


@dataclass(frozen=True)
class OwnedRecordState:
    """Pre-delta view of a user's collection entry for one game."""

    status: str
    play_count: int
    win_count: int

    @property
    def is_owned(self) -> bool:
        return self.status == STATUS_OWNED


def _default_library_key() -> str:
    if has_app_context():
        return current_app.config.get("STATS_DEFAULT_LIBRARY_KEY", Library.SYSTEM_MY)
    return Library.SYSTEM_MY


@translate_storage_errors
def fetch_owned_records(pairs: Iterable[tuple[str, str]]) -> dict[tuple[str, str], OwnedRecordState]:
    """Load the owned-game rows for every (user_id, game_id) pair in one round trip.

    Pairs without a row are simply absent from the result: the game is not in
    that user's collection.
    """
    wanted = set(pairs)
    if not wanted:
        return {}
    user_ids = {user_id for user_id, _ in wanted}
    game_ids = {game_id for _, game_id in wanted}
    rows = db.session.execute(
        select(
            UserGame.user_id,
            UserGame.game_id,
            UserGame.status,
            UserGame.play_count,
            UserGame.win_count,
        ).where(UserGame.user_id.in_(user_ids), UserGame.game_id.in_(game_ids))
    ).all()
    return {
        (row.user_id, row.game_id): OwnedRecordState(
            status=row.status,
            play_count=row.play_count or 0,
            win_count=row.win_count or 0,
        )
        for row in rows
        if (row.user_id, row.game_id) in wanted
    }


@translate_storage_errors
def find_default_library_id(user_id: str, system_key: Optional[str] = None) -> Optional[str]:
    return db.session.execute(
        select(Library.id)
        .where(
            Library.owner_user_id == user_id,
            Library.system_key == (system_key or _default_library_key()),
        )
        .limit(1)
    ).scalar_one_or_none()


@translate_storage_errors
def has_library_item(library_id: str, game_id: str) -> bool:
    return db.session.get(LibraryItem, (library_id, game_id)) is not None


@translate_storage_errors
def fetch_game_history(user_id: str, game_id: str) -> Optional[tuple[int, int]]:
    """Existing (play_count, win_count) for a user's game, or None if never played."""
    row = db.session.execute(
        select(UserGameStats.play_count, UserGameStats.win_count).where(
            UserGameStats.user_id == user_id,
            UserGameStats.game_id == game_id,
        )
    ).first()
    if row is None:
        return None
    return row.play_count or 0, row.win_count or 0


def is_in_default_library(user_id: str, game_id: str) -> bool:
    library_id = find_default_library_id(user_id)
    if library_id is None:
        return False
    return has_library_item(library_id, game_id)

"""Per-record event handlers of the stats engine.

Each handler receives one ``Created``/``Updated``/``Deleted`` change, derives
the deltas from its before/after snapshots and commits them as one
``StatsBatch``. Handlers hold no state between invocations: everything they
apply is derived from the shipped snapshot pair.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from models import Library
from services.stats_changes import (
    KIND_GAME_SESSION,
    KIND_TOURNAMENT,
    KIND_USER,
    KIND_USER_GAME,
    Created,
    Deleted,
    RecordChange,
    SessionSnapshot,
    TournamentSnapshot,
    UserGameSnapshot,
    UserSnapshot,
)
from services.stats_deltas import (
    compute_game_deltas,
    compute_membership_deltas,
    compute_session_deltas,
    owned_created_delta,
    owned_deleted_delta,
    unplayed_adjustment,
)
from services.stats_lookup import fetch_game_history, fetch_owned_records, is_in_default_library
from services.stats_recompute import refresh_most_played_for
from services.stats_writer import StatsBatch, dialect_insert, execute_atomically
from utils.error_handling import MalformedRecordError
from utils.time import utcnow

logger = logging.getLogger(__name__)

# (system_key, name, visibility, sort_order)
DEFAULT_LIBRARIES = (
    (Library.SYSTEM_MY, "My Library", Library.VISIBILITY_PUBLIC, 0),
    (Library.SYSTEM_WISHLIST, "Wishlist", Library.VISIBILITY_PRIVATE, 1),
)


@dataclass(slots=True)
class HandlerResult:
    kind: str
    record_id: str
    user_deltas: dict[str, dict[str, int]] = field(default_factory=dict)
    skipped: bool = False
    most_played_refreshed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "record_id": self.record_id,
            "user_deltas": self.user_deltas,
            "skipped": self.skipped,
            "most_played_refreshed": list(self.most_played_refreshed),
        }


def _snapshot(change: RecordChange):
    return change.after if change.after is not None else change.before


# Sessions --------------------------------------------------------------------
def handle_session_written(change: RecordChange) -> HandlerResult:
    before: Optional[SessionSnapshot] = change.before
    after: Optional[SessionSnapshot] = change.after
    session_id = _snapshot(change).session_id
    result = HandlerResult(kind=KIND_GAME_SESSION, record_id=session_id)

    user_deltas = compute_session_deltas(before, after)
    game_deltas = compute_game_deltas(before, after)
    if not user_deltas and not game_deltas:
        result.skipped = True
        return result
    if not game_deltas:
        logger.warning(
            "Session %s has results but no game id; per-game stats skipped",
            session_id,
            extra={"session_id": session_id, "op": change.op},
        )

    owned = fetch_owned_records(game_deltas.keys())
    batch = StatsBatch()
    for user_id, delta in user_deltas.items():
        batch.increment_stats(user_id, games_played=delta.played, games_won=delta.won)

    for (user_id, game_id), delta in game_deltas.items():
        source = after if after is not None and after.game_id == game_id else before
        batch.increment_game_stats(
            user_id,
            game_id,
            played=delta.played,
            won=delta.won,
            game_name=source.game_name,
            game_thumbnail=source.game_thumbnail,
            played_at=source.played_at,
        )
        state = owned.get((user_id, game_id))
        if state is None:
            continue
        batch.increment_owned(user_id, game_id, played=delta.played, won=delta.won)
        if state.is_owned:
            adjustment = unplayed_adjustment(state.play_count, delta.played)
            if adjustment:
                batch.increment_stats(user_id, unplayed_games=adjustment)

    batch.commit()
    result.user_deltas = {user_id: delta.to_dict() for user_id, delta in user_deltas.items()}
    result.most_played_refreshed = refresh_most_played_for(
        user_id for user_id, _ in game_deltas
    )
    logger.info(
        "Applied session stats",
        extra={
            "session_id": session_id,
            "op": change.op,
            "users": sorted(user_deltas),
            "games": sorted({game_id for _, game_id in game_deltas}),
        },
    )
    return result


# Tournaments -----------------------------------------------------------------
def handle_tournament_written(change: RecordChange) -> HandlerResult:
    before: Optional[TournamentSnapshot] = change.before
    after: Optional[TournamentSnapshot] = change.after
    tournament_id = _snapshot(change).tournament_id
    result = HandlerResult(kind=KIND_TOURNAMENT, record_id=tournament_id)

    deltas = compute_membership_deltas(
        before.member_ids if before else (),
        after.member_ids if after else (),
    )
    if not deltas:
        result.skipped = True
        return result

    batch = StatsBatch()
    for user_id, delta in deltas.items():
        batch.increment_stats(user_id, tournaments_played=delta)
    batch.commit()
    result.user_deltas = {user_id: {"tournaments_played": delta} for user_id, delta in deltas.items()}
    logger.info(
        "Applied tournament membership",
        extra={"tournament_id": tournament_id, "op": change.op, "deltas": deltas},
    )
    return result


# Owned games -----------------------------------------------------------------
def _owned_record_id(snapshot: UserGameSnapshot) -> str:
    return f"{snapshot.user_id}:{snapshot.game_id}"


def handle_owned_game_created(change: RecordChange) -> HandlerResult:
    if not isinstance(change, Created):
        raise MalformedRecordError("Owned-game handler expects a created record", kind=KIND_USER_GAME)
    record: UserGameSnapshot = change.after
    result = HandlerResult(kind=KIND_USER_GAME, record_id=_owned_record_id(record))

    if not is_in_default_library(record.user_id, record.game_id):
        logger.info(
            "Owned game not in default library; skipping",
            extra={"user_id": record.user_id, "game_id": record.game_id},
        )
        result.skipped = True
        return result

    play_count = record.play_count
    win_count = record.win_count
    batch = StatsBatch()
    history = fetch_game_history(record.user_id, record.game_id)
    if history is not None:
        # never lowers what the collection row already says
        play_count = max(play_count, history[0])
        win_count = max(win_count, history[1])
        if (play_count, win_count) != (record.play_count, record.win_count):
            batch.set_owned_counts(record.user_id, record.game_id, play_count=play_count, win_count=win_count)

    delta = owned_created_delta(record.status, play_count)
    batch.increment_stats(record.user_id, games_owned=delta.owned, unplayed_games=delta.unplayed)
    batch.commit()
    result.user_deltas = {record.user_id: {"games_owned": delta.owned, "unplayed_games": delta.unplayed}}
    logger.info(
        "Applied owned game created",
        extra={
            "user_id": record.user_id,
            "game_id": record.game_id,
            "play_count": play_count,
            "backfilled": history is not None,
        },
    )
    return result


def handle_owned_game_deleted(change: RecordChange) -> HandlerResult:
    if not isinstance(change, Deleted):
        raise MalformedRecordError("Owned-game handler expects a deleted record", kind=KIND_USER_GAME)
    record: UserGameSnapshot = change.before
    result = HandlerResult(kind=KIND_USER_GAME, record_id=_owned_record_id(record))

    delta = owned_deleted_delta(record.status, record.play_count)
    batch = StatsBatch()
    batch.increment_stats(record.user_id, games_owned=delta.owned, unplayed_games=delta.unplayed)
    batch.commit()
    result.user_deltas = {record.user_id: {"games_owned": delta.owned, "unplayed_games": delta.unplayed}}
    logger.info(
        "Applied owned game deleted",
        extra={"user_id": record.user_id, "game_id": record.game_id, "status": record.status},
    )
    return result


# Users -----------------------------------------------------------------------
def provision_default_libraries(user_id: str) -> None:
    """Create the user's system libraries; existing ones are left untouched."""
    now = utcnow()
    table = Library.__table__
    rows = [
        {
            "id": f"{system_key}-{user_id}",
            "owner_user_id": user_id,
            "name": name,
            "visibility": visibility,
            "system_key": system_key,
            "sort_order": sort_order,
            "created_at": now,
            "updated_at": now,
        }
        for system_key, name, visibility, sort_order in DEFAULT_LIBRARIES
    ]
    statements = [
        dialect_insert(table)
        .values(**row)
        .on_conflict_do_nothing()
        for row in rows
    ]
    execute_atomically(statements, operation="provision_default_libraries", context={"user_id": user_id})


def handle_user_created(change: RecordChange) -> HandlerResult:
    if not isinstance(change, Created):
        raise MalformedRecordError("User handler expects a created record", kind=KIND_USER)
    user: UserSnapshot = change.after
    provision_default_libraries(user.user_id)
    logger.info("Provisioned default libraries", extra={"user_id": user.user_id})
    return HandlerResult(kind=KIND_USER, record_id=user.user_id)


# Routing ---------------------------------------------------------------------
def handle_change(kind: str, change: RecordChange) -> Optional[HandlerResult]:
    """Route a change to its handler. Changes nobody listens to return None."""
    if kind == KIND_GAME_SESSION:
        return handle_session_written(change)
    if kind == KIND_TOURNAMENT:
        return handle_tournament_written(change)
    if kind == KIND_USER_GAME:
        if isinstance(change, Created):
            return handle_owned_game_created(change)
        if isinstance(change, Deleted):
            return handle_owned_game_deleted(change)
        return None
    if kind == KIND_USER:
        if isinstance(change, Created):
            return handle_user_created(change)
        return None
    raise MalformedRecordError(f"No stats handler for {kind!r}", kind=kind)


__all__ = [
    "DEFAULT_LIBRARIES",
    "HandlerResult",
    "handle_change",
    "handle_owned_game_created",
    "handle_owned_game_deleted",
    "handle_session_written",
    "handle_tournament_written",
    "handle_user_created",
    "provision_default_libraries",
]

"""Delta calculation for the stats engine.

Everything here is a pure function of two snapshots. A counter only moves when
a user crosses into or out of the "participant of a complete session" state,
so calling any of these twice on the same pair gives the same answer.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from services.stats_changes import STATUS_OWNED, SessionSnapshot


@dataclass(frozen=True)
class UserDelta:
    played: int = 0
    won: int = 0

    def __bool__(self) -> bool:
        return bool(self.played or self.won)

    def __add__(self, other: "UserDelta") -> "UserDelta":
        return UserDelta(self.played + other.played, self.won + other.won)

    def __neg__(self) -> "UserDelta":
        return UserDelta(-self.played, -self.won)

    def to_dict(self) -> dict[str, int]:
        return {"played": self.played, "won": self.won}


@dataclass(frozen=True)
class OwnedDelta:
    owned: int = 0
    unplayed: int = 0

    def __bool__(self) -> bool:
        return bool(self.owned or self.unplayed)


def edge_delta(was_member: bool, was_complete: bool, is_member: bool, is_complete: bool) -> int:
    """+1 entering (member and complete), -1 leaving it, 0 otherwise."""
    before = was_member and was_complete
    after = is_member and is_complete
    if after and not before:
        return 1
    if before and not after:
        return -1
    return 0


def compute_session_deltas(
    before: Optional[SessionSnapshot],
    after: Optional[SessionSnapshot],
) -> dict[str, UserDelta]:
    """Per-user played/won deltas for one session change. Zero deltas are omitted."""
    before_participants = before.participant_user_ids if before else frozenset()
    after_participants = after.participant_user_ids if after else frozenset()
    before_winners = before.winner_user_ids if before else frozenset()
    after_winners = after.winner_user_ids if after else frozenset()
    before_complete = bool(before and before.is_complete)
    after_complete = bool(after and after.is_complete)

    deltas: dict[str, UserDelta] = {}
    for user_id in sorted(before_participants | after_participants):
        delta = UserDelta(
            played=edge_delta(
                user_id in before_participants,
                before_complete,
                user_id in after_participants,
                after_complete,
            ),
            won=edge_delta(
                user_id in before_winners,
                before_complete,
                user_id in after_winners,
                after_complete,
            ),
        )
        if delta:
            deltas[user_id] = delta
    return deltas


def _counted(snapshot: Optional[SessionSnapshot]) -> dict[str, UserDelta]:
    # What a single snapshot contributes to its participants' counters.
    if snapshot is None or not snapshot.is_complete:
        return {}
    return {
        user_id: UserDelta(played=1, won=1 if user_id in snapshot.winner_user_ids else 0)
        for user_id in snapshot.participant_user_ids
    }


def compute_game_deltas(
    before: Optional[SessionSnapshot],
    after: Optional[SessionSnapshot],
) -> dict[tuple[str, str], UserDelta]:
    """Per-(user, game) deltas.

    While the game id is stable this is ``compute_session_deltas`` keyed by that
    game. When the session is moved to a different game, the old game loses what
    the before snapshot counted and the new game gains what the after snapshot
    counts. Sessions without a game id contribute nothing here.
    """
    before_game = before.game_id if before else None
    after_game = after.game_id if after else None

    if before is None or after is None or before_game == after_game:
        game_id = after_game or before_game
        if not game_id:
            return {}
        return {
            (user_id, game_id): delta
            for user_id, delta in compute_session_deltas(before, after).items()
        }

    deltas: dict[tuple[str, str], UserDelta] = {}
    if before_game:
        for user_id, counted in _counted(before).items():
            deltas[(user_id, before_game)] = -counted
    if after_game:
        for user_id, counted in _counted(after).items():
            key = (user_id, after_game)
            deltas[key] = deltas.get(key, UserDelta()) + counted
    return {key: delta for key, delta in sorted(deltas.items()) if delta}


def compute_membership_deltas(before_ids: Iterable[str], after_ids: Iterable[str]) -> dict[str, int]:
    """+1 for members added, -1 for members removed."""
    before_set = set(before_ids or ())
    after_set = set(after_ids or ())
    deltas = {user_id: 1 for user_id in sorted(after_set - before_set)}
    deltas.update({user_id: -1 for user_id in sorted(before_set - after_set)})
    return deltas


def _is_unplayed(status: str, play_count: int) -> bool:
    return status == STATUS_OWNED and play_count == 0


def owned_created_delta(status: str, play_count: int) -> OwnedDelta:
    return OwnedDelta(owned=1, unplayed=1 if _is_unplayed(status, play_count) else 0)


def owned_deleted_delta(status: str, play_count: int) -> OwnedDelta:
    """Every deleted record leaves games_owned; only an unplayed owned one leaves unplayed_games."""
    return OwnedDelta(owned=-1, unplayed=-1 if _is_unplayed(status, play_count) else 0)


def unplayed_adjustment(pre_play_count: int, played_delta: int) -> int:
    """Change to unplayed_games from the pre-delta play count of an owned record."""
    if pre_play_count == 0 and played_delta > 0:
        return -1
    if pre_play_count > 0 and pre_play_count + played_delta <= 0:
        return 1
    return 0

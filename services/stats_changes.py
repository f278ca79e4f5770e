"""Snapshots of the records the stats engine watches, and the change variant handed to its handlers.

A change is always one of three shapes:

    Created(after)          the record appeared
    Updated(before, after)  the record changed
    Deleted(before)         the record went away

Handlers never look at a live ORM object. They only see two immutable snapshots,
so a replayed (before, after) pair always produces the same deltas.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar, Union

from utils.error_handling import MalformedRecordError, safe_int_conversion
from utils.time import format_timestamp, parse_timestamp

KIND_GAME_SESSION = "game_session"
KIND_TOURNAMENT = "tournament"
KIND_USER_GAME = "user_game"
KIND_USER = "user"

STATUS_COMPLETE = "complete"
STATUS_INCOMPLETE = "incomplete"
STATUS_OWNED = "owned"


def _field(source: Any, name: str, default: Any = None) -> Any:
    if isinstance(source, Mapping):
        value = source.get(name, default)
    else:
        value = getattr(source, name, default)
    return default if value is None else value


def _id_set(values: Any) -> frozenset[str]:
    if not values:
        return frozenset()
    return frozenset(str(value) for value in values if value)


@dataclass(frozen=True)
class SessionSnapshot:
    session_id: str
    participant_user_ids: frozenset[str] = frozenset()
    winner_user_ids: frozenset[str] = frozenset()
    status: str = STATUS_INCOMPLETE
    game_id: Optional[str] = None
    game_name: Optional[str] = None
    game_thumbnail: Optional[str] = None
    played_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return self.status == STATUS_COMPLETE

    @classmethod
    def from_record(cls, source: Any) -> "SessionSnapshot":
        """Build from an ORM row, a row mapping, or a payload dict."""
        return cls(
            session_id=str(_field(source, "id", "")),
            participant_user_ids=_id_set(_field(source, "participant_user_ids")),
            winner_user_ids=_id_set(_field(source, "winner_user_ids")),
            status=_field(source, "status", STATUS_INCOMPLETE),
            game_id=_field(source, "game_id") or None,
            game_name=_field(source, "game_name"),
            game_thumbnail=_field(source, "game_thumbnail"),
            played_at=parse_timestamp(_field(source, "played_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.session_id,
            "participant_user_ids": sorted(self.participant_user_ids),
            "winner_user_ids": sorted(self.winner_user_ids),
            "status": self.status,
            "game_id": self.game_id,
            "game_name": self.game_name,
            "game_thumbnail": self.game_thumbnail,
            "played_at": format_timestamp(self.played_at),
        }


@dataclass(frozen=True)
class TournamentSnapshot:
    tournament_id: str
    member_ids: frozenset[str] = frozenset()

    @classmethod
    def from_record(cls, source: Any) -> "TournamentSnapshot":
        return cls(
            tournament_id=str(_field(source, "id", "")),
            member_ids=_id_set(_field(source, "member_ids")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.tournament_id, "member_ids": sorted(self.member_ids)}


@dataclass(frozen=True)
class UserGameSnapshot:
    user_id: str
    game_id: str
    status: str = STATUS_OWNED
    play_count: int = 0
    win_count: int = 0

    @property
    def is_owned(self) -> bool:
        return self.status == STATUS_OWNED

    @classmethod
    def from_record(cls, source: Any) -> "UserGameSnapshot":
        return cls(
            user_id=str(_field(source, "user_id", "")),
            game_id=str(_field(source, "game_id", "")),
            status=_field(source, "status", STATUS_OWNED),
            play_count=safe_int_conversion(_field(source, "play_count", 0)),
            win_count=safe_int_conversion(_field(source, "win_count", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "game_id": self.game_id,
            "status": self.status,
            "play_count": self.play_count,
            "win_count": self.win_count,
        }


@dataclass(frozen=True)
class UserSnapshot:
    user_id: str
    display_name: Optional[str] = None

    @classmethod
    def from_record(cls, source: Any) -> "UserSnapshot":
        return cls(
            user_id=str(_field(source, "id", "")),
            display_name=_field(source, "display_name"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.user_id, "display_name": self.display_name}


SNAPSHOT_TYPES = {
    KIND_GAME_SESSION: SessionSnapshot,
    KIND_TOURNAMENT: TournamentSnapshot,
    KIND_USER_GAME: UserGameSnapshot,
    KIND_USER: UserSnapshot,
}

T = TypeVar("T")


@dataclass(frozen=True)
class Created(Generic[T]):
    after: T

    op = "created"

    @property
    def before(self) -> None:
        return None


@dataclass(frozen=True)
class Updated(Generic[T]):
    before: T
    after: T

    op = "updated"


@dataclass(frozen=True)
class Deleted(Generic[T]):
    before: T

    op = "deleted"

    @property
    def after(self) -> None:
        return None


RecordChange = Union[Created, Updated, Deleted]


def change_between(before: Optional[T], after: Optional[T]) -> Optional[RecordChange]:
    """Return the change taking ``before`` to ``after``, or None when nothing changed.

    Several writes to one record inside a transaction fold to the first ``before``
    and the last ``after``: a record created and deleted in the same commit yields
    None, and an update that ends where it started yields None as well.
    """
    if before is None and after is None:
        return None
    if before is None:
        return Created(after)
    if after is None:
        return Deleted(before)
    if before == after:
        return None
    return Updated(before, after)


def change_to_payload(kind: str, change: RecordChange) -> dict[str, Any]:
    """Serialize a change for the background queue. Both snapshots travel with it."""
    return {
        "kind": kind,
        "op": change.op,
        "before": change.before.to_dict() if change.before is not None else None,
        "after": change.after.to_dict() if change.after is not None else None,
    }


def change_from_payload(payload: Mapping[str, Any]) -> tuple[str, RecordChange]:
    kind = payload.get("kind")
    snapshot_cls = SNAPSHOT_TYPES.get(kind)
    if snapshot_cls is None:
        raise MalformedRecordError(f"Unknown change kind: {kind!r}", kind=kind)
    raw_before = payload.get("before")
    raw_after = payload.get("after")
    before = snapshot_cls.from_record(raw_before) if raw_before else None
    after = snapshot_cls.from_record(raw_after) if raw_after else None
    change = change_between(before, after)
    if change is None:
        raise MalformedRecordError(f"Payload for {kind} carries no change", kind=kind)
    return kind, change

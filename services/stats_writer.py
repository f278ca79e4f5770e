"""Atomic application of stat deltas.

A ``StatsBatch`` collects every write one handler invocation needs and commits
them in a single transaction:

- ``user_stats`` counters are bumped with ``col = col + :delta`` upserts, so
  concurrent writers commute and the row is created on first touch;
- ``user_game_stats`` counters are bumped the same way while the display
  fields (name, thumbnail) are overwritten on every write;
- ``user_games`` play/win counts receive the same increments, but only for
  rows the caller saw in its pre-delta fetch.

Either all statements land or none do.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import Table, func, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import UserGame, UserGameStats, UserStats
from utils.error_handling import TransientStorageError, UnsupportedDialectError, log_error
from utils.time import utcnow

logger = logging.getLogger(__name__)

UNKNOWN_GAME_NAME = "Unknown Game"


def dialect_insert(table: Table):
    """INSERT construct supporting ``on_conflict_do_update`` for the bound database."""
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise UnsupportedDialectError(dialect)


def execute_atomically(statements: Iterable[Any], *, operation: str, context: Optional[dict] = None) -> None:
    """Run statements on the current session and commit once; roll back on any failure."""
    session = db.session
    try:
        for statement in statements:
            session.execute(statement)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        log_error(exc, {"operation": operation, **(context or {})})
        raise TransientStorageError(f"{operation} failed: {exc}", operation=operation) from exc
    except Exception:
        session.rollback()
        raise


@dataclass
class _GameStatsWrite:
    game_name: Optional[str] = None
    game_thumbnail: Optional[str] = None
    played: int = 0
    won: int = 0
    played_at: Optional[datetime] = None


class StatsBatch:
    """Collects stat writes for one handler invocation and commits them together."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or utcnow()
        self._stats: dict[str, dict[str, int]] = {}
        self._game_stats: dict[tuple[str, str], _GameStatsWrite] = {}
        self._owned_increments: dict[tuple[str, str], list[int]] = {}
        self._owned_counts: dict[tuple[str, str], tuple[int, int]] = {}

    @property
    def is_empty(self) -> bool:
        return not (self._stats or self._game_stats or self._owned_increments or self._owned_counts)

    @property
    def user_ids(self) -> set[str]:
        users = set(self._stats)
        for keys in (self._game_stats, self._owned_increments, self._owned_counts):
            users.update(user_id for user_id, _ in keys)
        return users

    # Builders -------------------------------------------------------------
    def increment_stats(self, user_id: str, **deltas: int) -> None:
        bucket = self._stats.setdefault(user_id, {})
        for column, delta in deltas.items():
            if column not in UserStats.COUNTER_COLUMNS:
                raise ValueError(f"Unknown stats counter: {column}")
            bucket[column] = bucket.get(column, 0) + int(delta)

    def increment_game_stats(
        self,
        user_id: str,
        game_id: str,
        *,
        played: int = 0,
        won: int = 0,
        game_name: Optional[str] = None,
        game_thumbnail: Optional[str] = None,
        played_at: Optional[datetime] = None,
    ) -> None:
        write = self._game_stats.setdefault((user_id, game_id), _GameStatsWrite())
        write.played += played
        write.won += won
        write.game_name = game_name or write.game_name
        write.game_thumbnail = game_thumbnail or write.game_thumbnail
        if played > 0:
            write.played_at = played_at or write.played_at or self.now

    def increment_owned(self, user_id: str, game_id: str, *, played: int = 0, won: int = 0) -> None:
        totals = self._owned_increments.setdefault((user_id, game_id), [0, 0])
        totals[0] += played
        totals[1] += won

    def set_owned_counts(self, user_id: str, game_id: str, *, play_count: int, win_count: int) -> None:
        self._owned_counts[(user_id, game_id)] = (play_count, win_count)

    # Statements -----------------------------------------------------------
    def _stats_statement(self, user_id: str, deltas: dict[str, int]):
        table = UserStats.__table__
        counters = {column: 0 for column in UserStats.COUNTER_COLUMNS}
        counters.update(deltas)
        stmt = dialect_insert(table).values(user_id=user_id, last_updated=self.now, **counters)
        set_ = {"last_updated": stmt.excluded.last_updated}
        for column, delta in deltas.items():
            if delta:
                set_[column] = table.c[column] + stmt.excluded[column]
        return stmt.on_conflict_do_update(index_elements=[table.c.user_id], set_=set_)

    def _game_stats_statement(self, user_id: str, game_id: str, write: _GameStatsWrite):
        table = UserGameStats.__table__
        stmt = dialect_insert(table).values(
            user_id=user_id,
            game_id=game_id,
            game_name=write.game_name or UNKNOWN_GAME_NAME,
            game_thumbnail=write.game_thumbnail,
            play_count=write.played,
            win_count=write.won,
            first_played=write.played_at,
            last_played=write.played_at,
        )
        set_ = {
            "game_name": stmt.excluded.game_name,
            "game_thumbnail": stmt.excluded.game_thumbnail,
        }
        if write.played:
            set_["play_count"] = table.c.play_count + stmt.excluded.play_count
        if write.won:
            set_["win_count"] = table.c.win_count + stmt.excluded.win_count
        if write.played_at is not None:
            set_["last_played"] = stmt.excluded.last_played
            set_["first_played"] = func.coalesce(table.c.first_played, stmt.excluded.first_played)
        return stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.game_id],
            set_=set_,
        )

    def _owned_increment_statement(self, user_id: str, game_id: str, played: int, won: int):
        table = UserGame.__table__
        values: dict[str, Any] = {"updated_at": self.now}
        if played:
            values["play_count"] = table.c.play_count + played
        if won:
            values["win_count"] = table.c.win_count + won
        return (
            update(table)
            .where(table.c.user_id == user_id, table.c.game_id == game_id)
            .values(**values)
        )

    def _owned_counts_statement(self, user_id: str, game_id: str, play_count: int, win_count: int):
        table = UserGame.__table__
        return (
            update(table)
            .where(table.c.user_id == user_id, table.c.game_id == game_id)
            .values(play_count=play_count, win_count=win_count, updated_at=self.now)
        )

    def statements(self) -> list[Any]:
        """All statements of the batch, ordered by key so concurrent batches lock rows in the same order."""
        statements: list[Any] = []
        for user_id, deltas in sorted(self._stats.items()):
            statements.append(self._stats_statement(user_id, deltas))
        for (user_id, game_id), write in sorted(self._game_stats.items()):
            if write.played or write.won:
                statements.append(self._game_stats_statement(user_id, game_id, write))
        for (user_id, game_id), (play_count, win_count) in sorted(self._owned_counts.items()):
            statements.append(self._owned_counts_statement(user_id, game_id, play_count, win_count))
        for (user_id, game_id), (played, won) in sorted(self._owned_increments.items()):
            if played or won:
                statements.append(self._owned_increment_statement(user_id, game_id, played, won))
        return statements

    def commit(self) -> None:
        if self.is_empty:
            return
        statements = self.statements()
        execute_atomically(
            statements,
            operation="stats_batch_commit",
            context={"users": sorted(self.user_ids)},
        )
        logger.debug("Committed stats batch", extra={"statements": len(statements)})

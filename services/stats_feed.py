"""Change feed feeding the stats engine from ORM commits.

Session hooks capture a before/after snapshot for every watched row a
transaction touches. Several flushes inside one transaction fold to the first
before and the last after state; once the transaction commits each surviving
change is sent on ``record_changed``. The default receiver runs the handler
inline or hands the change to the RQ stats queue.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from blinker import Signal
from flask import Flask, current_app, has_app_context
from redis.exceptions import RedisError
from rq import Retry
from sqlalchemy import and_, event, inspect, select
from sqlalchemy.orm import Session

from extensions import db
from models import GameSession, Tournament, User, UserGame
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
    Updated,
    UserGameSnapshot,
    UserSnapshot,
    change_between,
    change_to_payload,
)
from services.task_queue import get_queue
from utils.error_handling import TransientStorageError

logger = logging.getLogger(__name__)

record_changed = Signal("record-changed")

STATS_TASK = "worker.stats_tasks.process_stats_change"

_BEFORE_KEY = "stats_before_snapshots"
_PENDING_KEY = "stats_pending_changes"

# model -> (kind, snapshot type, change shapes the stats engine reacts to)
WATCHED_MODELS = {
    GameSession: (KIND_GAME_SESSION, SessionSnapshot, (Created, Updated, Deleted)),
    Tournament: (KIND_TOURNAMENT, TournamentSnapshot, (Created, Updated, Deleted)),
    UserGame: (KIND_USER_GAME, UserGameSnapshot, (Created, Deleted)),
    User: (KIND_USER, UserSnapshot, (Created,)),
}


def _capture_enabled() -> bool:
    return has_app_context() and bool(current_app.config.get("STATS_CHANGE_FEED_ENABLED", True))


def _watched(obj: Any):
    return WATCHED_MODELS.get(type(obj))


def _record_key(obj: Any) -> tuple:
    state = inspect(obj)
    identity = state.identity if state.identity is not None else state.mapper.primary_key_from_instance(obj)
    return (state.mapper.class_, tuple(identity))


def _load_persisted(session: Session, obj: Any, snapshot_cls) -> Optional[Any]:
    # Reads through the flush connection: no autoflush, no attribute refresh.
    mapper = inspect(obj).mapper
    _, identity = _record_key(obj)
    clause = and_(*[column == value for column, value in zip(mapper.primary_key, identity)])
    table = mapper.local_table
    row = session.connection().execute(select(table).where(clause)).mappings().first()
    return snapshot_cls.from_record(row) if row is not None else None


def _before_flush(session: Session, flush_context, instances) -> None:
    if not _capture_enabled():
        return
    snapshots = session.info.setdefault(_BEFORE_KEY, {})
    pending = session.info.get(_PENDING_KEY, {})
    for obj in list(session.dirty) + list(session.deleted):
        watched = _watched(obj)
        if watched is None or not inspect(obj).persistent:
            continue
        key = _record_key(obj)
        if key in snapshots or key in pending:
            continue
        if obj in session.dirty and not session.is_modified(obj):
            continue
        snapshots[key] = _load_persisted(session, obj, watched[1])


def _after_flush(session: Session, flush_context) -> None:
    if not _capture_enabled():
        return
    snapshots = session.info.setdefault(_BEFORE_KEY, {})
    pending = session.info.setdefault(_PENDING_KEY, {})
    deleted = set(map(id, session.deleted))
    for obj in list(session.new) + list(session.dirty) + list(session.deleted):
        watched = _watched(obj)
        if watched is None:
            continue
        kind, snapshot_cls, _ = watched
        key = _record_key(obj)
        if key in pending:
            before = pending[key][1]
        elif key in snapshots or obj in session.new:
            before = snapshots.pop(key, None)
        else:
            continue
        after = None if id(obj) in deleted else _load_persisted(session, obj, snapshot_cls)
        pending[key] = (kind, before, after)


def _after_commit(session: Session) -> None:
    session.info.pop(_BEFORE_KEY, None)
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return
    for (model, _), (kind, before, after) in pending.items():
        change = change_between(before, after)
        if change is None or not isinstance(change, WATCHED_MODELS[model][2]):
            continue
        record_changed.send(kind, change=change)


def _after_rollback(session: Session) -> None:
    session.info.pop(_BEFORE_KEY, None)
    session.info.pop(_PENDING_KEY, None)


def _inline_attempts(app: Flask) -> int:
    return max(1, int(app.config.get("STATS_JOB_RETRIES", 3)) + 1)


def run_change_inline(app: Flask, kind: str, change: RecordChange):
    """Run the handler in its own app context, and therefore its own session.

    A failed batch lands nothing, so storage errors are retried up to
    ``STATS_JOB_RETRIES`` times. Once retries run out the payload is logged so
    ``flask stats-replay`` can apply it later; the source write is already
    committed at this point.
    """
    from services.stats_handlers import handle_change

    attempts = _inline_attempts(app)
    with app.app_context():
        for attempt in range(1, attempts + 1):
            try:
                return handle_change(kind, change)
            except TransientStorageError as exc:
                db.session.rollback()
                if attempt < attempts:
                    logger.warning(
                        "Inline stats update failed (attempt %s of %s); retrying: %s",
                        attempt,
                        attempts,
                        exc,
                        extra={"kind": kind, "op": change.op},
                    )
                    continue
                logger.error(
                    "Inline stats update gave up after %s attempts",
                    attempts,
                    extra={"kind": kind, "op": change.op, "payload": change_to_payload(kind, change)},
                )
            except Exception:
                db.session.rollback()
                logger.exception(
                    "Inline stats update failed",
                    extra={"kind": kind, "op": change.op, "payload": change_to_payload(kind, change)},
                )
                break
    return None


def enqueue_change(kind: str, change: RecordChange):
    """Push the change onto the stats queue; both snapshots travel in the payload."""
    config = current_app.config
    queue = get_queue(config.get("STATS_QUEUE_NAME", "stats"))
    return queue.enqueue(
        STATS_TASK,
        change_to_payload(kind, change),
        job_timeout=config.get("STATS_JOB_TIMEOUT", 60),
        retry=Retry(max=config.get("STATS_JOB_RETRIES", 3)),
        description=f"stats:{kind}:{change.op}",
    )


def dispatch_change(sender: str, change: RecordChange, **_extra) -> None:
    app = current_app._get_current_object()
    if app.config.get("STATS_RUN_INLINE", True):
        run_change_inline(app, sender, change)
        return
    try:
        job = enqueue_change(sender, change)
    except RedisError as exc:
        logger.warning("Stats queue unavailable; running inline: %s", exc, extra={"kind": sender})
        run_change_inline(app, sender, change)
        return
    logger.info("Queued stats update", extra={"kind": sender, "op": change.op, "job_id": job.id})


_SESSION_HOOKS = (
    ("before_flush", _before_flush),
    ("after_flush", _after_flush),
    ("after_commit", _after_commit),
    ("after_rollback", _after_rollback),
)


def register_change_feed(app: Flask) -> None:
    """Attach the session hooks and the default receiver once per process."""
    for name, hook in _SESSION_HOOKS:
        if not event.contains(db.session, name, hook):
            event.listen(db.session, name, hook)
    record_changed.connect(dispatch_change, weak=False)
    app.logger.debug("Stats change feed registered")


__all__ = [
    "WATCHED_MODELS",
    "dispatch_change",
    "enqueue_change",
    "record_changed",
    "register_change_feed",
    "run_change_inline",
]

import logging

import redis

from extensions import db
from models import GameSession, Library, LibraryItem, Tournament
from services import stats_feed, stats_handlers
from services.stats_changes import KIND_GAME_SESSION, KIND_TOURNAMENT, Created, Deleted, TournamentSnapshot, Updated
from services.stats_feed import record_changed
from utils.error_handling import TransientStorageError
from factories import create_game_session, create_user, create_user_game, stored_stats


class _FakeJob:
    id = "job-1"


class _FakeQueue:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def enqueue(self, func, *args, **kwargs):
        if self.error:
            raise self.error
        self.calls.append((func, args, kwargs))
        return _FakeJob()


def test_new_user_gets_default_libraries(change_feed):
    create_user("alice")

    db.session.expire_all()
    keys = {lib.system_key for lib in Library.query.filter_by(owner_user_id="alice")}
    assert keys == {"my", "wishlist"}


def test_completing_a_session_updates_stats(change_feed):
    session = create_game_session(["alice", "bob"], winners=["bob"])
    assert stored_stats("bob") is None

    session.status = GameSession.STATUS_COMPLETE
    db.session.commit()

    bob = stored_stats("bob")
    assert (bob.games_played, bob.games_won) == (1, 1)
    assert bob.most_played_game_id == "catan"
    assert stored_stats("alice").games_played == 1


def test_deleting_a_complete_session_reverts_stats(change_feed):
    session = create_game_session(["alice"], winners=["alice"], status=GameSession.STATUS_COMPLETE)
    assert stored_stats("alice").games_played == 1

    db.session.delete(session)
    db.session.commit()

    stats = stored_stats("alice")
    assert (stats.games_played, stats.games_won) == (0, 0)


def test_session_created_and_deleted_in_one_transaction_nets_to_nothing(change_feed):
    session = GameSession(
        participant_user_ids=["alice"],
        winner_user_ids=["alice"],
        status=GameSession.STATUS_COMPLETE,
        game_id="catan",
    )
    db.session.add(session)
    db.session.flush()
    db.session.delete(session)
    db.session.commit()

    assert stored_stats("alice") is None


def test_rolled_back_writes_are_never_emitted(change_feed):
    session = GameSession(participant_user_ids=["alice"], status=GameSession.STATUS_COMPLETE, game_id="catan")
    db.session.add(session)
    db.session.flush()
    db.session.rollback()

    create_game_session(["bob"])
    assert stored_stats("alice") is None


def test_owned_game_lifecycle_through_the_feed(change_feed):
    create_user("alice")
    db.session.add(LibraryItem(library_id="my-alice", game_id="catan"))
    db.session.commit()

    record = create_user_game("alice", "catan")
    stats = stored_stats("alice")
    assert (stats.games_owned, stats.unplayed_games) == (1, 1)

    db.session.delete(record)
    db.session.commit()
    stats = stored_stats("alice")
    assert (stats.games_owned, stats.unplayed_games) == (0, 0)


def test_tournament_membership_changes_emit_signal(change_feed):
    seen = []

    def receiver(sender, change, **_extra):
        seen.append((sender, change))

    with record_changed.connected_to(receiver):
        tournament = Tournament(name="Spring league", member_ids=["alice"])
        db.session.add(tournament)
        db.session.commit()
        tournament.member_ids = ["alice", "bob"]
        db.session.commit()

    assert [(kind, type(change)) for kind, change in seen] == [
        (KIND_TOURNAMENT, Created),
        (KIND_TOURNAMENT, Updated),
    ]
    assert seen[1][1].after.member_ids == frozenset({"alice", "bob"})
    assert stored_stats("bob").tournaments_played == 1
    assert stored_stats("alice").tournaments_played == 1


def test_untouched_fields_do_not_emit(change_feed):
    seen = []

    def receiver(sender, change, **_extra):
        seen.append(change)

    tournament = Tournament(name="League", member_ids=["alice"])
    db.session.add(tournament)
    db.session.commit()
    with record_changed.connected_to(receiver):
        tournament.name = "Renamed league"
        db.session.commit()

    assert seen == []


def test_feed_disabled_leaves_stats_alone(db_session):
    create_game_session(["alice"], status=GameSession.STATUS_COMPLETE)

    assert stored_stats("alice") is None


def test_queued_mode_enqueues_payload(app, change_feed, monkeypatch):
    queue = _FakeQueue()
    monkeypatch.setattr(stats_feed, "get_queue", lambda name: queue)
    monkeypatch.setitem(app.config, "STATS_RUN_INLINE", False)

    create_game_session(["alice"], status=GameSession.STATUS_COMPLETE)

    assert stored_stats("alice") is None
    func, args, kwargs = queue.calls[-1]
    assert func == stats_feed.STATS_TASK
    assert args[0]["kind"] == KIND_GAME_SESSION
    assert args[0]["op"] == "created"
    assert args[0]["after"]["participant_user_ids"] == ["alice"]
    assert kwargs["job_timeout"] == app.config["STATS_JOB_TIMEOUT"]
    assert kwargs["retry"].max == app.config["STATS_JOB_RETRIES"]


def test_queue_outage_falls_back_to_inline(app, change_feed, monkeypatch):
    queue = _FakeQueue(error=redis.exceptions.ConnectionError("redis down"))
    monkeypatch.setattr(stats_feed, "get_queue", lambda name: queue)
    monkeypatch.setitem(app.config, "STATS_RUN_INLINE", False)

    create_game_session(["alice"], status=GameSession.STATUS_COMPLETE)

    assert stored_stats("alice").games_played == 1


def test_dispatch_runs_handler_inline(app, db_session):
    tournament = TournamentSnapshot("t1", frozenset({"carol"}))

    stats_feed.dispatch_change(KIND_TOURNAMENT, Created(tournament))
    assert stored_stats("carol").tournaments_played == 1

    stats_feed.dispatch_change(KIND_TOURNAMENT, Deleted(tournament))
    assert stored_stats("carol").tournaments_played == 0


def test_inline_retries_transient_storage_errors(app, db_session, monkeypatch):
    real_handle_change = stats_handlers.handle_change
    calls = []

    def flaky_handle_change(kind, change):
        calls.append(kind)
        if len(calls) == 1:
            raise TransientStorageError("database is locked", operation="stats_batch")
        return real_handle_change(kind, change)

    monkeypatch.setattr(stats_handlers, "handle_change", flaky_handle_change)

    result = stats_feed.run_change_inline(
        app, KIND_TOURNAMENT, Created(TournamentSnapshot("t1", frozenset({"carol"})))
    )

    assert len(calls) == 2
    assert result.user_deltas == {"carol": {"tournaments_played": 1}}
    assert stored_stats("carol").tournaments_played == 1


def test_inline_logs_payload_once_retries_run_out(app, db_session, monkeypatch, caplog):
    calls = []

    def failing_handle_change(kind, change):
        calls.append(kind)
        raise TransientStorageError("database is locked", operation="stats_batch")

    monkeypatch.setattr(stats_handlers, "handle_change", failing_handle_change)
    monkeypatch.setitem(app.config, "STATS_JOB_RETRIES", 2)

    with caplog.at_level(logging.WARNING, logger="services.stats_feed"):
        result = stats_feed.run_change_inline(
            app, KIND_TOURNAMENT, Created(TournamentSnapshot("t1", frozenset({"carol"})))
        )

    assert result is None
    assert len(calls) == 3
    gave_up = [record for record in caplog.records if record.levelno == logging.ERROR]
    assert len(gave_up) == 1
    assert gave_up[0].payload["kind"] == KIND_TOURNAMENT
    assert gave_up[0].payload["after"]["member_ids"] == ["carol"]
    assert stored_stats("carol") is None
